"""Gmail API mailbox source.

This module lists and fetches raw messages from a Gmail mailbox.

Notes:
    The Google API client is synchronous. Calls are wrapped using
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
"""

from __future__ import annotations

import asyncio
import base64
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import structlog

from email_event_extractor.config import Settings
from email_event_extractor.exceptions import AuthenticationError, ConfigurationError, MailboxError

logger = structlog.get_logger()


class GmailMailboxSource:
    """Lists candidate message ids and fetches raw message sources."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the mailbox source.

        Args:
            settings: Application settings. If None, uses default settings.
        """
        from email_event_extractor.config import get_settings

        self.settings = settings or get_settings()
        self._service: Any | None = None
        logger.info("gmail_mailbox_initialized")

    async def authenticate(self) -> None:
        """Authenticate with Gmail API using OAuth2.

        Raises:
            ConfigurationError: If the credentials file is missing.
            AuthenticationError: If authentication fails.
        """

        if self._service is not None:
            return

        credentials_path = Path(self.settings.gmail_credentials_path)
        token_path = Path(self.settings.gmail_token_path)
        scope = self.settings.gmail_scope

        if not credentials_path.exists():
            raise ConfigurationError(
                f"Gmail credentials file not found: {credentials_path}. "
                "See README.md -> Setup."
            )

        logger.info(
            "gmail_authentication_started",
            credentials_path=str(credentials_path),
            token_path=str(token_path),
            scope=scope,
        )

        try:
            self._service = await asyncio.to_thread(
                self._build_service,
                credentials_path,
                token_path,
                scope,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_authentication_failed", error=str(exc))
            raise AuthenticationError(str(exc)) from exc

        logger.info("gmail_authentication_completed")

    async def list_candidate_ids(self, since: datetime) -> list[str]:
        """List ids of messages received at or after ``since``.

        Raises:
            MailboxError: If the API request fails.
        """

        await self._ensure_authenticated()

        # Gmail's after: is exclusive and second-granular.
        query = f"after:{int((since - timedelta(seconds=1)).timestamp())}"
        logger.info("listing_candidate_messages", query=query)

        try:
            return await asyncio.to_thread(self._list_ids_sync, query)
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_list_messages_failed", error=str(exc))
            raise MailboxError(str(exc)) from exc

    async def fetch_raw(self, message_uid: str) -> bytes:
        """Fetch the RFC 822 source of a message.

        Raises:
            MailboxError: If the API request fails.
        """

        await self._ensure_authenticated()

        try:
            message = await asyncio.to_thread(self._get_raw_sync, message_uid)
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_get_message_failed", message_uid=message_uid, error=str(exc))
            raise MailboxError(str(exc)) from exc

        raw = message.get("raw")
        if not isinstance(raw, str):
            raise MailboxError(f"Gmail message {message_uid} has no raw source")
        return base64.urlsafe_b64decode(raw.encode("ascii"))

    async def _ensure_authenticated(self) -> None:
        if self._service is None:
            raise AuthenticationError(
                "Gmail mailbox is not authenticated. Call await GmailMailboxSource.authenticate() first."
            )

    def _build_service(self, credentials_path: Path, token_path: Path, scope: str) -> Any:
        # Imported lazily; only the run command needs them.
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build

        creds: Credentials | None = None
        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), scopes=[scope])

        if creds is not None and creds.expired and creds.refresh_token:
            creds.refresh(Request())

        if creds is None or not creds.valid:
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
            creds = flow.run_local_server(port=0)
            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(creds.to_json(), encoding="utf-8")

        # No discovery cache on disk.
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def _list_ids_sync(self, query: str) -> list[str]:
        assert self._service is not None
        ids: list[str] = []

        page_token: str | None = None
        while True:
            response = (
                self._service.users()
                .messages()
                .list(userId="me", maxResults=self.settings.gmail_page_size, q=query, pageToken=page_token)
                .execute()
            )
            for msg in response.get("messages", []) or []:
                msg_id = msg.get("id")
                if msg_id:
                    ids.append(msg_id)
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        return ids

    def _get_raw_sync(self, message_uid: str) -> dict[str, Any]:
        assert self._service is not None
        return self._service.users().messages().get(userId="me", id=message_uid, format="raw").execute()
