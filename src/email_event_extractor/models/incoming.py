"""Transport-level view of a message.

Every field except ``uid`` is optional: raw messages can be missing headers or
bodies, and deciding what that means is the pipeline's job, not the parser's.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class IncomingMessage(BaseModel):
    """A message as delivered by the mailbox, before validation."""

    uid: str = Field(description="Transport sequence number")
    message_id: str | None = Field(default=None, description="Message-ID header")
    in_reply_to_id: str | None = Field(default=None, description="In-Reply-To header")

    sender_email: str | None = Field(default=None, description="Parsed sender address")
    sender_name: str | None = Field(default=None, description="Parsed sender display name")

    subject: str | None = Field(default=None, description="Subject header")
    html: str | None = Field(default=None, description="Rich (HTML) body")
    text: str | None = Field(default=None, description="Plain-text body, if the message had one")

    received_at: datetime | None = Field(default=None, description="Parsed Date header")
