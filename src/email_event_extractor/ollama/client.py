"""Ollama client implementation.

This module provides a client for interacting with the Ollama HTTP API.

Notes:
    Requests are issued with ``urllib`` and wrapped using `asyncio.to_thread`
    so the rest of the codebase can remain async-friendly.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request
from typing import Any, Optional

import structlog

from email_event_extractor.config import Settings
from email_event_extractor.exceptions import OllamaConnectionError, OllamaInferenceError
from email_event_extractor.utils import retry_async

logger = structlog.get_logger()


class OllamaClient:
    """Ollama client for text generation and embeddings."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize Ollama client.

        Args:
            settings: Application settings. If None, uses default settings.
        """
        from email_event_extractor.config import get_settings

        self.settings = settings or get_settings()
        logger.info("ollama_client_initialized", host=self.settings.ollama_host)

    async def generate(self, prompt: str, model: str) -> str:
        """Generate a completion for ``prompt``.

        Args:
            prompt: The prompt to send to the model.
            model: Model name to use.

        Returns:
            The raw response text.

        Raises:
            OllamaConnectionError: If Ollama cannot be reached (after retries).
            OllamaInferenceError: If the response body is unusable.
        """
        logger.debug("generating_text", model=model, prompt_length=len(prompt))
        data = await self._post_with_retries(
            "/api/generate",
            {"model": model, "prompt": prompt, "stream": False, "format": "json"},
        )
        response = data.get("response")
        if not isinstance(response, str):
            raise OllamaInferenceError("Ollama generate response missing 'response'")
        return response.strip()

    async def embed(self, text: str, model: str) -> list[float]:
        """Return a single embedding vector for ``text``.

        Older Ollama servers expose ``/api/embeddings``; newer ones answer 404
        there and serve ``/api/embed`` instead.
        """
        try:
            data = await self._post_with_retries("/api/embeddings", {"model": model, "prompt": text})
        except urllib.error.HTTPError as e:
            if e.code != 404:
                raise OllamaConnectionError(str(e)) from e
            data = await self._post_with_retries("/api/embed", {"model": model, "input": text})
            embs = data.get("embeddings")
            if isinstance(embs, list) and embs and isinstance(embs[0], list):
                return [float(x) for x in embs[0]]
            raise OllamaInferenceError("Ollama embed response missing 'embeddings'")

        emb = data.get("embedding")
        if not isinstance(emb, list) or not emb:
            raise OllamaInferenceError("Ollama embeddings response missing 'embedding'")
        return [float(x) for x in emb]

    async def _post_with_retries(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        post = retry_async(
            max_retries=self.settings.max_retries,
            retry_on=(OllamaConnectionError,),
        )(self._post)
        return await post(path, payload)

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._post_sync, path, payload)
        except urllib.error.HTTPError as e:
            if e.code == 404:
                # Endpoint negotiation is left to the caller.
                raise
            raise OllamaConnectionError(f"Ollama returned HTTP {e.code} for {path}") from e
        except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
            raise OllamaConnectionError(f"Unable to reach Ollama at {self.settings.ollama_host}: {e}") from e

    def _post_sync(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        host = self.settings.ollama_host.rstrip("/")
        req = urllib.request.Request(
            url=f"{host}{path}",
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self.settings.ollama_timeout) as resp:  # noqa: S310
            raw = resp.read().decode("utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise OllamaInferenceError(f"Ollama returned invalid JSON for {path}") from e
        if not isinstance(data, dict):
            raise OllamaInferenceError(f"Ollama returned a non-object body for {path}")
        return data
