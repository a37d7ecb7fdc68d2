"""Client for the upstream OpenAI-compatible chat completions API."""

import logging
from typing import Any, AsyncGenerator

import httpx

from chatshared.sse import decode_sse_stream
from streamrelay.config import settings

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "MANUS_API_KEY environment variable is required"


class ProviderError(Exception):
    """A failed call to the upstream provider."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _error_message(response: httpx.Response) -> str:
    """Extract the provider's error message from an error response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if payload.get("message"):
            return str(payload["message"])

    text = response.text.strip()
    return text[:500] if text else f"HTTP {response.status_code}"


def _delta_text(chunk: dict) -> str:
    choices = chunk.get("choices") or []
    if not choices:
        return ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    return content if isinstance(content, str) else ""


class ProviderClient:
    """HTTP client for the model provider."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.manus_api_base_url).rstrip("/")
        self.api_key = settings.manus_api_key if api_key is None else api_key
        self.timeout = timeout or settings.provider_timeout
        self._transport = transport

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        if not self.has_credentials:
            raise ProviderError(MISSING_KEY_MESSAGE)
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
        )

    async def stream_chat(self, payload: dict[str, Any]) -> AsyncGenerator[str, None]:
        """Stream a chat completion, yielding each non-empty content delta.

        Raises:
            ProviderError: on a non-2xx status or transport failure
        """
        async with self._client() as client:
            try:
                async with client.stream(
                    "POST",
                    "/chat/completions",
                    json={**payload, "stream": True},
                    headers={"Accept": "text/event-stream"},
                ) as response:
                    if response.is_error:
                        await response.aread()
                        raise ProviderError(
                            _error_message(response),
                            status_code=response.status_code,
                            body=response.text,
                        )
                    async for chunk in decode_sse_stream(response.aiter_text()):
                        if not isinstance(chunk, dict):
                            continue
                        text = _delta_text(chunk)
                        if text:
                            yield text
            except httpx.RequestError as e:
                logger.error(f"Provider request error: {e}")
                raise ProviderError(f"Request failed: {str(e)}") from e

    async def create_chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Non-streaming chat completion; returns the raw provider response."""
        async with self._client() as client:
            try:
                response = await client.post(
                    "/chat/completions", json={**payload, "stream": False}
                )
            except httpx.RequestError as e:
                logger.error(f"Provider request error: {e}")
                raise ProviderError(f"Request failed: {str(e)}") from e
        if response.is_error:
            raise ProviderError(
                _error_message(response),
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    async def list_models(self) -> list[dict[str, Any]]:
        """List the provider's models (used as a reachability check)."""
        async with self._client() as client:
            try:
                response = await client.get("/models")
            except httpx.RequestError as e:
                raise ProviderError(f"Request failed: {str(e)}") from e
        if response.is_error:
            raise ProviderError(_error_message(response), status_code=response.status_code)
        return response.json().get("data", [])


# Singleton client instance
_client: ProviderClient | None = None


def get_provider_client() -> ProviderClient:
    """Get the singleton provider client."""
    global _client
    if _client is None:
        _client = ProviderClient()
    return _client
