"""
Text generation - the only thing the host needs from a model.

The protocol engine treats generation as an opaque capability with two
operations: produce the full raw output for a prompt, or stream it in
chunks. TextGenerator is that interface; OllamaClient implements it
against an Ollama-style /api/generate endpoint that answers with one JSON
object per line.

Includes timeout and retry logic for resilience against API hangs.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

import httpx

from mcphost.config import LLMConfig

logger = logging.getLogger(__name__)

# Default timeout configuration (in seconds)
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 10.0

RETRYABLE_STATUS = (429, 502, 503, 504)


class LLMError(Exception):
    """Error from the text-generation backend."""


@runtime_checkable
class TextGenerator(Protocol):
    """Capability the engine and context manager generate text through."""

    async def generate_text(self, prompt: str, model: str) -> str:
        """Full raw output for a prompt (JSON lines for streaming providers)."""
        ...

    def generate_stream(self, prompt: str, model: str) -> AsyncIterator[str]:
        """Text chunks for a prompt. The iterator is finite and not restartable."""
        ...


class OllamaClient:
    """
    Client for Ollama-compatible generation APIs.

    generate_text() returns the raw response body untouched, so the engine
    sees every JSON line the server produced and can look for tool-use
    envelopes in them.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client with configuration.

        Args:
            config: Base URL, default model, timeouts and retry policy
            transport: Optional httpx transport (used by tests)
        """
        self.config = config or LLMConfig.from_env()

        # Use layered timeouts; generation reads can take a while
        timeout = httpx.Timeout(
            connect=DEFAULT_CONNECT_TIMEOUT,
            read=self.config.timeout,
            write=DEFAULT_WRITE_TIMEOUT,
            pool=DEFAULT_POOL_TIMEOUT,
        )
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def _payload(self, prompt: str, model: str | None, stream: bool) -> dict[str, Any]:
        return {"model": model or self.config.model, "prompt": prompt, "stream": stream}

    async def generate_text(self, prompt: str, model: str | None = None) -> str:
        """
        Send a generation request with automatic retry.

        Returns:
            The raw response body

        Raises:
            LLMError: If all retries are exhausted or a non-retryable error occurs
        """
        payload = self._payload(prompt, model, stream=True)
        last_error: Exception | None = None

        for attempt in range(self.config.max_retries + 1):
            if attempt > 0:
                logger.info(
                    f"Retry attempt {attempt}/{self.config.max_retries} "
                    f"after {self.config.retry_delay}s delay..."
                )
                await asyncio.sleep(self.config.retry_delay)

            logger.debug(f"Sending generate request for model {payload['model']} (attempt {attempt + 1})")
            try:
                response = await self._client.post("/api/generate", json=payload)
                response.raise_for_status()
                return response.text

            except httpx.TimeoutException as e:
                logger.warning(f"Request timed out (attempt {attempt + 1}): {e}")
                last_error = e

            except httpx.HTTPStatusError as e:
                if e.response.status_code in RETRYABLE_STATUS:
                    logger.warning(f"HTTP {e.response.status_code} (attempt {attempt + 1}), retrying")
                    last_error = e
                    continue
                logger.error(f"HTTP error: {e.response.status_code} - {e.response.text}")
                raise LLMError(f"HTTP {e.response.status_code}: {e.response.text}") from e

            except httpx.RequestError as e:
                logger.warning(f"Request error (attempt {attempt + 1}): {e}")
                last_error = e

        logger.error(f"All {self.config.max_retries + 1} attempts failed. Last error: {last_error}")
        raise LLMError(
            f"Request failed after {self.config.max_retries + 1} attempts: {last_error}"
        ) from last_error

    async def generate_stream(self, prompt: str, model: str | None = None) -> AsyncIterator[str]:
        """
        Stream the "response" field of each JSON line as it arrives.

        No retry: a stream that already yielded chunks cannot be replayed.
        """
        payload = self._payload(prompt, model, stream=True)
        try:
            async with self._client.stream("POST", "/api/generate", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping non-JSON stream line: {line[:100]}")
                        continue
                    chunk = data.get("response") if isinstance(data, dict) else None
                    if chunk:
                        yield chunk
                    if isinstance(data, dict) and data.get("done"):
                        break
        except httpx.HTTPStatusError as e:
            raise LLMError(f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise LLMError(f"Stream request failed: {e}") from e

    async def list_models(self) -> list[str]:
        """Names of the models the server has available."""
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise LLMError(f"Failed to list models: {e}") from e
        return [m["name"] for m in response.json().get("models", []) if "name" in m]

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
