"""HTTP client for OpenAI-compatible streaming chat completions."""

import asyncio
from typing import AsyncIterator, Dict, List, Optional

import httpx

from moodlog.llm.exceptions import LLMAPIError, LLMError, LLMResponseError, LLMTimeoutError
from moodlog.models.config import LLMConfig
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)

Message = Dict[str, str]


class UpstreamStream:
    """
    An open ``text/event-stream`` response from the provider.

    The caller owns it and must close it (``aclose`` or ``async with``), which
    also closes the underlying connection pool.
    """

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient, request_id: str):
        self._response = response
        self._client = client
        self.request_id = request_id
        self.bytes_received = 0
        self._closed = False

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """
        Yield raw body chunks as they arrive.

        Raises:
            LLMTimeoutError: If the provider stops sending mid-stream
            LLMError: On any other transport failure
        """
        try:
            async for chunk in self._response.aiter_bytes():
                self.bytes_received += len(chunk)
                yield chunk
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"Upstream stream timed out: {e}") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Upstream stream failed: {e}") from e

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()
        logger.debug(
            "llm_stream_closed",
            request_id=self.request_id,
            bytes_received=self.bytes_received,
        )

    async def __aenter__(self) -> "UpstreamStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class LLMClient:
    """
    Client for an OpenAI-compatible chat-completions endpoint in streaming mode.

    ``open_stream`` performs the request and checks the status before any
    byte is handed to the pipeline, so a rejected request surfaces as an
    error response instead of an empty stream. Connection-level failures are
    retried; HTTP errors are not.
    """

    def __init__(self, config: LLMConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize LLM client.

        Args:
            config: LLM configuration (endpoint, API key, model, sampling)
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.config = config
        self.transport = transport
        self.timeout = httpx.Timeout(
            connect=10.0,
            read=60.0,  # Per-read timeout; the whole stream is bounded by the pipeline
            write=10.0,
            pool=10.0
        )

    def build_payload(self, messages: List[Message], model: Optional[str] = None) -> dict:
        """Request body for a streaming completion."""
        return {
            "model": model or self.config.model,
            "messages": messages,
            "stream": True,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "top_p": self.config.top_p,
            "frequency_penalty": self.config.frequency_penalty,
            "presence_penalty": self.config.presence_penalty,
        }

    async def open_stream(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        max_retries: int = 1,
        retry_delay: float = 2.0,
        request_id: Optional[str] = None,
    ) -> UpstreamStream:
        """
        Start a streaming completion and return the open response.

        Args:
            messages: Chat messages (system prompt first)
            model: Override for the configured model
            max_retries: Number of automatic retries on connection errors
            retry_delay: Delay in seconds between retries
            request_id: Identifier for logging/tracing

        Returns:
            Open UpstreamStream; the caller must close it

        Raises:
            LLMAPIError: On a non-200 response (not retried)
            LLMTimeoutError: When connecting fails after all retries
            LLMError: On other transport errors
        """
        request_id = request_id or "unknown"
        payload = self.build_payload(messages, model)
        url = self.config.completions_url
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

        logger.info(
            "llm_request_started",
            request_id=request_id,
            model=payload["model"],
            endpoint=url,
            message_count=len(messages),
        )
        logger.debug("llm_request_payload", request_id=request_id, payload=payload)

        attempt = 0
        while True:
            client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
            try:
                request = client.build_request("POST", url, json=payload, headers=headers)
                response = await client.send(request, stream=True)

            except (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout) as e:
                await client.aclose()
                attempt += 1

                logger.warning(
                    "llm_request_retry",
                    request_id=request_id,
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(e),
                    retry_delay=retry_delay
                )

                if attempt <= max_retries:
                    await asyncio.sleep(retry_delay)
                    continue

                logger.error(
                    "llm_request_failed",
                    request_id=request_id,
                    attempts=attempt,
                    error=str(e)
                )
                raise LLMTimeoutError(f"Failed after {attempt} attempts: {e}") from e

            except httpx.HTTPError as e:
                await client.aclose()
                logger.error("llm_request_failed", request_id=request_id, error=str(e))
                raise LLMError(f"Upstream request failed: {e}") from e

            if response.status_code != 200:
                body = (await response.aread()).decode("utf-8", errors="replace")
                await response.aclose()
                await client.aclose()
                logger.error(
                    "llm_http_error",
                    request_id=request_id,
                    status_code=response.status_code,
                    body=body[:500],
                )
                raise LLMAPIError(
                    f"API error {response.status_code}: {body}",
                    status_code=response.status_code,
                )

            content_type = response.headers.get("content-type", "")
            logger.debug(
                "llm_response_headers",
                request_id=request_id,
                status_code=response.status_code,
                content_type=content_type,
            )

            # Some gateways answer 200 with a JSON error body instead of a stream
            if content_type.startswith("application/json"):
                body = (await response.aread()).decode("utf-8", errors="replace")
                await response.aclose()
                await client.aclose()
                logger.error("llm_response_not_stream", request_id=request_id, body=body[:500])
                raise LLMResponseError(f"Expected an event stream, got JSON: {body[:200]}")

            return UpstreamStream(response, client, request_id)
