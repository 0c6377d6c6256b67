"""Passthrough forwarding of tokens to the original caller.

The pipeline task writes each token as one NDJSON line into a sink as soon as
it is decoded. Sinks never block the pipeline on the client: a QueueSink hands
lines to the HTTP response body through an unbounded queue, and once the
client stops reading every further write fails fast and forwarding stops,
while accumulation and persistence carry on.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Optional

from moodlog.models.stream import StreamToken
from moodlog.services.exceptions import ClientDisconnectedError
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)


class TokenSink(ABC):
    """Destination for forwarded protocol lines."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write one encoded line. Raises if the consumer is gone."""
        pass

    @abstractmethod
    async def finish(self) -> None:
        """Signal a clean end of stream."""
        pass

    @abstractmethod
    async def abort(self, error: BaseException) -> None:
        """Signal that the stream failed and must be terminated as an error."""
        pass


class _StreamEnd:
    pass


class _StreamAborted:
    def __init__(self, error: BaseException):
        self.error = error


_END = _StreamEnd()


class QueueSink(TokenSink):
    """
    Sink feeding a streaming HTTP response body.

    ``body()`` is handed to the response; the pipeline task calls ``write``.
    When the response stops iterating (client disconnected, or the server
    closed the response) the sink is marked closed and ``write`` raises
    ClientDisconnectedError.

    Example:
        >>> sink = QueueSink()
        >>> response = StreamingResponse(sink.body(), media_type=NDJSON_MEDIA_TYPE)
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ClientDisconnectedError("Response body is no longer being read")
        self._queue.put_nowait(data)

    async def finish(self) -> None:
        if not self._closed:
            self._queue.put_nowait(_END)

    async def abort(self, error: BaseException) -> None:
        if not self._closed:
            self._queue.put_nowait(_StreamAborted(error))

    async def body(self) -> AsyncIterator[bytes]:
        """
        Response body iterator.

        Raises:
            The error passed to ``abort``, so the HTTP layer terminates the
            response instead of ending it cleanly
        """
        try:
            while True:
                item = await self._queue.get()
                if item is _END:
                    return
                if isinstance(item, _StreamAborted):
                    raise item.error
                yield item
        finally:
            self._closed = True


class CallbackSink(TokenSink):
    """Sink that hands each decoded line to a synchronous callback (CLI output)."""

    def __init__(self, callback: Callable[[str], None]):
        self._callback = callback
        self.error: Optional[BaseException] = None

    async def write(self, data: bytes) -> None:
        self._callback(data.decode("utf-8"))

    async def finish(self) -> None:
        pass

    async def abort(self, error: BaseException) -> None:
        self.error = error


class PassthroughForwarder:
    """
    Writes every token to the caller immediately, one line per token.

    Forwarding and accumulation share nothing but the token value. A failed
    write marks the forwarder disconnected; later tokens are dropped here
    without error so the caller keeps feeding the transcript.
    """

    def __init__(self, sink: Optional[TokenSink], request_id: str = "unknown"):
        self._sink = sink
        self.request_id = request_id
        self.forwarded_count = 0
        self.dropped_count = 0
        self.disconnected = sink is None

    async def forward(self, token: StreamToken) -> bool:
        """
        Forward one token.

        Returns:
            True if the token was written, False if forwarding has stopped
        """
        if self.disconnected:
            self.dropped_count += 1
            return False

        try:
            await self._sink.write(token.to_line().encode("utf-8"))
        except Exception as e:
            self.disconnected = True
            self.dropped_count += 1
            logger.warning(
                "forwarder_client_disconnected",
                request_id=self.request_id,
                forwarded=self.forwarded_count,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        self.forwarded_count += 1
        return True

    async def close(self) -> None:
        """End the client-facing stream cleanly."""
        if not self.disconnected:
            await self._sink.finish()
        logger.debug(
            "forwarder_closed",
            request_id=self.request_id,
            forwarded=self.forwarded_count,
            dropped=self.dropped_count,
        )

    async def abort(self, error: BaseException) -> None:
        """Terminate the client-facing stream with an error."""
        if not self.disconnected:
            await self._sink.abort(error)
            self.disconnected = True
