"""Token streams: SSE bytes in, StreamTokens out, and back again.

``iter_stream_tokens`` is the producer side (provider bytes -> tokens).
``reassemble_transcript`` is the consumer side of the outbound line
protocol: it rebuilds a transcript from forwarded NDJSON output.
"""

from typing import AsyncIterator, Iterable, Optional, Union

from moodlog.llm.demux import demultiplex
from moodlog.llm.sse import SSEParser
from moodlog.models.stream import StreamToken
from moodlog.models.transcript import RequestTranscript
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)


async def iter_stream_tokens(
    byte_stream: AsyncIterator[bytes],
    parser: Optional[SSEParser] = None,
) -> AsyncIterator[StreamToken]:
    """
    Decode an SSE byte stream into tokens, in arrival order.

    Stops reading as soon as the ``[DONE]`` sentinel is seen; otherwise runs
    until the byte stream is exhausted and then flushes the parser. Pass a
    parser to inspect afterwards whether the stream ended by sentinel
    (``parser.done``) or by the connection closing.

    Args:
        byte_stream: Raw upstream body chunks
        parser: Optional parser instance to use (a new one by default)

    Yields:
        StreamToken for every content/reasoning delta
    """
    if parser is None:
        parser = SSEParser()

    async for chunk in byte_stream:
        for event in parser.feed(chunk):
            for token in demultiplex(event.data):
                yield token

        if parser.done:
            logger.debug("token_stream_sentinel", events=parser.event_count)
            return

    for event in parser.close():
        for token in demultiplex(event.data):
            yield token

    logger.debug(
        "token_stream_closed",
        events=parser.event_count,
        sentinel=parser.done,
    )


def reassemble_transcript(lines: Union[str, Iterable[str]]) -> RequestTranscript:
    """
    Rebuild a finalized transcript from forwarded line-protocol output.

    JSON extraction must run on reassembled content, never on individual
    protocol lines; this is the entry point for callers that only have the
    forwarded output (captured responses, the ``moodlog extract`` command).

    Args:
        lines: Whole captured output, or an iterable of lines

    Returns:
        Finalized RequestTranscript
    """
    if isinstance(lines, str):
        lines = lines.split("\n")

    transcript = RequestTranscript()
    for line_number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        token = _parse_token_line(line, line_number)
        if token is not None:
            transcript.append(token)

    transcript.finalize("reassembled")
    return transcript


def _parse_token_line(line: str, line_number: int) -> Optional[StreamToken]:
    try:
        return StreamToken.from_line(line)
    except ValueError as e:
        # json.JSONDecodeError and pydantic's ValidationError are ValueErrors
        logger.warning(
            "token_line_malformed",
            line_number=line_number,
            line=line[:100],
            error=str(e),
        )
        return None
