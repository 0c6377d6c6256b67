"""Split OpenAI-style streaming chunks into content and reasoning tokens."""

import json
from typing import Any, List

from moodlog.models.stream import Channel, StreamToken
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)

# delta key -> channel, in emission order
_DELTA_CHANNELS = (
    ("content", Channel.CONTENT),
    ("reasoning_content", Channel.REASONING),
)


def demultiplex(data: str) -> List[StreamToken]:
    """
    Decode one SSE ``data`` payload into zero, one or two tokens.

    A payload that is not valid JSON is logged and skipped; it never affects
    the payloads that follow it.

    Args:
        data: Raw ``data`` field of one SSE event

    Returns:
        Tokens carried by this payload (content first, then reasoning)

    Example:
        >>> demultiplex('{"choices": [{"delta": {"content": "Hi"}}]}')
        [StreamToken(channel=<Channel.CONTENT: 'content'>, text='Hi')]
    """
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning(
            "sse_payload_malformed",
            payload=data[:200],
            error=e.msg,
            position=e.pos,
        )
        return []

    return tokens_from_chunk(chunk)


def tokens_from_chunk(chunk: Any) -> List[StreamToken]:
    """
    Extract tokens from an already parsed streaming chunk.

    OpenAI-compatible providers stream chunks like:
    {
        "choices": [{
            "delta": {"content": "...", "reasoning_content": "..."},
            "finish_reason": null
        }]
    }

    ``finish_reason`` is informational only: a reasoning phase can still be in
    flight after a nominal stop, so the stream is ended by the sentinel or the
    connection closing, never by this field.

    Args:
        chunk: Parsed JSON payload

    Returns:
        Tokens carried by this chunk
    """
    if not isinstance(chunk, dict):
        logger.warning("sse_payload_not_object", payload_type=type(chunk).__name__)
        return []

    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices:
        # Usage-only and keep-alive chunks carry no choices
        logger.debug("sse_payload_without_choices", keys=sorted(chunk.keys()))
        return []

    choice = choices[0]
    if not isinstance(choice, dict):
        logger.warning("sse_choice_not_object", choice_type=type(choice).__name__)
        return []

    tokens = _tokens_from_delta(choice.get("delta"))

    finish_reason = choice.get("finish_reason")
    if finish_reason:
        logger.debug("sse_finish_reason", finish_reason=finish_reason)

    return tokens


def _tokens_from_delta(delta: Any) -> List[StreamToken]:
    if not isinstance(delta, dict):
        return []

    tokens: List[StreamToken] = []
    for key, channel in _DELTA_CHANNELS:
        if key not in delta:
            continue

        value = delta[key]
        # Providers send null for the channel that is not active
        if value is None:
            continue

        if not isinstance(value, str):
            logger.warning(
                "sse_delta_not_string",
                field=key,
                value_type=type(value).__name__,
            )
            continue

        tokens.append(StreamToken(channel=channel, text=value))

    return tokens
