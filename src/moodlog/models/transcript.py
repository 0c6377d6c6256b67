"""Per-request accumulation buffer for streamed model output."""

from typing import List, Optional

from moodlog.models.stream import Channel, StreamToken
from moodlog.services.exceptions import TranscriptFinalizedError


class RequestTranscript:
    """
    Ordered accumulation of one request's content and reasoning tokens.

    Owned by a single request task. Appends happen in arrival order with no
    transformation; ``finalize`` freezes the transcript exactly once and is
    idempotent, so a timeout racing a normal end of stream cannot change the
    final text.

    Example:
        >>> transcript = RequestTranscript()
        >>> transcript.append(StreamToken(channel="content", text="Hel"))
        >>> transcript.append(StreamToken(channel="content", text="lo"))
        >>> transcript.finalize("sentinel")
        'Hello'
    """

    def __init__(self) -> None:
        self._content: List[str] = []
        self._reasoning: List[str] = []
        self._final_content: Optional[str] = None
        self._final_reasoning: Optional[str] = None
        self.finalized_reason: Optional[str] = None
        self.content_token_count = 0
        self.reasoning_token_count = 0

    @property
    def is_finalized(self) -> bool:
        return self.finalized_reason is not None

    @property
    def token_count(self) -> int:
        return self.content_token_count + self.reasoning_token_count

    @property
    def content(self) -> str:
        """Concatenated content text so far (or the final text once finalized)."""
        if self._final_content is not None:
            return self._final_content
        return "".join(self._content)

    @property
    def reasoning(self) -> str:
        """Concatenated reasoning text so far (or the final text once finalized)."""
        if self._final_reasoning is not None:
            return self._final_reasoning
        return "".join(self._reasoning)

    def append(self, token: StreamToken) -> None:
        """
        Append one token to its channel.

        Raises:
            TranscriptFinalizedError: If the transcript was already finalized
        """
        if self.is_finalized:
            raise TranscriptFinalizedError(
                f"Cannot append to transcript finalized by {self.finalized_reason}"
            )

        if token.channel is Channel.CONTENT:
            self._content.append(token.text)
            self.content_token_count += 1
        else:
            self._reasoning.append(token.text)
            self.reasoning_token_count += 1

    def finalize(self, reason: str) -> str:
        """
        Freeze the transcript.

        Only the first call records its reason; later calls return the same
        final content unchanged.

        Args:
            reason: Why the stream ended (sentinel, upstream_closed, timeout, error)

        Returns:
            The final accumulated content
        """
        if not self.is_finalized:
            self._final_content = "".join(self._content)
            self._final_reasoning = "".join(self._reasoning)
            self.finalized_reason = reason
        return self._final_content
