"""Pydantic models for tokens flowing through the streaming pipeline."""

import json
from enum import Enum

from pydantic import BaseModel, Field


class Channel(str, Enum):
    """Logical channel a streamed token belongs to."""

    CONTENT = "content"
    REASONING = "reasoning"


class StreamToken(BaseModel):
    """
    One token of model output, tagged with its channel.

    Validated once at the demultiplexer boundary; everything downstream works
    with this type instead of raw provider payloads. ``text`` may be empty
    (an empty content delta is still a token) but is always a real string.
    """

    channel: Channel = Field(..., description="Visible content or hidden reasoning")
    text: str = Field(..., description="Text fragment, possibly empty")

    model_config = {"frozen": True}

    def to_line(self) -> str:
        """
        Serialize to one line of the outbound protocol.

        Returns:
            ``{"content": "...", "type": "content"}`` (or the reasoning
            equivalent) followed by a newline
        """
        key = self.channel.value
        return json.dumps({key: self.text, "type": key}, ensure_ascii=False) + "\n"

    @classmethod
    def from_line(cls, line: str) -> "StreamToken":
        """
        Parse one line of the outbound protocol back into a token.

        Raises:
            ValueError: If the line is not a well-formed token line
        """
        data = json.loads(line)
        if not isinstance(data, dict):
            raise ValueError(f"Expected JSON object, got {type(data).__name__}")

        channel = Channel(data.get("type"))
        text = data.get(channel.value)
        if not isinstance(text, str):
            raise ValueError(f"Token line has no string '{channel.value}' field")
        return cls(channel=channel, text=text)
