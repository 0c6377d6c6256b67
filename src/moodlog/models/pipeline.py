"""Pipeline state model for one generation request."""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class PipelineState(str, Enum):
    """States of a generation request, in the order they are entered."""

    STREAMING = "streaming"
    FINALIZING = "finalizing"
    EXTRACTING = "extracting"
    REPAIRING = "repairing"
    PARSED = "parsed"
    NOT_FOUND = "not_found"
    UNPARSEABLE = "unparseable"
    COMMITTING = "committing"
    COMMITTED = "committed"
    COMMIT_FAILED = "commit_failed"
    SKIPPED = "skipped"


class PipelineResult(BaseModel):
    """Outcome of one pipeline run, mutated as the request progresses."""

    request_id: str = Field(..., description="Identifier bound into every log line")

    state: PipelineState = Field(default=PipelineState.STREAMING)

    finalized_reason: Optional[str] = Field(
        default=None,
        description="sentinel, upstream_closed, timeout or error"
    )

    content: str = Field(default="", description="Final accumulated content")
    reasoning: str = Field(default="", description="Final accumulated reasoning")

    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extracted object, empty when extraction or repair failed"
    )

    client_disconnected: bool = Field(default=False)

    error_message: Optional[str] = Field(
        default=None,
        description="Upstream or commit error details, if any"
    )

    model_config = {"frozen": False}
