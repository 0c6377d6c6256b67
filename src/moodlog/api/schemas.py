"""Request bodies for the talk endpoints.

Identifiers are optional at the schema level so that missing ids produce the
endpoint's own 400 response rather than a validation error.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JournalRequest(BaseModel):
    """Emotion analysis or advice for one day."""

    day_id: Optional[str] = None
    created_date: Optional[str] = None
    entry_contents: List[Dict[str, Any]] = Field(default_factory=list)
    type: str = Field(default="emotion", description="emotion or advice")


class EntryAnalysisRequest(BaseModel):
    """Summary of one content item; persisted when ``euuid`` is given."""

    content: Optional[str] = None
    euuid: Optional[str] = None


class DeeperRequest(BaseModel):
    """Follow-up reflection questions. Stream only."""

    content: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    active_tasks: int
