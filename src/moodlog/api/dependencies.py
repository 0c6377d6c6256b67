"""FastAPI dependencies.

Services live on ``app.state`` (set up by ``create_app``); tests replace any
of them through ``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from moodlog.services.background import TaskRegistry
from moodlog.services.pipeline import GenerationPipeline
from moodlog.services.storage import EntryStore


USER_ID_HEADER = "X-User-Id"


def get_store(request: Request) -> EntryStore:
    return request.app.state.store


def get_pipeline(request: Request) -> GenerationPipeline:
    return request.app.state.pipeline


def get_registry(request: Request) -> TaskRegistry:
    return request.app.state.registry


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER),
) -> str:
    """
    Identify the caller.

    Session handling lives in front of this service; the authenticated user
    id arrives in a header set by that layer.

    Raises:
        HTTPException: 401 when no user id is present
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return x_user_id.strip()
