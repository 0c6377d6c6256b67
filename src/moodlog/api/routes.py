"""Talk endpoints: stream model output to the caller and persist the result."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from moodlog.api.dependencies import (
    get_current_user_id,
    get_pipeline,
    get_registry,
    get_store,
)
from moodlog.api.schemas import (
    DeeperRequest,
    EntryAnalysisRequest,
    HealthResponse,
    JournalRequest,
)
from moodlog.llm.client import Message
from moodlog.llm.exceptions import LLMAPIError, LLMError, LLMTimeoutError
from moodlog.llm.prompts import build_messages
from moodlog.services.background import TaskRegistry
from moodlog.services.exceptions import RecordNotFoundError
from moodlog.services.forwarder import QueueSink
from moodlog.services.pipeline import GenerationPipeline, new_request_id
from moodlog.services.scenarios import (
    ADVICE,
    DEEPER,
    EMOTION,
    ENTRIES_TABLE,
    ENTRY_CONTENTS_TABLE,
    ENTRY_SUMMARY,
    CommitTarget,
    Scenario,
    build_journal_input,
    get_scenario,
)
from moodlog.services.storage import EntryStore
from moodlog.utils.logging import get_logger
from moodlog.utils.text import detect_user_language, html_to_plain_text


logger = get_logger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"
MIN_CONTENT_LENGTH = 5
JOURNAL_SCENARIOS = (EMOTION.name, ADVICE.name)

router = APIRouter()


def _require_content(content: Optional[str]) -> str:
    plain = html_to_plain_text(content)
    if len(plain.strip()) < MIN_CONTENT_LENGTH:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Content too short")
    return plain


async def _require_owned(store: EntryStore, table: str, record_id: str, user_id: str) -> None:
    try:
        await store.get_record(table, record_id, owner_id=user_id)
    except RecordNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Record not found or access denied",
        )


async def _start_stream(
    pipeline: GenerationPipeline,
    registry: TaskRegistry,
    scenario: Scenario,
    messages: List[Message],
    target: Optional[CommitTarget],
) -> StreamingResponse:
    """
    Open the upstream call, detach the pipeline and return the live stream.

    Upstream failures before the first byte become 502/504 responses; after
    that point the pipeline task owns the request.
    """
    request_id = new_request_id()

    try:
        upstream = await pipeline.open(scenario, messages, request_id)
    except LLMAPIError as e:
        logger.error(
            "talk_upstream_rejected",
            request_id=request_id,
            scenario=scenario.name,
            status_code=e.status_code,
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Model provider returned HTTP {e.status_code}",
        )
    except LLMTimeoutError as e:
        logger.error("talk_upstream_timeout", request_id=request_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Model provider did not respond",
        )
    except LLMError as e:
        logger.error("talk_upstream_unreachable", request_id=request_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Model provider unreachable",
        )

    sink = QueueSink()
    registry.spawn(
        pipeline.run(upstream, scenario, target, sink, request_id),
        name=f"pipeline-{scenario.name}-{request_id}",
    )

    return StreamingResponse(
        sink.body(),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"X-Request-Id": request_id, "Cache-Control": "no-cache"},
    )


@router.post("/talk/journal", response_class=StreamingResponse)
async def talk_journal(
    body: JournalRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    store: EntryStore = Depends(get_store),
    pipeline: GenerationPipeline = Depends(get_pipeline),
    registry: TaskRegistry = Depends(get_registry),
) -> StreamingResponse:
    """Stream an emotion analysis or advice for one day and save it to the day."""
    if not body.day_id or not body.created_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing day_id or created_date",
        )
    if body.type not in JOURNAL_SCENARIOS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid type parameter. Must be "emotion" or "advice"',
        )

    await _require_owned(store, ENTRIES_TABLE, body.day_id, user_id)

    scenario = get_scenario(body.type)
    language = detect_user_language(request.cookies, request.headers.get("accept-language"))
    logger.info(
        "talk_journal_requested",
        scenario=scenario.name,
        day_id=body.day_id,
        language=language,
        entries=len(body.entry_contents),
    )

    messages = build_messages(
        scenario.system_prompt,
        build_journal_input(body.entry_contents, language),
    )
    return await _start_stream(
        pipeline, registry, scenario, messages, scenario.target(body.day_id, user_id)
    )


@router.post("/talk/entries", response_class=StreamingResponse)
async def talk_entries(
    body: EntryAnalysisRequest,
    user_id: str = Depends(get_current_user_id),
    store: EntryStore = Depends(get_store),
    pipeline: GenerationPipeline = Depends(get_pipeline),
    registry: TaskRegistry = Depends(get_registry),
) -> StreamingResponse:
    """Stream a summary of one content item; save it when ``euuid`` is given."""
    plain = _require_content(body.content)

    if body.euuid:
        await _require_owned(store, ENTRY_CONTENTS_TABLE, body.euuid, user_id)

    logger.info("talk_entries_requested", euuid=body.euuid, length=len(plain))
    messages = build_messages(ENTRY_SUMMARY.system_prompt, plain)
    return await _start_stream(
        pipeline, registry, ENTRY_SUMMARY, messages, ENTRY_SUMMARY.target(body.euuid, user_id)
    )


@router.post("/talk/deeper", response_class=StreamingResponse)
async def talk_deeper(
    body: DeeperRequest,
    user_id: str = Depends(get_current_user_id),
    pipeline: GenerationPipeline = Depends(get_pipeline),
    registry: TaskRegistry = Depends(get_registry),
) -> StreamingResponse:
    """Stream follow-up questions. Nothing is persisted."""
    plain = _require_content(body.content)

    logger.info("talk_deeper_requested", length=len(plain))
    messages = build_messages(DEEPER.system_prompt, plain)
    return await _start_stream(pipeline, registry, DEEPER, messages, None)


@router.get("/health", response_model=HealthResponse)
async def health(registry: TaskRegistry = Depends(get_registry)) -> HealthResponse:
    return HealthResponse(status="ok", active_tasks=registry.active_count)
