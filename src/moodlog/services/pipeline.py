"""Orchestration of one generation request.

A request runs through two phases inside a single task:

1. Streaming: upstream SSE bytes are decoded into tokens; every token is
   forwarded to the caller and appended to the transcript. Bounded by
   ``llm.request_timeout``.
2. Post-processing: once the transcript is finalized and the caller's stream
   closed, the JSON payload is extracted, repaired if needed, and committed.
   Bounded by ``pipeline.commit_timeout``; nothing raised here escapes.

The caller disconnecting only stops forwarding. The transcript, extraction
and commit proceed regardless.
"""

import asyncio
import uuid
from typing import List, Optional

import structlog

from moodlog.llm.client import LLMClient, Message, UpstreamStream
from moodlog.llm.exceptions import LLMError, LLMTimeoutError
from moodlog.llm.sse import SSEParser
from moodlog.llm.streaming import iter_stream_tokens
from moodlog.models.config import LLMConfig, PipelineConfig
from moodlog.models.pipeline import PipelineResult, PipelineState
from moodlog.models.transcript import RequestTranscript
from moodlog.services.committer import PersistenceCommitter
from moodlog.services.extraction import extract_json_candidate
from moodlog.services.forwarder import PassthroughForwarder, TokenSink
from moodlog.services.json_repair import parse_json_object
from moodlog.services.scenarios import CommitTarget, Scenario
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)

FINALIZED_BY_SENTINEL = "sentinel"
FINALIZED_BY_UPSTREAM_CLOSE = "upstream_closed"
FINALIZED_BY_TIMEOUT = "timeout"
FINALIZED_BY_ERROR = "error"


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class GenerationPipeline:
    """
    Shared pipeline for every scenario.

    Example:
        >>> pipeline = GenerationPipeline(llm_client, committer, llm_config, pipeline_config)
        >>> upstream = await pipeline.open(scenario, messages, request_id)
        >>> result = await pipeline.run(upstream, scenario, target, sink, request_id)
        >>> result.state
        <PipelineState.COMMITTED: 'committed'>
    """

    def __init__(
        self,
        llm_client: LLMClient,
        committer: PersistenceCommitter,
        llm_config: LLMConfig,
        pipeline_config: PipelineConfig,
    ):
        self.llm_client = llm_client
        self.committer = committer
        self.request_timeout = llm_config.request_timeout
        self.commit_timeout = pipeline_config.commit_timeout
        self.reasoning_model = llm_config.reasoning_model

    def model_for(self, scenario: Scenario) -> Optional[str]:
        if scenario.use_reasoning_model and self.reasoning_model:
            return self.reasoning_model
        return None

    async def open(
        self,
        scenario: Scenario,
        messages: List[Message],
        request_id: str,
    ) -> UpstreamStream:
        """
        Start the upstream call for a scenario.

        Raises:
            LLMAPIError: Provider rejected the request
            LLMError: Provider unreachable
        """
        return await self.llm_client.open_stream(
            messages,
            model=self.model_for(scenario),
            request_id=request_id,
        )

    async def run(
        self,
        upstream: UpstreamStream,
        scenario: Scenario,
        target: Optional[CommitTarget],
        sink: Optional[TokenSink],
        request_id: str,
    ) -> PipelineResult:
        """
        Stream, forward, accumulate, then extract and commit.

        Owns ``upstream`` and closes it. Never raises; the outcome is in the
        returned result.
        """
        with structlog.contextvars.bound_contextvars(
            request_id=request_id, scenario=scenario.name
        ):
            result = PipelineResult(request_id=request_id)
            transcript = RequestTranscript()
            forwarder = PassthroughForwarder(sink, request_id)

            logger.info("pipeline_started", target=target.record_id if target else None)

            stream_error: Optional[Exception] = None
            try:
                reason = await asyncio.wait_for(
                    self._stream(upstream, transcript, forwarder),
                    timeout=self.request_timeout,
                )
            except asyncio.TimeoutError:
                reason = FINALIZED_BY_TIMEOUT
                stream_error = LLMTimeoutError(
                    f"Upstream stream exceeded {self.request_timeout}s"
                )
                logger.error("pipeline_stream_timeout", timeout=self.request_timeout)
            except LLMError as e:
                reason = FINALIZED_BY_ERROR
                stream_error = e
                logger.error("pipeline_stream_failed", error=str(e), error_type=type(e).__name__)
            except Exception as e:
                reason = FINALIZED_BY_ERROR
                stream_error = LLMError(f"Unexpected stream failure: {e}")
                logger.exception("pipeline_stream_crashed")
            finally:
                await upstream.aclose()

            self._set_state(result, PipelineState.FINALIZING)
            transcript.finalize(reason)
            result.finalized_reason = transcript.finalized_reason

            result.client_disconnected = sink is not None and forwarder.disconnected
            if stream_error is None:
                await forwarder.close()
            else:
                result.error_message = str(stream_error)
                await forwarder.abort(stream_error)

            logger.info(
                "pipeline_stream_finalized",
                reason=reason,
                content_tokens=transcript.content_token_count,
                reasoning_tokens=transcript.reasoning_token_count,
                forwarded=forwarder.forwarded_count,
                dropped=forwarder.dropped_count,
            )

            try:
                await asyncio.wait_for(
                    self._post_process(transcript, scenario, target, result, request_id),
                    timeout=self.commit_timeout,
                )
            except asyncio.TimeoutError:
                failed = (
                    PipelineState.COMMIT_FAILED
                    if result.state == PipelineState.COMMITTING
                    else PipelineState.UNPARSEABLE
                )
                result.error_message = f"Post-processing exceeded {self.commit_timeout}s"
                logger.error(
                    "pipeline_watchdog_timeout",
                    timeout=self.commit_timeout,
                    state=result.state.value,
                )
                self._set_state(result, failed)
            except Exception as e:
                result.error_message = str(e)
                logger.exception("pipeline_post_process_failed", state=result.state.value)
                self._set_state(result, PipelineState.COMMIT_FAILED)

            logger.info("pipeline_finished", state=result.state.value)
            return result

    async def _stream(
        self,
        upstream: UpstreamStream,
        transcript: RequestTranscript,
        forwarder: PassthroughForwarder,
    ) -> str:
        parser = SSEParser()
        first_token = True
        async for token in iter_stream_tokens(upstream.aiter_bytes(), parser):
            if first_token:
                logger.debug("pipeline_first_token", channel=token.channel.value)
                first_token = False
            transcript.append(token)
            await forwarder.forward(token)

        return FINALIZED_BY_SENTINEL if parser.done else FINALIZED_BY_UPSTREAM_CLOSE

    async def _post_process(
        self,
        transcript: RequestTranscript,
        scenario: Scenario,
        target: Optional[CommitTarget],
        result: PipelineResult,
        request_id: str,
    ) -> None:
        result.content = transcript.content
        result.reasoning = transcript.reasoning

        if target is None or not scenario.persists:
            self._set_state(result, PipelineState.SKIPPED)
            return

        self._set_state(result, PipelineState.EXTRACTING)
        extraction = extract_json_candidate(transcript.content)
        if extraction is None:
            logger.warning("pipeline_json_not_found", content_length=len(transcript.content))
            self._set_state(result, PipelineState.NOT_FOUND)
            return

        self._set_state(result, PipelineState.REPAIRING)
        payload = parse_json_object(extraction.candidate, request_id=request_id)
        if not payload:
            logger.warning("pipeline_json_unparseable", method=extraction.method)
            self._set_state(result, PipelineState.UNPARSEABLE)
            return

        result.payload = payload
        self._set_state(result, PipelineState.PARSED)

        self._set_state(result, PipelineState.COMMITTING)
        state = await self.committer.commit(payload, scenario, target, request_id=request_id)
        self._set_state(result, state)

    def _set_state(self, result: PipelineResult, state: PipelineState) -> None:
        logger.debug("pipeline_state_changed", previous=result.state.value, state=state.value)
        result.state = state
