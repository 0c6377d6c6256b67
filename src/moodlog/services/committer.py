"""Writes a parsed payload into its target record exactly once."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from moodlog.models.pipeline import PipelineState
from moodlog.services.exceptions import RecordNotFoundError, StorageError
from moodlog.services.scenarios import CommitTarget, Scenario
from moodlog.services.storage import EntryStore, Record
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PersistenceCommitter:
    """
    Merge scenario payloads into stored records.

    The merge is idempotent: committing the same payload twice leaves the
    record as it was after the first commit, and ``updated_at`` only moves
    when a field actually changed.

    Errors never propagate; every failure is logged and reported as
    ``COMMIT_FAILED``.
    """

    def __init__(self, store: EntryStore):
        self.store = store

    async def commit(
        self,
        payload: Dict[str, Any],
        scenario: Scenario,
        target: Optional[CommitTarget],
        request_id: str = "unknown",
    ) -> PipelineState:
        """
        Commit a payload to its target.

        Args:
            payload: Parsed JSON object (empty means nothing to write)
            scenario: Scenario that knows how to merge the payload
            target: Record to update, or None for stream-only requests
            request_id: Identifier for logging

        Returns:
            COMMITTED, COMMIT_FAILED, or SKIPPED when there is nothing to do
        """
        if not payload:
            logger.info("commit_skipped_empty_payload", request_id=request_id)
            return PipelineState.SKIPPED

        if target is None or not scenario.persists:
            logger.info(
                "commit_skipped_no_target",
                request_id=request_id,
                scenario=scenario.name,
            )
            return PipelineState.SKIPPED

        def mutate(record: Record) -> Record:
            before = dict(record)
            updated = scenario.merge(record, payload)
            if updated != before:
                updated["updated_at"] = _utc_now()
            return updated

        try:
            _, written = await self.store.modify_record(
                target.table,
                target.record_id,
                mutate,
                owner_id=target.owner_id,
            )

        except RecordNotFoundError as e:
            logger.error(
                "commit_target_not_found",
                request_id=request_id,
                table=e.table,
                record_id=e.record_id,
            )
            return PipelineState.COMMIT_FAILED

        except (StorageError, OSError) as e:
            logger.error(
                "commit_failed",
                request_id=request_id,
                table=target.table,
                record_id=target.record_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return PipelineState.COMMIT_FAILED

        logger.info(
            "commit_succeeded" if written else "commit_unchanged",
            request_id=request_id,
            table=target.table,
            record_id=target.record_id,
            scenario=scenario.name,
            fields=sorted(payload.keys()),
        )
        return PipelineState.COMMITTED
