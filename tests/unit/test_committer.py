"""Unit tests for PersistenceCommitter."""

import pytest
from unittest.mock import AsyncMock

from moodlog.models.pipeline import PipelineState
from moodlog.services.committer import PersistenceCommitter
from moodlog.services.exceptions import StorageError
from moodlog.services.scenarios import ADVICE, DEEPER, EMOTION, ENTRY_SUMMARY, CommitTarget
from moodlog.services.storage import InMemoryEntryStore


@pytest.fixture
def store():
    return InMemoryEntryStore({
        "entries": {"day-1": {"user_id": "u1", "analysis_data": {}}},
        "entry_contents": {"e-1": {"user_id": "u1", "status": "pending"}},
    })


@pytest.fixture
def committer(store):
    return PersistenceCommitter(store)


class TestPersistenceCommitter:
    """Test commit outcomes."""

    @pytest.mark.asyncio
    async def test_commit_merges_and_stamps(self, committer, store):
        state = await committer.commit(
            {"insight_focus": "rest"}, EMOTION, CommitTarget("entries", "day-1", "u1")
        )

        record = await store.get_record("entries", "day-1")
        assert state == PipelineState.COMMITTED
        assert record["analysis_data"] == {"insight_focus": "rest"}
        assert "updated_at" in record

    @pytest.mark.asyncio
    async def test_commit_is_idempotent(self, committer, store):
        target = CommitTarget("entry_contents", "e-1", "u1")
        payload = {"title": "A walk", "tags": ["calm"]}

        assert await committer.commit(payload, ENTRY_SUMMARY, target) == PipelineState.COMMITTED
        first = await store.get_record("entry_contents", "e-1")
        assert await committer.commit(payload, ENTRY_SUMMARY, target) == PipelineState.COMMITTED
        second = await store.get_record("entry_contents", "e-1")

        assert first == second
        assert first["status"] == "analysed"
        assert store.write_count == 1

    @pytest.mark.asyncio
    async def test_advice_keeps_emotion_analysis(self, committer, store):
        target = CommitTarget("entries", "day-1", "u1")
        await committer.commit({"insight_focus": "rest"}, EMOTION, target)

        await committer.commit(
            {"responses": [{"type": "wisdom", "content": "Breathe"}]}, ADVICE, target
        )

        analysis = (await store.get_record("entries", "day-1"))["analysis_data"]
        assert analysis == {
            "insight_focus": "rest",
            "encouragement_and_suggestions": [{"type": "wisdom", "content": "Breathe"}],
        }

    @pytest.mark.asyncio
    async def test_empty_payload_never_writes(self, store):
        mock_store = AsyncMock(wraps=store)
        committer = PersistenceCommitter(mock_store)

        state = await committer.commit({}, EMOTION, CommitTarget("entries", "day-1", "u1"))

        assert state == PipelineState.SKIPPED
        mock_store.modify_record.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_target_skips(self, committer):
        assert await committer.commit({"a": 1}, EMOTION, None) == PipelineState.SKIPPED
        assert await committer.commit(
            {"a": 1}, DEEPER, CommitTarget("entries", "day-1")
        ) == PipelineState.SKIPPED

    @pytest.mark.asyncio
    async def test_wrong_owner_fails_without_raising(self, committer, store):
        state = await committer.commit(
            {"a": 1}, EMOTION, CommitTarget("entries", "day-1", "intruder")
        )

        assert state == PipelineState.COMMIT_FAILED
        assert (await store.get_record("entries", "day-1"))["analysis_data"] == {}

    @pytest.mark.asyncio
    async def test_storage_error_fails_without_raising(self):
        failing_store = AsyncMock()
        failing_store.modify_record.side_effect = StorageError("disk full")
        committer = PersistenceCommitter(failing_store)

        state = await committer.commit({"a": 1}, EMOTION, CommitTarget("entries", "day-1"))

        assert state == PipelineState.COMMIT_FAILED

    @pytest.mark.asyncio
    async def test_os_error_fails_without_raising(self):
        failing_store = AsyncMock()
        failing_store.modify_record.side_effect = PermissionError("read-only")
        committer = PersistenceCommitter(failing_store)

        state = await committer.commit({"a": 1}, EMOTION, CommitTarget("entries", "day-1"))

        assert state == PipelineState.COMMIT_FAILED
