"""End-to-end pipeline runs against the file-backed record store."""

import json
from unittest.mock import Mock

import pytest

from moodlog.models.pipeline import PipelineState
from moodlog.services.committer import PersistenceCommitter
from moodlog.services.forwarder import CallbackSink
from moodlog.services.pipeline import GenerationPipeline
from moodlog.services.scenarios import ADVICE, EMOTION, ENTRY_SUMMARY
from moodlog.services.storage import JsonFileEntryStore


@pytest.fixture
def data_dir(tmp_path):
    days = tmp_path / "entries"
    days.mkdir()
    (days / "day-1.json").write_text(json.dumps({"user_id": "u1", "analysis_data": {}}))
    entries = tmp_path / "entry_contents"
    entries.mkdir()
    (entries / "e-1.json").write_text(json.dumps({"user_id": "u1", "status": "pending"}))
    return tmp_path


@pytest.fixture
def pipeline(data_dir, llm_config, pipeline_config):
    store = JsonFileEntryStore(data_dir)
    return GenerationPipeline(Mock(), PersistenceCommitter(store), llm_config, pipeline_config)


def read_record(data_dir, table, record_id):
    return json.loads((data_dir / table / f"{record_id}.json").read_text(encoding="utf-8"))


class TestFilePipeline:
    """Stream, extract and commit into JSON record files."""

    @pytest.mark.asyncio
    async def test_emotion_then_advice_on_same_day(self, pipeline, data_dir, make_sse_body, make_upstream):
        emotion = make_upstream([make_sse_body(contents=['{"primary_emotion": "关心", "intensity": 7}'])])
        advice = make_upstream([make_sse_body(
            reasonings=["..."],
            contents=['```json\n{"responses": [{"type": "rest", "content": "早点休息"}]}\n```'],
        )])

        first = await pipeline.run(emotion, EMOTION, EMOTION.target("day-1", "u1"), None, "r1")
        second = await pipeline.run(advice, ADVICE, ADVICE.target("day-1", "u1"), None, "r2")

        assert first.state == second.state == PipelineState.COMMITTED
        day = read_record(data_dir, "entries", "day-1")
        assert day["analysis_data"] == {
            "primary_emotion": "关心",
            "intensity": 7,
            "encouragement_and_suggestions": [{"type": "rest", "content": "早点休息"}],
        }
        assert "早点休息" in (data_dir / "entries" / "day-1.json").read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_repeat_commit_leaves_file_untouched(self, pipeline, data_dir, make_sse_body, make_upstream):
        body = make_sse_body(contents=['{"title": "Same"}'])
        target = ENTRY_SUMMARY.target("e-1", "u1")
        path = data_dir / "entry_contents" / "e-1.json"

        await pipeline.run(make_upstream([body]), ENTRY_SUMMARY, target, None, "r1")
        mtime = path.stat().st_mtime_ns
        result = await pipeline.run(make_upstream([body]), ENTRY_SUMMARY, target, None, "r2")

        assert result.state == PipelineState.COMMITTED
        assert path.stat().st_mtime_ns == mtime
        assert read_record(data_dir, "entry_contents", "e-1")["status"] == "analysed"

    @pytest.mark.asyncio
    async def test_forwarded_lines_match_transcript(self, pipeline, make_sse_body, make_upstream):
        lines = []
        contents = ["Line one\n", "", '{"title": "x"}']
        upstream = make_upstream([make_sse_body(contents=contents, reasonings=["r"])])

        result = await pipeline.run(
            upstream, ENTRY_SUMMARY, ENTRY_SUMMARY.target("e-1", "u1"), CallbackSink(lines.append), "r1"
        )

        assert len(lines) == 4
        forwarded = "".join(json.loads(line).get("content", "") for line in lines)
        assert forwarded == result.content == "".join(contents)

    @pytest.mark.asyncio
    async def test_nan_payload_stored_as_null(self, pipeline, data_dir, make_sse_body, make_upstream):
        upstream = make_upstream([make_sse_body(contents=['{"primary_emotion": "calm", "percent": NaN}'])])

        result = await pipeline.run(upstream, EMOTION, EMOTION.target("day-1", "u1"), None, "r1")

        assert result.state == PipelineState.COMMITTED
        text = (data_dir / "entries" / "day-1.json").read_text(encoding="utf-8")
        assert "NaN" not in text
        assert read_record(data_dir, "entries", "day-1")["analysis_data"] == {
            "primary_emotion": "calm",
            "percent": None,
        }

    @pytest.mark.asyncio
    async def test_corrupt_record_fails_commit(self, pipeline, data_dir, make_sse_body, make_upstream):
        (data_dir / "entries" / "day-1.json").write_text("{not json")
        upstream = make_upstream([make_sse_body(contents=['{"a": 1}'])])

        result = await pipeline.run(upstream, EMOTION, EMOTION.target("day-1", "u1"), None, "r1")

        assert result.state == PipelineState.COMMIT_FAILED
        assert (data_dir / "entries" / "day-1.json").read_text() == "{not json"

    @pytest.mark.asyncio
    async def test_unsafe_record_id_is_not_found(self, pipeline, data_dir, make_sse_body, make_upstream):
        upstream = make_upstream([make_sse_body(contents=['{"a": 1}'])])

        result = await pipeline.run(upstream, EMOTION, EMOTION.target("../entries/day-1", "u1"), None, "r1")

        assert result.state == PipelineState.COMMIT_FAILED
        assert read_record(data_dir, "entries", "day-1")["analysis_data"] == {}
