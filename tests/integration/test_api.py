"""Integration tests for the talk endpoints.

The app runs in-process behind httpx's ASGI transport; the model provider is
an httpx mock transport serving canned SSE bodies.
"""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from moodlog.api.app import create_app
from moodlog.api.dependencies import get_current_user_id
from moodlog.config import ConfigManager
from moodlog.llm.client import LLMClient
from moodlog.models.config import Config, PipelineConfig, StorageConfig
from moodlog.services.storage import InMemoryEntryStore


class FakeProvider:
    """Records outgoing completion requests and answers with a configured response.

    Setting ``chunks`` streams them one at a time, ``delay`` seconds apart,
    instead of returning ``body`` in one piece.
    """

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.body = b""
        self.chunks = None
        self.delay = 0.0
        self.content_type = "text/event-stream"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        content = self.body if self.chunks is None else self._paced(list(self.chunks))
        return httpx.Response(
            self.status_code,
            headers={"content-type": self.content_type},
            content=content,
        )

    async def _paced(self, chunks):
        for chunk in chunks:
            await asyncio.sleep(self.delay)
            yield chunk


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def store():
    return InMemoryEntryStore({
        "entries": {"day-1": {"user_id": "u1", "analysis_data": {"mood_score": 3}}},
        "entry_contents": {"e-1": {"user_id": "u1", "status": "pending"}},
    })


@pytest.fixture
def app(tmp_path, llm_config, provider, store):
    config = ConfigManager(Config(
        llm=llm_config,
        pipeline=PipelineConfig(commit_timeout=5),
        storage=StorageConfig(data_dir=str(tmp_path)),
    ))
    llm_client = LLMClient(config.llm, transport=httpx.MockTransport(provider))
    return create_app(config=config, store=store, llm_client=llm_client)


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
        headers={"X-User-Id": "u1"},
    ) as client:
        yield client


def ndjson_lines(response: httpx.Response):
    return [json.loads(line) for line in response.text.splitlines() if line]


async def wait_for_background(app):
    return await app.state.registry.drain(timeout=5)


async def post_then_disconnect(app, path, payload):
    """
    POST through the raw ASGI interface and hang up after the first body chunk.

    Returns the body chunks the client received before disconnecting.
    """
    body = json.dumps(payload).encode("utf-8")
    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.3"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("ascii"),
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"host", b"testserver"),
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode("ascii")),
            (b"x-user-id", b"u1"),
        ],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    hung_up = asyncio.Event()
    request_sent = False
    received = []

    async def receive():
        nonlocal request_sent
        if not request_sent:
            request_sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        await hung_up.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body" and message.get("body"):
            received.append(message["body"])
            hung_up.set()

    await asyncio.wait_for(app(scope, receive, send), timeout=5)
    return received


class TestJournalEndpoint:
    """POST /api/talk/journal"""

    @pytest.mark.asyncio
    async def test_streams_and_commits_emotion(self, app, client, provider, store, make_sse_body):
        provider.body = make_sse_body(contents=[
            "Reading your day...\n```json\n",
            '{"insight_focus": "rest", ',
            '"emotion_tags": ["calm"]}\n```',
        ])

        response = await client.post("/api/talk/journal", json={
            "day_id": "day-1",
            "created_date": "2026-10-19",
            "entry_contents": [{"euuid": "e-1", "summary": "Walked by the river", "tags": ["calm", "nature"]}],
        })

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert response.headers["x-request-id"]
        lines = ndjson_lines(response)
        assert {line["type"] for line in lines} == {"content"}
        assert "".join(line["content"] for line in lines).startswith("Reading your day")

        assert (await wait_for_background(app))["cancelled"] == 0
        day = await store.get_record("entries", "day-1")
        assert day["analysis_data"] == {"mood_score": 3, "insight_focus": "rest", "emotion_tags": ["calm"]}
        assert "updated_at" in day

    @pytest.mark.asyncio
    async def test_journal_input_shaped_and_language_detected(self, app, client, provider, make_sse_body):
        provider.body = make_sse_body(contents=["{}"])

        await client.post(
            "/api/talk/journal",
            json={
                "day_id": "day-1",
                "created_date": "2026-10-19",
                "entry_contents": [{"summary_en": "Tired", "key_quotes": [{"quote": "enough"}]}],
            },
            headers={"Accept-Language": "zh-CN,zh;q=0.9"},
        )
        await wait_for_background(app)

        system, user = provider.requests[0]["messages"]
        assert system["role"] == "system"
        assert provider.requests[0]["model"] == "test-model"
        assert json.loads(user["content"]) == {
            "language": "zh",
            "data": [{"summary_en": "Tired", "key_quotes": ["enough"]}],
        }

    @pytest.mark.asyncio
    async def test_advice_uses_reasoning_model_and_forwards_reasoning(
        self, app, client, provider, store, make_sse_body
    ):
        provider.body = make_sse_body(
            reasonings=["Considering sleep..."],
            contents=['{"responses": [{"type": "rest", "content": "Sleep early"}]}'],
        )

        response = await client.post("/api/talk/journal", json={
            "day_id": "day-1", "created_date": "2026-10-19", "type": "advice",
        })

        assert [line["type"] for line in ndjson_lines(response)] == ["reasoning", "content"]
        assert provider.requests[0]["model"] == "test-reasoner"

        await wait_for_background(app)
        day = await store.get_record("entries", "day-1")
        assert day["analysis_data"] == {
            "mood_score": 3,
            "encouragement_and_suggestions": [{"type": "rest", "content": "Sleep early"}],
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body, detail", [
        ({"created_date": "2026-10-19"}, "Missing day_id or created_date"),
        ({"day_id": "day-1"}, "Missing day_id or created_date"),
        ({"day_id": "day-1", "created_date": "2026-10-19", "type": "poem"}, "Invalid type parameter"),
    ])
    async def test_bad_request(self, client, provider, body, detail):
        response = await client.post("/api/talk/journal", json=body)

        assert response.status_code == 400
        assert detail in response.json()["detail"]
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_other_users_day_forbidden(self, client, provider):
        response = await client.post(
            "/api/talk/journal",
            json={"day_id": "day-1", "created_date": "2026-10-19"},
            headers={"X-User-Id": "intruder"},
        )

        assert response.status_code == 403
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_unauthenticated(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as anonymous:
            response = await anonymous.post("/api/talk/journal", json={"day_id": "day-1", "created_date": "x"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_dependency_override_for_user(self, app, make_sse_body, provider):
        provider.body = make_sse_body(contents=["{}"])
        app.dependency_overrides[get_current_user_id] = lambda: "u1"
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as anonymous:
            response = await anonymous.post("/api/talk/journal", json={"day_id": "day-1", "created_date": "x"})
        await wait_for_background(app)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_provider_error_maps_to_bad_gateway(self, client, provider):
        provider.status_code = 500
        provider.content_type = "text/plain"
        provider.body = b"upstream exploded"

        response = await client.post("/api/talk/journal", json={"day_id": "day-1", "created_date": "x"})

        assert response.status_code == 502
        assert "500" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_provider_json_body_maps_to_bad_gateway(self, client, provider):
        provider.content_type = "application/json"
        provider.body = b'{"error": "no stream for you"}'

        response = await client.post("/api/talk/journal", json={"day_id": "day-1", "created_date": "x"})

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_unparseable_output_leaves_record_untouched(self, app, client, provider, store, make_sse_body):
        provider.body = make_sse_body(contents=["Sorry, I can't help with that."])

        response = await client.post("/api/talk/journal", json={"day_id": "day-1", "created_date": "x"})
        await wait_for_background(app)

        assert response.status_code == 200
        assert store.write_count == 0


class TestEntriesEndpoint:
    """POST /api/talk/entries"""

    @pytest.mark.asyncio
    async def test_summary_committed_to_entry(self, app, client, provider, store, make_sse_body):
        provider.body = make_sse_body(contents=[
            '```json\n{"title": "River walk", "tags": ["calm"], "is_reflective": True,}\n```'
        ])

        response = await client.post("/api/talk/entries", json={
            "content": "<p>I walked&nbsp;by the river</p>",
            "euuid": "e-1",
        })
        await wait_for_background(app)

        assert response.status_code == 200
        assert provider.requests[0]["messages"][1]["content"] == "I walked by the river"
        entry = await store.get_record("entry_contents", "e-1")
        assert entry["title"] == "River walk"
        assert entry["is_reflective"] is True
        assert entry["status"] == "analysed"

    @pytest.mark.asyncio
    async def test_without_euuid_streams_only(self, app, client, provider, store, make_sse_body):
        provider.body = make_sse_body(contents=['{"title": "Unsaved"}'])

        response = await client.post("/api/talk/entries", json={"content": "Just a thought today"})
        await wait_for_background(app)

        assert response.status_code == 200
        assert ndjson_lines(response) == [{"content": '{"title": "Unsaved"}', "type": "content"}]
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_commit_survives_client_disconnect(self, app, provider, store, make_sse_body):
        contents = ['{"title": ', '"River walk", ', '"tags": ["calm"], ', '"is_reflective": true}']
        provider.chunks = [make_sse_body(contents=[text], done=False) for text in contents]
        provider.chunks.append(b"data: [DONE]\n\n")
        provider.delay = 0.02

        received = await post_then_disconnect(app, "/api/talk/entries", {
            "content": "I walked by the river today",
            "euuid": "e-1",
        })
        stats = await wait_for_background(app)

        assert 1 <= len(received) < len(contents)
        assert stats["cancelled"] == 0
        entry = await store.get_record("entry_contents", "e-1")
        assert entry["title"] == "River walk"
        assert entry["tags"] == ["calm"]
        assert entry["status"] == "analysed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "", "hi", "<p>  ok </p>"])
    async def test_content_too_short(self, client, provider, content):
        response = await client.post("/api/talk/entries", json={"content": content})

        assert response.status_code == 400
        assert response.json()["detail"] == "Content too short"
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_foreign_entry_forbidden(self, client, store, provider):
        await store.put_record("entry_contents", "e-2", {"user_id": "someone-else"})

        response = await client.post("/api/talk/entries", json={"content": "Long enough", "euuid": "e-2"})

        assert response.status_code == 403


class TestDeeperEndpoint:
    """POST /api/talk/deeper"""

    @pytest.mark.asyncio
    async def test_streams_without_persisting(self, app, client, provider, store, make_sse_body):
        provider.body = make_sse_body(contents=["What ", "felt heavy?"])

        response = await client.post("/api/talk/deeper", json={"content": "Hard day at work"})
        await wait_for_background(app)

        assert response.status_code == 200
        assert "".join(line["content"] for line in ndjson_lines(response)) == "What felt heavy?"
        assert store.write_count == 0


class TestHealth:
    """GET /api/health"""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "active_tasks": 0}
