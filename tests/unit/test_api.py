"""
API Unit Tests

Full application through FastAPI's TestClient. The service container is
built on a SQLite file with the scripted AI backend and in-memory vector
index, so the lifespan (schema bootstrap, orphan recovery, shutdown) runs
for real without Docker.
"""

import json
import time
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from cortex.core.container import build_services
from cortex.core.database import build_engine
from cortex.main import create_app
from cortex.services.annotations import PROVISIONAL_TITLE


@pytest.fixture
def client(tmp_path, fake_ai, fake_index) -> Generator[TestClient, None, None]:
    def factory():
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
        return build_services(engine=engine, ai=fake_ai, vector_index=fake_index)

    with TestClient(create_app(factory)) as client:
        yield client


def _wait_enriched(client: TestClient, note_id: int, timeout: float = 5.0) -> dict:
    """Poll until background enrichment leaves the pending state."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        note = client.get(f"/api/notes/{note_id}").json()
        if note["ai_status"] != "pending":
            return note
        time.sleep(0.05)
    pytest.fail(f"Note {note_id} still pending after {timeout}s")


def _ingest(client: TestClient, **payload) -> int:
    payload.setdefault("content", "hello world")
    res = client.post("/api/ingest", json=payload)
    assert res.status_code == 201
    return res.json()["noteId"]


def _sse_events(body: str) -> list[dict]:
    return [
        json.loads(frame[len("data: "):])
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]


def test_health_reports_ai_status(client, fake_ai):
    data = client.get("/api/health").json()
    assert data["status"] == "ok"
    assert data["service"] == "cortex"
    assert data["ai"] == "online"
    assert "environment" in data

    fake_ai.online = False
    assert client.get("/api/health").json()["ai"] == "offline"


def test_ingest_rejects_empty_content(client):
    assert client.post("/api/ingest", json={"content": "   "}).status_code == 400
    assert client.post("/api/ingest", json={}).status_code == 400


def test_ingest_then_enrich(client, fake_index):
    res = client.post(
        "/api/ingest",
        json={
            "content": "hello world",
            "source_url": "https://example.com/post",
            "context": [{"title": "Background", "url": "https://example.com/bg"}],
        },
    )
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["title"] == PROVISIONAL_TITLE
    assert body["status"] == "pending"

    note = _wait_enriched(client, body["noteId"])
    assert note["ai_status"] == "completed"
    assert note["title"] == "T"
    assert note["summary"] == "S"
    assert note["source_type"] == "extension"
    assert sorted(t["name"] for t in note["tags"]) == ["a", "b"]
    assert [s["title"] for s in note["sources"]] == ["Background"]
    assert body["noteId"] in fake_index.records


def test_chat_streams_sources_first(client):
    note_id = _ingest(client)
    _wait_enriched(client, note_id)

    res = client.post("/api/chat", json={"query": "what did I save?"})
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")

    events = _sse_events(res.text)
    assert events[0]["type"] == "sources"
    assert events[0]["sources"][0]["id"] == note_id
    assert "".join(e["content"] for e in events if e["type"] == "content") == "Hello world"
    assert events[-1] == {"type": "done"}


def test_chat_without_stream(client):
    res = client.post("/api/chat", json={"query": "anything", "stream": False})
    assert res.status_code == 200
    assert res.json() == {"answer": "Hello world", "sources": []}


def test_chat_errors(client, fake_ai):
    assert client.post("/api/chat", json={"query": ""}).status_code == 400

    fake_ai.online = False
    res = client.post("/api/chat", json={"query": "hello"})
    assert res.status_code == 503


def test_search_modes(client, fake_index):
    note_id = _ingest(client, content="pgvector cosine distance")
    _wait_enriched(client, note_id)

    keyword = client.get("/api/search", params={"q": "cosine", "type": "keyword"}).json()
    assert keyword["mode"] == "keyword"
    assert keyword["results"] == [{"id": note_id, "title": "T", "summary": "S", "score": None}]

    semantic = client.get("/api/search", params={"q": "cosine"}).json()
    assert semantic["mode"] == "semantic"
    assert semantic["results"][0]["id"] == note_id

    fake_index.fail_query = True
    fallback = client.get("/api/search", params={"q": "cosine", "type": "semantic"}).json()
    assert fallback == keyword

    assert client.get("/api/search", params={"q": ""}).status_code == 400


def test_note_lifecycle(client, fake_index):
    note_id = _ingest(client)
    _wait_enriched(client, note_id)

    listed = client.get("/api/notes").json()
    assert [n["id"] for n in listed["notes"]] == [note_id]
    assert listed["hasMore"] is False

    assert client.post(f"/api/notes/{note_id}/archive", json={"archived": True}).status_code == 200
    assert client.get("/api/notes").json()["notes"] == []
    assert len(client.get("/api/notes", params={"archived": True}).json()["notes"]) == 1

    assert client.delete(f"/api/notes/{note_id}").status_code == 200
    trash = client.get("/api/notes", params={"trash": True}).json()["notes"]
    assert trash[0]["is_archived"] is False
    assert client.get("/api/notes", params={"archived": True}).json()["notes"] == []

    assert client.post(f"/api/notes/{note_id}/restore").status_code == 200
    assert len(client.get("/api/notes").json()["notes"]) == 1

    assert client.delete(f"/api/notes/{note_id}", params={"permanent": True}).status_code == 200
    assert client.get(f"/api/notes/{note_id}").status_code == 404
    assert note_id not in fake_index.records
    assert client.delete(f"/api/notes/{note_id}", params={"permanent": True}).status_code == 404


def test_empty_trash(client, fake_index):
    keep = _ingest(client, content="keep")
    drop = _ingest(client, content="drop")
    _wait_enriched(client, keep)
    _wait_enriched(client, drop)
    client.delete(f"/api/notes/{drop}")

    assert client.delete("/api/notes/trash").status_code == 200
    assert client.get(f"/api/notes/{drop}").status_code == 404
    assert client.get(f"/api/notes/{keep}").status_code == 200
    assert drop not in fake_index.records


def test_list_pagination_and_reorder(client):
    ids = [_ingest(client, content=f"note {i}") for i in range(3)]
    for note_id in ids:
        _wait_enriched(client, note_id)

    page = client.get("/api/notes", params={"limit": 2}).json()
    assert [n["id"] for n in page["notes"]] == [ids[2], ids[1]]
    assert page["hasMore"] is True

    res = client.patch(
        "/api/notes/reorder",
        json=[{"id": ids[0], "sort_order": 100}, {"id": ids[2], "sort_order": 0}],
    )
    assert res.status_code == 200
    order = [n["id"] for n in client.get("/api/notes").json()["notes"]]
    assert order == [ids[0], ids[1], ids[2]]


def test_tags(client):
    note_id = _ingest(client)
    _wait_enriched(client, note_id)

    res = client.post(f"/api/notes/{note_id}/tags", json={"name": "reading"})
    assert res.status_code == 201
    tag_id = res.json()["id"]
    assert client.post(f"/api/notes/{note_id}/tags", json={"name": "reading"}).status_code == 201

    counts = {t["name"]: t["count"] for t in client.get("/api/tags").json()}
    assert counts == {"a": 1, "b": 1, "reading": 1}

    filtered = client.get("/api/notes", params={"tag": "reading"}).json()["notes"]
    assert [n["id"] for n in filtered] == [note_id]

    assert client.delete(f"/api/notes/{note_id}/tags/{tag_id}").status_code == 200
    assert client.get("/api/notes", params={"tag": "reading"}).json()["notes"] == []
    assert client.post("/api/notes/9999/tags", json={"name": "x"}).status_code == 404


def test_collections(client):
    note_id = _ingest(client)
    _wait_enriched(client, note_id)

    res = client.post("/api/collections", json={"name": "Reading list"})
    assert res.status_code == 201
    collection_id = res.json()["id"]
    assert client.post("/api/collections", json={"name": "Reading list"}).status_code == 409
    assert client.post("/api/collections", json={"name": ""}).status_code == 400

    assert client.post(
        f"/api/collections/{collection_id}/notes", json={"noteId": note_id}
    ).status_code == 200
    assert client.post(
        f"/api/collections/{collection_id}/notes", json={"noteId": 9999}
    ).status_code == 404

    assert client.get("/api/collections").json()[0]["count"] == 1
    detail = client.get(f"/api/notes/{note_id}").json()
    assert [c["name"] for c in detail["collections"]] == ["Reading list"]
    in_collection = client.get("/api/notes", params={"collectionId": collection_id}).json()
    assert [n["id"] for n in in_collection["notes"]] == [note_id]

    assert client.delete(
        f"/api/collections/{collection_id}/notes/{note_id}"
    ).status_code == 200
    assert client.delete(f"/api/collections/{collection_id}").status_code == 200
    assert client.delete(f"/api/collections/{collection_id}").status_code == 404


def test_cancel_finished_note_is_noop(client):
    note_id = _ingest(client)
    _wait_enriched(client, note_id)

    res = client.post("/api/ai/cancel", json={"noteId": note_id})
    assert res.status_code == 200
    assert res.json()["success"] is True
    assert client.get(f"/api/notes/{note_id}").json()["ai_status"] == "completed"

    assert client.post("/api/ai/cancel", json={}).status_code == 400


def test_organize_and_regenerate_titles(client, fake_ai):
    note_id = _ingest(client, source_type="twitter")
    _wait_enriched(client, note_id)

    fake_ai.json_reply = json.dumps({"collections": [{"name": "Threads", "note_ids": [note_id]}]})
    res = client.post("/api/ai/organize", json={"source": "twitter"})
    assert res.status_code == 200
    assert res.json()["collections"] == 1

    empty = client.post("/api/ai/organize", json={"source": "youtube"}).json()
    assert empty["collections"] == 0

    res = client.post("/api/ai/regenerate-titles")
    assert res.status_code == 200
    assert res.json() == {"success": True, "updated": 0}  # "T" is already short

    fake_ai.online = False
    assert client.post("/api/ai/regenerate-titles").status_code == 503


def test_producer_title_kept_while_offline(client, fake_ai):
    fake_ai.online = False

    res = client.post("/api/ingest", json={"content": "clip body", "title": "My clip"})
    assert res.json()["title"] == "My clip"

    note = _wait_enriched(client, res.json()["noteId"])
    assert note["title"] == "My clip"
    assert note["summary"] == "clip body..."
    assert [t["name"] for t in note["tags"]] == ["Uncategorized"]


def test_ingest_accepts_null_source_type(client):
    res = client.post("/api/ingest", json={"content": "clip", "source_type": None})
    assert res.status_code == 201

    note = client.get(f"/api/notes/{res.json()['noteId']}").json()
    assert note["source_type"] == "extension"
