from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from pipeline_fakes import ScriptedAdapter, parse_frames, text_events
from src.codeforge.api.main import app
from src.codeforge.api.routers.chat import get_chat_pipeline
from src.codeforge.config import PipelineSettings
from src.codeforge.errors import ProviderConfigError
from src.codeforge.infrastructure.record_store import get_record_store
from src.codeforge.security.auth import User, create_access_token
from src.codeforge.services.pipeline import ChatPipeline


client = TestClient(app)

BLOCK = '```tsx file="src/App.tsx"\nexport default function App() {\n  return null\n}\n```'


def _headers(email: str = "dev@example.com"):
    token = create_access_token(User(email=email, name="Dev", roles=["member"]))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def script():
    """Route every chat turn to a scripted adapter; returns the adapter holder."""
    holder = {"adapter": ScriptedAdapter([text_events("Hello there!")])}

    def factory(selector, settings):
        if selector == "v0":
            raise ProviderConfigError("Unknown model: v0")
        return holder["adapter"]

    app.dependency_overrides[get_chat_pipeline] = lambda: ChatPipeline(
        get_record_store(),
        settings=PipelineSettings(enable_search=False),
        adapter_factory=factory,
    )
    yield holder
    app.dependency_overrides.pop(get_chat_pipeline, None)


def _events(resp):
    frames = [chunk + "\n\n" for chunk in resp.text.split("\n\n") if chunk]
    return parse_frames(frames)


def test_chat_requires_auth():
    r = client.post("/chat", json={"message": "hi"})
    assert r.status_code == 401


def test_chat_creates_project_and_streams(script):
    r = client.post("/chat", json={"message": "hello", "model": "gemini"}, headers=_headers())
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache"
    events = _events(r)
    assert events[0] == {"text": "Hello there!"}
    done = events[-1]
    assert done["done"] is True and done["hasArtifact"] is False
    project_id = done["projectId"]

    msgs = client.get(f"/projects/{project_id}/messages", headers=_headers()).json()
    assert [(m["role"], m["content"]) for m in msgs] == [("user", "hello"), ("assistant", "Hello there!")]
    project = client.get(f"/projects/{project_id}", headers=_headers()).json()
    assert project["title"] == "hello"


def test_build_turn_persists_files_and_artifact(script):
    script["adapter"] = ScriptedAdapter([text_events("Building.\n", BLOCK)])
    r = client.post("/api/chat", json={"message": "build a counter app"}, headers=_headers())
    events = _events(r)
    assert [e["text"] for e in events if "text" in e] == ["Building.\n"]
    done = events[-1]
    assert done["hasArtifact"] is True

    files = client.get(f"/projects/{done['projectId']}/files", headers=_headers()).json()
    assert [f["path"] for f in files] == ["src/App.tsx"]
    assert files[0]["additions"] == 3
    artifacts = client.get(f"/projects/{done['projectId']}/artifacts", headers=_headers()).json()
    assert artifacts[0]["file_ids"] == [files[0]["file_id"]]
    assert artifacts[0]["message_id"] == done["messageId"]


def test_duplicate_trailing_user_message_not_reinserted(script):
    store = get_record_store()
    project = store.create_project("dev@example.com", "p")
    store.add_message(project.project_id, "user", "hello")
    body = {"projectId": project.project_id, "message": "hello"}
    client.post("/chat", json=body, headers=_headers())
    roles = [m.role for m in store.list_messages(project.project_id)]
    assert roles == ["user", "assistant"]
    assert script["adapter"].requests[0].history == []


def test_history_excludes_current_message(script):
    store = get_record_store()
    project = store.create_project("dev@example.com", "p")
    store.add_message(project.project_id, "user", "first")
    store.add_message(project.project_id, "assistant", "reply")
    client.post("/chat", json={"projectId": project.project_id, "message": "second"}, headers=_headers())
    assert script["adapter"].requests[0].history == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "reply"},
    ]


def test_unknown_model_streams_error_then_done(script):
    r = client.post("/chat", json={"message": "build a page", "model": "v0"}, headers=_headers())
    assert r.status_code == 200
    events = _events(r)
    assert events[0] == {"error": "Unknown model: v0"}
    assert events[1]["done"] is True and "messageId" not in events[1]
    assert len(events) == 2


def test_missing_message_is_rejected(script):
    r = client.post("/chat", json={"message": "   "}, headers=_headers())
    assert r.status_code == 400


def test_project_ownership(script):
    store = get_record_store()
    project = store.create_project("someone-else@example.com", "theirs")
    r = client.post("/chat", json={"projectId": project.project_id, "message": "hi"}, headers=_headers())
    assert r.status_code == 403
    r = client.post("/chat", json={"projectId": "missing", "message": "hi"}, headers=_headers())
    assert r.status_code == 404
    r = client.get(f"/projects/{project.project_id}/files", headers=_headers())
    assert r.status_code == 403


def test_selected_model_is_recorded(script):
    store = get_record_store()
    project = store.create_project("dev@example.com", "p", selected_model="gemini")
    client.post("/chat", json={"projectId": project.project_id, "message": "hello", "model": "claude"}, headers=_headers())
    assert store.get_project(project.project_id).selected_model == "claude"


def test_long_first_message_truncates_title(script):
    message = "build " + "a really long description " * 5
    r = client.post("/chat", json={"message": message}, headers=_headers())
    project_id = _events(r)[-1]["projectId"]
    title = get_record_store().get_project(project_id).title
    assert len(title) == 50
    assert title.endswith("...")


def test_models_catalog(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g")
    r = client.get("/chat/models", headers=_headers())
    assert r.status_code == 200
    options = {o["provider"]: o for o in r.json()}
    assert options["gemini"]["available"] is True
    assert options["claude"]["available"] is False


def test_automated_turn_over_http(script):
    r = client.post("/chat", json={"message": "build a navbar", "isAutomated": True}, headers=_headers())
    events = _events(r)
    assert events[-1]["done"] is True
    msgs = get_record_store().list_messages(events[-1]["projectId"])
    assert [m.is_automated for m in msgs] == [True, True]


def test_telemetry_recent_events(script):
    client.post("/chat", json={"message": "hello"}, headers=_headers())
    r = client.get("/telemetry/events/recent", params={"limit": 5}, headers=_headers())
    assert r.status_code == 200
    assert any(e["name"] == "chat_turn" for e in r.json()["events"])


def test_chat_forwards_image_attachment(script):
    body = {"message": "build this mockup", "imageData": {"mimeType": "image/png", "data": "iVBORw0KGgo="}}
    r = client.post("/chat", json=body, headers=_headers())
    assert r.status_code == 200
    [request] = script["adapter"].requests
    assert request.image.mime_type == "image/png"
    assert request.image.data == "iVBORw0KGgo="
