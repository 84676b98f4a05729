from fastapi.testclient import TestClient

from src.codeforge.api.main import app
from src.codeforge.observability.metrics import sanitize_path


client = TestClient(app)


def test_metrics_endpoint_exposes_histogram():
    # Trigger a request to ensure histogram has an observation
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"

    m = client.get("/metrics")
    assert m.status_code == 200
    body = m.text

    assert "# HELP codeforge_request_latency_seconds" in body
    assert "# TYPE codeforge_request_latency_seconds histogram" in body
    assert 'path="/health"' in body
    assert "codeforge_chat_turns_total" in body


def test_sanitize_path_collapses_ids():
    assert sanitize_path("/projects/abc123/files?latest=true") == "/projects"
    assert sanitize_path("") == "/"
    assert sanitize_path("/health") == "/health"
