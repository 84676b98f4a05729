import json
import types

from src.codeforge.infrastructure import events


def _install_redis(monkeypatch, from_url):
    stub = types.SimpleNamespace(Redis=types.SimpleNamespace(from_url=from_url))
    monkeypatch.setattr(events, "redis", stub)
    monkeypatch.setattr(events, "_publisher", None)


def test_publish_event_no_url_returns_quietly(monkeypatch):
    def from_url(*_args, **_kwargs):
        raise AssertionError("should not connect without REDIS_URL")

    _install_redis(monkeypatch, from_url)
    assert events._get_publisher() is None
    events.publish_event("artifact.created", {"payload": "ignored"})


class FakeRedisClient:
    attempt = 0
    published = []
    publish_should_fail = False

    def ping(self):
        if FakeRedisClient.attempt == 0:
            FakeRedisClient.attempt += 1
            raise Exception("connect failed")

    def publish(self, channel, payload):
        FakeRedisClient.published.append((channel, payload))
        if FakeRedisClient.publish_should_fail:
            FakeRedisClient.publish_should_fail = False
            raise Exception("publish failed")


def test_redis_publisher_recovers_after_connection_failure(monkeypatch):
    FakeRedisClient.attempt = 0
    FakeRedisClient.published = []
    FakeRedisClient.publish_should_fail = False

    def from_url(url, socket_timeout=0.5):
        return FakeRedisClient()

    _install_redis(monkeypatch, from_url)
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")

    publisher = events._get_publisher()
    assert publisher is not None
    # first connect failed on ping; publish reconnects
    events.publish_event("artifact.created", {"project_id": "p1"})
    assert FakeRedisClient.published == [("codeforge.events.artifact.created", json.dumps({"project_id": "p1"}))]

    FakeRedisClient.publish_should_fail = True
    events.publish_event("artifact.created", {"project_id": "p2"})
    events.publish_event("artifact.created", {"project_id": "p3"})
    assert [json.loads(p)["project_id"] for _, p in FakeRedisClient.published] == ["p1", "p2", "p3"]
