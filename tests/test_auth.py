import jwt
import pytest
from datetime import datetime, timedelta, timezone
from fastapi import HTTPException
from fastapi.testclient import TestClient

from src.codeforge.api.main import app
from src.codeforge.security.auth import JwtConfig, User, create_access_token, decode_token


client = TestClient(app)


def test_public_mode_allows_anonymous(monkeypatch):
    monkeypatch.setenv("CODEFORGE_PUBLIC_MODE", "true")
    r = client.get("/chat/models")
    assert r.status_code == 200


def test_non_public_mode_requires_token(monkeypatch):
    monkeypatch.setenv("CODEFORGE_PUBLIC_MODE", "false")
    r = client.get("/chat/models")
    assert r.status_code == 401


def test_invalid_token_rejected():
    r = client.get("/chat/models", headers={"Authorization": "Bearer not-a-real-token"})
    assert r.status_code == 401


def test_token_roundtrip():
    cfg = JwtConfig(secret="unit-test-secret", expires_min=5)
    user = User(email="Dev@Example.com", name="Dev", roles=["member"])
    decoded = decode_token(create_access_token(user, cfg=cfg), cfg=cfg)
    assert decoded.email == "Dev@Example.com"
    assert decoded.user_id == "dev@example.com"
    assert decoded.roles == ["member"]


def test_decode_token_expired():
    cfg = JwtConfig(secret="unit-test-secret", expires_min=1)
    now = datetime.now(timezone.utc)
    payload = {
        "sub": "user@example.com",
        "name": "User",
        "roles": ["member"],
        "iat": int((now - timedelta(minutes=10)).timestamp()),
        "exp": int((now - timedelta(minutes=5)).timestamp()),
    }
    token = jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)
    with pytest.raises(HTTPException) as excinfo:
        decode_token(token, cfg=cfg)
    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Token expired"


def test_guest_projects_are_shared_guest_identity(monkeypatch):
    monkeypatch.setenv("CODEFORGE_PUBLIC_MODE", "1")
    r = client.get("/projects/unknown/messages")
    assert r.status_code == 404
