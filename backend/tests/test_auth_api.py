from datetime import timedelta

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.api.deps import require_resource_access
from app.config import settings
from app.core.container import build_auth_services
from app.core.context import get_current_caller_email, get_current_caller_id
from app.core.database import Base, SessionLocal, engine
from app.core.exceptions import BaseAPIException
from app.core.security import encode_token, utcnow
from app.main import api_exception_handler, app
from app.models.audit import AuditEvent
from app.models.user import User
from app.models.workout import WorkoutSession
from app.services.ownership_service import ResourceKind, ResourceRef

NS = settings.ROLE_CLAIM_NAMESPACE


@pytest.fixture
def services(rsa_keys, other_rsa_keys):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    test_settings = settings.model_copy(update={"IDP_PUBLIC_KEY": other_rsa_keys.public_key})
    services = build_auth_services(test_settings, session_factory=SessionLocal, keys=rsa_keys)
    yield services
    services.close()


@pytest.fixture
def client(services):
    app.state.auth_services = services
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.auth_services = None


@pytest.fixture
def provider_token(other_rsa_keys):
    def make(subject="auth0|alice", email="alice@example.com", **extra):
        now = utcnow()
        claims = {
            "sub": subject,
            "email": email,
            "email_verified": True,
            "given_name": subject.split("|")[-1].capitalize(),
            "family_name": "Tester",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=5)).timestamp()),
        }
        claims.update(extra)
        return encode_token(claims, other_rsa_keys.private_key, "RS256")

    return make


def _login(client, token):
    response = client.post("/api/v1/auth/token", json={"id_token": token})
    assert response.status_code == 200, response.text
    return response.json()


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_exchange_provisions_user_and_issues_tokens(client, provider_token):
    body = _login(client, provider_token())

    assert body["token_type"] == "bearer"
    assert body["expires_in"] == settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    assert body["refresh_expires_in"] == settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400
    assert body["user"]["external_subject"] == "auth0|alice"
    assert body["user"]["role"] == "USER"
    assert body["user"]["last_login"] is not None

    me = client.get("/api/v1/auth/me", headers=_bearer(body["access_token"]))
    assert me.status_code == 200
    assert me.json()["email"] == "alice@example.com"


def test_unverified_email_is_forbidden(client, provider_token):
    response = client.post(
        "/api/v1/auth/token", json={"id_token": provider_token(email_verified=False)}
    )
    assert response.status_code == 403
    assert response.json()["success"] is False

    db = SessionLocal()
    try:
        assert db.query(User).count() == 0
        denied = db.query(AuditEvent).one()
        assert denied.action == "auth.login_denied"
        assert denied.external_subject == "auth0|alice"
    finally:
        db.close()


def test_provider_token_signed_by_unknown_key_is_rejected(client, rsa_keys):
    forged = encode_token(
        {"sub": "auth0|alice", "email": "a@example.com", "email_verified": True,
         "exp": int((utcnow() + timedelta(minutes=5)).timestamp())},
        rsa_keys.private_key,
        "RS256",
    )
    response = client.post("/api/v1/auth/token", json={"id_token": forged})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid token"


def test_missing_bearer_is_not_authenticated(client):
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["error"] == "Not authenticated"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_refresh_rotates_and_old_token_is_rejected(client, provider_token):
    body = _login(client, provider_token())

    rotated = client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})
    assert rotated.status_code == 200
    assert rotated.json()["refresh_token"] != body["refresh_token"]

    replay = client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["error"] == "Invalid refresh token"

    again = client.post("/api/v1/auth/refresh", json={"refresh_token": rotated.json()["refresh_token"]})
    assert again.status_code == 200


def test_refresh_uses_current_role(client, provider_token):
    body = _login(client, provider_token())
    _login(client, provider_token(**{f"{NS}/role": "MODERATOR"}))

    rotated = client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})
    assert rotated.status_code == 200
    assert rotated.json()["user"]["role"] == "MODERATOR"


def test_logout_revokes_access_and_refresh_tokens(client, provider_token):
    body = _login(client, provider_token())
    headers = _bearer(body["access_token"])

    response = client.post(
        "/api/v1/auth/logout", json={"refresh_token": body["refresh_token"]}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["refresh_token_revoked"] is True

    assert client.get("/api/v1/auth/me", headers=headers).status_code == 401
    refresh = client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})
    assert refresh.status_code == 401


def test_revoke_all_invalidates_outstanding_tokens(client, provider_token):
    first = _login(client, provider_token())
    second = _login(client, provider_token())

    response = client.post("/api/v1/auth/revoke-all", headers=_bearer(second["access_token"]))
    assert response.status_code == 200
    assert response.json()["refresh_tokens_revoked"] == 2

    for body in (first, second):
        assert client.get("/api/v1/auth/me", headers=_bearer(body["access_token"])).status_code == 401
        refresh = client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})
        assert refresh.status_code == 401


def test_only_admin_can_revoke_for_another_user(client, provider_token):
    alice = _login(client, provider_token())
    bob = _login(client, provider_token(subject="auth0|bob", email="bob@example.com"))

    denied = client.post(
        "/api/v1/auth/revoke-all",
        json={"user_id": alice["user"]["id"]},
        headers=_bearer(bob["access_token"]),
    )
    assert denied.status_code == 403

    admin = _login(
        client,
        provider_token(subject="auth0|root", email="root@example.com", **{f"{NS}/role": "ADMIN"}),
    )
    allowed = client.post(
        "/api/v1/auth/revoke-all",
        json={"user_id": alice["user"]["id"]},
        headers=_bearer(admin["access_token"]),
    )
    assert allowed.status_code == 200
    assert allowed.json()["user_id"] == alice["user"]["id"]
    assert client.get("/api/v1/auth/me", headers=_bearer(alice["access_token"])).status_code == 401
    assert client.get("/api/v1/auth/me", headers=_bearer(bob["access_token"])).status_code == 200


def test_user_lookup_requires_admin(client, provider_token):
    alice = _login(client, provider_token())
    admin = _login(
        client,
        provider_token(subject="auth0|root", email="root@example.com", **{f"{NS}/roles": ["ADMIN"]}),
    )
    path = f"/api/v1/users/{alice['user']['id']}"

    assert client.get(path, headers=_bearer(alice["access_token"])).status_code == 403
    response = client.get(path, headers=_bearer(admin["access_token"]))
    assert response.status_code == 200
    assert response.json()["email"] == "alice@example.com"
    assert client.get("/api/v1/users/9999", headers=_bearer(admin["access_token"])).status_code == 404


def test_deleted_user_token_is_rejected(client, provider_token):
    body = _login(client, provider_token())
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.external_subject == "auth0|alice").one()
        user.is_deleted = True
        db.commit()
    finally:
        db.close()

    assert client.get("/api/v1/auth/me", headers=_bearer(body["access_token"])).status_code == 401
    assert client.post("/api/v1/auth/token", json={"id_token": provider_token()}).status_code == 403


def test_audit_trail_for_current_user(client, provider_token):
    body = _login(client, provider_token())
    client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})

    response = client.get("/api/v1/users/me/audit", headers=_bearer(body["access_token"]))
    assert response.status_code == 200
    actions = [event["action"] for event in response.json()]
    assert actions == ["auth.token_refresh", "auth.login"]


def test_login_rate_limit(client, provider_token, monkeypatch):
    monkeypatch.setattr(settings, "LOGIN_RATE_LIMIT_PER_MINUTE", 2)
    token = provider_token()
    assert client.post("/api/v1/auth/token", json={"id_token": token}).status_code == 200
    assert client.post("/api/v1/auth/token", json={"id_token": token}).status_code == 200
    assert client.post("/api/v1/auth/token", json={"id_token": token}).status_code == 429


def test_health_reports_store(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["readiness"]["revocation_store"] == "InMemoryRevocationStore"


def test_metrics_count_rotations(client, provider_token):
    body = _login(client, provider_token())
    client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})
    client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})

    text = client.get("/metrics").text
    assert 'workout_token_rotations_total{outcome="success"}' in text
    assert 'workout_token_rotations_total{outcome="rejected"}' in text
    assert 'workout_auth_failures_total{reason="InvalidRefreshTokenError"}' in text


@pytest.fixture
def workouts_app(services):
    workouts = FastAPI()
    workouts.state.auth_services = services
    workouts.add_exception_handler(BaseAPIException, api_exception_handler)

    @workouts.get("/sessions/{session_id}")
    def read_session(ref: ResourceRef = Depends(require_resource_access(ResourceKind.SESSION, "session_id"))):
        return {
            "id": ref.id,
            "caller_id": get_current_caller_id(),
            "caller_email": get_current_caller_email(),
        }

    return TestClient(workouts)


def test_resource_access_dependency(client, workouts_app, provider_token):
    alice = _login(client, provider_token())
    bob = _login(client, provider_token(subject="auth0|bob", email="bob@example.com"))

    db = SessionLocal()
    try:
        session = WorkoutSession(user_id=alice["user"]["id"], name="Push day")
        db.add(session)
        db.commit()
        session_id = session.id
    finally:
        db.close()

    own = workouts_app.get(f"/sessions/{session_id}", headers=_bearer(alice["access_token"]))
    assert own.status_code == 200
    assert own.json() == {
        "id": session_id,
        "caller_id": alice["user"]["id"],
        "caller_email": "alice@example.com",
    }

    other = workouts_app.get(f"/sessions/{session_id}", headers=_bearer(bob["access_token"]))
    assert other.status_code == 404
    assert workouts_app.get("/sessions/424242", headers=_bearer(alice["access_token"])).status_code == 404
    assert workouts_app.get(f"/sessions/{session_id}").status_code == 401


def test_caller_context_is_empty_outside_requests():
    assert get_current_caller_id() is None
    assert get_current_caller_email() is None
