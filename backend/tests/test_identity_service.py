import logging

import pytest

from app.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    EmailNotVerifiedError,
    ResourceAlreadyExistsError,
)
from app.models.user import User
from app.schemas.user import ExternalPrincipal
from app.services.identity_service import IdentityProvisioningService

NS = "https://api.workout-planner.com"


def _service():
    return IdentityProvisioningService(f"{NS}/role", f"{NS}/roles", claim_namespace=NS)


def _principal(**overrides):
    claims = {
        "sub": "auth0|alice",
        "email": "alice@example.com",
        "email_verified": True,
        "given_name": "Alice",
        "family_name": "Smith",
        "nickname": "alice",
        "picture": "https://cdn.example.com/alice.png",
    }
    claims.update(overrides)
    return ExternalPrincipal.from_claims({k: v for k, v in claims.items() if v is not None})


def _count_commits(monkeypatch, db):
    calls = {"commit": 0}
    original = db.commit

    def counting_commit():
        calls["commit"] += 1
        original()

    monkeypatch.setattr(db, "commit", counting_commit)
    return calls


def test_first_login_creates_user(db):
    user = _service().provision(db, _principal())

    assert user.id is not None
    assert user.external_subject == "auth0|alice"
    assert user.email == "alice@example.com"
    assert (user.first_name, user.last_name) == ("Alice", "Smith")
    assert user.username == "alice"
    assert user.picture_url == "https://cdn.example.com/alice.png"
    assert user.role == "USER"
    assert user.last_login is None


def test_provision_is_idempotent(db, monkeypatch):
    service = _service()
    first = service.provision(db, _principal())
    snapshot = first.to_dict()

    calls = _count_commits(monkeypatch, db)
    second = service.provision(db, _principal())

    assert calls["commit"] == 0
    assert second.id == first.id
    assert second.to_dict() == snapshot
    assert db.query(User).count() == 1


def test_unverified_email_never_creates_user(db, monkeypatch):
    def no_queries(*args, **kwargs):
        raise AssertionError("database touched before email verification")

    monkeypatch.setattr(db, "query", no_queries)
    with pytest.raises(EmailNotVerifiedError):
        _service().provision(db, _principal(email_verified=False))
    with pytest.raises(EmailNotVerifiedError):
        _service().provision(db, _principal(email_verified=None))


def test_github_principal_without_verified_claim_is_rejected(db):
    principal = ExternalPrincipal.from_claims(
        {"id": 42, "login": "octo", "email": "octo@example.com"}, provider="github"
    )
    with pytest.raises(EmailNotVerifiedError):
        _service().provision(db, principal)
    assert db.query(User).count() == 0


def test_unverified_email_never_mutates_existing_user(db):
    service = _service()
    service.provision(db, _principal())
    with pytest.raises(EmailNotVerifiedError):
        service.provision(db, _principal(email_verified=False, email="new@example.com", given_name="Eve"))

    user = db.query(User).one()
    assert user.email == "alice@example.com"
    assert user.first_name == "Alice"


def test_missing_email_is_rejected(db):
    with pytest.raises(AuthenticationError):
        _service().provision(db, _principal(email=None))
    assert db.query(User).count() == 0


def test_changed_fields_are_updated(db, caplog):
    service = _service()
    service.provision(db, _principal())

    with caplog.at_level(logging.INFO, logger="app.services.identity_service"):
        user = service.provision(
            db,
            _principal(email="alice@new.example.com", family_name="Jones", **{f"{NS}/role": "MODERATOR"}),
        )

    assert user.email == "alice@new.example.com"
    assert user.last_name == "Jones"
    assert user.first_name == "Alice"
    assert user.role == "MODERATOR"
    assert "Role changed" in caplog.text


def test_role_from_legacy_plural_claim(db):
    user = _service().provision(db, _principal(**{f"{NS}/roles": ["admin", "user"]}))
    assert user.role == "ADMIN"


def test_singular_role_claim_wins_over_legacy(db):
    user = _service().provision(
        db, _principal(**{f"{NS}/role": "MODERATOR", f"{NS}/roles": ["ADMIN"]})
    )
    assert user.role == "MODERATOR"


def test_non_string_singular_role_falls_through_to_legacy(db):
    user = _service().provision(
        db, _principal(**{f"{NS}/role": ["MODERATOR"], f"{NS}/roles": ["ADMIN"]})
    )
    assert user.role == "ADMIN"


@pytest.mark.parametrize("raw", ["superuser", 42, {"name": "ADMIN"}, []])
def test_malformed_role_falls_back_to_user(db, caplog, raw):
    with caplog.at_level(logging.WARNING):
        user = _service().provision(db, _principal(**{f"{NS}/roles": raw}))
    assert user.role == "USER"
    if raw != []:
        assert "Unrecognised role claim" in caplog.text


def test_name_falls_back_to_full_name_then_email(db):
    service = _service()
    user = service.provision(
        db, _principal(given_name=None, family_name=None, name="Alice   Marie Smith")
    )
    assert (user.first_name, user.last_name) == ("Alice", "Smith")

    bob = service.provision(
        db,
        _principal(sub="auth0|bob", email="bob@example.com", given_name=None, family_name=None, nickname=None),
    )
    assert bob.first_name == "bob"
    assert bob.last_name == ""
    assert bob.username == "bob"


def test_deleted_user_cannot_be_provisioned(db):
    service = _service()
    user = service.provision(db, _principal())
    user.is_deleted = True
    db.commit()

    with pytest.raises(AccessDeniedError):
        service.provision(db, _principal())


def test_email_taken_by_another_active_user(db):
    service = _service()
    service.provision(db, _principal())
    with pytest.raises(ResourceAlreadyExistsError):
        service.provision(db, _principal(sub="auth0|impostor"))


def test_email_of_deleted_user_can_be_reused(db):
    service = _service()
    old = service.provision(db, _principal())
    old.is_deleted = True
    db.commit()

    new = service.provision(db, _principal(sub="google-oauth2|alice"))
    assert new.id != old.id
