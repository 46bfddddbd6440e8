import threading
from datetime import timedelta

import fakeredis
import pytest

from app.core.exceptions import InvalidRefreshTokenError, TokenRevokedError
from app.services.credential_verifier import CredentialVerifier
from app.services.refresh_token_index import InMemoryRefreshTokenIndex, RedisRefreshTokenIndex
from app.services.revocation_store import InMemoryRevocationStore, RedisRevocationStore
from app.services.token_issuer import TokenIssuer
from app.services.token_service import SubjectIdentity, TokenService

ALICE = SubjectIdentity(subject="auth0|alice", role="USER", user_id=1)


def _service(keys, backend="memory"):
    if backend == "redis":
        client = fakeredis.FakeRedis(decode_responses=True)
        store, index = RedisRevocationStore(client), RedisRefreshTokenIndex(client)
    else:
        store, index = InMemoryRevocationStore(), InMemoryRefreshTokenIndex()
    issuer = TokenIssuer(keys.private_key, index, access_ttl=timedelta(minutes=15), refresh_ttl=timedelta(days=7))
    return TokenService(
        issuer=issuer,
        refresh_verifier=CredentialVerifier(keys.public_key, store, expected_type="refresh"),
        access_verifier=CredentialVerifier(keys.public_key, store, expected_type="access"),
        refresh_index=index,
        revocation_store=store,
    )


@pytest.fixture(params=["memory", "redis"])
def service(request, rsa_keys):
    return _service(rsa_keys, request.param)


def test_issued_pair_carries_expected_claims(service):
    pair = service.issue_token_pair(ALICE)
    access = service.access_verifier.verify(pair.access_token.token)
    refresh = service.refresh_verifier.verify(pair.refresh_token.token)

    assert access["sub"] == "auth0|alice"
    assert access["role"] == "USER"
    assert access["auth_type"] == "oauth2"
    assert access["uid"] == 1
    assert refresh["typ"] == "refresh"
    assert refresh["jti"] != access["jti"]
    assert service.refresh_index.get(refresh["jti"]).subject == "auth0|alice"


def test_rotation_issues_new_pair_and_consumes_old_token(service):
    pair = service.issue_token_pair(ALICE)
    identity, new_pair = service.rotate_refresh_token(pair.refresh_token.token)

    assert identity == ALICE
    assert new_pair.refresh_token.jti != pair.refresh_token.jti
    assert service.refresh_index.get(pair.refresh_token.jti) is None
    assert service.revocation_store.is_revoked(pair.refresh_token.jti)
    assert service.refresh_verifier.verify(new_pair.refresh_token.token)["sub"] == "auth0|alice"


def test_second_rotation_of_same_token_fails(service):
    pair = service.issue_token_pair(ALICE)
    service.rotate_refresh_token(pair.refresh_token.token)
    with pytest.raises(InvalidRefreshTokenError):
        service.rotate_refresh_token(pair.refresh_token.token)


def test_concurrent_rotations_exactly_one_wins(rsa_keys):
    service = _service(rsa_keys)
    pair = service.issue_token_pair(ALICE)
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def rotate():
        barrier.wait()
        try:
            service.rotate_refresh_token(pair.refresh_token.token)
            outcome = "ok"
        except InvalidRefreshTokenError:
            outcome = "rejected"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=rotate) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert results.count("rejected") == 7


def test_access_token_cannot_be_used_as_refresh_token(service):
    pair = service.issue_token_pair(ALICE)
    with pytest.raises(InvalidRefreshTokenError):
        service.rotate_refresh_token(pair.access_token.token)


def test_forged_refresh_token_is_rejected(service):
    with pytest.raises(InvalidRefreshTokenError):
        service.rotate_refresh_token("forged.token.value")


def test_subject_mismatch_is_rejected_without_state_change(service):
    pair = service.issue_token_pair(ALICE)
    with pytest.raises(InvalidRefreshTokenError):
        service.rotate_refresh_token(pair.refresh_token.token, subject="auth0|mallory")
    assert service.refresh_index.get(pair.refresh_token.jti) is not None
    assert not service.revocation_store.is_revoked(pair.refresh_token.jti)


def test_unknown_subject_is_rejected_without_state_change(service):
    pair = service.issue_token_pair(ALICE)
    with pytest.raises(InvalidRefreshTokenError):
        service.rotate_refresh_token(pair.refresh_token.token, resolve_identity=lambda subject: None)
    assert service.refresh_index.get(pair.refresh_token.jti) is not None


def test_resolver_supplies_current_role(service):
    pair = service.issue_token_pair(ALICE)
    promoted = SubjectIdentity(subject="auth0|alice", role="ADMIN", user_id=1)
    identity, new_pair = service.rotate_refresh_token(
        pair.refresh_token.token, resolve_identity=lambda subject: promoted
    )
    assert identity.role == "ADMIN"
    assert service.access_verifier.verify(new_pair.access_token.token)["role"] == "ADMIN"


def test_token_missing_from_index_is_rejected(service):
    pair = service.issue_token_pair(ALICE)
    service.refresh_index.pop(pair.refresh_token.jti)
    with pytest.raises(InvalidRefreshTokenError):
        service.rotate_refresh_token(pair.refresh_token.token)


def test_revoke_all_for_subject_blocks_rotation(service):
    first = service.issue_token_pair(ALICE)
    second = service.issue_token_pair(ALICE)
    bob = service.issue_token_pair(SubjectIdentity(subject="auth0|bob", role="USER", user_id=2))

    assert service.revoke_all_for_subject("auth0|alice") == 2
    for pair in (first, second):
        with pytest.raises(InvalidRefreshTokenError):
            service.rotate_refresh_token(pair.refresh_token.token)

    service.rotate_refresh_token(bob.refresh_token.token)
    assert service.revoke_all_for_subject("auth0|alice") == 0


def test_logout_revokes_refresh_token_once(service):
    pair = service.issue_token_pair(ALICE)
    assert service.revoke_refresh_token(pair.refresh_token.token) is True
    assert service.revoke_refresh_token(pair.refresh_token.token) is False
    with pytest.raises(InvalidRefreshTokenError):
        service.rotate_refresh_token(pair.refresh_token.token)


def test_revoked_access_token_fails_verification(service):
    pair = service.issue_token_pair(ALICE)
    assert service.revoke_access_token(pair.access_token.token) is True
    with pytest.raises(TokenRevokedError):
        service.access_verifier.verify(pair.access_token.token)


def test_issuer_refuses_shared_secret_algorithms(rsa_keys):
    with pytest.raises(ValueError):
        TokenIssuer(rsa_keys.private_key, InMemoryRefreshTokenIndex(), algorithm="HS256")
