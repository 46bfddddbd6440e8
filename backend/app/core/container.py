"""Service graph for authentication and authorization.

Stores are created here and injected into every service that needs them;
nothing in the auth stack holds a module-level store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from redis import Redis
from sqlalchemy.orm import Session

from app.config import Settings
from app.core.security import KeyPair, load_signing_keys
from app.services.credential_verifier import CredentialVerifier, TokensValidFromLookup
from app.services.identity_service import IdentityProvisioningService
from app.services.rate_limiter import FixedWindowRateLimiter
from app.services.refresh_token_index import (
    InMemoryRefreshTokenIndex,
    RedisRefreshTokenIndex,
    RefreshTokenIndex,
)
from app.services.revocation_store import (
    InMemoryRevocationStore,
    RedisRevocationStore,
    RevocationStore,
)
from app.services.token_issuer import ACCESS_TOKEN_TYPE, REFRESH_TOKEN_TYPE, TokenIssuer
from app.services.token_service import TokenService
from app.services.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass
class AuthServices:
    """Everything the HTTP layer needs for authentication."""
    keys: KeyPair
    revocation_store: RevocationStore
    refresh_index: RefreshTokenIndex
    access_verifier: CredentialVerifier
    refresh_verifier: CredentialVerifier
    provider_verifier: Optional[CredentialVerifier]
    issuer: TokenIssuer
    token_service: TokenService
    identity_service: IdentityProvisioningService
    rate_limiter: FixedWindowRateLimiter

    def start(self) -> None:
        if isinstance(self.revocation_store, InMemoryRevocationStore):
            self.revocation_store.start_sweeper()

    def close(self) -> None:
        self.revocation_store.close()
        self.refresh_index.close()


def _build_stores(settings: Settings, redis_client: Optional[Redis]):
    if redis_client is None and settings.REDIS_URL:
        redis_client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )

    if redis_client is not None:
        if settings.REVOCATION_FAIL_OPEN:
            logger.warning(
                "REVOCATION_FAIL_OPEN is enabled: revoked tokens are accepted while Redis is unreachable"
            )
        store = RedisRevocationStore(
            redis_client,
            fail_open=settings.REVOCATION_FAIL_OPEN,
            max_retries=settings.REDIS_MAX_RETRIES,
        )
        return store, RedisRefreshTokenIndex(redis_client)

    logger.warning(
        "REDIS_URL not set: token revocation runs in-process (degraded mode). "
        "Revocations are lost on restart and not shared between workers."
    )
    index = InMemoryRefreshTokenIndex()
    store = InMemoryRevocationStore(
        sweep_interval_seconds=settings.REVOCATION_SWEEP_INTERVAL_SECONDS,
        max_entry_age_seconds=settings.REVOCATION_MAX_AGE_SECONDS,
        also_purge=index.purge_expired,
    )
    return store, index


def build_auth_services(
    settings: Settings,
    *,
    session_factory: Optional[Callable[[], Session]] = None,
    redis_client: Optional[Redis] = None,
    keys: Optional[KeyPair] = None,
    tokens_valid_from: Optional[TokensValidFromLookup] = None,
) -> AuthServices:
    """
    Construct the authentication service graph

    Args:
        settings: Application settings
        session_factory: Session factory for the tokens_valid_from lookup
        redis_client: Pre-built Redis client; otherwise built from REDIS_URL
        keys: Signing key pair; otherwise loaded from settings
        tokens_valid_from: Explicit cutoff lookup, overriding session_factory

    Returns:
        AuthServices: The wired services. Call start() before serving.
    """
    keys = keys or load_signing_keys(settings)
    revocation_store, refresh_index = _build_stores(settings, redis_client)

    if tokens_valid_from is None and session_factory is not None:
        tokens_valid_from = UserService.tokens_valid_from_lookup(session_factory)

    common = dict(
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
        leeway_seconds=settings.TOKEN_LEEWAY_SECONDS,
    )
    access_verifier = CredentialVerifier(
        keys.public_key,
        revocation_store,
        expected_type=ACCESS_TOKEN_TYPE,
        tokens_valid_from=tokens_valid_from,
        **common,
    )
    refresh_verifier = CredentialVerifier(
        keys.public_key,
        revocation_store,
        expected_type=REFRESH_TOKEN_TYPE,
        tokens_valid_from=tokens_valid_from,
        **common,
    )

    provider_verifier = None
    idp_key = settings.get_idp_public_key()
    if idp_key:
        # Provider tokens are never in our revocation store.
        provider_verifier = CredentialVerifier(
            idp_key,
            None,
            algorithms=settings.IDP_ALGORITHMS,
            audience=settings.IDP_AUDIENCE,
            issuer=settings.IDP_ISSUER,
            leeway_seconds=settings.TOKEN_LEEWAY_SECONDS,
        )
    else:
        logger.warning("IDP_PUBLIC_KEY not configured: provider token exchange is disabled")

    issuer = TokenIssuer(
        keys.private_key,
        refresh_index,
        algorithm=settings.JWT_ALGORITHM,
        access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        issuer=settings.JWT_ISSUER,
        audience=settings.JWT_AUDIENCE,
    )
    token_service = TokenService(
        issuer=issuer,
        refresh_verifier=refresh_verifier,
        access_verifier=access_verifier,
        refresh_index=refresh_index,
        revocation_store=revocation_store,
    )
    identity_service = IdentityProvisioningService(
        settings.role_claim,
        settings.legacy_roles_claim,
        claim_namespace=settings.ROLE_CLAIM_NAMESPACE,
        default_provider=settings.IDP_PROVIDER,
    )

    logger.info(
        "Auth services ready (store: %s, access ttl: %sm, refresh ttl: %sd)",
        type(revocation_store).__name__,
        settings.ACCESS_TOKEN_EXPIRE_MINUTES,
        settings.REFRESH_TOKEN_EXPIRE_DAYS,
    )
    return AuthServices(
        keys=keys,
        revocation_store=revocation_store,
        refresh_index=refresh_index,
        access_verifier=access_verifier,
        refresh_verifier=refresh_verifier,
        provider_verifier=provider_verifier,
        issuer=issuer,
        token_service=token_service,
        identity_service=identity_service,
        rate_limiter=FixedWindowRateLimiter(),
    )
