"""Security utilities - RSA key material, JWT encoding and decoding"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple
import hashlib
import logging
import secrets

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from app.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyPair:
    """PEM encoded signing key pair"""
    private_key: str
    public_key: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize naive timestamps (as returned by SQLite) to aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_rsa_key_pair(key_size: int = 2048) -> KeyPair:
    """
    Generate a fresh RSA key pair

    Args:
        key_size: Modulus size in bits

    Returns:
        KeyPair: PEM encoded private (PKCS8) and public (SubjectPublicKeyInfo) keys
    """
    private = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = private.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return KeyPair(private_key=private_pem, public_key=public_pem)


def load_signing_keys(settings: Settings) -> KeyPair:
    """
    Load the token signing key pair from settings.

    Outside production a missing key pair is replaced by an ephemeral one,
    which invalidates every issued token on restart.
    """
    private_pem = settings.get_private_key()
    public_pem = settings.get_public_key()
    if private_pem and public_pem:
        return KeyPair(private_key=private_pem, public_key=public_pem)

    if settings.ENVIRONMENT.lower() == "production":
        raise RuntimeError("JWT key pair is not configured")

    logger.warning("No JWT key pair configured; generating an ephemeral RSA key pair")
    return generate_rsa_key_pair()


def generate_token_id() -> str:
    """Unique token identifier for the jti claim"""
    return secrets.token_urlsafe(32)


def token_fingerprint(token: str) -> str:
    """Content hash used as revocation key for tokens without a jti"""
    return "sha256:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


def encode_token(claims: Dict[str, Any], private_key: str, algorithm: str) -> str:
    """
    Sign claims into a compact JWS

    Args:
        claims: Token claims (timestamps already converted to epoch seconds)
        private_key: PEM private key
        algorithm: Asymmetric JWS algorithm

    Returns:
        str: Encoded JWT
    """
    return jwt.encode(claims, private_key, algorithm=algorithm)


def decode_token(
    token: str,
    public_key: str,
    algorithms: Iterable[str],
    *,
    audience: Optional[str] = None,
    issuer: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Verify the signature of a JWT and return its claims.

    Expiry is not checked here; callers apply their own clock so that an
    expired token is reported separately from a forged one.

    Raises:
        jose.JWTError: On malformed tokens, bad signatures, audience or issuer mismatch
    """
    options = {
        "verify_exp": False,
        "verify_aud": audience is not None,
    }
    return jwt.decode(
        token,
        public_key,
        algorithms=list(algorithms),
        audience=audience,
        issuer=issuer,
        options=options,
    )


def from_timestamp(value: Any) -> Optional[datetime]:
    """Epoch-seconds claim to aware datetime, or None when the claim is unusable."""
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def remaining_lifetime(exp: Any, now: Optional[datetime] = None) -> Tuple[int, Optional[datetime]]:
    """
    Seconds left before an exp claim, clamped to zero.

    Returns:
        Tuple of (seconds remaining, expiry as datetime or None when exp is unusable)
    """
    expires_at = from_timestamp(exp)
    if expires_at is None:
        return 0, None
    now = now or utcnow()
    return max(0, int((expires_at - now).total_seconds())), expires_at
