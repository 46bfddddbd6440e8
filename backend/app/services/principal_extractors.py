"""Per-provider extraction of profile attributes from external claims."""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type

from app.core.exceptions import AuthenticationError


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _split_name(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split a full name on whitespace into (first, last)."""
    if not name:
        return None, None
    parts = name.split()
    if len(parts) == 1:
        return parts[0], None
    return parts[0], parts[-1]


def _email_local_part(email: Optional[str]) -> Optional[str]:
    if email and "@" in email:
        return email.split("@", 1)[0] or None
    return email


class PrincipalExtractor:
    """Common capability every provider variant implements."""

    provider = "generic"

    def __init__(self, claims: Mapping[str, Any], *, claim_namespace: str = "") -> None:
        self.claims = claims
        self.claim_namespace = claim_namespace.rstrip("/")

    def _get(self, name: str) -> Optional[str]:
        return _text(self.claims.get(name))

    def _namespaced(self, name: str) -> Optional[str]:
        if not self.claim_namespace:
            return None
        return self._get(f"{self.claim_namespace}/{name}")

    @property
    def subject(self) -> Optional[str]:
        return self._get("sub")

    @property
    def email(self) -> Optional[str]:
        return self._get("email")

    @property
    def email_verified(self) -> bool:
        return self.claims.get("email_verified") is True

    @property
    def first_name(self) -> Optional[str]:
        return self._get("given_name")

    @property
    def last_name(self) -> Optional[str]:
        return self._get("family_name")

    @property
    def picture_url(self) -> Optional[str]:
        return self._get("picture")

    @property
    def username(self) -> Optional[str]:
        return self._get("preferred_username") or _email_local_part(self.email)


class Auth0Extractor(PrincipalExtractor):
    """
    Auth0 access/ID token claims.

    Names fall back from the standard claims to namespaced custom claims,
    then to the "name" claim split on whitespace, then to the email local part.
    """

    provider = "auth0"

    @property
    def username(self) -> Optional[str]:
        return (
            self._get("nickname")
            or self._get("preferred_username")
            or _email_local_part(self.email)
        )

    @property
    def first_name(self) -> Optional[str]:
        first = self._get("given_name") or self._namespaced("first_name")
        if first:
            return first
        split_first, _ = _split_name(self._get("name"))
        return split_first or _email_local_part(self.email)

    @property
    def last_name(self) -> Optional[str]:
        last = self._get("family_name") or self._namespaced("last_name")
        if last:
            return last
        _, split_last = _split_name(self._get("name"))
        return split_last or ""


class GoogleExtractor(PrincipalExtractor):
    provider = "google"


class GitHubExtractor(PrincipalExtractor):
    provider = "github"

    @property
    def subject(self) -> Optional[str]:
        raw = self.claims.get("id")
        return str(raw) if raw is not None else None

    @property
    def first_name(self) -> Optional[str]:
        first, _ = _split_name(self._get("name"))
        return first

    @property
    def last_name(self) -> Optional[str]:
        _, last = _split_name(self._get("name"))
        return last

    @property
    def picture_url(self) -> Optional[str]:
        return self._get("avatar_url")

    @property
    def username(self) -> Optional[str]:
        return self._get("login") or super().username


class FacebookExtractor(PrincipalExtractor):
    provider = "facebook"

    @property
    def subject(self) -> Optional[str]:
        return self._get("id")

    @property
    def first_name(self) -> Optional[str]:
        return self._get("first_name")

    @property
    def last_name(self) -> Optional[str]:
        return self._get("last_name")

    @property
    def picture_url(self) -> Optional[str]:
        picture = self.claims.get("picture")
        if isinstance(picture, dict):
            return _text((picture.get("data") or {}).get("url"))
        return _text(picture)


EXTRACTORS: Dict[str, Type[PrincipalExtractor]] = {
    Auth0Extractor.provider: Auth0Extractor,
    GoogleExtractor.provider: GoogleExtractor,
    GitHubExtractor.provider: GitHubExtractor,
    FacebookExtractor.provider: FacebookExtractor,
}


def get_extractor(
    provider: str, claims: Mapping[str, Any], *, claim_namespace: str = ""
) -> PrincipalExtractor:
    """
    Pick the extractor variant for a provider

    Raises:
        AuthenticationError: If the provider is not supported
    """
    extractor_cls: Optional[Callable[..., PrincipalExtractor]] = EXTRACTORS.get(provider.lower())
    if extractor_cls is None:
        raise AuthenticationError(f"Unsupported identity provider: {provider}")
    return extractor_cls(claims, claim_namespace=claim_namespace)
