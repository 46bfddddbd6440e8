import pytest

from app.core.exceptions import AuthenticationError
from app.schemas.user import ExternalPrincipal
from app.services.principal_extractors import (
    Auth0Extractor,
    FacebookExtractor,
    GitHubExtractor,
    GoogleExtractor,
    get_extractor,
)

NS = "https://api.workout-planner.com"


def test_provider_lookup_is_case_insensitive():
    assert isinstance(get_extractor("Auth0", {}), Auth0Extractor)
    assert isinstance(get_extractor("google", {}), GoogleExtractor)
    assert isinstance(get_extractor("GITHUB", {}), GitHubExtractor)
    assert isinstance(get_extractor("facebook", {}), FacebookExtractor)


def test_unknown_provider_is_rejected():
    with pytest.raises(AuthenticationError):
        get_extractor("myspace", {"sub": "x"})


def test_auth0_prefers_namespaced_names_over_full_name():
    claims = {
        "sub": "auth0|1",
        "email": "jo@example.com",
        f"{NS}/first_name": "Josephine",
        f"{NS}/last_name": "March",
        "name": "Jo M",
    }
    extractor = get_extractor("auth0", claims, claim_namespace=NS + "/")
    assert extractor.first_name == "Josephine"
    assert extractor.last_name == "March"
    assert extractor.username == "jo"


def test_auth0_single_word_name():
    extractor = get_extractor("auth0", {"name": "Cher", "email": "cher@example.com"})
    assert extractor.first_name == "Cher"
    assert extractor.last_name == ""


def test_blank_claims_are_ignored():
    extractor = get_extractor("google", {"given_name": "   ", "email": "  ", "picture": 5})
    assert extractor.first_name is None
    assert extractor.email is None
    assert extractor.picture_url is None
    assert extractor.email_verified is False


def test_github_claim_shape():
    claims = {
        "id": 583231,
        "login": "octocat",
        "name": "The Octocat",
        "email": "octocat@github.com",
        "avatar_url": "https://avatars.githubusercontent.com/u/583231",
    }
    extractor = get_extractor("github", claims)
    assert extractor.subject == "583231"
    assert extractor.email_verified is False
    assert (extractor.first_name, extractor.last_name) == ("The", "Octocat")
    assert extractor.username == "octocat"
    assert extractor.picture_url.endswith("/583231")


def test_facebook_nested_picture():
    claims = {
        "id": "10150",
        "first_name": "Mark",
        "last_name": "Z",
        "email": "mark@example.com",
        "email_verified": True,
        "picture": {"data": {"url": "https://graph.example.com/pic.jpg"}},
    }
    extractor = get_extractor("facebook", claims)
    assert extractor.subject == "10150"
    assert extractor.picture_url == "https://graph.example.com/pic.jpg"
    assert (extractor.first_name, extractor.last_name) == ("Mark", "Z")


def test_principal_from_claims():
    principal = ExternalPrincipal.from_claims(
        {"sub": "auth0|1", "email": "a@example.com", "email_verified": "true"}
    )
    assert principal.subject == "auth0|1"
    # Only a real boolean counts as verified.
    assert principal.email_verified is None
    assert principal.provider == "auth0"
