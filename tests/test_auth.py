import pytest

from auth import issue_session_token, resolve_session_token, token_from_headers


def test_token_round_trip() -> None:
    token = issue_session_token("user_42")
    assert resolve_session_token(token) == "user_42"


def test_tampered_or_missing_token_resolves_to_none() -> None:
    token = issue_session_token("user_42")
    assert resolve_session_token(token[:-2] + "xx") is None
    assert resolve_session_token("not-a-token") is None
    assert resolve_session_token("") is None
    assert resolve_session_token(None) is None


def test_expired_token_is_rejected() -> None:
    token = issue_session_token("user_42")
    assert resolve_session_token(token, max_age_hours=-1) is None


def test_empty_user_id_cannot_get_a_token() -> None:
    with pytest.raises(ValueError):
        issue_session_token("")


def test_bearer_header_wins_over_cookie() -> None:
    assert token_from_headers("Bearer abc", "cookie-token") == "abc"
    assert token_from_headers("bearer  abc ", None) == "abc"
    assert token_from_headers("Basic abc", "cookie-token") == "cookie-token"
    assert token_from_headers(None, None) is None
