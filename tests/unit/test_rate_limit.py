"""Unit tests for rate limit bucketing."""
from starlette.requests import Request

from common.auth import create_access_token
from common.rate_limit import rate_limit_key


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] = ("10.0.0.5", 5000)) -> Request:
    raw = [(name.lower().encode(), value.encode()) for name, value in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/rooms", "headers": raw, "client": client})


def test_anonymous_requests_use_client_address():
    assert rate_limit_key(_request()) == "10.0.0.5"


def test_bearer_token_buckets_by_user():
    token = create_access_token({"sub": "siti", "role": "nurse"})

    assert rate_limit_key(_request({"Authorization": f"Bearer {token}"})) == "user:siti"


def test_two_nurses_on_one_terminal_get_separate_buckets():
    first = _request({"Authorization": f"Bearer {create_access_token({'sub': 'siti'})}"})
    second = _request({"Authorization": f"Bearer {create_access_token({'sub': 'amir'})}"})

    assert rate_limit_key(first) != rate_limit_key(second)


def test_garbage_token_falls_back_to_address():
    assert rate_limit_key(_request({"Authorization": "Bearer not-a-jwt"})) == "10.0.0.5"
    assert rate_limit_key(_request({"Authorization": "Basic abc"})) == "10.0.0.5"
