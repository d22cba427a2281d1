from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest

from chat_sync.application.exceptions import AuthError
from chat_sync.infrastructure.auth.token_resolver import CookieTokenProvider, inspect_token
from tests.conftest import BASE_URL

_SECRET = "unit-test-secret-with-enough-length-for-hs256"


def _make_token(*, sub: str = "42", role: str | None = "STUDENT", expires_in: int = 3600) -> str:
    claims = {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    if role is not None:
        claims["role"] = role
    return jwt.encode(claims, _SECRET, algorithm="HS256")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


def _no_exchange(request: httpx.Request) -> httpx.Response:
    raise AssertionError("token exchange should not be called")


def test_inspect_jwt_reads_claims():
    token = _make_token()

    credential = inspect_token(token)

    assert credential.token == token
    assert credential.role == "STUDENT"
    assert credential.subject_id == "42"
    assert credential.expires_at > datetime.now(timezone.utc)


def test_inspect_role_name_claim():
    token = jwt.encode({"sub": "1", "role_name": "INSTRUCTOR"}, _SECRET, algorithm="HS256")

    assert inspect_token(token).role == "INSTRUCTOR"


def test_expired_jwt_is_unusable():
    assert inspect_token(_make_token(expires_in=-60)) is None


def test_opaque_token_is_passed_through():
    credential = inspect_token("opaque-session-token")

    assert credential.token == "opaque-session-token"
    assert credential.role is None


def test_empty_token_is_unusable():
    assert inspect_token("") is None


@pytest.mark.asyncio
async def test_cookie_token_is_preferred():
    token = _make_token()
    provider = CookieTokenProvider(_client(_no_exchange), cookies={"AUTH-TOKEN": token})

    credential = await provider.resolve()

    assert credential.token == token


@pytest.mark.asyncio
async def test_falls_back_to_token_exchange():
    exchanged = _make_token(sub="7")
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"token": exchanged})

    provider = CookieTokenProvider(_client(handler), cookies={"AUTH-TOKEN": _make_token(expires_in=-5)})

    credential = await provider.resolve()

    assert credential.subject_id == "7"
    assert paths == ["/api/auth/token"]


@pytest.mark.asyncio
async def test_reads_cookie_jar_of_client():
    token = _make_token()
    http = _client(_no_exchange)
    http.cookies.set("AUTH-TOKEN", token)

    credential = await CookieTokenProvider(http).resolve()

    assert credential.token == token


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(401),
    httpx.Response(200, json={}),
    httpx.Response(200, json={"token": 12}),
    httpx.Response(200, text="not json"),
])
async def test_no_usable_token_raises_auth_error(response):
    provider = CookieTokenProvider(_client(lambda request: response))

    with pytest.raises(AuthError):
        await provider.resolve()
