"""Tests for the access token accessor (just-in-time refresh) and its FastAPI dependency."""
import asyncio
from unittest.mock import patch

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from canvas_authorizer.authorizer import Authorizer, get_access_token
from canvas_authorizer.errors import AuthorizerError, ErrorCode
from canvas_authorizer.launch import LaunchInfo
from canvas_authorizer.send_request import ProviderResponse
from canvas_authorizer.token_pack import TokenPack
from conftest import CANVAS_HOST, CREDENTIALS, token_response

LAUNCH = LaunchInfo(canvas_host=CANVAS_HOST, user_id=42)
EXPIRY = 2_000_000_000_000
MARGIN = 300_000


@pytest.fixture
def authorizer(fake_canvas, token_store):
    return Authorizer(CREDENTIALS, token_store=token_store, send_request=fake_canvas)


async def _seed(token_store):
    await token_store.set(
        CANVAS_HOST,
        42,
        TokenPack(access_token="cached", refresh_token="rt", access_token_expiry=EXPIRY, canvas_host=CANVAS_HOST),
    )


@pytest.mark.asyncio
async def test_no_session(authorizer, fake_canvas):
    with pytest.raises(AuthorizerError) as exc_info:
        await authorizer.access_token_for(None)
    assert exc_info.value.code == ErrorCode.GetFailedNoSession
    assert fake_canvas.calls == []


@pytest.mark.asyncio
async def test_not_authorized_makes_no_request(authorizer, fake_canvas):
    with pytest.raises(AuthorizerError) as exc_info:
        await authorizer.access_token_for(LAUNCH)
    assert exc_info.value.code == ErrorCode.GetFailedNoAuthorization
    assert fake_canvas.calls == []


@pytest.mark.asyncio
async def test_returns_cached_token_just_below_threshold(authorizer, fake_canvas, token_store):
    await _seed(token_store)
    with patch("canvas_authorizer.token_pack.now_ms", return_value=EXPIRY - MARGIN - 1):
        token = await authorizer.access_token_for(LAUNCH)
    assert token == "cached"
    assert fake_canvas.calls == []


@pytest.mark.asyncio
async def test_refreshes_exactly_once_at_threshold(authorizer, fake_canvas, token_store):
    await _seed(token_store)
    fake_canvas.queue(token_response(access_token="fresh", refresh_token="rt2", expires_in=3600))
    with patch("canvas_authorizer.token_pack.now_ms", return_value=EXPIRY - MARGIN):
        token = await authorizer.access_token_for(LAUNCH)
    assert token == "fresh"
    assert len(fake_canvas.calls) == 1
    stored = await token_store.get(CANVAS_HOST, 42)
    assert stored.refresh_token == "rt2"


@pytest.mark.asyncio
async def test_refreshes_when_expired(authorizer, fake_canvas, token_store):
    await _seed(token_store)
    fake_canvas.queue(token_response(access_token="fresh"))
    with patch("canvas_authorizer.token_pack.now_ms", return_value=EXPIRY + 1):
        assert await authorizer.access_token_for(LAUNCH) == "fresh"


@pytest.mark.asyncio
async def test_refresh_failure_propagates_without_stale_fallback(authorizer, fake_canvas, token_store):
    await _seed(token_store)
    fake_canvas.queue(ProviderResponse(status_code=401, body={"error": "invalid_grant"}))
    with patch("canvas_authorizer.token_pack.now_ms", return_value=EXPIRY):
        with pytest.raises(AuthorizerError) as exc_info:
            await authorizer.access_token_for(LAUNCH)
    assert exc_info.value.code == ErrorCode.RefreshFailed
    assert (await token_store.get(CANVAS_HOST, 42)).access_token == "cached"


@pytest.mark.asyncio
async def test_custom_refresh_margin(fake_canvas, token_store):
    authorizer = Authorizer(CREDENTIALS, token_store=token_store, send_request=fake_canvas, refresh_margin_ms=0)
    await _seed(token_store)
    with patch("canvas_authorizer.token_pack.now_ms", return_value=EXPIRY - 1):
        assert await authorizer.access_token_for(LAUNCH) == "cached"


# --- dependency ---


def test_dependency_returns_token(build_app, token_store):
    app, _ = build_app()

    @app.get("/whoami")
    async def whoami(access_token: str = Depends(get_access_token)):
        return {"token": access_token}

    client = TestClient(app)
    client.get("/test/launch")
    asyncio.run(_seed(token_store))
    with patch("canvas_authorizer.token_pack.now_ms", return_value=0):
        r = client.get("/whoami")
    assert r.status_code == 200
    assert r.json() == {"token": "cached"}


def test_dependency_error_is_rendered_as_json(build_app):
    app, _ = build_app()

    @app.get("/whoami")
    async def whoami(access_token: str = Depends(get_access_token)):
        return {"token": access_token}

    r = TestClient(app).get("/whoami")
    assert r.status_code == 401
    assert r.json()["error"] == "GetFailedNoSession"
    assert r.json()["code"] == "CAT10"


def test_dependency_not_initialized():
    app = FastAPI()

    @app.get("/whoami")
    async def whoami(access_token: str = Depends(get_access_token)):
        return {"token": access_token}

    with pytest.raises(AuthorizerError) as exc_info:
        TestClient(app).get("/whoami")
    assert exc_info.value.code == ErrorCode.NotInitialized
