"""
Pytest configuration for canvas_authorizer. In-memory SQLite, no demo credentials,
and a fake Canvas token endpoint standing in for send_request.
"""
import os

os.environ["CANVAS_TOKEN_DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("CANVAS_DEVELOPER_CREDENTIALS", None)
os.environ.pop("CANVAS_TOKEN_ENCRYPTION_SECRET", None)

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from starlette.middleware.sessions import SessionMiddleware

from canvas_authorizer.authorizer import init_auth
from canvas_authorizer.launch import LaunchInfo, save_launch_info
from canvas_authorizer.send_request import ProviderResponse
from canvas_authorizer.token_store import MemoryTokenStore

CANVAS_HOST = "canvas.test"
CREDENTIALS = {CANVAS_HOST: {"clientId": "X", "clientSecret": "S"}}


class FakeCanvas:
    """Records token endpoint calls and replays queued responses (or raises queued errors)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, response):
        self.responses.append(response)

    async def __call__(self, host, path, method="GET", params=None, **kwargs):
        self.calls.append({"host": host, "path": path, "method": method, "params": dict(params or {})})
        if not self.responses:
            raise AssertionError(f"Unexpected request to {host}{path}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def token_response(access_token="T1", refresh_token="R1", expires_in=3600, status_code=200):
    body = {"access_token": access_token, "expires_in": expires_in, "user": {"id": 42}}
    if refresh_token is not None:
        body["refresh_token"] = refresh_token
    return ProviderResponse(status_code=status_code, body=body)


@pytest.fixture
def fake_canvas():
    return FakeCanvas()


@pytest.fixture
def token_store():
    return MemoryTokenStore()


@pytest.fixture
def build_app(fake_canvas, token_store):
    """Return a factory: host app with sessions, a launch simulator route and the authorizer mounted."""

    def _build(**options):
        app = FastAPI()
        app.add_middleware(SessionMiddleware, secret_key="test-secret")

        @app.get("/test/launch")
        def simulate_launch(request: Request, host: str = CANVAS_HOST, user_id: int = 42):
            save_launch_info(request, LaunchInfo(canvas_host=host, user_id=user_id))
            return {"launched": True}

        options.setdefault("token_store", token_store)
        options.setdefault("send_request", fake_canvas)
        credentials = options.pop("developer_credentials", CREDENTIALS)
        authorizer = init_auth(app, credentials, **options)
        return app, authorizer

    return _build


@pytest.fixture
def client(build_app):
    app, _ = build_app()
    return TestClient(app)
