"""
Demo host app. Mounts the Canvas authorization handshake and one route that calls
the Canvas API with the current user's access token.
The LTI launch handler (not part of this package) must store the launch in the
session via canvas_authorizer.launch.save_launch_info.
"""
import html
import logging

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from canvas_authorizer.authorizer import get_access_token, init_auth
from canvas_authorizer.config import (
    AUTHORIZE_PATH,
    DEVELOPER_CREDENTIALS_JSON,
    SESSION_SECRET,
    TOKEN_REQUEST_TIMEOUT,
)
from canvas_authorizer.credentials import DeveloperCredentials
from canvas_authorizer.launch import session_launch_info
from canvas_authorizer.sql_token_store import SqlTokenStore

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Canvas Authorizer Demo", version="0.1.0")
    app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "canvas_authorizer"}

    @app.get("/", response_class=HTMLResponse)
    def home(request: Request):
        launch = session_launch_info(request)
        who = f"user {launch.user_id} on {launch.canvas_host}" if launch else "no launch yet"
        return HTMLResponse(
            f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Canvas Authorizer</title></head>
<body>
  <h1>Canvas Authorizer</h1>
  <p>Session: {html.escape(who)}</p>
  <p><a href="{html.escape(AUTHORIZE_PATH)}">Authorize with Canvas</a></p>
  <p><a href="/api/self">Call /api/v1/users/self</a></p>
</body>
</html>"""
        )

    @app.get("/api/self")
    async def canvas_self(request: Request, access_token: str = Depends(get_access_token)):
        """Canvas profile of the launched user, fetched with their access token."""
        launch = session_launch_info(request)
        try:
            async with httpx.AsyncClient(timeout=TOKEN_REQUEST_TIMEOUT) as client:
                r = await client.get(
                    f"https://{launch.canvas_host}/api/v1/users/self",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            logger.warning("Canvas API call failed: %s", e)
            return JSONResponse({"error": "canvas_unreachable"}, status_code=502)
        if r.headers.get("content-type", "").startswith("application/json"):
            return JSONResponse(r.json(), status_code=r.status_code)
        return JSONResponse({"body": r.text}, status_code=r.status_code)

    if DEVELOPER_CREDENTIALS_JSON:
        init_auth(
            app,
            DeveloperCredentials.from_json(DEVELOPER_CREDENTIALS_JSON),
            token_store=SqlTokenStore.from_env(),
        )
    else:
        logger.warning("CANVAS_DEVELOPER_CREDENTIALS not set; Canvas authorization is not mounted")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "canvas_authorizer.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
