"""
Authorization handshake on a single GET path. Stages run in order; the first to return
a response wins:
  0. error intercept (provider error params outside this flow's callback)
  1. entry: refresh existing tokens, or redirect to Canvas /login/oauth2/auth
  2. callback: state == marker; trade the code for tokens and store them
Anything no stage claims is not this flow's concern (404).
"""
import html
import logging
from urllib.parse import quote, unquote_plus, urlencode

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from canvas_authorizer.config import (
    PROVIDER_AUTHORIZE_PATH,
    PROVIDER_TOKEN_PATH,
    STATE_MARKER,
    TOKEN_REQUEST_RETRIES,
)
from canvas_authorizer.credentials import ClientCredentials, DeveloperCredentials
from canvas_authorizer.errors import AuthorizerError, ErrorCode
from canvas_authorizer.launch import LaunchInfo, LaunchInfoGetter
from canvas_authorizer.refresh import RefreshEngine
from canvas_authorizer.send_request import SendRequest, SendRequestError
from canvas_authorizer.token_pack import TokenPack
from canvas_authorizer.token_store import TokenStore

logger = logging.getLogger(__name__)

_CALLBACK_PREFIX = "We could not get your authorization with Canvas because"


def _page(message: str, status_code: int = 403, title: str = "Canvas authorization") -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
  <h1>{html.escape(title)}</h1>
  <p>{html.escape(message)}</p>
</body>
</html>""",
        status_code=status_code,
    )


def titlecase_error(error: str) -> str:
    """'access_denied' -> 'Access Denied'. Single letters are uppercased."""
    words = []
    for word in error.split("_"):
        if len(word) <= 1:
            words.append(word.upper())
        else:
            words.append(word[0].upper() + word[1:])
    return " ".join(words)


def build_authorize_url(
    *,
    canvas_host: str,
    client_id: str,
    redirect_uri: str,
    scopes: list[str] | None = None,
) -> str:
    """Canvas /login/oauth2/auth URL. Scopes are space-joined and percent-encoded."""
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "state": STATE_MARKER,
    }
    if scopes:
        params["scope"] = " ".join(scopes)
    return f"https://{canvas_host}{PROVIDER_AUTHORIZE_PATH}?{urlencode(params, quote_via=quote)}"


class AuthorizeController:
    def __init__(
        self,
        *,
        token_store: TokenStore,
        credentials: DeveloperCredentials,
        refresh_engine: RefreshEngine,
        launch_info_getter: LaunchInfoGetter,
        send: SendRequest,
        authorize_path: str,
        home_path: str,
        scopes: list[str] | None = None,
        num_retries: int = TOKEN_REQUEST_RETRIES,
    ) -> None:
        self._token_store = token_store
        self._credentials = credentials
        self._refresh_engine = refresh_engine
        self._get_launch_info = launch_info_getter
        self._send = send
        self.authorize_path = authorize_path
        self.home_path = home_path
        self._scopes = list(scopes) if scopes else None
        self._num_retries = num_retries

    def redirect_uri(self, request: Request) -> str:
        """Callback URL: always https, back to this same path."""
        return f"https://{request.url.netloc}{self.authorize_path}"

    def router(self) -> APIRouter:
        router = APIRouter()
        router.add_api_route(
            self.authorize_path,
            self.handle,
            methods=["GET"],
            response_class=HTMLResponse,
            include_in_schema=False,
        )
        return router

    async def handle(self, request: Request) -> Response:
        for stage in (self.intercept_error, self.start_or_refresh, self.receive_callback):
            response = await stage(request)
            if response is not None:
                return response
        logger.debug("Request to %s not part of the authorization flow; passing", self.authorize_path)
        raise HTTPException(status_code=404)

    # Stage 0

    async def intercept_error(self, request: Request) -> Response | None:
        query = request.query_params
        if not (query.get("error") or query.get("error_description")):
            return None
        # Errors on this flow's own callback get the more specific stage 2 messages
        if query.get("state") == STATE_MARKER and query.get("error"):
            return None
        error = titlecase_error(query.get("error") or "unknown_error")
        description = unquote_plus(query.get("error_description") or "No+further+description+could+be+found.")
        logger.warning("Provider error on %s: %s", self.authorize_path, error)
        return _page(f"A launch error occurred: {error}. {description}", title="Launch error")

    # Stage 1

    async def start_or_refresh(self, request: Request) -> Response | None:
        query = request.query_params
        if query.get("code") is not None or query.get("state") is not None:
            return None

        launch = self._get_launch_info(request)
        if launch is None:
            return _page("We could not authorize you with Canvas because your session has expired.")

        try:
            token_pack = await self._token_store.get(launch.canvas_host, launch.user_id)
        except Exception:
            logger.exception("Token store read failed for host=%s user_id=%s", launch.canvas_host, launch.user_id)
            return _page("We could not authorize you with Canvas because your credentials could not be loaded.")

        if token_pack is not None:
            try:
                await self._refresh_engine.refresh(launch)
            except AuthorizerError as e:
                if e.code == ErrorCode.NoCreds:
                    return _page(
                        "We could not refresh your Canvas authorization because this app is not "
                        "ready to integrate with your instance of Canvas.",
                        status_code=404,
                    )
                return _page("Your Canvas authorization has expired and we could not refresh your credentials.")
            return RedirectResponse(url=self.home_path, status_code=302)

        try:
            creds = self._credentials.resolve(launch.canvas_host)
        except AuthorizerError as e:
            logger.warning("No developer credentials for host=%s", launch.canvas_host)
            return _page(e.message, status_code=404)

        url = build_authorize_url(
            canvas_host=launch.canvas_host,
            client_id=creds.client_id,
            redirect_uri=self.redirect_uri(request),
            scopes=self._scopes,
        )
        logger.info("Redirecting host=%s user_id=%s to Canvas authorization", launch.canvas_host, launch.user_id)
        return RedirectResponse(url=url, status_code=302)

    # Stage 2

    async def receive_callback(self, request: Request) -> Response | None:
        query = request.query_params
        if query.get("state") != STATE_MARKER:
            return None
        code = query.get("code")
        error = query.get("error")

        if not code and not error:
            return _page(f"{_CALLBACK_PREFIX} Canvas responded in an unexpected way.")

        launch = self._get_launch_info(request)
        if launch is None:
            return _page(f"{_CALLBACK_PREFIX} your session has expired.")

        if not code and error == "unsupported_response_type":
            return _page(f"{_CALLBACK_PREFIX} Canvas would not start the authorization process.")

        if not code:
            logger.info("Authorization denied for host=%s user_id=%s: %s", launch.canvas_host, launch.user_id, error)
            return _page(
                f"{_CALLBACK_PREFIX} your access was denied. Please contact your Canvas support team."
            )

        try:
            creds = self._credentials.resolve(launch.canvas_host)
        except AuthorizerError:
            logger.warning("No developer credentials for host=%s", launch.canvas_host)
            return _page(
                f"{_CALLBACK_PREFIX} this app is not ready to integrate with your instance of Canvas.",
                status_code=404,
            )

        return await self._exchange_code(request, launch, creds, code)

    async def _exchange_code(
        self, request: Request, launch: LaunchInfo, creds: ClientCredentials, code: str
    ) -> Response:
        try:
            response = await self._send(
                launch.canvas_host,
                PROVIDER_TOKEN_PATH,
                "POST",
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                    "redirect_uri": self.redirect_uri(request),
                },
                num_retries=self._num_retries,
            )
        except SendRequestError:
            logger.warning("Code exchange for host=%s: Canvas unreachable", launch.canvas_host)
            return _page(f"{_CALLBACK_PREFIX} Canvas did not respond to our request for tokens.")

        body = response.body
        if isinstance(body, dict) and body.get("error") == "invalid_client":
            logger.warning("Canvas host=%s rejected client_id=%s (invalid_client)", launch.canvas_host, creds.client_id)
            return _page(f"{_CALLBACK_PREFIX} Canvas would not recognize this app.")

        if not response.ok:
            logger.warning("Code exchange for host=%s failed: status=%s", launch.canvas_host, response.status_code)
            return _page(f"{_CALLBACK_PREFIX} Canvas rejected our request for tokens.")

        try:
            token_pack = TokenPack.from_token_response(body, launch.canvas_host)
        except AuthorizerError as e:
            logger.warning("Code exchange for host=%s returned an unusable body: %s", launch.canvas_host, e.message)
            return _page(f"{_CALLBACK_PREFIX} Canvas rejected our request for tokens.")

        try:
            await self._token_store.set(launch.canvas_host, launch.user_id, token_pack)
        except Exception:
            logger.exception("Token store write failed for host=%s user_id=%s", launch.canvas_host, launch.user_id)
            return _page(f"{_CALLBACK_PREFIX} your credentials could not be stored.")

        logger.info("Authorized host=%s user_id=%s", launch.canvas_host, launch.user_id)
        return RedirectResponse(url=self.home_path, status_code=302)
