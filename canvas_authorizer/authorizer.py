"""
Wiring: init_auth() builds an Authorizer handle (store, credentials, refresh engine,
handshake controller), mounts the handshake route on the app and keeps the handle on
app.state so get_access_token() can be used as a FastAPI dependency.
"""
import logging
from typing import Any

from fastapi import FastAPI, Request

from canvas_authorizer.authorize import AuthorizeController
from canvas_authorizer.config import (
    AUTHORIZE_PATH,
    HOME_PATH,
    REFRESH_MARGIN_MS,
    TOKEN_REQUEST_RETRIES,
)
from canvas_authorizer.credentials import DeveloperCredentials
from canvas_authorizer.errors import AuthorizerError, ErrorCode, authorizer_error_handler
from canvas_authorizer.launch import LaunchInfo, LaunchInfoGetter, session_launch_info
from canvas_authorizer.refresh import RefreshEngine
from canvas_authorizer.send_request import SendRequest, send_request
from canvas_authorizer.token_pack import TokenPack
from canvas_authorizer.token_store import MemoryTokenStore, TokenStore

logger = logging.getLogger(__name__)

APP_STATE_KEY = "canvas_authorizer"


class Authorizer:
    def __init__(
        self,
        developer_credentials: DeveloperCredentials | Any,
        *,
        token_store: TokenStore | None = None,
        scopes: list[str] | None = None,
        authorize_path: str = AUTHORIZE_PATH,
        home_path: str = HOME_PATH,
        launch_info_getter: LaunchInfoGetter = session_launch_info,
        send_request: SendRequest = send_request,
        refresh_margin_ms: int = REFRESH_MARGIN_MS,
        num_retries: int = TOKEN_REQUEST_RETRIES,
    ) -> None:
        self.credentials = DeveloperCredentials.parse(developer_credentials)
        self.token_store: TokenStore = token_store if token_store is not None else MemoryTokenStore()
        self.refresh_margin_ms = refresh_margin_ms
        self._get_launch_info = launch_info_getter
        self.refresh_engine = RefreshEngine(
            self.token_store,
            self.credentials,
            send_request,
            num_retries=num_retries,
        )
        self.controller = AuthorizeController(
            token_store=self.token_store,
            credentials=self.credentials,
            refresh_engine=self.refresh_engine,
            launch_info_getter=launch_info_getter,
            send=send_request,
            authorize_path=authorize_path,
            home_path=home_path,
            scopes=scopes,
            num_retries=num_retries,
        )

    async def refresh(self, request: Request) -> TokenPack:
        """Force a refresh for the request's launch identity."""
        return await self.refresh_engine.refresh(self._get_launch_info(request))

    async def get_access_token(self, request: Request) -> str:
        """Current access token for the request's launch identity, refreshed just-in-time."""
        return await self.access_token_for(self._get_launch_info(request))

    async def access_token_for(self, launch: LaunchInfo | None) -> str:
        if launch is None:
            raise AuthorizerError(
                "We could not find the current user's access token because the current user has no session.",
                ErrorCode.GetFailedNoSession,
            )
        token_pack = await self.token_store.get(launch.canvas_host, launch.user_id)
        if token_pack is None:
            raise AuthorizerError(
                "We could not find the current user's access token because the current user is not authorized.",
                ErrorCode.GetFailedNoAuthorization,
            )
        if token_pack.needs_refresh(self.refresh_margin_ms):
            # No fallback to the stale token: refresh errors propagate
            token_pack = await self.refresh_engine.refresh(launch, unless_fresh_for_ms=self.refresh_margin_ms)
        return token_pack.access_token


def init_auth(
    app: FastAPI | None = None,
    developer_credentials: DeveloperCredentials | Any = None,
    **options: Any,
) -> Authorizer:
    """
    Mount the authorization handshake on app and return the Authorizer handle.
    options: token_store, scopes, authorize_path, home_path, launch_info_getter,
    send_request, refresh_margin_ms, num_retries (see Authorizer).
    """
    if app is None or not developer_credentials:
        raise AuthorizerError(
            "Token manager initialized improperly: at least one required option was not included. "
            "We require app, developer_credentials",
            ErrorCode.RequiredOptionExcluded,
        )
    if getattr(app.state, APP_STATE_KEY, None) is not None:
        raise AuthorizerError(
            "Canvas Authorizer cannot be initialized more than once on the same app.",
            ErrorCode.InitializedMoreThanOnce,
        )

    authorizer = Authorizer(developer_credentials, **options)
    app.include_router(authorizer.controller.router(), tags=["canvas-authorize"])
    app.add_exception_handler(AuthorizerError, authorizer_error_handler)
    setattr(app.state, APP_STATE_KEY, authorizer)
    logger.info(
        "Canvas authorization mounted at %s (%s)",
        authorizer.controller.authorize_path,
        "multi-tenant" if authorizer.credentials.is_multi_tenant else "single-tenant",
    )
    return authorizer


def get_authorizer(request: Request) -> Authorizer:
    authorizer = getattr(request.app.state, APP_STATE_KEY, None)
    if authorizer is None:
        raise AuthorizerError(
            "We could not get your Canvas access token because Canvas Authorizer has not been initialized yet.",
            ErrorCode.NotInitialized,
        )
    return authorizer


async def get_access_token(request: Request) -> str:
    """Dependency: `token: str = Depends(get_access_token)`."""
    return await get_authorizer(request).get_access_token(request)
