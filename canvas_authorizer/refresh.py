"""
Refresh engine: trade a stored refresh token for a new access token (grant_type=refresh_token).
Never retries on its own; retry policy belongs to send_request.
On any failure the store is left untouched and a typed AuthorizerError is raised.
"""
import asyncio
import logging
import weakref

from canvas_authorizer.config import PROVIDER_TOKEN_PATH, TOKEN_REQUEST_RETRIES
from canvas_authorizer.credentials import DeveloperCredentials
from canvas_authorizer.errors import AuthorizerError, ErrorCode
from canvas_authorizer.launch import LaunchInfo
from canvas_authorizer.send_request import SendRequest, SendRequestError, send_request
from canvas_authorizer.token_pack import TokenPack
from canvas_authorizer.token_store import TokenStore

logger = logging.getLogger(__name__)

_REFRESH_FAILED_MESSAGE = "Your Canvas session could not be extended. Please contact support."


class RefreshEngine:
    def __init__(
        self,
        token_store: TokenStore,
        credentials: DeveloperCredentials,
        send: SendRequest = send_request,
        *,
        num_retries: int = TOKEN_REQUEST_RETRIES,
    ) -> None:
        self._token_store = token_store
        self._credentials = credentials
        self._send = send
        self._num_retries = num_retries
        # One lock per (host, user_id): in-process refreshes for an identity run one at a time.
        # Entries disappear once no refresh holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, launch: LaunchInfo) -> asyncio.Lock:
        key = (launch.canvas_host, str(launch.user_id))
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def refresh(self, launch: LaunchInfo | None, *, unless_fresh_for_ms: int | None = None) -> TokenPack:
        """
        Refresh the pack stored for launch and return the new one.

        unless_fresh_for_ms: if the stored pack (re-read under the identity lock) no longer
        needs a refresh for that margin, return it as-is. Lets concurrent accessors that
        raced on one expiring token share a single refresh.
        """
        if launch is None:
            raise AuthorizerError(
                "We could not extend your Canvas authorization because your session has expired.",
                ErrorCode.RefreshFailedDueToSessionExpiry,
            )

        async with self._lock_for(launch):
            token_pack = await self._token_store.get(launch.canvas_host, launch.user_id)
            if token_pack is None or not token_pack.refresh_token:
                raise AuthorizerError(
                    "We could not extend your Canvas authorization because your refresh "
                    "credentials could not be found.",
                    ErrorCode.RefreshFailedDueToTokenMissing,
                )
            if unless_fresh_for_ms is not None and not token_pack.needs_refresh(unless_fresh_for_ms):
                logger.debug("Token for host=%s user_id=%s already refreshed", launch.canvas_host, launch.user_id)
                return token_pack

            try:
                creds = self._credentials.resolve(launch.canvas_host)
            except AuthorizerError as e:
                raise AuthorizerError(_REFRESH_FAILED_MESSAGE, ErrorCode.NoCreds) from e

            try:
                response = await self._send(
                    launch.canvas_host,
                    PROVIDER_TOKEN_PATH,
                    "POST",
                    {
                        "grant_type": "refresh_token",
                        "refresh_token": token_pack.refresh_token,
                        "client_id": creds.client_id,
                        "client_secret": creds.client_secret,
                    },
                    num_retries=self._num_retries,
                )
            except SendRequestError as e:
                logger.warning("Refresh for host=%s user_id=%s: Canvas unreachable", launch.canvas_host, launch.user_id)
                raise AuthorizerError(_REFRESH_FAILED_MESSAGE, ErrorCode.RefreshFailed) from e

            if not response.ok:
                error = response.body.get("error") if isinstance(response.body, dict) else None
                logger.warning(
                    "Refresh for host=%s user_id=%s rejected: status=%s error=%s",
                    launch.canvas_host,
                    launch.user_id,
                    response.status_code,
                    error,
                )
                raise AuthorizerError(_REFRESH_FAILED_MESSAGE, ErrorCode.RefreshFailed)

            try:
                new_pack = TokenPack.from_token_response(
                    response.body,
                    launch.canvas_host,
                    previous_refresh_token=token_pack.refresh_token,
                )
            except AuthorizerError as e:
                logger.warning("Refresh for host=%s returned an unusable body: %s", launch.canvas_host, e.message)
                raise AuthorizerError(_REFRESH_FAILED_MESSAGE, ErrorCode.RefreshFailed) from e

            try:
                await self._token_store.set(launch.canvas_host, launch.user_id, new_pack)
            except Exception as e:
                logger.exception("Refresh for host=%s user_id=%s: token store write failed", launch.canvas_host, launch.user_id)
                raise AuthorizerError(_REFRESH_FAILED_MESSAGE, ErrorCode.RefreshFailed) from e

        logger.info("Refreshed access token for host=%s user_id=%s", launch.canvas_host, launch.user_id)
        return new_pack
