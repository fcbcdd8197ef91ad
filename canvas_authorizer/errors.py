"""
Error codes and the typed error raised by the refresh engine and the access token accessor.
Codes are stable identifiers so host apps can branch on them.
"""
import logging
from enum import Enum

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    InvalidTokenPackage = "CAT1"
    RequiredOptionExcluded = "CAT4"
    RefreshFailed = "CAT5"
    InitializedMoreThanOnce = "CAT6"
    RefreshFailedDueToSessionExpiry = "CAT7"
    NotInitialized = "CAT8"
    RefreshFailedDueToTokenMissing = "CAT9"
    GetFailedNoSession = "CAT10"
    GetFailedNoAuthorization = "CAT11"
    NoCreds = "CAT12"


_STATUS_BY_CODE = {
    ErrorCode.NoCreds: 404,
    ErrorCode.RefreshFailedDueToSessionExpiry: 401,
    ErrorCode.RefreshFailedDueToTokenMissing: 401,
    ErrorCode.GetFailedNoSession: 401,
    ErrorCode.GetFailedNoAuthorization: 401,
    ErrorCode.RefreshFailed: 403,
}


class AuthorizerError(Exception):
    """Raised with a stable ErrorCode and a user-presentable message."""

    def __init__(self, message: str, code: ErrorCode):
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def status_code(self) -> int:
        # Anything unmapped is a programmer/configuration error
        return _STATUS_BY_CODE.get(self.code, 500)

    def __repr__(self) -> str:
        return f"AuthorizerError(code={self.code.value}, message={self.message!r})"


async def authorizer_error_handler(request: Request, exc: AuthorizerError) -> JSONResponse:
    """Render an AuthorizerError escaping a route as an OAuth-style JSON error."""
    logger.debug("AuthorizerError on %s: %s", request.url.path, exc.code.name)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code.name,
            "error_description": exc.message,
            "code": exc.code.value,
        },
    )
