"""
TokenPack: the access/refresh token bundle stored per (canvas_host, user_id).
Expiry is absolute ms since epoch, already shortened by the safety factor.
"""
import math
import time
from dataclasses import dataclass
from typing import Any

from canvas_authorizer.config import ACCESS_TOKEN_SAFETY_FACTOR, REFRESH_MARGIN_MS
from canvas_authorizer.errors import AuthorizerError, ErrorCode


def now_ms() -> int:
    return int(time.time() * 1000)


def compute_expiry(expires_in: float, now: int | None = None) -> int:
    """now + floor(expires_in * safety factor * 1000)."""
    if now is None:
        now = now_ms()
    return now + math.floor(expires_in * ACCESS_TOKEN_SAFETY_FACTOR * 1000)


@dataclass
class TokenPack:
    access_token: str
    refresh_token: str
    access_token_expiry: int
    canvas_host: str

    def needs_refresh(self, margin_ms: int = REFRESH_MARGIN_MS, now: int | None = None) -> bool:
        """True once now is within margin_ms of the stored expiry (or past it)."""
        if now is None:
            now = now_ms()
        return now >= self.access_token_expiry - margin_ms

    @classmethod
    def from_token_response(
        cls,
        body: Any,
        canvas_host: str,
        previous_refresh_token: str | None = None,
        now: int | None = None,
    ) -> "TokenPack":
        """
        Build a pack from a /login/oauth2/token JSON body.
        Canvas does not always rotate refresh tokens: fall back to previous_refresh_token.
        Raises AuthorizerError(InvalidTokenPackage) when the body is unusable.
        """
        if not isinstance(body, dict):
            raise AuthorizerError("Token response was not a JSON object.", ErrorCode.InvalidTokenPackage)
        access_token = body.get("access_token")
        refresh_token = body.get("refresh_token") or previous_refresh_token
        expires_in = body.get("expires_in")
        if not access_token or not refresh_token:
            raise AuthorizerError("Token response is missing tokens.", ErrorCode.InvalidTokenPackage)
        try:
            expires_in = float(expires_in)
        except (TypeError, ValueError):
            raise AuthorizerError("Token response has no usable expires_in.", ErrorCode.InvalidTokenPackage)
        if not math.isfinite(expires_in) or expires_in < 0:
            raise AuthorizerError("Token response has no usable expires_in.", ErrorCode.InvalidTokenPackage)
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expiry=compute_expiry(expires_in, now),
            canvas_host=canvas_host,
        )

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "access_token_expiry": self.access_token_expiry,
            "canvas_host": self.canvas_host,
        }
