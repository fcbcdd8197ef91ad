"""
Outbound HTTPS calls to Canvas with bounded retry on transport failure.
Non-2xx responses are returned, not raised: callers read Canvas error bodies.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from canvas_authorizer.config import TOKEN_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


class SendRequestError(Exception):
    """Raised when Canvas could not be reached after all attempts."""


@dataclass
class ProviderResponse:
    status_code: int
    body: Any
    headers: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


# Signature shared by send_request and test doubles
SendRequest = Callable[..., Awaitable[ProviderResponse]]


def _decode_body(response: httpx.Response) -> Any:
    if response.headers.get("content-type", "").startswith("application/json"):
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


async def send_request(
    host: str,
    path: str,
    method: str = "GET",
    params: dict | None = None,
    *,
    num_retries: int = 0,
    timeout: float = TOKEN_REQUEST_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderResponse:
    """
    Send https://{host}{path}. GET params go in the query string, otherwise form-encoded body.
    Retries transport errors num_retries extra times, then raises SendRequestError.
    """
    method = method.upper()
    url = f"https://{host}{path}"
    # Local Canvas dev instances use self-signed certificates
    verify = not host.startswith("localhost")
    attempts = max(0, num_retries) + 1
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout, verify=verify, transport=transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params if method == "GET" else None,
                    data=params if method != "GET" else None,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            last_error = e
            logger.debug("Request to %s%s failed (attempt %d/%d): %s", host, path, attempt, attempts, e)
            continue
        return ProviderResponse(
            status_code=response.status_code,
            body=_decode_body(response),
            headers=dict(response.headers),
        )
    logger.warning("Could not reach %s%s after %d attempt(s)", host, path, attempts)
    raise SendRequestError(
        "We encountered an error when trying to send a network request. "
        "If this issue persists, contact an admin."
    ) from last_error
