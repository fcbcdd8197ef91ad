"""
Developer credentials (Canvas developer key client_id/client_secret).
Single tenant: one fixed pair for every host. Multi tenant: one pair per Canvas host.
"""
import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from canvas_authorizer.errors import AuthorizerError, ErrorCode


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str


def _parse_pair(raw: Any) -> ClientCredentials | None:
    """Accept {clientId, clientSecret} or {client_id, client_secret}; None if neither."""
    if isinstance(raw, ClientCredentials):
        return raw
    if not isinstance(raw, Mapping):
        return None
    client_id = raw.get("client_id", raw.get("clientId"))
    client_secret = raw.get("client_secret", raw.get("clientSecret"))
    if client_id is None or client_secret is None:
        return None
    return ClientCredentials(client_id=str(client_id), client_secret=str(client_secret))


class DeveloperCredentials:
    """Immutable after construction. resolve() raises NoCreds for unknown hosts."""

    def __init__(
        self,
        *,
        single: ClientCredentials | None = None,
        by_host: Mapping[str, ClientCredentials] | None = None,
    ) -> None:
        if (single is None) == (by_host is None):
            raise ValueError("Provide exactly one of single or by_host credentials.")
        self._single = single
        self._by_host = MappingProxyType(dict(by_host)) if by_host is not None else None

    @property
    def is_multi_tenant(self) -> bool:
        return self._by_host is not None

    @property
    def hosts(self) -> tuple[str, ...]:
        return tuple(self._by_host) if self._by_host is not None else ()

    def resolve(self, canvas_host: str) -> ClientCredentials:
        if self._single is not None:
            return self._single
        creds = self._by_host.get(canvas_host)
        if creds is None:
            raise AuthorizerError(
                "We could not get your authorization with Canvas because this app is not "
                "ready to integrate with your instance of Canvas.",
                ErrorCode.NoCreds,
            )
        return creds

    @classmethod
    def parse(cls, raw: Any) -> "DeveloperCredentials":
        """
        Build from a DeveloperCredentials, a ClientCredentials, a flat pair mapping
        (single tenant) or a {host: pair} mapping (multi tenant).
        """
        if isinstance(raw, DeveloperCredentials):
            return raw
        single = _parse_pair(raw)
        if single is not None:
            return cls(single=single)
        if not isinstance(raw, Mapping) or not raw:
            raise ValueError("Developer credentials must be a credential pair or a non-empty host map.")
        by_host = {}
        for host, pair in raw.items():
            creds = _parse_pair(pair)
            if creds is None:
                raise ValueError(f"Developer credentials for host {host!r} need a client id and secret.")
            by_host[str(host)] = creds
        return cls(by_host=by_host)

    @classmethod
    def from_json(cls, text: str) -> "DeveloperCredentials":
        return cls.parse(json.loads(text))

    def __repr__(self) -> str:
        # Never print secrets
        if self._single is not None:
            return f"DeveloperCredentials(single client_id={self._single.client_id!r})"
        return f"DeveloperCredentials(hosts={list(self.hosts)!r})"
