"""
Token store contract and the default in-memory implementation.
In-memory store is process-lifetime only, no eviction: development and tests.
"""
from typing import Protocol

from canvas_authorizer.token_pack import TokenPack


class TokenStore(Protocol):
    """Anything with async get/set keyed by (canvas_host, user_id)."""

    async def get(self, canvas_host: str, user_id: int | str) -> TokenPack | None:
        ...

    async def set(self, canvas_host: str, user_id: int | str, token_pack: TokenPack) -> None:
        ...


class MemoryTokenStore:
    """host -> {user_id -> TokenPack}. A user id alone never identifies a pack."""

    def __init__(self) -> None:
        self._store: dict[str, dict[str, TokenPack]] = {}

    async def get(self, canvas_host: str, user_id: int | str) -> TokenPack | None:
        host_store = self._store.get(canvas_host)
        if host_store is None:
            return None
        return host_store.get(str(user_id))

    async def set(self, canvas_host: str, user_id: int | str, token_pack: TokenPack) -> None:
        self._store.setdefault(canvas_host, {})[str(user_id)] = token_pack
