"""
Persistent TokenStore backed by SQLAlchemy.
Blocking DB calls run in Starlette's threadpool so get/set stay awaitable
without stalling other requests. Last write wins per (canvas_host, user_id).
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.engine import Engine
from starlette.concurrency import run_in_threadpool

from canvas_authorizer.config import TOKEN_DATABASE_URL, TOKEN_ENCRYPTION_SECRET
from canvas_authorizer.database import init_db, make_engine, make_session_factory
from canvas_authorizer.models import StoredTokenPack
from canvas_authorizer.token_cipher import TokenCipher
from canvas_authorizer.token_pack import TokenPack

logger = logging.getLogger(__name__)


class SqlTokenStore:
    def __init__(
        self,
        engine: Engine | None = None,
        *,
        database_url: str = TOKEN_DATABASE_URL,
        cipher: TokenCipher | None = None,
    ) -> None:
        self._engine = engine if engine is not None else make_engine(database_url)
        self._session_factory = make_session_factory(self._engine)
        self._cipher = cipher
        init_db(self._engine)

    @classmethod
    def from_env(cls) -> "SqlTokenStore":
        """Store on CANVAS_TOKEN_DATABASE_URL, encrypted when a secret is configured."""
        cipher = TokenCipher(TOKEN_ENCRYPTION_SECRET) if TOKEN_ENCRYPTION_SECRET else None
        return cls(database_url=TOKEN_DATABASE_URL, cipher=cipher)

    def _seal(self, value: str) -> str:
        return self._cipher.encrypt(value) if self._cipher else value

    def _open(self, value: str) -> str:
        return self._cipher.decrypt(value) if self._cipher else value

    def _get_sync(self, canvas_host: str, user_id: str) -> TokenPack | None:
        db = self._session_factory()
        try:
            row = db.scalars(
                select(StoredTokenPack).where(
                    StoredTokenPack.canvas_host == canvas_host,
                    StoredTokenPack.user_id == user_id,
                )
            ).first()
            if row is None:
                return None
            return TokenPack(
                access_token=self._open(row.access_token),
                refresh_token=self._open(row.refresh_token),
                access_token_expiry=row.access_token_expiry,
                canvas_host=row.canvas_host,
            )
        finally:
            db.close()

    def _write(self, canvas_host: str, user_id: str, token_pack: TokenPack) -> None:
        db = self._session_factory()
        try:
            row = db.scalars(
                select(StoredTokenPack).where(
                    StoredTokenPack.canvas_host == canvas_host,
                    StoredTokenPack.user_id == user_id,
                )
            ).first()
            if row is None:
                row = StoredTokenPack(canvas_host=canvas_host, user_id=user_id)
                db.add(row)
            row.access_token = self._seal(token_pack.access_token)
            row.refresh_token = self._seal(token_pack.refresh_token)
            row.access_token_expiry = token_pack.access_token_expiry
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _set_sync(self, canvas_host: str, user_id: str, token_pack: TokenPack) -> None:
        try:
            self._write(canvas_host, user_id, token_pack)
        except IntegrityError:
            # A concurrent first write for this identity inserted the row; update it instead
            logger.debug("Insert race for host=%s user_id=%s, retrying as update", canvas_host, user_id)
            self._write(canvas_host, user_id, token_pack)
        logger.debug("Stored token pack for host=%s user_id=%s", canvas_host, user_id)

    async def get(self, canvas_host: str, user_id: int | str) -> TokenPack | None:
        return await run_in_threadpool(self._get_sync, canvas_host, str(user_id))

    async def set(self, canvas_host: str, user_id: int | str, token_pack: TokenPack) -> None:
        await run_in_threadpool(self._set_sync, canvas_host, str(user_id), token_pack)
