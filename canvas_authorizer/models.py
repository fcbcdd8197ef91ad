"""
SQLAlchemy models for the persistent token store.
"""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class StoredTokenPack(Base):
    __tablename__ = "token_packs"
    # host + user id is the only valid lookup key
    __table_args__ = (UniqueConstraint("canvas_host", "user_id", name="uq_token_packs_identity"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    canvas_host: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # Possibly Fernet ciphertext (see TokenCipher)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    access_token_expiry: Mapped[int] = mapped_column(BigInteger, nullable=False)  # ms since epoch
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)
