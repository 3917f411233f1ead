"""SQL engine and table definitions.

SQLAlchemy 2.0 async engine shared by the SQL credential store and the SQL
usage log. PostgreSQL (asyncpg) in production, SQLite (aiosqlite) in tests.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from shared.config import normalize_database_url
from shared.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class OAuthTokenRow(Base):
    """One credential per (provider, subject)."""

    __tablename__ = "oauth_tokens"

    provider: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject: Mapped[str] = mapped_column(String(255), primary_key=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    workspace_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    workspace_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bot_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # json, not jsonb: key order of the provider payload is kept
    raw: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ToolUsageRow(Base):
    """Append-only tool invocation log."""

    __tablename__ = "tool_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tool_name: Mapped[str] = mapped_column(String(128), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    latency_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Database:
    """
    Owns the async engine and session factory.

    Create once at startup and hand to every SQL-backed store.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = normalize_database_url(url)
        options: dict[str, Any] = {"echo": echo}
        if self.url.startswith("sqlite") and ":memory:" in self.url:
            options["poolclass"] = StaticPool
        else:
            options["pool_pre_ping"] = True
        self.engine: AsyncEngine = create_async_engine(self.url, **options)
        self.session_maker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._initialized = False

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def insert(self, table: type[Base]):
        """Dialect specific INSERT supporting ON CONFLICT."""
        if self.dialect == "postgresql":
            return pg_insert(table)
        if self.dialect == "sqlite":
            return sqlite_insert(table)
        raise NotImplementedError(f"Upsert is not supported on '{self.dialect}'")

    async def init(self) -> None:
        """Create tables if they do not exist. Safe to call repeatedly."""
        if self._initialized:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        logger.info("Database initialized", dialect=self.dialect)

    async def close(self) -> None:
        """Dispose of the connection pool."""
        await self.engine.dispose()
        self._initialized = False
