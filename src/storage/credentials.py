"""Credential stores.

Durable mapping from (provider, subject) to an OAuth credential. Lookups
are exact-key only and a missing key is a normal outcome ("not yet
authorized"). Writes are whole-record upserts; merging fields from a
previous record is the caller's job.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import select

from shared.logging import get_logger
from shared.models import DEFAULT_SUBJECT, CredentialRecord, utcnow
from storage.database import Database, OAuthTokenRow, as_utc

logger = get_logger(__name__)

# Columns replaced on conflict; created_at keeps its first-write value
_UPDATE_COLUMNS = (
    "access_token",
    "refresh_token",
    "expires_at",
    "scope",
    "workspace_id",
    "workspace_name",
    "bot_id",
    "raw",
    "updated_at",
)


class CredentialStore(ABC):
    """Contract shared by every credential store."""

    async def init(self) -> None:
        """Prepare backing storage."""

    async def close(self) -> None:
        """Release backing resources."""

    @abstractmethod
    async def upsert(self, record: CredentialRecord) -> None:
        """Insert or fully replace the record for its (provider, subject)."""

    @abstractmethod
    async def get(
        self, provider: str, subject: str = DEFAULT_SUBJECT
    ) -> Optional[CredentialRecord]:
        """Return the record for the exact key, or None."""


class InMemoryCredentialStore(CredentialStore):
    """Volatile store for single-process use; lost on restart."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], CredentialRecord] = {}

    async def upsert(self, record: CredentialRecord) -> None:
        now = utcnow()
        previous = self._records.get(record.key)
        self._records[record.key] = record.model_copy(
            deep=True,
            update={
                "created_at": previous.created_at if previous else now,
                "updated_at": now,
            },
        )
        logger.debug("Credential stored", provider=record.provider, subject=record.subject)

    async def get(
        self, provider: str, subject: str = DEFAULT_SUBJECT
    ) -> Optional[CredentialRecord]:
        record = self._records.get((provider, subject))
        return record.model_copy(deep=True) if record else None

    def __len__(self) -> int:
        return len(self._records)


class SQLCredentialStore(CredentialStore):
    """Durable store backed by the ``oauth_tokens`` table."""

    def __init__(self, database: Database, owns_database: bool = False) -> None:
        self.database = database
        self._owns_database = owns_database

    async def init(self) -> None:
        await self.database.init()

    async def close(self) -> None:
        if self._owns_database:
            await self.database.close()

    async def upsert(self, record: CredentialRecord) -> None:
        now = utcnow()
        values = record.model_dump(exclude={"created_at", "updated_at"})
        values.update(created_at=now, updated_at=now)

        stmt = self.database.insert(OAuthTokenRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["provider", "subject"],
            set_={column: stmt.excluded[column] for column in _UPDATE_COLUMNS},
        )
        async with self.database.session_maker() as session:
            await session.execute(stmt)
            await session.commit()
        logger.debug("Credential stored", provider=record.provider, subject=record.subject)

    async def get(
        self, provider: str, subject: str = DEFAULT_SUBJECT
    ) -> Optional[CredentialRecord]:
        async with self.database.session_maker() as session:
            row = await session.scalar(
                select(OAuthTokenRow).where(
                    OAuthTokenRow.provider == provider,
                    OAuthTokenRow.subject == subject,
                )
            )
        if row is None:
            return None
        return CredentialRecord(
            provider=row.provider,
            subject=row.subject,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            expires_at=as_utc(row.expires_at),
            scope=row.scope,
            workspace_id=row.workspace_id,
            workspace_name=row.workspace_name,
            bot_id=row.bot_id,
            raw=row.raw,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )
