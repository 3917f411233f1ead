"""Usage logs.

Append-only record of tool invocations, with simple aggregation for the
``/stats`` endpoint. Records are never updated or deleted.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections import Counter
from pathlib import Path
from typing import Iterable

import aiofiles
from sqlalchemy import func, select

from shared.logging import get_logger
from shared.models import UsageRecord, UsageStats
from storage.database import Database, ToolUsageRow

logger = get_logger(__name__)


def tool_key(provider: str, tool_name: str) -> str:
    return f"{provider}:{tool_name}"


def aggregate(records: Iterable[UsageRecord]) -> UsageStats:
    """Count records in total, per provider and per provider:tool."""
    by_provider: Counter[str] = Counter()
    by_tool: Counter[str] = Counter()
    total = 0
    for record in records:
        total += 1
        by_provider[record.provider] += 1
        by_tool[tool_key(record.provider, record.tool_name)] += 1
    return UsageStats(total=total, by_provider=dict(by_provider), by_tool=dict(by_tool))


class UsageLog(ABC):
    """Contract shared by every usage log."""

    async def init(self) -> None:
        """Prepare backing storage."""

    async def close(self) -> None:
        """Flush and release backing resources."""

    async def log(self, record: UsageRecord) -> None:
        """Append a record."""
        logger.info(
            "Tool invoked",
            provider=record.provider,
            tool=record.tool_name,
            subject=record.subject,
            success=record.success,
            latency_ms=record.latency_ms,
            error=record.error_message,
        )
        await self._append(record)

    @abstractmethod
    async def _append(self, record: UsageRecord) -> None:
        ...

    @abstractmethod
    async def stats(self) -> UsageStats:
        """Aggregate counts over every record logged so far."""


class InMemoryUsageLog(UsageLog):
    """Volatile usage log."""

    def __init__(self) -> None:
        self._records: list[UsageRecord] = []

    async def _append(self, record: UsageRecord) -> None:
        self._records.append(record)

    async def stats(self) -> UsageStats:
        return aggregate(self._records)

    @property
    def records(self) -> list[UsageRecord]:
        return list(self._records)


class SQLUsageLog(UsageLog):
    """Usage log backed by the ``tool_usage`` table."""

    def __init__(self, database: Database, owns_database: bool = False) -> None:
        self.database = database
        self._owns_database = owns_database

    async def init(self) -> None:
        await self.database.init()

    async def close(self) -> None:
        if self._owns_database:
            await self.database.close()

    async def _append(self, record: UsageRecord) -> None:
        async with self.database.session_maker() as session:
            session.add(ToolUsageRow(**record.model_dump()))
            await session.commit()

    async def stats(self) -> UsageStats:
        async with self.database.session_maker() as session:
            total = await session.scalar(select(func.count()).select_from(ToolUsageRow))
            provider_rows = await session.execute(
                select(ToolUsageRow.provider, func.count()).group_by(ToolUsageRow.provider)
            )
            tool_rows = await session.execute(
                select(ToolUsageRow.provider, ToolUsageRow.tool_name, func.count())
                .group_by(ToolUsageRow.provider, ToolUsageRow.tool_name)
            )
            by_provider = {provider: count for provider, count in provider_rows}
            by_tool = {
                tool_key(provider, tool_name): count
                for provider, tool_name, count in tool_rows
            }
        return UsageStats(total=total or 0, by_provider=by_provider, by_tool=by_tool)


class FileUsageLog(UsageLog):
    """
    JSON-lines usage log.

    Records are buffered and appended to the file in batches; ``stats``
    and ``close`` flush first.
    """

    def __init__(self, log_path: str = "logs/usage.log", buffer_size: int = 100) -> None:
        self.log_path = Path(log_path)
        self.buffer_size = buffer_size
        self._buffer: list[UsageRecord] = []
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    async def close(self) -> None:
        await self.flush()

    async def _append(self, record: UsageRecord) -> None:
        async with self._lock:
            self._buffer.append(record)
            if len(self._buffer) >= self.buffer_size:
                await self._flush()

    async def _flush(self) -> None:
        """Write buffered records. Caller holds the lock."""
        if not self._buffer:
            return

        pending = self._buffer.copy()
        self._buffer.clear()
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.log_path, "a") as f:
                await f.write("".join(r.model_dump_json() + "\n" for r in pending))
        except OSError:
            # keep the records for the next flush
            self._buffer[:0] = pending
            raise

    async def flush(self) -> None:
        """Public method to flush the buffer."""
        async with self._lock:
            await self._flush()

    async def read(self) -> list[UsageRecord]:
        """Read every flushed record."""
        records: list[UsageRecord] = []
        if not self.log_path.exists():
            return records

        async with aiofiles.open(self.log_path, "r") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(UsageRecord(**json.loads(line)))
                except ValueError:
                    logger.warning("Skipping malformed usage line", path=str(self.log_path))
        return records

    async def stats(self) -> UsageStats:
        await self.flush()
        return aggregate(await self.read())
