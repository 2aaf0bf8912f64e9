"""Integration log -- structured, queryable record of sync attempts and errors.

Two tiers:
- In-memory ring buffer (collections.deque with maxlen): always on, oldest
  entries evicted past LOG_BUFFER_SIZE.
- Persistent LogStore (optional): durable storage with the resolution
  workflow. Writes never happen inside log(); entries are queued and
  written by flush(), which is scheduled on the running event loop when
  auto_flush is enabled. A failed write re-queues the entry until it has
  failed LOG_PERSIST_MAX_ATTEMPTS times, after which it is dropped with a
  structlog error. The queue itself is bounded (LOG_PERSIST_QUEUE_SIZE).
Entries logged while a flush is awaiting the store are not part of that
pass; the flush schedules another one for them when it finishes.

Every entry is mirrored to structlog as ``integration.<category>``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import Counter, deque
from collections.abc import AsyncGenerator, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.erp_sync.config import get_settings
from src.erp_sync.sync.models import IntegrationLogModel
from src.erp_sync.sync.schemas import (
    LogCategory,
    LogContext,
    LogEntry,
    LogFilter,
    LogLevel,
    LogStatistics,
    OperationContext,
)

logger = structlog.get_logger(__name__)


def _compute_statistics(entries: Iterable[LogEntry]) -> LogStatistics:
    errors = [e for e in entries if e.level == LogLevel.ERROR]
    if not errors:
        return LogStatistics()
    resolved = sum(1 for e in errors if e.resolved)
    return LogStatistics(
        total_errors=len(errors),
        by_category=dict(Counter(e.category.value for e in errors)),
        by_day=dict(Counter(e.timestamp.date().isoformat() for e in errors)),
        resolution_rate=resolved / len(errors),
    )


# ── Persistent Tier ─────────────────────────────────────────────────────────


class LogStore(ABC):
    """Durable storage for integration log entries."""

    @abstractmethod
    async def save(self, entry: LogEntry) -> None:
        ...

    @abstractmethod
    async def query(self, filters: LogFilter) -> list[LogEntry]:
        """Entries matching filters, newest first."""
        ...

    @abstractmethod
    async def resolve(self, log_ids: list[str], notes: str | None = None) -> int:
        """Mark entries resolved. Returns the number of entries updated."""
        ...

    @abstractmethod
    async def statistics(self, since: datetime) -> LogStatistics:
        ...


def _model_to_entry(model: IntegrationLogModel) -> LogEntry:
    """Convert IntegrationLogModel to LogEntry schema."""
    return LogEntry(
        id=model.id,
        timestamp=model.timestamp,
        level=LogLevel(model.level),
        category=LogCategory(model.category),
        message=model.message,
        context=model.context_json or {"kind": "operation"},
        resolved=model.resolved,
        resolution_notes=model.resolution_notes,
        resolved_at=model.resolved_at,
    )


class SqlLogStore(LogStore):
    """LogStore backed by the integration_logs table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def save(self, entry: LogEntry) -> None:
        async for session in self._session_factory():
            session.add(
                IntegrationLogModel(
                    id=entry.id,
                    timestamp=entry.timestamp,
                    level=entry.level.value,
                    category=entry.category.value,
                    message=entry.message,
                    context_json=entry.context.model_dump(mode="json"),
                    tenant_id=entry.tenant_id,
                    resolved=entry.resolved,
                    resolution_notes=entry.resolution_notes,
                    resolved_at=entry.resolved_at,
                )
            )
            await session.commit()

    async def query(self, filters: LogFilter) -> list[LogEntry]:
        async for session in self._session_factory():
            stmt = select(IntegrationLogModel)
            if filters.level is not None:
                stmt = stmt.where(IntegrationLogModel.level == filters.level.value)
            if filters.category is not None:
                stmt = stmt.where(IntegrationLogModel.category == filters.category.value)
            if filters.tenant_id is not None:
                stmt = stmt.where(IntegrationLogModel.tenant_id == filters.tenant_id)
            if filters.from_date is not None:
                stmt = stmt.where(IntegrationLogModel.timestamp >= filters.from_date)
            if filters.to_date is not None:
                stmt = stmt.where(IntegrationLogModel.timestamp <= filters.to_date)
            if filters.resolved is not None:
                stmt = stmt.where(IntegrationLogModel.resolved == filters.resolved)
            stmt = stmt.order_by(IntegrationLogModel.timestamp.desc())
            if filters.limit is not None:
                stmt = stmt.limit(filters.limit)
            result = await session.execute(stmt)
            return [_model_to_entry(m) for m in result.scalars().all()]

    async def resolve(self, log_ids: list[str], notes: str | None = None) -> int:
        if not log_ids:
            return 0
        async for session in self._session_factory():
            stmt = (
                update(IntegrationLogModel)
                .where(IntegrationLogModel.id.in_(log_ids))
                .values(
                    resolved=True,
                    resolution_notes=notes,
                    resolved_at=datetime.now(timezone.utc),
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def statistics(self, since: datetime) -> LogStatistics:
        async for session in self._session_factory():
            errors = (
                IntegrationLogModel.level == LogLevel.ERROR.value,
                IntegrationLogModel.timestamp >= since,
            )
            total = (
                await session.execute(
                    select(func.count()).select_from(IntegrationLogModel).where(*errors)
                )
            ).scalar_one()
            if not total:
                return LogStatistics()

            resolved = (
                await session.execute(
                    select(func.count())
                    .select_from(IntegrationLogModel)
                    .where(*errors, IntegrationLogModel.resolved.is_(True))
                )
            ).scalar_one()
            by_category = (
                await session.execute(
                    select(IntegrationLogModel.category, func.count())
                    .where(*errors)
                    .group_by(IntegrationLogModel.category)
                )
            ).all()
            day = func.date(IntegrationLogModel.timestamp)
            by_day = (
                await session.execute(
                    select(day, func.count()).where(*errors).group_by(day)
                )
            ).all()

            return LogStatistics(
                total_errors=total,
                by_category={category: count for category, count in by_category},
                by_day={str(d): count for d, count in by_day},
                resolution_rate=resolved / total,
            )


# ── Integration Log ─────────────────────────────────────────────────────────


@dataclass
class _PendingWrite:
    entry: LogEntry
    attempts: int = 0


class IntegrationLog:
    """Ring-buffered integration log with an optional persistent tier.

    Args:
        store: Optional persistent LogStore.
        buffer_size: Ring buffer capacity. Defaults to LOG_BUFFER_SIZE.
        max_persist_attempts: Write attempts per entry before dropping it.
        queue_size: Capacity of the pending-write queue.
        auto_flush: Schedule flush() on the running loop after each log().
    """

    def __init__(
        self,
        store: LogStore | None = None,
        *,
        buffer_size: int | None = None,
        max_persist_attempts: int | None = None,
        queue_size: int | None = None,
        auto_flush: bool = True,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._buffer: deque[LogEntry] = deque(maxlen=buffer_size or settings.LOG_BUFFER_SIZE)
        self._pending: deque[_PendingWrite] = deque(
            maxlen=queue_size or settings.LOG_PERSIST_QUEUE_SIZE
        )
        self._max_attempts = max_persist_attempts or settings.LOG_PERSIST_MAX_ATTEMPTS
        self._auto_flush = auto_flush
        self._flush_task: asyncio.Task | None = None
        self._flushing = False
        self._arrived_during_flush = 0

    # ── Writing ─────────────────────────────────────────────────────────

    def log(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        context: LogContext | None = None,
    ) -> LogEntry:
        """Append an entry. Never blocks and never raises on persistence."""
        entry = LogEntry(
            level=level,
            category=category,
            message=message,
            context=context or OperationContext(),
        )
        self._buffer.append(entry)
        self._emit(entry)

        if self._store is not None:
            if len(self._pending) == self._pending.maxlen:
                logger.warning(
                    "integration_log.persist_queue_full",
                    dropped_log_id=self._pending[0].entry.id,
                )
            self._pending.append(_PendingWrite(entry))
            if self._flushing:
                self._arrived_during_flush += 1
            if self._auto_flush:
                self._schedule_flush()
        return entry

    def error(self, category: LogCategory, message: str, context: LogContext | None = None) -> LogEntry:
        return self.log(LogLevel.ERROR, category, message, context)

    def warning(self, category: LogCategory, message: str, context: LogContext | None = None) -> LogEntry:
        return self.log(LogLevel.WARNING, category, message, context)

    def info(self, category: LogCategory, message: str, context: LogContext | None = None) -> LogEntry:
        return self.log(LogLevel.INFO, category, message, context)

    def debug(self, category: LogCategory, message: str, context: LogContext | None = None) -> LogEntry:
        return self.log(LogLevel.DEBUG, category, message, context)

    def _emit(self, entry: LogEntry) -> None:
        context = entry.context.model_dump(exclude_none=True, exclude_defaults=True)
        emit = getattr(logger, entry.level.value)
        emit(
            f"integration.{entry.category.value}",
            message=entry.message,
            log_id=entry.id,
            context_kind=entry.context.kind,
            **context,
        )

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: entries wait for an explicit flush()
            return
        if (
            self._flush_task is None
            or self._flush_task.done()
            or self._flush_task is asyncio.current_task()
        ):
            self._flush_task = loop.create_task(self.flush())

    async def flush(self) -> int:
        """Write queued entries to the store. Returns the number persisted."""
        if self._store is None:
            return 0

        persisted = 0
        self._flushing = True
        self._arrived_during_flush = 0
        try:
            for _ in range(len(self._pending)):
                if not self._pending:
                    break
                pending = self._pending.popleft()
                try:
                    await self._store.save(pending.entry)
                    persisted += 1
                except Exception as exc:
                    pending.attempts += 1
                    if pending.attempts >= self._max_attempts:
                        logger.error(
                            "integration_log.persist_dropped",
                            log_id=pending.entry.id,
                            attempts=pending.attempts,
                            error=str(exc),
                        )
                    else:
                        logger.warning(
                            "integration_log.persist_failed",
                            log_id=pending.entry.id,
                            attempts=pending.attempts,
                            error=str(exc),
                        )
                        self._pending.append(pending)
        finally:
            self._flushing = False

        # Re-queued failures alone do not trigger another pass
        if self._arrived_during_flush and self._auto_flush:
            self._arrived_during_flush = 0
            self._schedule_flush()
        return persisted

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    # ── Reading ─────────────────────────────────────────────────────────

    def query(self, filters: LogFilter | None = None) -> list[LogEntry]:
        """Query the in-memory buffer, newest first."""
        filters = filters or LogFilter()
        matches = [e for e in reversed(self._buffer) if filters.matches(e)]
        if filters.limit is not None:
            matches = matches[: filters.limit]
        return matches

    async def query_persisted(self, filters: LogFilter | None = None) -> list[LogEntry]:
        """Query the persistent tier, or the buffer when none is configured."""
        filters = filters or LogFilter()
        if self._store is None:
            return self.query(filters)
        return await self._store.query(filters)

    async def resolve(self, log_id: str, notes: str | None = None) -> bool:
        """Mark one entry resolved. Returns False if it is not known."""
        return await self.bulk_resolve([log_id], notes) > 0

    async def bulk_resolve(self, log_ids: list[str], notes: str | None = None) -> int:
        """Mark entries resolved in both tiers. Returns the number resolved."""
        wanted = set(log_ids)
        now = datetime.now(timezone.utc)
        resolved_ids: set[str] = set()
        for entry in self._buffer:
            if entry.id in wanted:
                entry.resolved = True
                entry.resolution_notes = notes
                entry.resolved_at = now
                resolved_ids.add(entry.id)

        if self._store is None:
            return len(resolved_ids)

        stored = await self._store.resolve(list(wanted), notes)
        logger.info("integration_log.resolved", count=max(stored, len(resolved_ids)))
        return max(stored, len(resolved_ids))

    async def statistics(self, timeframe_days: int = 7) -> LogStatistics:
        """Error rollup over the last ``timeframe_days`` days."""
        since = datetime.now(timezone.utc) - timedelta(days=timeframe_days)
        if self._store is not None:
            return await self._store.statistics(since)
        return _compute_statistics(e for e in self._buffer if e.timestamp >= since)

    def __len__(self) -> int:
        return len(self._buffer)
