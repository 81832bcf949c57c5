"""
Study Portal Backend — Primary Store Client
=============================================

What:  Async wrapper around the primary document database.
How:   SQLAlchemy 2.0 async engine (asyncpg for PostgreSQL). The engine is
       created in connect(), never at import time. Every query/write runs
       through `_run()`, which bounds it with asyncio.wait_for and turns any
       driver/database failure into PrimaryUnavailableError.
Who:   ConnectionMonitor (connect), ReconciliationEngine (upserts, replayed
       deletes, mirror refresh), DocumentService (reads, mirrored writes).

Failure semantics:
    connect()         never raises; returns ConnectResult(connected=False, error=...)
    any other call    raises PrimaryUnavailableError after flipping both the
                      client's link flag and SyncState.primary_reachable to False

    Reachability is only restored by the connection monitor, after it has
    reconciled pending local records. A successful connect() alone does not
    route reads back to this store.

Retry policy (tenacity, connect only):
    stop:  PRIMARY_CONNECT_ATTEMPTS attempts
    wait:  exponential backoff with jitter from PRIMARY_CONNECT_RETRY_WAIT
    Queries are not retried: the caller falls back to the local store instead.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from studyportal.config import Settings, settings as default_settings
from studyportal.database import Base, create_primary_engine
from studyportal.exceptions import PrimaryUnavailableError
from studyportal.models.document import DocumentRecord
from studyportal.schemas.document import Document, DocumentOrigin
from studyportal.services.sync_state import SyncState

logger = logging.getLogger(__name__)

# Failures that mean "the primary cannot serve this call right now".
# asyncio.TimeoutError is listed separately for interpreters where it is not
# an OSError subclass.
TRANSIENT_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

# Columns a find()/count_by() filter may reference
FILTERABLE_FIELDS = {"id", "type"}


@dataclass
class ConnectResult:
    """Outcome of one connect() call."""
    connected: bool
    error: Optional[str] = None
    attempts: int = 0


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    message = str(error).strip().splitlines()[0] if str(error).strip() else ""
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class PrimaryStoreClient:
    """
    Connection owner and query surface for the `documents` table.

    Example:
        client = PrimaryStoreClient(state)
        result = await client.connect()
        if result.connected:
            docs = await client.find({"type": "material"})
    """

    def __init__(
        self,
        state: SyncState,
        app_settings: Optional[Settings] = None,
        database_url: Optional[str] = None,
    ):
        self.settings = app_settings or default_settings
        self.database_url = (
            database_url if database_url is not None else self.settings.primary_database_url
        )
        self.state = state
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._connected = False

    @property
    def enabled(self) -> bool:
        return bool(self.database_url)

    def is_reachable(self) -> bool:
        """Whether the last connect/operation left the link up."""
        return self._connected

    # ── Connection Lifecycle ──────────────────────────────────────────────

    async def connect(self) -> ConnectResult:
        """
        Open (or reopen) the engine and verify it with a round trip.

        Never raises. On failure the shared state is marked unreachable and
        the reason is returned.
        """
        if not self.enabled:
            return ConnectResult(connected=False, error="primary database not configured")

        cfg = self.settings
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(cfg.primary_connect_attempts),
                wait=wait_exponential_jitter(
                    initial=cfg.primary_connect_retry_wait,
                    max=max(cfg.primary_connect_retry_wait * 4, 1.0),
                ),
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await asyncio.wait_for(self._open_engine(), timeout=cfg.primary_connect_timeout)
        except Exception as e:
            reason = _describe(e)
            self._connected = False
            self.state.mark_unreachable(reason)
            logger.warning("Primary database connection failed after %d attempt(s): %s", attempts, reason)
            return ConnectResult(connected=False, error=reason, attempts=attempts)

        self._connected = True
        logger.info("Connected to primary database (%s)", self._safe_url())
        return ConnectResult(connected=True, attempts=attempts)

    async def _open_engine(self) -> None:
        await self._dispose()
        engine, session_factory = create_primary_engine(
            self.database_url,
            self.settings.primary_connect_timeout,
            self.settings,
        )
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                if self.settings.primary_auto_create_schema:
                    await conn.run_sync(Base.metadata.create_all)
        except BaseException:
            await engine.dispose()
            raise
        self._engine = engine
        self._session_factory = session_factory

    async def _dispose(self) -> None:
        engine, self._engine, self._session_factory = self._engine, None, None
        if engine is not None:
            try:
                await engine.dispose()
            except TRANSIENT_ERRORS as e:
                logger.debug("Ignoring error while disposing primary engine: %s", e)

    async def disconnect(self) -> None:
        """Close all pooled connections and mark the primary unreachable."""
        await self._dispose()
        if self._connected:
            logger.info("Disconnected from primary database")
        self._connected = False
        self.state.mark_unreachable("disconnected")

    def _safe_url(self) -> str:
        return make_url(self.database_url).render_as_string(hide_password=True)

    # ── Operation Wrapper ─────────────────────────────────────────────────

    def _open_session(self) -> AsyncSession:
        return self._session_factory()

    def _mark_down(self, reason: str) -> None:
        self._connected = False
        self.state.mark_unreachable(reason)

    async def _run(
        self,
        operation: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """
        Run `fn(session, *args)` with the operation timeout.

        Raises:
            PrimaryUnavailableError: not connected, timed out, or database error.
        """
        if not self._connected or self._session_factory is None:
            raise PrimaryUnavailableError(
                message="Primary database is not connected",
                context={"operation": operation},
            )
        try:
            async with self._open_session() as session:
                return await asyncio.wait_for(
                    fn(session, *args),
                    timeout=self.settings.primary_operation_timeout,
                )
        except TRANSIENT_ERRORS as e:
            reason = _describe(e)
            logger.warning("Primary %s failed: %s", operation, reason)
            self._mark_down(reason)
            raise PrimaryUnavailableError(context={"operation": operation, "error": reason})

    # ── Conversions ───────────────────────────────────────────────────────

    @staticmethod
    def to_document(record: DocumentRecord) -> Document:
        return Document(
            id=record.id,
            name=record.name or "",
            display_name=record.display_name,
            filename=record.filename,
            path=record.path,
            type=record.type,
            icon=record.icon,
            color=record.color,
            date_added=record.date_added,
            size_bytes=record.size_bytes,
            synced=True,
            origin=DocumentOrigin.PRIMARY,
        )

    @staticmethod
    def to_record(document: Document) -> DocumentRecord:
        return DocumentRecord(
            id=document.id,
            name=document.name,
            display_name=document.display_name,
            filename=document.filename,
            path=document.path,
            type=document.type,
            icon=document.icon,
            color=document.color,
            date_added=document.date_added,
            size_bytes=document.size_bytes,
        )

    @staticmethod
    def _apply_filter(stmt, filter: Optional[Dict[str, Any]]):
        for key, value in (filter or {}).items():
            if key not in FILTERABLE_FIELDS:
                raise ValueError(f"Unsupported filter field '{key}'")
            if value is None:
                continue
            stmt = stmt.where(getattr(DocumentRecord, key) == value)
        return stmt

    # ── Queries ───────────────────────────────────────────────────────────

    async def find(self, filter: Optional[Dict[str, Any]] = None) -> List[Document]:
        """Documents matching `filter` (e.g. {"type": "material"}), newest first."""
        stmt = self._apply_filter(select(DocumentRecord), filter).order_by(
            DocumentRecord.date_added.desc()
        )

        async def _find(session: AsyncSession) -> List[Document]:
            result = await session.execute(stmt)
            return [self.to_document(row) for row in result.scalars().all()]

        return await self._run("find", _find)

    async def get_by_id(self, document_id: str) -> Optional[Document]:
        async def _get(session: AsyncSession) -> Optional[Document]:
            record = await session.get(DocumentRecord, document_id)
            return self.to_document(record) if record is not None else None

        return await self._run("get_by_id", _get)

    async def count_by(self, filter: Optional[Dict[str, Any]] = None) -> int:
        stmt = self._apply_filter(select(func.count()).select_from(DocumentRecord), filter)

        async def _count(session: AsyncSession) -> int:
            result = await session.execute(stmt)
            return int(result.scalar_one())

        return await self._run("count_by", _count)

    async def count_grouped(self) -> Dict[str, int]:
        """Document count per type in a single query."""
        stmt = select(DocumentRecord.type, func.count()).group_by(DocumentRecord.type)

        async def _grouped(session: AsyncSession) -> Dict[str, int]:
            result = await session.execute(stmt)
            return {doc_type: int(count) for doc_type, count in result.all()}

        return await self._run("count_grouped", _grouped)

    # ── Writes ────────────────────────────────────────────────────────────

    async def insert_many(self, documents: Iterable[Document]) -> int:
        """
        Upsert documents by id in one transaction.

        Re-inserting an existing id overwrites that row, so replaying the same
        batch any number of times leaves one row per id.
        """
        records = [self.to_record(doc) for doc in documents]
        if not records:
            return 0

        async def _insert(session: AsyncSession) -> int:
            for record in records:
                await session.merge(record)
            await session.commit()
            return len(records)

        count = await self._run("insert_many", _insert)
        logger.info("Primary: upserted %d document(s)", count)
        return count

    async def delete_by_id(self, document_id: str) -> bool:
        """Returns True when a row was deleted."""
        async def _delete(session: AsyncSession) -> bool:
            result = await session.execute(
                delete(DocumentRecord).where(DocumentRecord.id == document_id)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

        return await self._run("delete_by_id", _delete)

    async def delete_many(self, ids: Iterable[str]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0

        async def _delete(session: AsyncSession) -> int:
            result = await session.execute(
                delete(DocumentRecord).where(DocumentRecord.id.in_(id_list))
            )
            await session.commit()
            return result.rowcount or 0

        count = await self._run("delete_many", _delete)
        logger.info("Primary: deleted %d of %d requested document(s)", count, len(id_list))
        return count
