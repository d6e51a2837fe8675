"""
SQL session store implementation.
Durable storage on SQLite (aiosqlite) or PostgreSQL (asyncpg).

Version: 1.0.0
"""
import asyncio
import logging
from typing import Dict, Any, Iterable, Optional, List
from datetime import datetime, timedelta

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm.exc import StaleDataError

from .session_store import SessionStore, Mutator
from ..database import (
    create_database_engine,
    create_session_factory,
    init_db,
    check_db_connection,
    get_database_info,
    dispose_engine,
)
from ..models.chat import AdminPresence, ChatSession, SessionStatus, ensure_utc, utc_now
from ..models.records import AdminPresenceRecord, ChatSessionRecord
from ..utils.retry import RetryConfig, RetryStrategy, async_retry

logger = logging.getLogger(__name__)

# Raised when another writer got there first
_CONFLICT_ERRORS = (StaleDataError, IntegrityError, OperationalError)


class SqlSessionStore(SessionStore):
    """
    SQLAlchemy implementation of SessionStore.

    Features:
    - One row per session holding the full JSON document
    - Optimistic concurrency through a version column; a conflicting
      write is retried against the fresh row
    - Per-session asyncio locks so writers in this process never conflict
    """

    def __init__(
        self,
        database_url: str = "sqlite:///./data/livechat.db",
        echo: bool = False,
        max_retries: int = 5,
        engine: Optional[AsyncEngine] = None
    ):
        """
        Initialize SQL session store.

        Args:
            database_url: Database URL (plain or async driver form)
            echo: Echo SQL statements
            max_retries: Attempts for a contended write
            engine: Pre-built engine (tests)
        """
        self.engine = engine or create_database_engine(database_url, echo=echo)
        self.session_factory = create_session_factory(self.engine)
        self.retry_config = RetryConfig(
            max_attempts=max_retries,
            initial_delay=0.01,
            max_delay=0.5,
            strategy=RetryStrategy.EXPONENTIAL,
            jitter=0.01,
            retry_on_exceptions=_CONFLICT_ERRORS
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._conflicts = 0

        logger.info(f"SqlSessionStore initialized (dialect={self.engine.dialect.name})")

    async def initialize(self) -> None:
        """Create tables once."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            await init_db(self.engine)
            self._initialized = True

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        return lock

    @staticmethod
    def _to_session(record: Optional[ChatSessionRecord]) -> Optional[ChatSession]:
        if record is None:
            return None
        return ChatSession.from_document(record.document)

    async def get(self, session_id: str) -> Optional[ChatSession]:
        await self.initialize()
        async with self.session_factory() as db:
            record = await db.get(ChatSessionRecord, session_id)
            return self._to_session(record)

    async def modify(self, session_id: str, mutator: Mutator) -> ChatSession:
        await self.initialize()
        async with self._lock_for(session_id):
            attempt = async_retry(self.retry_config)(self._modify_once)
            return await attempt(session_id, mutator)

    async def _modify_once(self, session_id: str, mutator: Mutator) -> ChatSession:
        async with self.session_factory() as db:
            record = await db.get(ChatSessionRecord, session_id)
            current = self._to_session(record)
            updated = mutator(current)

            if updated is current:
                return current

            if updated.id != session_id:
                raise ValueError(f"Mutator changed session id {session_id} -> {updated.id}")

            if record is None:
                record = ChatSessionRecord(id=session_id)
                db.add(record)

            record.status = updated.status.value
            record.assigned_admin_id = updated.assigned_admin_id
            record.last_activity_at = updated.last_activity_at
            record.document = updated.to_document()

            try:
                await db.commit()
            except _CONFLICT_ERRORS:
                self._conflicts += 1
                await db.rollback()
                raise

            logger.debug(f"Stored session {session_id} (version={record.version})")
            return updated

    async def list_sessions(
        self,
        statuses: Optional[Iterable[SessionStatus]] = None
    ) -> List[ChatSession]:
        await self.initialize()
        stmt = select(ChatSessionRecord).order_by(ChatSessionRecord.last_activity_at.desc())
        if statuses is not None:
            stmt = stmt.where(ChatSessionRecord.status.in_([s.value for s in statuses]))

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return [self._to_session(record) for record in result.scalars()]

    async def delete(self, session_id: str) -> bool:
        await self.initialize()
        async with self.session_factory() as db:
            result = await db.execute(
                delete(ChatSessionRecord).where(ChatSessionRecord.id == session_id)
            )
            await db.commit()
        self._session_locks.pop(session_id, None)
        return result.rowcount > 0

    async def cleanup_expired(self, retention_seconds: int) -> int:
        await self.initialize()
        cutoff = utc_now() - timedelta(seconds=retention_seconds)

        # SQLite returns naive datetimes, so the age check runs in Python
        async with self.session_factory() as db:
            result = await db.execute(
                select(ChatSessionRecord.id, ChatSessionRecord.last_activity_at).where(
                    ChatSessionRecord.status == SessionStatus.RESOLVED.value
                )
            )
            expired = [
                row.id for row in result
                if ensure_utc(row.last_activity_at) < cutoff
            ]

            if expired:
                await db.execute(
                    delete(ChatSessionRecord).where(ChatSessionRecord.id.in_(expired))
                )
                await db.commit()

        for session_id in expired:
            self._session_locks.pop(session_id, None)

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired sessions")
        return len(expired)

    async def record_heartbeat(
        self,
        admin_id: str,
        at: Optional[datetime] = None
    ) -> AdminPresence:
        await self.initialize()
        presence = AdminPresence(
            admin_id=admin_id,
            last_heartbeat_at=ensure_utc(at) if at is not None else utc_now()
        )

        async with self.session_factory() as db:
            # Last write wins; merge upserts by primary key
            await db.merge(AdminPresenceRecord(
                admin_id=presence.admin_id,
                last_heartbeat_at=presence.last_heartbeat_at
            ))
            await db.commit()

        return presence

    async def get_presence(self, admin_id: str) -> Optional[AdminPresence]:
        await self.initialize()
        async with self.session_factory() as db:
            record = await db.get(AdminPresenceRecord, admin_id)
            if record is None:
                return None
            return AdminPresence(admin_id=record.admin_id, last_heartbeat_at=record.last_heartbeat_at)

    async def list_presence(self) -> List[AdminPresence]:
        await self.initialize()
        async with self.session_factory() as db:
            result = await db.execute(select(AdminPresenceRecord))
            return [
                AdminPresence(admin_id=r.admin_id, last_heartbeat_at=r.last_heartbeat_at)
                for r in result.scalars()
            ]

    async def get_stats(self) -> Dict[str, Any]:
        await self.initialize()
        async with self.session_factory() as db:
            result = await db.execute(
                select(ChatSessionRecord.status, func.count()).group_by(ChatSessionRecord.status)
            )
            by_status = {status.value: 0 for status in SessionStatus}
            for status, count in result:
                by_status[status] = count

            admins = await db.scalar(select(func.count()).select_from(AdminPresenceRecord))

        return {
            "store_type": "sql",
            "total_sessions": sum(by_status.values()),
            "sessions_by_status": by_status,
            "known_admins": admins or 0,
            "write_conflicts": self._conflicts,
            "database": get_database_info(self.engine)
        }

    async def health_check(self) -> Dict[str, Any]:
        if not await check_db_connection(self.engine, max_retries=1):
            return {"healthy": False, "error": "database unreachable"}
        return await super().health_check()

    async def close(self) -> None:
        await dispose_engine(self.engine)


__all__ = ['SqlSessionStore']
