"""
Redis-backed session store implementation.
Shared, durable storage when Redis persistence is enabled.

Version: 1.0.0
"""
import logging
from typing import Dict, Any, Iterable, Optional, List
from datetime import datetime, timedelta

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import (
    RedisError,
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError
)

from .session_store import SessionStore, Mutator
from .distributed_lock import DistributedLock
from ..models.chat import AdminPresence, ChatSession, SessionStatus, ensure_utc, utc_now
from ..utils.retry import async_retry, RetryConfig, RetryStrategy

logger = logging.getLogger(__name__)

_REDIS_RETRY = RetryConfig(
    max_attempts=3,
    initial_delay=0.1,
    max_delay=2.0,
    strategy=RetryStrategy.EXPONENTIAL,
    retry_on_exceptions=(RedisConnectionError, RedisTimeoutError)
)


class RedisSessionStore(SessionStore):
    """
    Redis-backed implementation of SessionStore.

    Layout (with the default ``chat:`` prefix):
    - ``chat:session:<id>``  JSON session document
    - ``chat:sessions``      sorted set of ids scored by last activity
    - ``chat:presence``      hash admin_id -> ISO heartbeat time

    ``modify`` holds a DistributedLock on the session for the whole
    read-modify-write, so writers in different processes serialize too.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: str = "chat:",
        lock_timeout: int = 10,
        max_connections: int = 50,
        socket_timeout: int = 5,
        socket_connect_timeout: int = 5,
        health_check_interval: int = 30
    ):
        """
        Initialize Redis session store.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for every key
            lock_timeout: Per-session lock expiry in seconds
            max_connections: Maximum connection pool size
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds
            health_check_interval: Connection health check interval in seconds
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.lock_timeout = lock_timeout

        self.pool = redis.ConnectionPool.from_url(
            redis_url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            retry_on_timeout=True,
            decode_responses=True,
            health_check_interval=health_check_interval,
            socket_keepalive=True
        )
        self.client: Optional[Redis] = None
        self._writes = 0

        logger.info(
            f"RedisSessionStore initialized "
            f"(prefix={key_prefix}, lock_timeout={lock_timeout}s)"
        )

    async def _ensure_connection(self) -> Redis:
        """Create the client on first use."""
        if self.client is None:
            self.client = Redis(connection_pool=self.pool)
        return self.client

    def _session_key(self, session_id: str) -> str:
        return f"{self.key_prefix}session:{session_id}"

    def _index_key(self) -> str:
        return f"{self.key_prefix}sessions"

    def _presence_key(self) -> str:
        return f"{self.key_prefix}presence"

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[ChatSession]:
        if raw is None:
            return None
        return ChatSession.from_document(raw)

    @async_retry(_REDIS_RETRY)
    async def get(self, session_id: str) -> Optional[ChatSession]:
        client = await self._ensure_connection()
        return self._decode(await client.get(self._session_key(session_id)))

    async def modify(self, session_id: str, mutator: Mutator) -> ChatSession:
        client = await self._ensure_connection()
        key = self._session_key(session_id)

        async with DistributedLock(client, key, timeout=self.lock_timeout):
            current = self._decode(await client.get(key))
            updated = mutator(current)

            if updated is current:
                return current

            if updated.id != session_id:
                raise ValueError(f"Mutator changed session id {session_id} -> {updated.id}")

            async with client.pipeline(transaction=True) as pipe:
                pipe.set(key, updated.model_dump_json(by_alias=True))
                pipe.zadd(self._index_key(), {session_id: updated.last_activity_at.timestamp()})
                await pipe.execute()

            self._writes += 1
            logger.debug(f"Stored session {session_id} ({updated.status.value})")
            return updated

    @async_retry(_REDIS_RETRY)
    async def list_sessions(
        self,
        statuses: Optional[Iterable[SessionStatus]] = None
    ) -> List[ChatSession]:
        client = await self._ensure_connection()
        wanted = set(statuses) if statuses is not None else None

        session_ids = await client.zrevrange(self._index_key(), 0, -1)
        if not session_ids:
            return []

        raw_documents = await client.mget([self._session_key(sid) for sid in session_ids])
        sessions = []
        for raw in raw_documents:
            session = self._decode(raw)
            if session is None:
                continue
            if wanted is None or session.status in wanted:
                sessions.append(session)
        return sessions

    async def delete(self, session_id: str) -> bool:
        client = await self._ensure_connection()
        async with client.pipeline(transaction=True) as pipe:
            pipe.delete(self._session_key(session_id))
            pipe.zrem(self._index_key(), session_id)
            deleted, _ = await pipe.execute()
        return bool(deleted)

    async def cleanup_expired(self, retention_seconds: int) -> int:
        client = await self._ensure_connection()
        cutoff = (utc_now() - timedelta(seconds=retention_seconds)).timestamp()

        candidates = await client.zrangebyscore(self._index_key(), "-inf", cutoff)
        removed = 0
        for session_id in candidates:
            session = await self.get(session_id)
            if session is None:
                await client.zrem(self._index_key(), session_id)
                continue
            if session.status == SessionStatus.RESOLVED and await self.delete(session_id):
                removed += 1

        if removed:
            logger.info(f"Cleaned up {removed} expired sessions")
        return removed

    async def record_heartbeat(
        self,
        admin_id: str,
        at: Optional[datetime] = None
    ) -> AdminPresence:
        client = await self._ensure_connection()
        presence = AdminPresence(
            admin_id=admin_id,
            last_heartbeat_at=ensure_utc(at) if at is not None else utc_now()
        )
        await client.hset(self._presence_key(), admin_id, presence.last_heartbeat_at.isoformat())
        return presence

    async def get_presence(self, admin_id: str) -> Optional[AdminPresence]:
        client = await self._ensure_connection()
        raw = await client.hget(self._presence_key(), admin_id)
        if raw is None:
            return None
        return AdminPresence(admin_id=admin_id, last_heartbeat_at=datetime.fromisoformat(raw))

    async def list_presence(self) -> List[AdminPresence]:
        client = await self._ensure_connection()
        entries = await client.hgetall(self._presence_key())
        return [
            AdminPresence(admin_id=admin_id, last_heartbeat_at=datetime.fromisoformat(raw))
            for admin_id, raw in entries.items()
        ]

    async def get_stats(self) -> Dict[str, Any]:
        client = await self._ensure_connection()
        stats: Dict[str, Any] = {
            "store_type": "redis",
            "key_prefix": self.key_prefix,
            "writes": self._writes
        }
        try:
            stats["total_sessions"] = await client.zcard(self._index_key())
            by_status = {status.value: 0 for status in SessionStatus}
            for session in await self.list_sessions():
                by_status[session.status.value] += 1
            stats["sessions_by_status"] = by_status
            stats["known_admins"] = await client.hlen(self._presence_key())
            info = await client.info("server")
            stats["redis_version"] = info.get("redis_version")
        except RedisError as e:
            logger.error(f"Failed to get Redis stats: {e}")
            stats["error"] = str(e)
        return stats

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            client = await self._ensure_connection()
            return bool(await client.ping())
        except RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ping():
            return {"healthy": False, "error": "redis unreachable"}
        return await super().health_check()

    async def close(self) -> None:
        """Close Redis connections."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None
        await self.pool.disconnect()
        logger.info("Redis session store closed")


__all__ = ['RedisSessionStore']
