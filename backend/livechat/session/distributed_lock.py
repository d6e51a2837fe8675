"""
Redis-backed per-session lock.
Serializes read-modify-write of one session document across processes.

Version: 1.0.0
"""
import asyncio
import logging
import uuid
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..utils.retry import RetryConfig, RetryStrategy, calculate_retry_delay

logger = logging.getLogger(__name__)


class LockAcquisitionError(Exception):
    """Raised when lock acquisition fails."""
    pass


class LockReleaseError(Exception):
    """Raised when lock release fails."""
    pass


DEFAULT_ACQUIRE_RETRY = RetryConfig(
    max_attempts=100,
    initial_delay=0.01,
    max_delay=0.2,
    strategy=RetryStrategy.EXPONENTIAL,
    jitter=0.01
)


class DistributedLock:
    """
    Distributed lock using Redis.

    Features:
    - Automatic expiration so a crashed holder cannot wedge a session
    - Unique token per acquisition; only the owner can release or renew
    - Async context manager support

    A lock object is single-use per acquisition; create one per critical
    section.
    """

    # Delete only if we still own it
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    # Extend only if we still own it
    RENEW_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: Redis,
        lock_name: str,
        timeout: int = 10,
        retry: Optional[RetryConfig] = None
    ):
        """
        Initialize distributed lock.

        Args:
            redis_client: Redis client instance
            lock_name: Name of the lock (the locked resource)
            timeout: Lock expiry in seconds
            retry: Acquisition backoff policy
        """
        self.redis_client = redis_client
        self.lock_name = f"lock:{lock_name}"
        self.timeout = timeout
        self.retry = retry or DEFAULT_ACQUIRE_RETRY

        self.lock_id: Optional[str] = None
        self.acquired: bool = False

    async def acquire(self, blocking: bool = True) -> bool:
        """
        Acquire the lock.

        Args:
            blocking: If True, retry until acquired or attempts run out

        Returns:
            True if lock acquired

        Raises:
            LockAcquisitionError: If lock cannot be acquired
        """
        if self.acquired:
            return True

        self.lock_id = uuid.uuid4().hex
        attempts = self.retry.max_attempts if blocking else 1

        for attempt in range(attempts):
            try:
                acquired = await self.redis_client.set(
                    self.lock_name,
                    self.lock_id,
                    nx=True,
                    ex=self.timeout
                )
            except RedisError as e:
                logger.error(f"Redis error acquiring lock {self.lock_name}: {e}")
                raise LockAcquisitionError(f"Failed to acquire lock: {e}") from e

            if acquired:
                self.acquired = True
                logger.debug(f"Lock {self.lock_name} acquired (id={self.lock_id[:8]})")
                return True

            if attempt < attempts - 1:
                await asyncio.sleep(calculate_retry_delay(attempt, self.retry))

        logger.warning(f"Failed to acquire lock {self.lock_name} after {attempts} attempts")
        raise LockAcquisitionError(
            f"Could not acquire lock {self.lock_name} after {attempts} attempts"
        )

    async def release(self) -> bool:
        """
        Release the lock.

        Returns:
            True if released, False if it had expired and been taken over

        Raises:
            LockReleaseError: If Redis fails during release
        """
        if not self.acquired or not self.lock_id:
            return False

        try:
            result = await self.redis_client.eval(
                self.RELEASE_SCRIPT, 1, self.lock_name, self.lock_id
            )
        except RedisError as e:
            logger.error(f"Redis error releasing lock {self.lock_name}: {e}")
            raise LockReleaseError(f"Failed to release lock: {e}") from e
        finally:
            self.acquired = False

        if not result:
            logger.warning(
                f"Lock {self.lock_name} expired before release "
                f"(id={self.lock_id[:8]}); critical section overran {self.timeout}s"
            )
        self.lock_id = None
        return bool(result)

    async def renew(self, additional_time: Optional[int] = None) -> bool:
        """
        Extend the lock expiry.

        Args:
            additional_time: New expiry in seconds (default: original timeout)

        Returns:
            True if renewed
        """
        if not self.acquired or not self.lock_id:
            return False

        timeout = additional_time or self.timeout
        try:
            result = await self.redis_client.eval(
                self.RENEW_SCRIPT, 1, self.lock_name, self.lock_id, str(timeout)
            )
        except RedisError as e:
            logger.error(f"Redis error renewing lock {self.lock_name}: {e}")
            return False
        return bool(result)

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
        return False


__all__ = [
    'DistributedLock',
    'LockAcquisitionError',
    'LockReleaseError',
    'DEFAULT_ACQUIRE_RETRY'
]
