"""
Distributed locking for call session transitions.
Uses Redis for coordination across multiple server instances.

Version: 1.0.0
"""
import asyncio
import logging
import uuid
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class LockAcquisitionError(Exception):
    """Raised when lock acquisition fails."""
    pass


class DistributedLock:
    """
    Redis mutex held while one call session transitions.

    The key expires after ``timeout`` seconds so a crashed instance cannot
    wedge a call, and the random token stored as its value means a holder
    whose lease ran out never deletes a successor's lock.
    """

    # Compare-and-delete; a plain DEL could remove another holder's lease
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: Redis,
        lock_name: str,
        timeout: int = 30,
        retry_attempts: int = 50,
        retry_delay: float = 0.05
    ):
        self.redis_client = redis_client
        self.lock_name = f"lock:{lock_name}"
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

        self.lock_id: Optional[str] = None
        self.acquired: bool = False

    async def acquire(self) -> bool:
        """
        Acquire the lock, retrying with capped backoff.

        Returns:
            True if lock acquired

        Raises:
            LockAcquisitionError: If lock cannot be acquired
        """
        if self.acquired:
            return True

        self.lock_id = str(uuid.uuid4())

        for attempt in range(self.retry_attempts):
            try:
                # SET NX with expiry
                acquired = await self.redis_client.set(
                    self.lock_name,
                    self.lock_id,
                    nx=True,
                    ex=self.timeout
                )
            except RedisError as e:
                logger.error(f"Redis error acquiring lock {self.lock_name}: {e}")
                raise LockAcquisitionError(f"Failed to acquire lock: {e}")

            if acquired:
                self.acquired = True
                logger.debug(
                    f"Lock {self.lock_name} acquired "
                    f"(id={self.lock_id[:8]}, timeout={self.timeout}s)"
                )
                return True

            await asyncio.sleep(min(self.retry_delay * (2 ** min(attempt, 4)), 0.5))

        logger.warning(
            f"Failed to acquire lock {self.lock_name} after {self.retry_attempts} attempts"
        )
        raise LockAcquisitionError(
            f"Could not acquire lock {self.lock_name} after {self.retry_attempts} attempts"
        )

    async def release(self) -> bool:
        """
        Release the lock if we still own it.

        Returns:
            True if lock released
        """
        if not self.acquired or not self.lock_id:
            return False

        try:
            result = await self.redis_client.eval(
                self.RELEASE_SCRIPT,
                1,
                self.lock_name,
                self.lock_id
            )
        except RedisError as e:
            logger.error(f"Redis error releasing lock {self.lock_name}: {e}")
            result = 0
        finally:
            self.acquired = False

        if not result:
            logger.warning(
                f"Lock {self.lock_name} was not released "
                "(expired or acquired by another process)"
            )
        self.lock_id = None
        return bool(result)

    async def __aenter__(self):
        """Async context manager entry."""
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.release()
        return False


__all__ = [
    'DistributedLock',
    'LockAcquisitionError'
]
