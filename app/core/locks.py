"""
Redis-based distributed locks.

Jobs that must not overlap across workers and hosts (the reconciliation
sweep) hold a lock in Redis. The lock is a single key set with NX and a
TTL, so a crashed holder cannot block the job forever. Each acquisition
writes a random token, and release deletes the key only while it still
holds that token, so a holder whose TTL lapsed cannot release the lock
another worker has since taken.

Usage:
    from core.locks import DistributedLock

    with DistributedLock("billing:reconciliation:lock", ttl=900, blocking=False):
        run_sweep()

    # LockAcquisitionError is raised when another process holds the key
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from core.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


class DistributedLock:
    """
    Redis lock with TTL and token-based ownership.

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Seconds until the lock expires on its own
        blocking: If True, acquire() retries until ``timeout``
        timeout: Maximum wait in seconds for blocking mode
    """

    # Atomic check-and-delete
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    RETRY_INTERVAL_SECONDS = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Take the lock.

        Returns:
            True once the lock is held

        Raises:
            LockAcquisitionError: The lock is held elsewhere (non-blocking)
                or stayed held for ``timeout`` seconds (blocking)
        """
        token = uuid.uuid4().hex
        redis = self._get_redis()

        if self.blocking:
            deadline = time.monotonic() + self.timeout
            while time.monotonic() < deadline:
                if self._try_acquire(redis, token):
                    return True
                time.sleep(self.RETRY_INTERVAL_SECONDS)

            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis, token):
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis, token: str) -> bool:
        if redis.set(self.key, token, nx=True, ex=self.ttl):
            self._token = token
            return True
        return False

    def release(self) -> bool:
        """
        Release the lock if this instance still owns it.

        Returns:
            True if the key was deleted, False if it expired or was never held
        """
        if self._token is None:
            return False

        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.release()
