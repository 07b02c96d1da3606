# marketplace/tasks/locks.py
"""Non-blocking Redis locks so overlapping beat runs skip instead of piling up"""
import logging
from contextlib import contextmanager

from redis.exceptions import RedisError

from marketplace.config.redis import get_redis

logger = logging.getLogger(__name__)


@contextmanager
def batch_lock(key: str, timeout: int = 3300):
    """Yields True when this run holds the lock, False when another run does.

    If Redis is unreachable the batch still runs: every batch job is idempotent.
    """
    lock = None
    try:
        lock = get_redis().lock(key, timeout=timeout, blocking=False)
        acquired = lock.acquire(blocking=False)
    except RedisError as e:
        logger.warning(f"Redis unavailable for lock {key}, running without it: {e}")
        lock, acquired = None, True

    try:
        yield acquired
    finally:
        if lock is not None and acquired:
            try:
                lock.release()
            except RedisError as e:
                logger.warning(f"Failed to release lock {key}: {e}")
