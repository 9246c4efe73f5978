"""
Best-effort distributed lock on top of Redis.

Provides:
- acquire_lock: SET key token PX ttl NX, never blocks or retries
- release_lock: compare-and-delete via Lua so only the token holder releases

Known limitation: a run that outlives the TTL lets another instance acquire
the same key while the first is still executing. There is no fencing token.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
end
return 0
"""


@dataclass(frozen=True)
class RedisLock:
    """A held lock: the key and the token proving ownership."""
    key: str
    token: str


async def acquire_lock(redis: Redis, key: str, ttl_ms: int) -> Optional[RedisLock]:
    """
    Try to take the lock once.

    Args:
        redis: Async Redis client
        key: Lock key
        ttl_ms: Expiry in milliseconds

    Returns:
        RedisLock on success, None if the key is held or Redis failed.
    """
    token = uuid.uuid4().hex
    try:
        acquired = await redis.set(key, token, px=max(int(ttl_ms), 1), nx=True)
    except RedisError as e:
        logger.error(f"[Ingestion] Failed to acquire Redis lock {key}: {e}", extra={"key": key})
        return None

    if acquired:
        return RedisLock(key=key, token=token)
    return None


async def release_lock(redis: Redis, lock: Optional[RedisLock]) -> bool:
    """
    Release a lock if it is still ours.

    Failures are logged, not raised; the key expires through its TTL.

    Returns:
        True if the key was deleted.
    """
    if lock is None:
        return False

    try:
        deleted = await redis.eval(RELEASE_SCRIPT, 1, lock.key, lock.token)
    except RedisError as e:
        logger.error(
            f"[Ingestion] Failed to release Redis lock {lock.key}: {e}",
            extra={"key": lock.key},
        )
        return False

    if not deleted:
        logger.debug(f"[Ingestion] Lock {lock.key} no longer owned; left to expire")
    return bool(deleted)
