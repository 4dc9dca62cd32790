from contextlib import contextmanager
import time
import uuid
from dietbot.store.redis_conn import get_redis

class LockUnavailable(RuntimeError):
    pass

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

@contextmanager
def user_lock(user_id: str, ttl_ms: int = 10000, retries: int = 20, wait_sec: float = 0.05):
    """
    Distributed lock to ensure a single writer per user conversation.
    Raises LockUnavailable when the lock cannot be taken within the retry budget.
    """
    r = get_redis()
    key = f"lock:user:{user_id}"
    token = uuid.uuid4().hex
    acquired = r.set(key, token, px=ttl_ms, nx=True)

    try:
        if not acquired:
            for _ in range(retries):
                time.sleep(wait_sec)
                if r.set(key, token, px=ttl_ms, nx=True):
                    acquired = True
                    break

            if not acquired:
                raise LockUnavailable(f"Could not acquire lock for user {user_id}")

        yield
    finally:
        if acquired:
            # Release only if we own it
            try:
                r.eval(_RELEASE_SCRIPT, 1, key, token)
            except Exception:
                pass
