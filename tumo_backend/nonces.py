# nonces.py
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis


def new_nonce() -> str:
    return secrets.token_urlsafe(18)


# ---------------------------
# In-memory nonce map with TTL
# (OK for 1 process; use Redis for multi-worker)
# ---------------------------
@dataclass
class PendingNonce:
    nonce: str
    expires_at: float


class MemoryNonceStore:
    """At most one outstanding challenge per public key."""

    def __init__(self, ttl_sec: int = 300, clock: Callable[[], float] = time.time):
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._pending: Dict[str, PendingNonce] = {}
        self._lock = threading.Lock()

    def issue(self, public_key: str) -> str:
        nonce = new_nonce()
        with self._lock:
            now = self._clock()
            self._prune(now)
            exp = now + self.ttl_sec if self.ttl_sec > 0 else float("inf")
            self._pending[public_key] = PendingNonce(nonce=nonce, expires_at=exp)
        return nonce

    def consume(self, public_key: str, nonce: str) -> bool:
        with self._lock:
            entry = self._pending.get(public_key)
            if entry is None or entry.nonce != nonce:
                return False
            del self._pending[public_key]
            return entry.expires_at > self._clock()

    def _prune(self, now: float) -> None:
        if self.ttl_sec <= 0:
            return
        expired = [pk for pk, e in self._pending.items() if e.expires_at <= now]
        for pk in expired:
            del self._pending[pk]

    def __len__(self) -> int:
        return len(self._pending)


# Compare-and-delete in one round trip.
_CONSUME_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisNonceStore:
    """Shared nonce store; Redis expiry stands in for the TTL."""

    def __init__(self, client: redis.Redis, ttl_sec: int = 300, prefix: str = "siws:nonce:"):
        self._r = client
        self.ttl_sec = max(1, int(ttl_sec))
        self.prefix = prefix
        self._consume = self._r.register_script(_CONSUME_LUA)

    def _key(self, public_key: str) -> str:
        return self.prefix + public_key

    def issue(self, public_key: str) -> str:
        nonce = new_nonce()
        self._r.set(self._key(public_key), nonce, ex=self.ttl_sec)
        return nonce

    def consume(self, public_key: str, nonce: str) -> bool:
        return int(self._consume(keys=[self._key(public_key)], args=[nonce]) or 0) == 1


def make_nonce_store(redis_url: Optional[str], ttl_sec: int):
    if redis_url:
        client = redis.from_url(redis_url, decode_responses=True)
        print("[siws] nonce store: redis")
        return RedisNonceStore(client, ttl_sec=ttl_sec)
    print("[siws] nonce store: memory (single process only)")
    return MemoryNonceStore(ttl_sec=ttl_sec)
