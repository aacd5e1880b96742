from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock

from starlette.requests import HTTPConnection

MAX_TRACKED_KEYS = 10000


class SlidingWindowLimiter:
    """
    In-memory per-key request limiter. Buckets reset on process restart,
    so this is baseline protection only.
    """

    def __init__(self):
        self._lock = Lock()
        self._buckets: dict[str, deque[float]] = {}

    def check(self, key: str, limit: int, window_sec: float, now_ts: float | None = None) -> tuple[bool, int]:
        now_value = float(now_ts if now_ts is not None else time.time())
        window = max(1.0, float(window_sec))
        with self._lock:
            bucket = self._buckets.setdefault(str(key or "unknown"), deque())
            while bucket and now_value - bucket[0] > window:
                bucket.popleft()

            if len(bucket) >= max(1, int(limit)):
                retry_after = max(1, math.ceil(window - (now_value - bucket[0])))
                return False, retry_after

            bucket.append(now_value)

            if len(self._buckets) > MAX_TRACKED_KEYS:
                stale = [k for k, b in self._buckets.items() if not b or now_value - b[-1] > window]
                for k in stale[:3000]:
                    self._buckets.pop(k, None)

        return True, 0

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


def request_identity(connection: HTTPConnection) -> str:
    """Caller key for HTTP requests and WebSocket connections alike."""
    user_id = str(connection.headers.get("x-user-id") or "").strip()
    if user_id:
        return f"user:{user_id}"
    forwarded_for = str(connection.headers.get("x-forwarded-for") or "").strip()
    if forwarded_for:
        return f"ip:{forwarded_for.split(',')[0].strip() or 'unknown'}"
    if connection.client and connection.client.host:
        return f"ip:{connection.client.host}"
    return "ip:unknown"


limiter = SlidingWindowLimiter()
