from __future__ import annotations

import time
from collections import deque
from threading import Lock

from fastapi import HTTPException, Request

from immobilier.config import trust_proxy_headers


def client_address(request: Request) -> str:
    """
    Client address for throttling. X-Forwarded-For is honoured only when
    TRUST_PROXY_HEADERS is set, and then its first hop wins.
    """
    if trust_proxy_headers():
        fwd = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
        if fwd:
            return fwd
    return request.client.host if request.client else "unknown"


class LoginThrottle:
    """
    In-memory sliding window of failed login attempts per (scope, client address).

    Per-process only; multi-instance deployments need a shared store (e.g. Redis).
    """

    def __init__(self, *, window_seconds: int = 60) -> None:
        self.window_seconds = int(window_seconds)
        self._lock = Lock()
        self._failures: dict[str, deque[float]] = {}

    def _prune(self, key: str, now: float) -> deque[float] | None:
        q = self._failures.get(key)
        if q is None:
            return None
        win_start = now - float(self.window_seconds)
        while q and q[0] < win_start:
            q.popleft()
        if not q:
            del self._failures[key]
            return None
        return q

    def check(self, request: Request, *, scope: str, limit: int) -> None:
        key = f"{scope}:{client_address(request)}"
        with self._lock:
            q = self._prune(key, time.monotonic())
            if q is not None and len(q) >= int(limit):
                raise HTTPException(status_code=429, detail="Too many login attempts. Try again later.")

    def record_failure(self, request: Request, *, scope: str) -> None:
        key = f"{scope}:{client_address(request)}"
        now = time.monotonic()
        with self._lock:
            q = self._prune(key, now)
            if q is None:
                q = self._failures[key] = deque()
            q.append(now)

    def tracked_keys(self) -> int:
        with self._lock:
            now = time.monotonic()
            for key in list(self._failures):
                self._prune(key, now)
            return len(self._failures)

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()


login_throttle = LoginThrottle()
