"""
api/limiter.py -- Process-wide admission controller (per-client request windows).

Built on the limits package (the engine under slowapi): a fixed-window
strategy over in-memory storage. A client's window opens at its first request
and lasts window_ms; once it expires the next request opens a fresh one, so
windows are not aligned to clock boundaries. Expired keys are dropped by the
storage's own expiry timer, which bounds the size of the client map.

hit() and the window stats that follow it run under one lock so the
remaining count reported for a request is the one that request produced.

State is process-local and starts empty on restart. Several worker processes
each enforce their own limit.

Usage:
    controller = AdmissionController(max_requests=100, window_ms=60_000)
    decision = controller.admit(client_id_from(request))
    if not decision.allowed: ...  # 429
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class Admission:
    """Outcome of one admit() call, also used for the X-RateLimit-* headers."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    @property
    def reset_epoch(self) -> int:
        return math.ceil(self.reset_at)

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_at - now))


class AdmissionController:
    def __init__(
        self,
        max_requests: int = 100,
        window_ms: int = 60_000,
        storage: Optional[Storage] = None,
    ) -> None:
        self.max_requests = max_requests
        # limits counts windows in whole seconds
        self.item = RateLimitItemPerSecond(max_requests, max(1, math.ceil(window_ms / 1000)))
        self.storage = storage if storage is not None else MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)
        self._lock = threading.Lock()

    def now(self) -> float:
        return time.time()

    def admit(self, client_id: str) -> Admission:
        """Count one request for client_id and decide whether it may proceed."""
        with self._lock:
            allowed = self._strategy.hit(self.item, client_id)
            stats = self._strategy.get_window_stats(self.item, client_id)
        return Admission(
            allowed=allowed,
            limit=self.max_requests,
            remaining=stats.remaining,
            reset_at=stats.reset_time,
        )


def client_id_from(request: Request) -> str:
    """Identify the client from proxy headers.

    Prefers CF-Connecting-IP, then the first hop of X-Forwarded-For. Clients
    with neither share the "unknown" bucket. Deployments must sit behind a
    proxy that overwrites these headers, otherwise clients can pick their id.
    """
    cf_ip = request.headers.get("CF-Connecting-IP", "").strip()
    if cf_ip:
        return cf_ip
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return UNKNOWN_CLIENT
