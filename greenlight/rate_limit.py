# ─────────────────────────────────────────────────────────────────────────────
# Rate Limiter: per-client token buckets + middleware
# ─────────────────────────────────────────────────────────────────────────────
# Each client (keyed by network address) gets a bucket holding up to `burst`
# tokens that refills continuously at `rps` tokens/second. A request spends
# one token; an empty bucket means 429.
#
# State is process-local. Several replicas each enforce their own limit.
#
# The bucket map is only reachable through allow()/sweep() and is guarded by
# one threading.Lock. The sweeper is an asyncio task owned by the store and
# started/stopped by the application lifespan.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import contextlib
import math
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from greenlight.exceptions import RateLimitExceededError, error_response

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


@dataclass
class Bucket:
    tokens: float
    last_refill: float
    last_seen: float


class BucketStore:
    """Thread-safe map of client id → token bucket."""

    def __init__(
        self,
        rps: float,
        burst: int,
        *,
        enabled: bool = True,
        cleanup_interval: float = 60.0,
        stale_after: float | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if enabled and (rps <= 0 or burst < 1):
            raise ValueError("rate limiter needs rps > 0 and burst >= 1")
        self.rps = rps
        self.burst = burst
        self.enabled = enabled
        self.cleanup_interval = cleanup_interval
        self.stale_after = stale_after if stale_after is not None else 3 * cleanup_interval
        self._clock = clock
        self._buckets: dict[str, Bucket] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task[None] | None = None
        # Extra per-sweep work, e.g. purging expired tokens. Runs outside the lock.
        self._sweep_hooks: list[Callable[[], Awaitable[Any]]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __contains__(self, client_id: object) -> bool:
        with self._lock:
            return client_id in self._buckets

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds until an empty bucket holds one token again."""
        return max(1, math.ceil(1 / self.rps)) if self.rps > 0 else 1

    def allow(self, client_id: str) -> bool:
        """Spend one token for ``client_id``. False means rate-limited."""
        if not self.enabled:
            return True

        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(client_id)
            if bucket is None:
                bucket = Bucket(tokens=float(self.burst), last_refill=now, last_seen=now)
                self._buckets[client_id] = bucket
            else:
                elapsed = max(0.0, now - bucket.last_refill)
                bucket.tokens = min(float(self.burst), bucket.tokens + elapsed * self.rps)
                bucket.last_refill = now
                bucket.last_seen = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True
            return False

    def sweep(self) -> int:
        """Drop buckets not seen for longer than ``stale_after``. Returns count removed."""
        with self._lock:
            cutoff = self._clock() - self.stale_after
            stale = [cid for cid, b in self._buckets.items() if b.last_seen < cutoff]
            for client_id in stale:
                del self._buckets[client_id]
            remaining = len(self._buckets)
        if stale:
            logger.debug("bucket_sweep_completed", removed=len(stale), remaining=remaining)
        return len(stale)

    # ── Background sweeper ───────────────────────────────────────────────

    def add_sweep_hook(self, hook: Callable[[], Awaitable[Any]]) -> None:
        self._sweep_hooks.append(hook)

    def start(self) -> None:
        """Start the repeating sweep task on the running loop. Idempotent."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._run_sweeper(), name="bucket-sweeper")
        self._sweeper.add_done_callback(_on_sweeper_done)
        logger.info("bucket_sweeper_started", interval=self.cleanup_interval)

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("bucket_sweeper_stopped")

    async def _run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.sweep()
            for hook in self._sweep_hooks:
                try:
                    await hook()
                except Exception:
                    logger.exception("sweep_hook_failed", hook=getattr(hook, "__name__", "?"))


def _on_sweeper_done(task: asyncio.Task[None]) -> None:
    """Log sweeper crashes; cancellation on shutdown is expected."""
    if not task.cancelled() and (exc := task.exception()):
        logger.critical("bucket_sweeper_failed", error=str(exc), error_type=type(exc).__name__)


def client_ip(request: Request, *, trust_proxy_headers: bool = False) -> str:
    """Resolve the client's network address.

    Behind a trusted proxy, the left-most X-Forwarded-For entry (or
    X-Real-IP) wins; otherwise the socket peer is used.
    """
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests from clients whose bucket is empty with a 429."""

    def __init__(self, app: Any, *, buckets: BucketStore, trust_proxy_headers: bool = False):
        super().__init__(app)
        self._buckets = buckets
        self._trust_proxy_headers = trust_proxy_headers

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._buckets.enabled:
            return await call_next(request)

        ip = client_ip(request, trust_proxy_headers=self._trust_proxy_headers)
        if not self._buckets.allow(ip):
            logger.debug(
                "rate_limit_exceeded",
                client=ip,
                path=request.url.path,
                method=request.method,
            )
            return error_response(RateLimitExceededError(self._buckets.retry_after_seconds))

        return await call_next(request)
