# ─────────────────────────────────────────────────────────────────────────────
# Request Metrics: thread-safe HTTP counters
# ─────────────────────────────────────────────────────────────────────────────
# Tracks requests received, responses sent (total and per status code),
# cumulative processing time and recent latencies. Exposed via
# GET /debug/vars (JSON) and GET /debug/metrics (Prometheus).
#
# Bounded: latency history uses deque(maxlen=1000), auto-evicts oldest.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RequestMetrics:
    """Thread-safe request/response counters."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    requests_received: int = 0
    responses_sent: int = 0
    processing_time_us: int = 0
    responses_by_status: Counter[int] = field(default_factory=Counter)

    # Bounded -- only keeps last 1000 latencies, oldest auto-evicted
    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)

    _start_time: float = field(default_factory=time.time, repr=False)

    def record_request(self) -> None:
        with self._lock:
            self.requests_received += 1

    def record_response(self, status: int, duration_s: float) -> None:
        with self._lock:
            self.responses_sent += 1
            self.processing_time_us += int(duration_s * 1_000_000)
            self.responses_by_status[status] += 1
            self._latency_history.append(duration_s * 1000)

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the /debug/vars endpoint."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            return {
                "total_requests_received": self.requests_received,
                "total_responses_sent": self.responses_sent,
                "total_processing_time_us": self.processing_time_us,
                "total_responses_sent_by_status": {
                    str(status): count for status, count in sorted(self.responses_by_status.items())
                },
                "latency_p50_ms": round(latencies[n // 2], 1) if n else 0,
                "latency_p95_ms": round(latencies[int(n * 0.95)], 1) if n else 0,
                "uptime_seconds": int(time.time() - self._start_time),
                "timestamp": int(time.time()),
            }
