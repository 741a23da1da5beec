# ─────────────────────────────────────────────────────────────────────────────
# Debug Routes: request metrics for operators holding metrics:view
# ─────────────────────────────────────────────────────────────────────────────
#   GET /debug/vars     → JSON snapshot of RequestMetrics, store and limiter
#   GET /debug/metrics  → Prometheus text exposition of the same counters
#
# The Prometheus side uses a private CollectorRegistry (no default process
# metrics) and gauges that are re-synced from RequestMetrics on each scrape.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from prometheus_client import CollectorRegistry, Gauge, generate_latest

from greenlight import __version__
from greenlight.auth import require_permission
from greenlight.dependencies import get_metrics, get_store
from greenlight.rate_limit import BucketStore
from greenlight.services.metrics import RequestMetrics
from greenlight.store.protocol import Store

router = APIRouter(dependencies=[Depends(require_permission("metrics:view"))])

_registry = CollectorRegistry()

_requests_received = Gauge(
    "greenlight_requests_received_total",
    "Requests received since start",
    registry=_registry,
)

_responses_sent = Gauge(
    "greenlight_responses_sent_total",
    "Responses sent since start",
    registry=_registry,
)

_responses_by_status = Gauge(
    "greenlight_responses_sent_by_status_total",
    "Responses sent since start, by HTTP status",
    ["status"],
    registry=_registry,
)

_processing_time = Gauge(
    "greenlight_processing_time_microseconds_total",
    "Cumulative request processing time in microseconds",
    registry=_registry,
)

_latency = Gauge(
    "greenlight_request_latency_milliseconds",
    "Recent request latency percentiles",
    ["quantile"],
    registry=_registry,
)

_tracked_clients = Gauge(
    "greenlight_rate_limiter_clients",
    "Clients currently holding a token bucket",
    registry=_registry,
)


def _sync_metrics(data: dict[str, Any], buckets: BucketStore) -> None:
    _requests_received.set(data["total_requests_received"])
    _responses_sent.set(data["total_responses_sent"])
    _processing_time.set(data["total_processing_time_us"])
    for status, count in data["total_responses_sent_by_status"].items():
        _responses_by_status.labels(status=status).set(count)
    _latency.labels(quantile="0.5").set(data["latency_p50_ms"])
    _latency.labels(quantile="0.95").set(data["latency_p95_ms"])
    _tracked_clients.set(len(buckets))


@router.get("/vars")
async def debug_vars(
    request: Request,
    metrics: RequestMetrics = Depends(get_metrics),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    """Request counters plus limiter and store occupancy."""
    buckets: BucketStore = request.app.state.buckets
    return {
        "version": __version__,
        **metrics.to_dict(),
        "database": store.stats(),
        "rate_limiter": {
            "enabled": buckets.enabled,
            "rps": buckets.rps,
            "burst": buckets.burst,
            "tracked_clients": len(buckets),
        },
    }


@router.get("/metrics")
async def prometheus_metrics(
    request: Request,
    metrics: RequestMetrics = Depends(get_metrics),
) -> Response:
    """Prometheus text exposition format."""
    _sync_metrics(metrics.to_dict(), request.app.state.buckets)
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
