"""Prometheus collectors for the payment initiation, dispatch and webhook flows."""

from __future__ import annotations

from services.prometheus_helpers import build_counter, build_histogram

_WEBHOOK_COUNTER = build_counter(
    "payments_webhook_total",
    "Payment webhook deliveries by reconciliation result.",
    ("result",),
)
_DISPATCH_COUNTER = build_counter(
    "payments_gateway_dispatch_total",
    "Outbound payment gateway calls by result.",
    ("result",),
)
_INITIATED_COUNTER = build_counter(
    "payments_initiated_total",
    "Payment transactions created per package.",
    ("package",),
)
_GATEWAY_LATENCY = build_histogram(
    "payments_gateway_latency_seconds",
    "Latency of outbound payment gateway calls.",
    buckets=(0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0, 30.0),
)


def record_webhook_result(result: str) -> None:
    if _WEBHOOK_COUNTER is not None:
        _WEBHOOK_COUNTER.labels(result=result).inc()


def record_dispatch_result(result: str, elapsed_seconds: float) -> None:
    if _DISPATCH_COUNTER is not None:
        _DISPATCH_COUNTER.labels(result=result).inc()
    if _GATEWAY_LATENCY is not None:
        _GATEWAY_LATENCY.observe(max(elapsed_seconds, 0.0))


def record_initiated(package_name: str) -> None:
    if _INITIATED_COUNTER is not None:
        _INITIATED_COUNTER.labels(package=package_name.lower()).inc()


__all__ = ["record_dispatch_result", "record_initiated", "record_webhook_result"]
