from __future__ import annotations

import json
import logging
from bisect import bisect_left
from collections import Counter
from threading import Lock
from typing import Any

import httpx


logger = logging.getLogger("cave_club")

# Upper bounds per histogram; anything above the last bound lands in "+Inf".
HISTOGRAM_BUCKETS: dict[str, tuple[float, ...]] = {
    "webhook.batch_size": (1, 2, 5, 10, 25, 50, 100),
    "webhook.processing_ms": (5, 10, 25, 50, 100, 250, 500, 1000, 2500),
}
_DEFAULT_BUCKETS: tuple[float, ...] = (1, 10, 100, 1000)

_metrics_lock = Lock()
_metrics_counter: Counter[str] = Counter()
_histograms: dict[str, "_Histogram"] = {}


class _Histogram:
    __slots__ = ("bounds", "bucket_counts", "count", "total")

    def __init__(self, bounds: tuple[float, ...]):
        self.bounds = bounds
        self.bucket_counts = [0] * (len(bounds) + 1)
        self.count = 0
        self.total = 0.0

    def observe(self, value: float) -> None:
        self.bucket_counts[bisect_left(self.bounds, value)] += 1
        self.count += 1
        self.total += value

    def as_dict(self) -> dict[str, Any]:
        labels = [f"{bound:g}" for bound in self.bounds] + ["+Inf"]
        return {
            "count": self.count,
            "sum": round(self.total, 3),
            "buckets": dict(zip(labels, self.bucket_counts)),
        }


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize(v) for v in value]
    return str(value)


def mask_email(value: str | None) -> str | None:
    if not value:
        return value
    local, _, domain = value.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


def mask_phone(value: str | None) -> str | None:
    if not value:
        return value
    digits = value.strip()
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"


def metric_key(name: str, **labels: Any) -> str:
    if not labels:
        return name
    ordered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}|{ordered}"


def _labelled_key(name: str, labels: dict[str, Any]) -> str:
    return metric_key(name, **{k: _normalize(v) for k, v in labels.items()})


def incr_metric(name: str, value: int = 1, **labels: Any) -> None:
    key = _labelled_key(name, labels)
    with _metrics_lock:
        _metrics_counter[key] += value


def observe_metric(name: str, value: float, **labels: Any) -> None:
    """Record ``value`` in the bucketed histogram ``name``."""
    key = _labelled_key(name, labels)
    with _metrics_lock:
        histogram = _histograms.get(key)
        if histogram is None:
            histogram = _histograms[key] = _Histogram(HISTOGRAM_BUCKETS.get(name, _DEFAULT_BUCKETS))
        histogram.observe(value)


def metrics_snapshot() -> dict[str, int]:
    with _metrics_lock:
        return dict(_metrics_counter)


def histograms_snapshot() -> dict[str, dict[str, Any]]:
    with _metrics_lock:
        return {key: histogram.as_dict() for key, histogram in _histograms.items()}


def reset_metrics() -> None:
    with _metrics_lock:
        _metrics_counter.clear()
        _histograms.clear()


def _push_to_sink(
    payload: dict[str, Any],
    *,
    export_url: str,
    export_bearer_token: str | None,
    export_timeout_seconds: float,
) -> None:
    # Sink problems are reported in the logs only; the DB row is the record.
    headers = {"Content-Type": "application/json"}
    if export_bearer_token:
        headers["Authorization"] = f"Bearer {export_bearer_token}"
    failure: dict[str, Any] = {}
    try:
        with httpx.Client(timeout=export_timeout_seconds) as client:
            response = client.post(export_url, headers=headers, json=payload)
        if response.status_code >= 400:
            failure = {"status_code": response.status_code, "response_text": response.text[:200]}
    except Exception as exc:
        failure = {"error": str(exc)}

    log_event(
        "metrics_snapshot_export_failed" if failure else "metrics_snapshot_exported",
        level=logging.WARNING if failure else logging.INFO,
        request_id=payload.get("request_id"),
        source=payload["source"],
        export_url=export_url,
        **failure,
    )


def persist_metrics_snapshot(
    *,
    supabase_client: Any,
    source: str,
    request_id: str | None = None,
    reset_after_persist: bool = False,
    export_url: str | None = None,
    export_bearer_token: str | None = None,
    export_timeout_seconds: float = 3.0,
) -> bool:
    """Store the current counters and histograms, then push them to the sink.

    Returns False when the snapshot row could not be written; in that case
    nothing is exported and the in-process metrics are kept.
    """
    payload = {
        "source": source,
        "request_id": request_id,
        "counters": metrics_snapshot(),
        "histograms": histograms_snapshot(),
    }
    try:
        supabase_client.table("observability_metric_snapshots").insert(payload).execute()
    except Exception as exc:
        log_event(
            "metrics_snapshot_persist_failed",
            level=logging.WARNING,
            request_id=request_id,
            source=source,
            error=str(exc),
        )
        return False

    if export_url:
        _push_to_sink(
            payload,
            export_url=export_url,
            export_bearer_token=export_bearer_token,
            export_timeout_seconds=export_timeout_seconds,
        )

    log_event(
        "metrics_snapshot_persisted",
        request_id=request_id,
        source=source,
        counter_count=len(payload["counters"]),
        histogram_count=len(payload["histograms"]),
    )
    if reset_after_persist:
        reset_metrics()
    return True


def log_event(
    event: str,
    *,
    level: int = logging.INFO,
    request_id: str | None = None,
    **fields: Any,
) -> None:
    payload = {"event": event}
    if request_id:
        payload["request_id"] = request_id
    for key, value in fields.items():
        payload[key] = _normalize(value)
    logger.log(level, json.dumps(payload, sort_keys=True))
