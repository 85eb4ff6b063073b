from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from src.config import settings
from src.db import supabase
from src.models.observability import (
    MetricsSnapshotFlushRequest,
    MetricsSnapshotFlushResponse,
    MetricsSnapshotResponse,
)
from src.observability import (
    histograms_snapshot,
    incr_metric,
    log_event,
    metrics_snapshot,
    persist_metrics_snapshot,
)


router = APIRouter(prefix="/api/internal/observability", tags=["internal-observability"])


async def require_internal_scheduler_secret(
    request: Request,
    x_internal_scheduler_secret: str | None = Header(default=None),
) -> None:
    request_id = getattr(request.state, "request_id", None)
    configured_secret = settings.internal_scheduler_secret
    if not configured_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="internal scheduler secret is not configured",
        )
    if not x_internal_scheduler_secret or not hmac.compare_digest(
        x_internal_scheduler_secret,
        configured_secret,
    ):
        incr_metric("internal.observability.auth_failed")
        log_event("internal_observability_auth_failed", request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid scheduler secret",
        )


@router.get(
    "/metrics",
    response_model=MetricsSnapshotResponse,
    dependencies=[Depends(require_internal_scheduler_secret)],
)
async def get_metrics_snapshot():
    counters = metrics_snapshot()
    return MetricsSnapshotResponse(
        counters=counters,
        counter_count=len(counters),
        histograms=histograms_snapshot(),
    )


@router.post(
    "/metrics/flush",
    response_model=MetricsSnapshotFlushResponse,
    dependencies=[Depends(require_internal_scheduler_secret)],
)
async def flush_metrics_snapshot(data: MetricsSnapshotFlushRequest, request: Request):
    counter_count = len(metrics_snapshot())
    histogram_count = len(histograms_snapshot())
    persisted = persist_metrics_snapshot(
        supabase_client=supabase,
        source=data.source,
        request_id=getattr(request.state, "request_id", None),
        reset_after_persist=data.reset_after_persist,
        export_url=settings.observability_export_url,
        export_bearer_token=settings.observability_export_bearer_token,
        export_timeout_seconds=settings.observability_export_timeout_seconds,
    )
    return MetricsSnapshotFlushResponse(
        persisted=persisted,
        source=data.source,
        counter_count=counter_count,
        histogram_count=histogram_count,
    )
