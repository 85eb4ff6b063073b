from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class MetricsSnapshotResponse(BaseModel):
    counters: dict[str, int]
    counter_count: int
    histograms: dict[str, dict[str, Any]] = {}


class MetricsSnapshotFlushRequest(BaseModel):
    source: str = "internal_flush"
    reset_after_persist: bool = False


class MetricsSnapshotFlushResponse(BaseModel):
    persisted: bool
    source: str
    counter_count: int
    histogram_count: int = 0
