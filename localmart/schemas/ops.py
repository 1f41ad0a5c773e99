"""Response bodies of the operational endpoints (``/health``, ``/ready``, ``/metrics``)."""

from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: Literal["ok"]
    service: str
    app_mode: str


class ReadinessDependency(BaseModel):
    name: str
    status: Literal["ok", "error"]


class ReadinessResponse(BaseModel):
    status: Literal["ok", "degraded"]
    dependencies: list[ReadinessDependency]


class TimingStats(BaseModel):
    count: int
    avg_s: float
    max_s: float


class MetricsResponse(BaseModel):
    """Process-local counters, e.g. ``wallet_cas_retry_total`` or ``ledger_cas_miss_total``."""

    counters: dict[str, int]
    timings: dict[str, TimingStats]
