from fastapi import APIRouter

from localmart.observability import metrics_store
from localmart.schemas.ops import MetricsResponse, TimingStats

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", summary="Process-local counters and timings", response_model=MetricsResponse)
def metrics_endpoint() -> MetricsResponse:
    snapshot = metrics_store.snapshot()
    return MetricsResponse(
        counters=snapshot.counters,
        timings={name: TimingStats(**stats) for name, stats in snapshot.timings.items()},
    )
