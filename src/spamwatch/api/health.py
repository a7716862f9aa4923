"""Service health endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from spamwatch.api.dependencies import get_health_aggregator
from spamwatch.services.health import HealthAggregator

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(aggregator: HealthAggregator = Depends(get_health_aggregator)) -> JSONResponse:
    """Check every enabled dependency; 503 when any of them is down."""

    snapshot = await aggregator.snapshot()
    code = status.HTTP_200_OK if snapshot.status == "up" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=snapshot.to_dict())
