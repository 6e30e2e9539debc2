# backend/therapy_booking/routes/health.py
"""
Health check and Prometheus endpoints.

Both are public so load balancers and scrapers can reach them.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict

from fastapi import APIRouter, Response

from ..core.config import settings
from ..database import get_db_pool_status
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    return {
        "status": "healthy",
        "service": "therapy-booking-api",
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "database_pool": get_db_pool_status(),
    }


@router.get("/metrics")
async def metrics() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
