"""
Prometheus metrics endpoint
"""

from fastapi import APIRouter
from fastapi.responses import Response

from emailpay.utils.metrics import get_metrics_output, CONTENT_TYPE_LATEST

router = APIRouter(tags=["metrics"])


@router.get(
    "/metrics",
    summary="Prometheus metrics endpoint",
    description="Expose Prometheus metrics for observability.",
)
async def get_metrics() -> Response:
    """Prometheus metrics in the exposition format"""
    return Response(
        content=get_metrics_output(),
        media_type=CONTENT_TYPE_LATEST,
    )
