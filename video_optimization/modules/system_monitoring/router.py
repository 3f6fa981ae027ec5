"""System monitoring API router.

Liveness check and Prometheus metrics. Neither endpoint needs an API key.
"""

from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from video_optimization.core.metrics import get_content_type, get_metrics

router = APIRouter(tags=["system-monitoring"])


@router.get("/health", response_class=PlainTextResponse)
async def health_check() -> PlainTextResponse:
    """Liveness check; does not touch storage or ffmpeg."""
    return PlainTextResponse("OK\n")


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Prometheus metrics endpoint",
)
async def get_prometheus_metrics() -> Response:
    return Response(
        content=get_metrics(),
        media_type=get_content_type(),
    )
