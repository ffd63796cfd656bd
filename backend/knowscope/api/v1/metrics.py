"""Prometheus scrape endpoint for the knowledge service."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from knowscope.middleware.prometheus import metrics_registry


router = APIRouter(tags=["Metrics"])


@router.get("/metrics", include_in_schema=False)
async def scrape_metrics() -> Response:
    """HTTP traffic, knowledge writes and store call latency, rendered fresh on every scrape."""
    payload = generate_latest(metrics_registry)
    return Response(
        content=payload,
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-store"},
    )
