"""
Audit Logger Middleware
=======================

Structured logging middleware that records who touched which tenant's
knowledge, with what outcome and latency.
"""

import logging
import re
import time
from typing import Callable, Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from knowscope.core.config import settings


def configure_logging(level: Optional[str] = None) -> None:
    """Configure stdlib logging and the structlog JSON pipeline."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("audit")

_TENANT_PATH = re.compile(r"/tenants/([^/]+)")


class AuditLoggerMiddleware(BaseHTTPMiddleware):
    """
    Middleware for structured audit logging of all requests.

    Captures:
    - Request method, path, and query parameters
    - Tenant addressed by the request
    - Request ID for correlation
    - Response status and latency
    """

    # Paths to exclude from logging (e.g., health checks)
    EXCLUDED_PATHS = {"/health", "/metrics", "/docs", "/redoc", f"{settings.API_PREFIX}/openapi.json"}

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start_time) * 1000

        log_context = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "method": request.method,
            "path": request.url.path,
            "query": str(request.query_params),
            "status_code": response.status_code,
            "latency_ms": round(latency_ms, 2),
            "client_ip": self._get_client_ip(request),
        }
        tenant_match = _TENANT_PATH.search(request.url.path)
        if tenant_match:
            log_context["tenant_id"] = tenant_match.group(1)

        if response.status_code >= 500:
            logger.error("request_completed", **log_context)
        elif response.status_code >= 400:
            logger.warning("request_completed", **log_context)
        else:
            logger.info("request_completed", **log_context)

        return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"
