"""Middleware module initialization."""

from knowscope.middleware.audit_logger import AuditLoggerMiddleware
from knowscope.middleware.prometheus import PrometheusMiddleware
from knowscope.middleware.request_id import RequestIdMiddleware

__all__ = [
    "AuditLoggerMiddleware",
    "PrometheusMiddleware",
    "RequestIdMiddleware",
]
