"""
Exception Handlers
==================

Maps the knowledge scope error hierarchy onto HTTP responses shaped like
ErrorResponse: {"detail", "code", "errors"}.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from knowscope.core.exceptions import (
    InvalidContentError,
    InvalidTransitionError,
    KnowledgeConflictError,
    KnowledgeNotFoundError,
    KnowledgeScopeError,
    ReadOnlyTierError,
    StoreUnavailableError,
)
from knowscope.schemas.base import ErrorResponse

logger = logging.getLogger(__name__)


EXCEPTION_STATUS_MAP = {
    KnowledgeNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidTransitionError: status.HTTP_400_BAD_REQUEST,
    KnowledgeConflictError: status.HTTP_409_CONFLICT,
    ReadOnlyTierError: status.HTTP_403_FORBIDDEN,
    InvalidContentError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_http_status_code(exception: KnowledgeScopeError) -> int:
    """Status code for an engine error; unmapped types are server errors."""
    for exc_type in type(exception).__mro__:
        if exc_type in EXCEPTION_STATUS_MAP:
            return EXCEPTION_STATUS_MAP[exc_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def knowledge_scope_exception_handler(request: Request, exc: KnowledgeScopeError) -> JSONResponse:
    status_code = get_http_status_code(exc)

    if status_code >= 500:
        logger.error(
            f"Knowledge store error: {exc.message} "
            f"code={exc.error_code} path={request.url.path} method={request.method}"
        )
    else:
        logger.warning(
            f"Knowledge request rejected: {exc.message} "
            f"code={exc.error_code} path={request.url.path} method={request.method}"
        )

    body = ErrorResponse(
        detail=exc.message,
        code=exc.error_code,
        errors=[exc.details] if exc.details else None,
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(KnowledgeScopeError, knowledge_scope_exception_handler)
