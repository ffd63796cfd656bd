"""
Knowledge Scope Exceptions
==========================

Typed errors raised by the override engine and the record store.

Validation kinds (not found, invalid transition, conflict, read-only tier,
invalid content) must never be retried without changing the input.
Only StoreUnavailableError is safe to retry as-is.
"""

from typing import Any, Dict, Optional


class KnowledgeScopeError(Exception):
    """Base class for every error the engine surfaces."""

    error_code = "KNOWLEDGE_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class KnowledgeNotFoundError(KnowledgeScopeError):
    """No item resolves for the requested name, id or context."""

    error_code = "NOT_FOUND"


class InvalidTransitionError(KnowledgeScopeError):
    """Override direction is not strictly toward a more specific tier."""

    error_code = "INVALID_TRANSITION"


class KnowledgeConflictError(KnowledgeScopeError):
    """Target tier already occupied, a concurrent writer won, or the edit is stale."""

    error_code = "CONFLICT"


class ReadOnlyTierError(KnowledgeScopeError):
    """Attempted write against the system tier."""

    error_code = "READ_ONLY_TIER"


class InvalidContentError(KnowledgeScopeError):
    """Content does not satisfy the rules of the item's content type."""

    error_code = "INVALID_CONTENT"


class StoreUnavailableError(KnowledgeScopeError):
    """The record store failed or timed out."""

    error_code = "STORE_UNAVAILABLE"
    retryable = True
