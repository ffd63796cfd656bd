"""
Base Schemas
============

Common schema patterns and mixins.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base Pydantic schema with common configuration.

    All API schemas should inherit from this base.
    """

    model_config = ConfigDict(
        # Allow ORM mode for SQLAlchemy models
        from_attributes=True,
        # Validate default values
        validate_default=True,
        # Use enum values instead of names
        use_enum_values=True,
        # Strip whitespace from strings
        str_strip_whitespace=True,
        # Accept the dashboard's camelCase aliases as well as field names
        populate_by_name=True,
    )


class ErrorResponse(BaseSchema):
    """Standard error response."""

    detail: str
    code: Optional[str] = None
    errors: Optional[List[dict]] = None

