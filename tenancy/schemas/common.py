"""
Common/shared Pydantic schemas.
"""

from pydantic import BaseModel, ConfigDict, Field

from tenancy.core.exceptions import ErrorKind


# Base configuration for all schemas
class BaseSchema(BaseModel):
    """
    Base schema with common configuration.

    All schemas should inherit from this.
    """

    model_config = ConfigDict(
        from_attributes=True,  # Allow ORM mode (SQLAlchemy objects)
        populate_by_name=True,  # Allow population by field name or alias
        str_strip_whitespace=True,  # Strip whitespace from strings
        validate_assignment=True,  # Validate on assignment, not just creation
    )


# Standard response wrappers
class MessageResponse(BaseModel):
    """Simple message response."""
    message: str


class ErrorResponse(BaseModel):
    """Error envelope returned for every TenancyError."""
    kind: ErrorKind
    message: str
    violations: list[str] = Field(default_factory=list)


class ProcessedCount(BaseModel):
    """Result of a sweep or bulk administrative action."""
    processed: int
