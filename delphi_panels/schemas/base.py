"""Base schemas and common types for the Delphi Panels API."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class DelphiBaseModel(BaseModel):
    """Base model with common configuration.

    Fields are snake_case in Python and camelCase on the wire, which is what
    the web client reads and writes.
    """

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
