"""Response envelope models.

Success responses use ``{"data": ...}``; errors use
``{"error": {"code", "message", "details"}}``.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.post("/refresh")
        async def refresh(...) -> DataResponse[TokenPairResponse]:
            return DataResponse(data=TokenPairResponse(...))
    """

    data: T


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "RATE_LIMITED").
        message: Human-readable error message.
        details: Optional list of field-level errors or failed rules.
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail
