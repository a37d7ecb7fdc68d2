"""Error codes and the API error envelope."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from chatshared.conversation import CamelModel, utcnow


class ApiErrorCode(str, Enum):
    """Stable error codes exposed to clients."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    MANUS_API_ERROR = "MANUS_API_ERROR"  # Catch-all upstream failure
    CONVERSATION_NOT_FOUND = "CONVERSATION_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(CamelModel):
    code: ApiErrorCode
    message: str
    details: Any | None = None


class ApiResponse(CamelModel):
    """Envelope for error (and occasionally success) responses."""

    success: bool
    data: Any | None = None
    error: ErrorDetail | None = None
    timestamp: datetime = Field(default_factory=utcnow)
