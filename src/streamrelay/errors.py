"""Relay error taxonomy and HTTP-boundary errors."""

from typing import Any

from chatshared import ApiErrorCode

GENERIC_PROVIDER_MESSAGE = "An unexpected error occurred while processing your request"

# Upstream HTTP status -> (code, fixed message)
_STATUS_ERRORS: dict[int, tuple[ApiErrorCode, str]] = {
    401: (ApiErrorCode.UNAUTHORIZED, "Invalid API key or unauthorized access"),
    429: (ApiErrorCode.RATE_LIMIT_EXCEEDED, "Rate limit exceeded. Please try again later"),
    404: (ApiErrorCode.MODEL_NOT_FOUND, "The specified model was not found"),
}


class RelayError(Exception):
    """A classified failure of a relay run."""

    def __init__(
        self,
        code: ApiErrorCode,
        message: str,
        original_error: BaseException | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message}


class ApiError(Exception):
    """Raised by route handlers; rendered as the error envelope."""

    def __init__(
        self,
        status_code: int,
        code: ApiErrorCode,
        message: str,
        details: Any | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


def classify_provider_error(error: BaseException) -> RelayError:
    """Map any upstream failure onto the relay's error taxonomy."""
    if isinstance(error, RelayError):
        return error

    status = getattr(error, "status_code", None)
    if status in _STATUS_ERRORS:
        code, message = _STATUS_ERRORS[status]
        return RelayError(code, message, original_error=error)

    message = str(error) or GENERIC_PROVIDER_MESSAGE
    return RelayError(ApiErrorCode.MANUS_API_ERROR, message, original_error=error)


def conversation_not_found() -> ApiError:
    return ApiError(404, ApiErrorCode.CONVERSATION_NOT_FOUND, "Conversation not found")
