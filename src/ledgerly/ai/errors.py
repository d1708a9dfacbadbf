"""Error types raised by the completion client."""

from typing import Any


class CompletionError(Exception):
    """Base error for completion service failures."""

    def __init__(
        self, message: str, code: str = "COMPLETION_ERROR", status_code: int | None = None, retryable: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }


class CompletionAuthenticationError(CompletionError):
    """HTTP 401: the API key was rejected."""

    def __init__(self, message: str = "Authentication failed. Invalid API key."):
        super().__init__(message, "AUTHENTICATION_ERROR", 401, retryable=False)


class CompletionRateLimitError(CompletionError):
    """HTTP 429."""

    def __init__(self, message: str = "Rate limit exceeded.", retry_after: float | None = None):
        super().__init__(message, "RATE_LIMIT_ERROR", 429, retryable=True)
        self.retry_after = retry_after


class CompletionValidationError(CompletionError):
    """HTTP 400, or a request rejected before it was sent."""

    def __init__(self, message: str, validation_errors: list[str] | None = None):
        super().__init__(message, "VALIDATION_ERROR", 400, retryable=False)
        self.validation_errors = validation_errors or []


class CompletionModelNotFoundError(CompletionError):
    """HTTP 404: unknown model name."""

    def __init__(self, message: str, model_name: str = "unknown"):
        super().__init__(message, "MODEL_NOT_FOUND", 404, retryable=False)
        self.model_name = model_name


class CompletionNetworkError(CompletionError):
    """Connection failures and timeouts."""

    def __init__(self, message: str):
        super().__init__(message, "NETWORK_ERROR", None, retryable=True)


class CompletionResponseError(CompletionError):
    """The service answered with an envelope we cannot use."""

    def __init__(self, message: str, raw_response: Any = None):
        super().__init__(message, "RESPONSE_ERROR", None, retryable=False)
        self.raw_response = raw_response


def _extract_error_message(body: Any) -> str:
    if not isinstance(body, dict):
        return "Unknown error occurred"

    error = body.get("error")
    if isinstance(error, str):
        return error
    if isinstance(body.get("message"), str):
        return body["message"]
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]

    return "Unknown error occurred"


def _extract_retry_after(body: Any, header_value: str | None) -> float | None:
    if header_value:
        try:
            return float(header_value)
        except ValueError:
            pass
    if isinstance(body, dict):
        for key in ("retry_after", "retryAfter"):
            if isinstance(body.get(key), int | float):
                return float(body[key])
    return None


def error_from_response(status: int, body: Any, retry_after_header: str | None = None) -> CompletionError:
    """Map an unsuccessful HTTP response to the matching error type."""
    message = _extract_error_message(body)

    if status == 401:
        return CompletionAuthenticationError(message)
    if status == 429:
        return CompletionRateLimitError(message, _extract_retry_after(body, retry_after_header))
    if status == 400:
        errors = []
        if isinstance(body, dict):
            raw = body.get("errors") or body.get("validation_errors") or []
            errors = [e for e in raw if isinstance(e, str)]
        return CompletionValidationError(message, errors)
    if status == 404:
        model_name = "unknown"
        if isinstance(body, dict):
            model_name = body.get("model") or body.get("model_name") or "unknown"
        return CompletionModelNotFoundError(message or "Model not found", model_name)

    return CompletionError(message or f"HTTP error {status}", "HTTP_ERROR", status, retryable=status >= 500)
