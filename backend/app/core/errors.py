from fastapi import HTTPException, status


class APIError(HTTPException):
    """HTTP error that carries a stable machine-readable code.

    ``detail`` keeps the ``{error_code, message}`` shape the exception
    handlers in ``main.py`` turn into the ``{"ok": false, "error": ...}``
    envelope.
    """

    error_code = "500_INTERNAL_ERROR"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(
            status_code=self.status_code_default,
            detail={"error_code": self.error_code, "message": self.message},
        )


class BadRequestError(APIError):
    error_code = "400_BAD_REQUEST"
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class UnauthorizedError(APIError):
    error_code = "401_UNAUTHORIZED"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or expired token"


class BillingRequiredError(APIError):
    error_code = "402_BILLING_REQUIRED"
    status_code_default = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Active billing required"


class ForbiddenError(APIError):
    error_code = "403_FORBIDDEN"
    status_code_default = status.HTTP_403_FORBIDDEN
    default_message = "Access forbidden"


class NotFoundError(APIError):
    error_code = "404_NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class PlanLimitError(APIError):
    error_code = "422_PLAN_LIMIT"
    status_code_default = 422
    default_message = "Plan limit exceeded"


class InvalidStateError(APIError):
    error_code = "422_INVALID_STATE"
    status_code_default = 422
    default_message = "Invalid state for operation"


class InvalidInputError(APIError):
    error_code = "422_INVALID_INPUT"
    status_code_default = 422
    default_message = "Invalid input"


class RateLimitedError(APIError):
    error_code = "429_RATE_LIMITED"
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"


class UpstreamServiceError(APIError):
    error_code = "502_UPSTREAM_ERROR"
    status_code_default = status.HTTP_502_BAD_GATEWAY
    default_message = "Upstream service failed"
