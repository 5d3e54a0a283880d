#services/exceptions.py
from typing import Optional


class AppError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", details: Optional[dict] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class UnknownBookingStepError(ValidationError):
    code = "unknown_booking_step"

    def __init__(self, step: str):
        super().__init__(f"Unknown booking step: {step}", {"step": step})
        self.step = step


class PaymentDeclinedError(ValidationError):
    code = "payment_declined"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, message: Optional[str] = None):
        super().__init__(message or f"{resource} not found", {"resource": resource})
        self.resource = resource


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class ExternalServiceError(AppError):
    status_code = 503
    code = "external_service_error"

    def __init__(self, service: str, message: str = ""):
        super().__init__(message or f"{service} is unavailable", {"service": service})
        self.service = service


class CircuitOpenError(ExternalServiceError):
    code = "circuit_open"

    def __init__(self, service: str):
        super().__init__(service, f"Circuit breaker for {service} is open")


class RateLimitError(AppError):
    status_code = 429
    code = "rate_limited"


class AuthenticationError(AppError):
    status_code = 401
    code = "authentication_error"


class AuthorizationError(AppError):
    status_code = 403
    code = "authorization_error"


# Errors that mean "the caller got it wrong": retrying won't help
PASS_THROUGH_ERRORS = (
    ValidationError,
    NotFoundError,
    ConflictError,
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
)
