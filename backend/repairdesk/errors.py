"""
Error taxonomy shared by services and routes.

Services raise these; routes turn them into {"error": message} JSON bodies
with the carried status code. Anything that is not an AppError is treated
as an unexpected failure (logged, 500).

NotFoundError is deliberately used both for "does not exist" and "belongs to
another company" so tenants cannot discover each other's ids.
"""


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message}


class BadRequestError(AppError):
    """Malformed input, wrong-state transitions, insufficient stock."""

    status_code = 400


class NotFoundError(AppError):
    """Entity absent or not visible to the current company."""

    status_code = 404


class ConfigurationError(AppError):
    """Payment integration, plan id, or billing location not set up."""

    status_code = 400


class PaymentError(AppError):
    """The payment processor rejected or failed an operation."""

    status_code = 400


class TenantContextError(AppError):
    """Request reached a tenant-scoped route without a company context."""

    status_code = 401
