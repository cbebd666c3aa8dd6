"""
Error taxonomy for the ordering service.

Each class carries the HTTP status it is rendered with; the handlers in
main.py turn them into ``{"detail": message}`` responses.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class NotFound(AppError):
    status_code = 404


class AuthError(AppError):
    status_code = 401


class Forbidden(AuthError):
    status_code = 403


class ConflictError(AppError):
    status_code = 409


class IntegrityError(AppError):
    """Restaurant aggregates could not be applied for a persisted order."""
    status_code = 500


class UpstreamFailure(AppError):
    status_code = 502
