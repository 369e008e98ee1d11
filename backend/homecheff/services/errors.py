from __future__ import annotations


class ServiceError(Exception):
    """A request-level failure that maps to an HTTP status and a user-facing message."""

    status = 400

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = int(status)

    def to_response(self) -> tuple[dict, int]:
        return {"error": self.message}, int(self.status)


class ValidationError(ServiceError):
    status = 400


class AuthenticationError(ServiceError):
    status = 401


class PermissionDenied(ServiceError):
    status = 403


class NotFoundError(ServiceError):
    status = 404


class ConflictError(ServiceError):
    status = 409


class GoneError(ServiceError):
    status = 410
