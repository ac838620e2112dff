"""
Service errors

Every failure the service reports maps to a stable machine-readable code
and an HTTP status. Route handlers let these propagate; the exception
handlers in main.py turn them into {"code": ..., "message": ...} bodies.
"""
from typing import Optional


class ServiceError(Exception):
    code = "internal"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class InvalidArgument(ServiceError):
    code = "invalid_argument"
    status_code = 400
    default_message = "Invalid argument"


class AlreadyExists(ServiceError):
    code = "already_exists"
    status_code = 409
    default_message = "Already exists"


class PermissionDenied(ServiceError):
    code = "permission_denied"
    status_code = 403
    default_message = "Permission denied"


class Conflict(ServiceError):
    code = "conflict"
    status_code = 409
    default_message = "Concurrent update, please retry"


class Unauthenticated(ServiceError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Could not validate credentials"


class Unavailable(ServiceError):
    code = "unavailable"
    status_code = 503
    default_message = "Service unavailable"
