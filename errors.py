"""
Error taxonomy for the EcoWaste API.

Every error carries the HTTP status it is rendered with; main.py turns them
into `{"error": ..., "message": ...}` responses.
"""


class EcowasteError(Exception):
    status_code = 500
    title = "Internal Server Error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.title


class UnauthorizedError(EcowasteError):
    status_code = 401
    title = "Unauthorized"


class ForbiddenError(EcowasteError):
    status_code = 403
    title = "Forbidden"


class ValidationError(EcowasteError):
    status_code = 400
    title = "Bad Request"


class NotFoundError(EcowasteError):
    status_code = 404
    title = "Not Found"


class PersistenceError(EcowasteError):
    status_code = 503
    title = "Service Unavailable"
