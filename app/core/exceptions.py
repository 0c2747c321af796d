"""
Application exceptions.

Every error carries an HTTP status, a machine-readable code and a human
message. The HTTP layer renders them as {"code", "message"}; the realtime
gateway turns them into error events for the originating connection.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse


class AppException(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    message: str = "Internal error."

    def __init__(self, message: str | None = None, code: str | None = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Invalid request."


class NotFound(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", message: str | None = None):
        self.resource = resource
        super().__init__(message or f"{resource} not found.")


class InvalidIdentifier(NotFound):
    code = "INVALID_ID"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__("Room", message=f"'{identifier}' is not a valid room id.")


class Unauthorized(AppException):
    """Caller lacks the elevated role needed for a moderation action."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "NOT_ELEVATED"
    message = "Only admins and teachers can do this."


class Forbidden(AppException):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "Forbidden."


class Conflict(AppException):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    message = "Resource already exists."


class PersistenceError(AppException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "PERSISTENCE_ERROR"
    message = "Storage failure. Please try again."


class NotAuthenticated(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "NOT_AUTHENTICATED"
    message = "Not authenticated."


class SessionExpired(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "SESSION_EXPIRED"
    message = "Session expired. Please log in again."


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message},
    )
