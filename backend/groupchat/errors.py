"""Error taxonomy shared by the chat stores, the session hub and the HTTP layer.

Every rejected action raises a ``ChatError`` subclass. Each class carries a
stable ``code`` (sent to websocket clients in ``error`` events) and the HTTP
status used when the same failure surfaces through a request handler.

Stores validate fully before mutating, so catching one of these always
means nothing changed.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class ChatError(Exception):
    """Base class for all recoverable chat errors."""

    code: str = "CHAT_ERROR"
    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_event(self) -> dict:
        """Render as the unicast ``error`` event sent to a connection."""
        return {"type": "error", "code": self.code, "error": self.message}


class PermissionDenied(ChatError):
    code = "PERMISSION_DENIED"
    status_code = 403
    default_message = "Permission denied"


class NotFound(ChatError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class NotAMember(ChatError):
    code = "NOT_A_MEMBER"
    status_code = 403
    default_message = "Not a member of this group"


class DuplicateIdentifier(ChatError):
    code = "DUPLICATE_IDENTIFIER"
    status_code = 409
    default_message = "Identifier already taken"


class DuplicateName(ChatError):
    code = "DUPLICATE_NAME"
    status_code = 409
    default_message = "Name already taken"


class AlreadyMember(ChatError):
    code = "ALREADY_MEMBER"
    status_code = 409
    default_message = "User is already a member"


class GroupFull(ChatError):
    code = "GROUP_FULL"
    status_code = 409
    default_message = "Group has reached its member limit"


class InvalidCredential(ChatError):
    code = "INVALID_CREDENTIAL"
    status_code = 401
    default_message = "Invalid credentials"


class AuthRequired(ChatError):
    code = "AUTH_REQUIRED"
    status_code = 401
    default_message = "Authentication required"


class Malformed(ChatError):
    code = "MALFORMED"
    status_code = 422
    default_message = "Malformed request"


class InternalError(ChatError):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error"


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """FastAPI exception handler mapping ``ChatError`` to a JSON response."""
    return JSONResponse(
        {"error": exc.message, "code": exc.code},
        status_code=exc.status_code,
    )
