# apps/chat/exceptions.py


class ChatError(Exception):
    """Base class for every recoverable chat failure."""

    code = "chat_error"
    status_code = 400
    default_message = "Chat request failed"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)

    def as_payload(self):
        return {"success": False, "error": str(self), "code": self.code}


class AuthenticationFailure(ChatError):
    code = "authentication_failed"
    status_code = 401
    default_message = "Unauthorized"


class AuthorizationFailure(ChatError):
    code = "permission_denied"
    status_code = 403
    default_message = "Access denied"


class ValidationFailure(ChatError):
    code = "invalid"
    status_code = 400
    default_message = "Invalid data"


class NotFound(ChatError):
    code = "not_found"
    status_code = 404
    default_message = "Thread not found"


class StorageFailure(ChatError):
    code = "storage_unavailable"
    status_code = 503
    default_message = "Message could not be stored, please retry"
