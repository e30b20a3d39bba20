from __future__ import annotations


class ChatError(Exception):
    """Base for every error the chat core surfaces to a caller."""

    status_code = 400
    code = "CHAT_ERROR"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.code)
        if code is not None:
            self.code = code
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class NotFound(ChatError):
    status_code = 404
    code = "NOT_FOUND"


class Unauthorized(ChatError):
    status_code = 403
    code = "NOT_A_PARTICIPANT"


class StorageUnavailable(ChatError):
    # transient; callers may retry with backoff
    status_code = 503
    code = "STORAGE_UNAVAILABLE"


class ValidationError(ChatError):
    status_code = 422
    code = "INVALID_REQUEST"
