from __future__ import annotations


class ChatError(Exception):
    """Base class for errors surfaced to API callers."""

    status = 500
    code = "internal_error"

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
        self.message = message


class Unauthorized(ChatError):
    status = 401
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ValidationError(ChatError):
    status = 400
    code = "invalid_request"


class Forbidden(ChatError):
    status = 403
    code = "forbidden"

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class NotFoundReference(ChatError):
    """A referenced row that the session guarantees should exist is missing."""

    code = "not_found_reference"


class TransientStoreFailure(ChatError):
    code = "store_failure"
