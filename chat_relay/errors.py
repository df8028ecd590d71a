from __future__ import annotations

from typing import Optional


class ChatRelayError(Exception):
    """Base error for the relay. Carries a stable code and the HTTP status it maps to."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ChatRelayError):
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.field = field


class UpstreamError(ChatRelayError):
    """Non-2xx, malformed or failed round trip to the chat platform or the contact relay."""

    code = "UPSTREAM_ERROR"
    status_code = 503

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status

    def __str__(self) -> str:
        if self.upstream_status is None:
            return self.message
        return f"{self.message} (status {self.upstream_status})"


class ChatStepError(ChatRelayError):
    """A fatal step of the chat flow; the request cannot produce a meaningful result."""

    status_code = 500

    def __init__(self, step: str, code: str, cause: Exception):
        super().__init__(f"{step} failed: {cause}", code=code)
        self.step = step
        self.cause = cause
