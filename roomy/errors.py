"""
Roomy error types.

Every error that reaches a caller carries the HTTP status it maps to and a
message that is safe to show the student. Internal details stay in the logs.
"""

from typing import Optional


class RoomyError(Exception):
    """Base error; `message` is echoed to the caller as {"error": message}"""

    status_code = 500
    default_message = "An error occurred. Please try again."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ChatValidationError(RoomyError):
    """Empty or over-long chat message"""
    status_code = 400
    default_message = "Invalid input"


class RateLimitedError(RoomyError):
    """Local per-client limit on chat turns"""
    status_code = 429
    default_message = "Too many requests. Please slow down and try again in a minute."

    def __init__(self, message: Optional[str] = None, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamError(RoomyError):
    """AI gateway failure; 429 and 402 pass through, anything else is a 500"""
    status_code = 500
    default_message = "AI service is temporarily unavailable"


class StoreUnavailableError(RoomyError):
    """Session/preference/dorm store could not be reached"""
    status_code = 503
    default_message = "Storage is temporarily unavailable"


class SessionConflictError(RoomyError):
    """Session row changed between read and write"""
    status_code = 409
    default_message = "Session was updated concurrently"

    def __init__(self, session_id: str, expected_version: int):
        super().__init__(
            f"Session {session_id} is no longer at version {expected_version}"
        )
        self.session_id = session_id
        self.expected_version = expected_version
