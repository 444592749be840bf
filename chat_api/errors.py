"""
Error taxonomy shared by the services and translated to HTTP responses at the API boundary.
"""

from typing import List, Optional


class ChatAPIError(Exception):
    """Base class for errors that carry a user-readable message and an HTTP status."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ChatAPIError):
    status_code = 400


class AuthError(ChatAPIError):
    status_code = 401


class ConflictError(ChatAPIError):
    status_code = 400


class DatabaseConnectionError(ChatAPIError, ConnectionError):
    """The data layer could not be reached. `reason` is "timeout" or "other"."""

    status_code = 503

    def __init__(self, message: str, reason: str = "other"):
        super().__init__(message)
        self.reason = reason

    @property
    def is_timeout(self) -> bool:
        return self.reason == "timeout"


class UpstreamError(ChatAPIError):
    """Every model and transport failed to produce a reply."""

    status_code = 500

    def __init__(self, message: str, models: Optional[List[str]] = None, overloaded: bool = False):
        super().__init__(message)
        self.models = list(models or [])
        self.overloaded = overloaded
