"""
Error types raised by the repositories and rendered by the API layer.

Every error carries a human-readable message that is safe to show to the user
and the HTTP status the API answers with.
"""

from typing import List, Optional


class JobBoardError(Exception):
    """Base error with a user-facing message."""

    status_code = 500

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": {
                "type": type(self).__name__,
                "message": self.message,
            }
        }


class ConfigError(JobBoardError):
    """Required configuration is absent or malformed."""


class ValidationError(JobBoardError):
    """Caller-supplied fields are missing or invalid. Lists every offending field."""

    status_code = 422

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = list(fields or [])

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["error"]["fields"] = self.fields
        return body


class MissingParameter(ValidationError):
    pass


class InvalidArgument(ValidationError):
    pass


class CredentialExpired(JobBoardError):
    """The bearer credential was rejected as expired by the backend."""

    status_code = 401


class StorageError(JobBoardError):
    """An object-store upload or removal failed."""

    status_code = 502


class PersistenceError(JobBoardError):
    """A relational-store operation failed."""

    status_code = 502


class AlreadyExists(PersistenceError):
    status_code = 409


class NotFound(JobBoardError):
    status_code = 404
