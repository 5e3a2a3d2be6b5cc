"""
Error taxonomy for the errand flow.

Every failure the orchestration flow can surface to an HTTP caller is one of
these classes. The status code travels with the exception so the single
handler registered in the app factory can answer without string matching.

- ValidationError: bad or missing request data the caller can fix (400)
- NotFoundCondition: the request's premise failed, e.g. no business found (404)
- UpstreamServiceError: AI, maps or telephony call failed (502)
- AuthenticationError: missing, invalid or expired token (401)
- ConfigurationError: a required credential is absent (500)

PersistenceUnavailable is raised by the durable backend and is absorbed by
the state machine, which falls back to memory.
"""

from typing import Optional


class ErrandError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        # Set once the error has been committed to a task as its failure
        self.task_id: Optional[str] = None
        if status_code is not None:
            self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


class ValidationError(ErrandError):
    status_code = 400


class NotFoundCondition(ErrandError):
    status_code = 404


class UpstreamServiceError(ErrandError):
    status_code = 502


class AuthenticationError(ErrandError):
    status_code = 401


class ConfigurationError(ErrandError):
    status_code = 500


class PersistenceUnavailable(Exception):
    """The durable task store could not be reached or rejected a write."""
