import enum
from typing import Optional

from flask import jsonify


class ErrorKind(str, enum.Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    INVALID_TRANSITION = "invalid_transition"
    MISSING_CONFIGURATION = "missing_configuration"
    CONFIGURATION_INVALID = "configuration_invalid"


HTTP_STATUS = {
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.MISSING_CONFIGURATION: 422,
    ErrorKind.CONFIGURATION_INVALID: 500,
}


class GradebookError(Exception):
    """Base error raised by the grading and review core.

    Every failure carries an ErrorKind so the route layer can render a distinct,
    user-actionable message instead of a generic failure.
    """

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        details: Optional[list] = None,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details or []

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> dict:
        payload = {"error": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class Unauthorized(GradebookError):
    kind = ErrorKind.UNAUTHORIZED


class Forbidden(GradebookError):
    kind = ErrorKind.FORBIDDEN


class NotFound(GradebookError):
    kind = ErrorKind.NOT_FOUND


class ValidationFailed(GradebookError):
    kind = ErrorKind.VALIDATION_FAILED


class InvalidTransition(GradebookError):
    kind = ErrorKind.INVALID_TRANSITION


class MissingConfiguration(GradebookError):
    kind = ErrorKind.MISSING_CONFIGURATION


class ConfigurationInvalid(GradebookError):
    kind = ErrorKind.CONFIGURATION_INVALID


def error_response(exc: GradebookError):
    """Render a GradebookError as the (json, status) pair blueprints return."""
    return jsonify(exc.to_dict()), exc.status_code
