"""Domain error taxonomy.

Every expected business rejection is a ``DomainError`` carrying a stable
machine-readable ``code``, a human ``message`` and the HTTP status used by the
API boundary. ``InvariantViolation`` is deliberately outside this hierarchy: it
signals a defect, is logged at CRITICAL and answered with a 500.
"""

import logging

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = 400
    default_code = "DOMAIN_ERROR"
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {
            "success": False,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationFailed(DomainError):
    status_code = 422
    default_code = "VALIDATION_FAILED"


class StateConflict(DomainError):
    status_code = 409
    default_code = "STATE_CONFLICT"


class NotAuthorized(DomainError):
    status_code = 403
    default_code = "NOT_AUTHORIZED"

    def __init__(self, message: str = "Not authorized.", code: str | None = None):
        super().__init__(message, code)


class NotFound(DomainError):
    status_code = 404
    default_code = "NOT_FOUND"


class Gone(DomainError):
    status_code = 410
    default_code = "GONE"


class ExternalDependencyFailed(DomainError):
    status_code = 503
    default_code = "EXTERNAL_DEPENDENCY_FAILED"
    retryable = True


class IntegrityRejected(DomainError):
    status_code = 422
    default_code = "INTEGRITY_REJECTED"


class InvariantViolation(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        logger.critical("Invariant violation: %s", message)
