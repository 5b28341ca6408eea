"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "domain_error"


class NotFound(DomainException):
    """Request id does not exist"""

    code = "not_found"


class InvalidState(DomainException):
    """Transition attempted from a terminal state or at the wrong step"""

    code = "invalid_state"


class Forbidden(DomainException):
    """Acting role or identity is not allowed to perform the operation"""

    code = "forbidden"


class AlreadyConfirmed(DomainException):
    """Execution stage already has a confirmation record"""

    code = "already_confirmed"


class RevisionNotAllowed(DomainException):
    """Revision attempted outside the DSP review window"""

    code = "revision_not_allowed"


class ValidationError(DomainException):
    """Parameters are malformed or outside configured limits"""

    code = "validation_error"


class ConflictRetry(DomainException):
    """Concurrent writer changed the request; the caller may retry"""

    code = "conflict_retry"
