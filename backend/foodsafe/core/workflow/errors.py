class WorkflowError(Exception):
    """Base class for every error raised by the workflow engine."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(WorkflowError):
    """Illegal transition or missing/invalid field. Never retried."""


class NotFoundError(WorkflowError):
    """A referenced record (or CAPA source) does not exist."""


class ConflictError(WorkflowError):
    """The request clashes with the record's current state."""


class StoreError(WorkflowError):
    """Failure reported by the persistence collaborator."""


class TransportError(StoreError):
    """Store unreachable or timed out. Safe for the caller to retry."""


class ConstraintViolation(StoreError):
    """The store rejected a write on an integrity constraint."""
