"""
Protocol wizard error taxonomy.

Every error leaves already-entered operator input intact; callers decide
whether to retry, acknowledge, fall back or abort the current operation.
"""

from typing import Optional


class ProtocolWizardError(Exception):
    """Base class for all wizard, storage and generation errors"""


class ValidationError(ProtocolWizardError):
    """A required field is missing or out of range. Blocks step advancement."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        self.message = message or f"'{field}' is required"
        super().__init__(self.message)


class SafetyGateError(ProtocolWizardError):
    """Healthcare-provider approval is required but not acknowledged."""

    def __init__(self, message: str = "Healthcare provider approval must be acknowledged before continuing",
                 reasons: Optional[list] = None):
        self.reasons = list(reasons or [])
        super().__init__(message)


class GenerationError(ProtocolWizardError):
    """The AI generation collaborator failed. The template fallback stays available."""

    def __init__(self, message: str, transient: bool = True):
        self.transient = transient
        super().__init__(message)


class PersistenceError(ProtocolWizardError):
    """The storage collaborator rejected a write. The session is kept for retry."""


class NotFoundError(ProtocolWizardError):
    """Unknown template, protocol, version, customer or assignment id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class WizardStateError(ProtocolWizardError):
    """Operation not allowed in the session's current state."""


class PermissionDeniedError(ProtocolWizardError):
    """The supplied identity may not perform the operation."""
