"""
Checklist error taxonomy.
Routes translate these into HTTP responses; the engine never raises HTTPException itself.
"""
from typing import Optional, Sequence


class ChecklistError(Exception):
    """Base class for checklist failures."""

    code = "CHECKLIST_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidTransition(ChecklistError):
    """Raised when a move is not allowed by the guard table. Nothing is written."""

    code = "INVALID_TRANSITION"

    def __init__(self, message: str = "Cannot move equipment here", current_status: Optional[str] = None, requested_status: Optional[str] = None):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(message)


class PermissionDenied(InvalidTransition):
    """Raised when the acting user's role does not allow the operation."""

    code = "PERMISSION_DENIED"


class RuleViolation(ChecklistError):
    """A checklist rule outside the state machine was broken (duplicate department, non-empty warehouse...)."""

    code = "RULE_VIOLATION"


class NotFound(ChecklistError):
    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id, message: Optional[str] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(message or f"{entity_type} not found")


class PersistenceError(ChecklistError):
    """Raised when the store could not write the primary record."""

    code = "PERSISTENCE_ERROR"


class PartialAccessoryFailure(ChecklistError):
    """
    The main item moved (or was created) but its accessories did not.
    Carried on the operation outcome as a warning; the operation still succeeds.
    """

    code = "PARTIAL_ACCESSORY_FAILURE"

    def __init__(self, accessory_ids: Sequence, message: str = "Equipment was updated, but its accessories were not"):
        self.accessory_ids = list(accessory_ids)
        super().__init__(message)


class LogWriteFailure(ChecklistError):
    """Raised by the store when an audit entry cannot be written. Always swallowed by the audit logger."""

    code = "LOG_WRITE_FAILURE"
