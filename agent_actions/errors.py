"""Error kinds raised by the synchronizer.

Every error carries an HTTP-agnostic kind and a human-readable message.
Secret metadata never appears in an error payload.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Kinds of errors surfaced to the boundary layer."""
    VALIDATION = "validation_error"
    DOMAIN_NOT_ALLOWED = "domain_not_allowed"
    NOT_FOUND = "not_found"
    INVALID_REFERENCE = "invalid_reference_format"
    STORE = "store_error"


class ActionSyncError(Exception):
    """Base class for synchronizer errors."""

    kind: ErrorKind = ErrorKind.STORE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"kind": self.kind.value, "message": self.message}


class ValidationError(ActionSyncError):
    """Missing functions, missing domain, or nothing to unbind."""
    kind = ErrorKind.VALIDATION


class DomainNotAllowed(ActionSyncError):
    """The action's domain is rejected by the allowlist."""
    kind = ErrorKind.DOMAIN_NOT_ALLOWED

    def __init__(self, domain: Optional[str]):
        super().__init__("Domain not allowed")
        self.domain = domain


class NotFound(ActionSyncError):
    """Action or agent absent, or invisible to the caller."""
    kind = ErrorKind.NOT_FOUND


class InvalidReferenceFormat(ActionSyncError):
    """A reference component contains the delimiter or cannot be parsed."""
    kind = ErrorKind.INVALID_REFERENCE


class StoreError(ActionSyncError):
    """Underlying persistence failure."""
    kind = ErrorKind.STORE


class CascadeError(StoreError):
    """One or more per-agent writes failed during a cascade.

    Agents not listed in ``failed_agent_ids`` were updated. Re-running the
    operation (or reconciling the action) converges the rest.
    """

    def __init__(self, action_id: str, failed_agent_ids: List[str]):
        super().__init__(
            f"Failed to update {len(failed_agent_ids)} agent(s) referencing action {action_id}"
        )
        self.action_id = action_id
        self.failed_agent_ids = list(failed_agent_ids)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["failed_agent_ids"] = self.failed_agent_ids
        return data
