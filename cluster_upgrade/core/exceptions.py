"""
Custom exception classes for upgrade operations.

Provides hierarchical exception handling for granular error categorization
and specific failure scenarios during release transitions.
"""

from typing import List, Optional


class UpgradeError(Exception):
    """Base exception for all upgrade-related errors"""

    fatal = True

    def __init__(self, message: str, remediation: str = None):
        self.message = message
        self.remediation = remediation
        super().__init__(self.message)


class SequenceError(UpgradeError):
    """Raised when a transition does not start from the immediate predecessor"""

    pass


class PreflightError(UpgradeError):
    """Raised when read-only preflight checks fail critically"""

    def __init__(self, message: str, remediation: str = None, result=None):
        super().__init__(message, remediation)
        self.result = result


class ConfirmationRequiredError(UpgradeError):
    """Raised when a gate needs operator confirmation that was not given"""

    pass


class BackupError(UpgradeError):
    """Raised when a snapshot cannot be captured, loaded or restored"""

    pass


class ResourceConflict:
    """One resource rejected by the cluster during apply."""

    def __init__(
        self,
        kind: str,
        name: str,
        field: str = "",
        immutable: bool = False,
        message: str = "",
    ):
        self.kind = kind
        self.name = name
        self.field = field
        self.immutable = immutable
        self.message = message

    def __repr__(self) -> str:
        return (
            f"ResourceConflict(kind={self.kind!r}, name={self.name!r}, "
            f"field={self.field!r}, immutable={self.immutable})"
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "name": self.name,
            "field": self.field,
            "immutable": self.immutable,
            "message": self.message,
        }


class ApplyError(UpgradeError):
    """Raised when a migration or target resource set fails to apply"""

    def __init__(
        self,
        message: str,
        remediation: str = None,
        conflicts: Optional[List[ResourceConflict]] = None,
    ):
        super().__init__(message, remediation)
        self.conflicts = list(conflicts or [])

    @property
    def immutable_conflicts(self) -> List[ResourceConflict]:
        return [c for c in self.conflicts if c.immutable]

    @property
    def only_immutable_conflicts(self) -> bool:
        """True when every rejected resource failed on an immutable field."""
        return bool(self.conflicts) and all(c.immutable for c in self.conflicts)


class HealthTimeoutError(UpgradeError):
    """Raised when components do not become ready within the bounded wait"""

    fatal = False

    def __init__(self, message: str, remediation: str = None, result=None):
        super().__init__(message, remediation)
        self.result = result


class ValidationError(UpgradeError):
    """Raised when post-transition validation reports a critical failure"""

    def __init__(self, message: str, remediation: str = None, outcome=None):
        super().__init__(message, remediation)
        self.outcome = outcome


class ClusterCommandError(UpgradeError):
    """Raised when the cluster control CLI returns an unexpected failure"""

    def __init__(
        self, message: str, remediation: str = None, returncode: int = 1, stderr: str = ""
    ):
        super().__init__(message, remediation)
        self.returncode = returncode
        self.stderr = stderr


class CatalogError(UpgradeError):
    """Raised when the release catalog or an overlay cannot be loaded"""

    pass


class TransitionCancelled(UpgradeError):
    """Raised when a cancellation request is honored at a phase boundary"""

    pass


class UnexpectedTransitionError(UpgradeError):
    """Wraps a non-upgrade exception raised while a transition was running"""

    def __init__(self, error: Exception, remediation: str = None):
        super().__init__(f"Unexpected {type(error).__name__}: {error}", remediation)
        self.original = error
