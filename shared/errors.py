"""Exception taxonomy for the quality pipeline.

Validation errors are recovered per criterion, structural errors fail
checklist generation, assignment errors are recovered per item, and
escalation errors are surfaced to the caller.
"""

from __future__ import annotations


class QualityPipelineError(Exception):
    """Base class for all pipeline errors."""


# --- Validation-local errors (recovered at criterion level) ---


class ValidationError(QualityPipelineError):
    """A single criterion could not be validated."""


class ToolUnavailable(ValidationError):
    """No validator tool is registered for a validation method, or it cannot run."""

    def __init__(self, method: str, reason: str = "") -> None:
        self.method = method
        message = f"Validator tool '{method}' is unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ValidationTimeout(ValidationError):
    """A validator did not return within its timeout."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"Validator '{method}' timed out after {timeout:g}s")


class MalformedResultError(ValidationError):
    """A validator returned a result of an unknown shape."""


# --- Structural errors (fatal to generation) ---


class ChecklistStructureError(QualityPipelineError):
    """The catalog cannot produce a well-formed checklist."""


class DependencyCycleError(ChecklistStructureError):
    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle between items: {' -> '.join(cycle)}")


class MissingDependencyError(ChecklistStructureError):
    def __init__(self, item_id: str, missing_id: str) -> None:
        self.item_id = item_id
        self.missing_id = missing_id
        super().__init__(f"Item '{item_id}' depends on unknown item '{missing_id}'")


# --- Assignment errors ---


class AssignmentError(QualityPipelineError):
    """An item cannot be assigned; recovered per item by the resolver."""

    def __init__(self, item_id: str, message: str) -> None:
        self.item_id = item_id
        super().__init__(message)


class NoAvailableOwnerError(AssignmentError):
    """Nobody holding the primary role is currently available."""

    def __init__(self, item_id: str, role: str) -> None:
        self.role = role
        super().__init__(item_id, f"No available owner with role '{role}' for item '{item_id}'")


class NoResponsibilityRuleError(AssignmentError):
    """No rule of the responsibility matrix matches the item."""

    def __init__(self, item_id: str) -> None:
        super().__init__(item_id, f"No responsibility rule matches item '{item_id}'")


class MissingEscalationPathError(AssignmentError):
    """A critical item resolved to an empty escalation path."""

    def __init__(self, item_id: str) -> None:
        super().__init__(item_id, f"Critical item '{item_id}' has no escalation path")


# --- Escalation errors ---


class MaxEscalationReached(QualityPipelineError):
    """The escalation path of an assignment is exhausted."""

    def __init__(self, assignment_id: str, level: int) -> None:
        self.assignment_id = assignment_id
        self.level = level
        super().__init__(
            f"Assignment '{assignment_id}' already escalated to the last level ({level})"
        )
