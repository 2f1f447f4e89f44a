"""Shared data models for the quality pipeline.

Core Pydantic models used across the validation, checklist, and
responsibility packages. Catalog definitions (criteria, items, generated
checklists) are frozen; they are never mutated after loading.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id() -> str:
    return str(uuid.uuid4())


# --- Enums ---


class ValidationType(str, Enum):
    """How a criterion is validated."""

    AUTOMATED = "automated"
    SEMI_AUTOMATED = "semi-automated"
    MANUAL = "manual"


class Priority(str, Enum):
    """Checklist item priority."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank, critical first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class Phase(str, Enum):
    """Delivery phase a checklist item belongs to."""

    PRE_DEVELOPMENT = "pre-development"
    DEVELOPMENT = "development"
    POST_DEVELOPMENT = "post-development"
    DEPLOYMENT = "deployment"


class ChangeType(str, Enum):
    """Kind of change being validated."""

    FEATURE = "feature"
    BUGFIX = "bugfix"
    HOTFIX = "hotfix"
    REFACTOR = "refactor"
    SECURITY = "security"
    UI = "ui"
    DOCUMENTATION = "documentation"
    INFRASTRUCTURE = "infrastructure"


class ItemStatus(str, Enum):
    """Outcome of a single checklist item."""

    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    PENDING = "pending"  # Awaiting manual input
    SKIPPED = "skipped"  # Never attempted


class ExecutionStatus(str, Enum):
    """State of a checklist execution run."""

    PENDING = "pending"
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class QualityLevel(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


class Urgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def for_priority(cls, priority: Priority) -> Urgency:
        """Default urgency when routing a failed item of the given priority."""
        return {
            Priority.CRITICAL: cls.CRITICAL,
            Priority.HIGH: cls.HIGH,
            Priority.MEDIUM: cls.NORMAL,
            Priority.LOW: cls.LOW,
        }[priority]


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    MAX_ESCALATION_REACHED = "max_escalation_reached"


# --- Context ---


class ValidationContext(BaseModel):
    """Describes the change a checklist is generated for."""

    change_type: ChangeType = ChangeType.FEATURE
    includes_security_changes: bool = False
    includes_ui_changes: bool = False
    includes_api_changes: bool = False
    includes_database_changes: bool = False
    performance_sensitive: bool = False
    technologies: list[str] = Field(default_factory=list)
    requested_by: str = ""
    confirmations: set[str] = Field(default_factory=set)  # Confirmed criterion ids
    metadata: dict[str, Any] = Field(default_factory=dict)

    def has_flag(self, name: str) -> bool:
        """Check a boolean flag by name; unknown names fall back to metadata."""
        value = getattr(self, name, None) if name in type(self).model_fields else None
        if isinstance(value, bool):
            return value
        return bool(self.metadata.get(name))

    def uses_technology(self, technology: str) -> bool:
        wanted = technology.lower()
        return any(t.lower() == wanted for t in self.technologies)


# --- Catalog Models ---


class Criterion(BaseModel):
    """One measurable check within a checklist item."""

    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    validation_type: ValidationType = ValidationType.AUTOMATED
    validation_method: str
    passing_threshold: int = Field(default=80, ge=0, le=100)
    weight: int = Field(default=1, gt=0)
    timeout_seconds: float | None = Field(default=None, gt=0)


class Applicability(BaseModel):
    """When a catalog item is selected into a checklist.

    An item with no conditions at all belongs to the base set and is
    always selected. Otherwise any single matching condition selects it.
    """

    model_config = ConfigDict(frozen=True)

    always: bool = False
    change_types: tuple[ChangeType, ...] = ()
    flags: tuple[str, ...] = ()
    technologies: tuple[str, ...] = ()

    @property
    def is_base(self) -> bool:
        return self.always or not (self.change_types or self.flags or self.technologies)

    def matches(self, context: ValidationContext) -> bool:
        if self.is_base:
            return True
        if context.change_type in self.change_types:
            return True
        if any(context.has_flag(flag) for flag in self.flags):
            return True
        return any(context.uses_technology(tech) for tech in self.technologies)


class ChecklistItem(BaseModel):
    """A quality dimension grouping one or more criteria."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: str
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    phase: Phase = Phase.DEVELOPMENT
    dependencies: tuple[str, ...] = ()
    criteria: tuple[Criterion, ...] = ()
    estimated_time: int = Field(default=0, ge=0)  # minutes
    guideline: str = ""
    applies_when: Applicability = Field(default_factory=Applicability)

    @model_validator(mode="after")
    def _unique_criterion_ids(self) -> ChecklistItem:
        seen: set[str] = set()
        for criterion in self.criteria:
            if criterion.id in seen:
                raise ValueError(f"Duplicate criterion id '{criterion.id}' in item '{self.id}'")
            seen.add(criterion.id)
        return self


class Checklist(BaseModel):
    """A generated, context-bound, dependency-ordered set of items."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    context: ValidationContext
    items: tuple[ChecklistItem, ...] = ()
    estimated_duration: int = 0  # minutes
    automation_coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=datetime.now)

    def get_item(self, item_id: str) -> ChecklistItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise KeyError(f"Item '{item_id}' not in checklist '{self.id}'.")


# --- Raw Validator Results ---


class ScoreRawResult(BaseModel):
    """Validator reported a score on a 0-100 scale."""

    kind: Literal["score"] = "score"
    score: float
    confirmed: bool = False
    details: str = ""


class PassRawResult(BaseModel):
    """Validator reported a plain pass/fail (mapped to 100/0)."""

    kind: Literal["passed"] = "passed"
    passed: bool
    confirmed: bool = False
    details: str = ""


class PercentageRawResult(BaseModel):
    """Validator reported a percentage, e.g. line coverage."""

    kind: Literal["percentage"] = "percentage"
    percentage: float
    confirmed: bool = False
    details: str = ""


RawResult = Annotated[
    Union[ScoreRawResult, PassRawResult, PercentageRawResult],
    Field(discriminator="kind"),
]


class PendingReview(BaseModel):
    """A manual criterion is waiting for a human-submitted result."""

    ticket_id: str
    criterion_id: str


# --- Result Models ---


class CriterionResult(BaseModel):
    """Outcome of running one criterion."""

    criterion_id: str
    passed: bool
    score: float = Field(ge=0.0, le=100.0)
    duration_ms: float = 0.0
    details: str = ""
    error: str | None = None
    pending: bool = False
    ticket_id: str | None = None


class ChecklistItemResult(BaseModel):
    """Outcome of one checklist item."""

    item_id: str
    title: str = ""
    priority: Priority = Priority.MEDIUM
    status: ItemStatus
    passed: bool = False
    score: float = Field(default=0.0, ge=0.0, le=100.0)
    criterion_results: list[CriterionResult] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def ran(self) -> bool:
        """Whether the item finished evaluating (not skipped, not pending)."""
        return self.status in (ItemStatus.PASSED, ItemStatus.FAILED, ItemStatus.ERROR)


class ChecklistExecutionResult(BaseModel):
    """Aggregate outcome of a checklist execution run."""

    execution_id: str = Field(default_factory=_new_id)
    checklist_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    item_results: list[ChecklistItemResult] = Field(default_factory=list)
    overall_score: float = Field(default=0.0, ge=0.0, le=100.0)
    pass_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    critical_pass_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    passed: bool = False
    quality_level: QualityLevel = QualityLevel.POOR
    current_item: str | None = None
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    pending_tickets: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def failed_items(self) -> list[ChecklistItemResult]:
        return [r for r in self.item_results if r.status in (ItemStatus.FAILED, ItemStatus.ERROR)]


# --- Responsibility Models ---


class Person(BaseModel):
    """Someone who can own, review, or approve checklist items."""

    name: str
    roles: list[str] = Field(default_factory=list)
    available: bool = True
    contact: str = ""


class ResponsibilityAssignment(BaseModel):
    """Binds a checklist item to the people responsible for it."""

    id: str = Field(default_factory=_new_id)
    checklist_id: str = ""
    item_id: str
    priority: Priority = Priority.MEDIUM
    primary_role: str
    primary_owner: str
    secondary_owners: list[str] = Field(default_factory=list)
    reviewers: list[str] = Field(default_factory=list)
    approvers: list[str] = Field(default_factory=list)
    escalation_path: list[str] = Field(default_factory=list)
    sla_hours: float = Field(default=24.0, gt=0)
    assigned_at: datetime = Field(default_factory=datetime.now)
    due_date: datetime | None = None
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    escalation_level: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _critical_items_need_escalation_path(self) -> ResponsibilityAssignment:
        if self.priority == Priority.CRITICAL and not self.escalation_path:
            raise ValueError(f"Critical item '{self.item_id}' needs a non-empty escalation path")
        return self


class EscalationRecord(BaseModel):
    """One hop along an assignment's escalation path."""

    id: str = Field(default_factory=_new_id)
    assignment_id: str
    from_role: str
    to_role: str
    to_person: str | None = None
    reason: str = ""
    urgency: Urgency = Urgency.NORMAL
    level: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=datetime.now)


class ResponsibilityReport(BaseModel):
    """Assignments for a checklist plus the items nobody could take."""

    checklist_id: str
    assignments: list[ResponsibilityAssignment] = Field(default_factory=list)
    unassigned: dict[str, str] = Field(default_factory=dict)  # item id -> reason

    def for_item(self, item_id: str) -> ResponsibilityAssignment | None:
        for assignment in self.assignments:
            if assignment.item_id == item_id:
                return assignment
        return None
