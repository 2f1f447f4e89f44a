"""Request and response schemas for the REST API.

Thin wrappers around shared models to define API-specific fields
(e.g. optional inputs, response envelopes).
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from shared.models import (
    Checklist,
    ChecklistExecutionResult,
    EscalationRecord,
    RawResult,
    ResponsibilityReport,
    Urgency,
    ValidationContext,
)


# --- Requests ---


class ChecklistRequest(BaseModel):
    """Request body for POST /checklists and POST /executions."""

    context: ValidationContext = Field(default_factory=ValidationContext)


class ReviewSubmission(BaseModel):
    """Request body for POST /reviews/{ticket_id}."""

    result: RawResult
    submitted_by: str = Field(default="", description="Who performed the review.")
    resume: bool = Field(default=True, description="Resume the execution once no tickets are open.")


class EscalationRequest(BaseModel):
    """Request body for POST /escalations."""

    assignment_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, description="Why the assignment is escalated.")
    urgency: Urgency = Urgency.NORMAL


# --- Responses ---


class ChecklistResponse(BaseModel):
    """Response for POST /checklists."""

    checklist: Checklist
    item_ids: list[str] = Field(default_factory=list)


class ExecutionResponse(BaseModel):
    """Response for execution endpoints."""

    result: ChecklistExecutionResult
    responsibilities: ResponsibilityReport | None = None
    escalations: list[EscalationRecord] = Field(default_factory=list)


class ReviewResponse(BaseModel):
    """Response for POST /reviews/{ticket_id}."""

    ticket_id: str
    resumed: bool = False
    result: ChecklistExecutionResult | None = None
    responsibilities: ResponsibilityReport | None = None
    escalations: list[EscalationRecord] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response for GET /health."""

    status: str = "ok"
    version: str = ""


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
