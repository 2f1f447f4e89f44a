"""Criterion scorer.

Pure functions that normalize raw validator results onto a 0-100 scale
and apply the criterion's passing threshold. No I/O and no state.
"""

from __future__ import annotations

import math

from shared.errors import MalformedResultError
from shared.models import (
    Criterion,
    CriterionResult,
    PassRawResult,
    PendingReview,
    PercentageRawResult,
    RawResult,
    ScoreRawResult,
    ValidationType,
)


def normalize(raw: RawResult) -> float:
    """Map a raw result onto [0, 100].

    Raises:
        MalformedResultError: For NaN values or unknown result variants.
    """
    if isinstance(raw, ScoreRawResult):
        value = raw.score
    elif isinstance(raw, PercentageRawResult):
        value = raw.percentage
    elif isinstance(raw, PassRawResult):
        value = 100.0 if raw.passed else 0.0
    else:
        raise MalformedResultError(f"Unknown raw result type: {type(raw).__name__}")

    if math.isnan(value):
        raise MalformedResultError("Validator returned NaN")
    return min(max(float(value), 0.0), 100.0)


def score(raw: RawResult, criterion: Criterion, *, duration_ms: float = 0.0) -> CriterionResult:
    """Score a raw result against a criterion.

    Semi-automated results without human confirmation score 0: the tool's
    recommendation alone never passes a criterion.
    """
    value = normalize(raw)
    details = raw.details

    if criterion.validation_type == ValidationType.SEMI_AUTOMATED and not raw.confirmed:
        details = f"Recommendation {value:.0f}/100 awaiting human confirmation" + (
            f"; {raw.details}" if raw.details else ""
        )
        value = 0.0

    return CriterionResult(
        criterion_id=criterion.id,
        passed=value >= criterion.passing_threshold,
        score=value,
        duration_ms=duration_ms,
        details=details,
    )


def error_result(criterion: Criterion, error: Exception, *, duration_ms: float = 0.0) -> CriterionResult:
    """Failed result for a criterion whose validation raised."""
    message = str(error) or type(error).__name__
    return CriterionResult(
        criterion_id=criterion.id,
        passed=False,
        score=0.0,
        duration_ms=duration_ms,
        details=f"{type(error).__name__}: {message}",
        error=type(error).__name__,
    )


def pending_result(criterion: Criterion, review: PendingReview) -> CriterionResult:
    """Placeholder result for a manual criterion still awaiting review."""
    return CriterionResult(
        criterion_id=criterion.id,
        passed=False,
        score=0.0,
        details=f"Awaiting manual review (ticket {review.ticket_id})",
        pending=True,
        ticket_id=review.ticket_id,
    )
