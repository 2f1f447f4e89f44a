"""Checklist item runner.

Runs every criterion of an item concurrently (fan-out/fan-in), then
combines the criterion results into a weighted item score. An item only
passes when every one of its criteria passes; a critical item that fails
carries blockers.
"""

from __future__ import annotations

import asyncio
import logging
import time

from shared.models import (
    ChecklistItem,
    ChecklistItemResult,
    Criterion,
    CriterionResult,
    ItemStatus,
    PendingReview,
    Priority,
    ValidationContext,
)

from validation import scorer
from validation.executor import ValidationExecutor

logger = logging.getLogger(__name__)


class ItemRunner:
    """Executes the criteria of a checklist item and aggregates them.

    Args:
        executor: Validation executor used for each criterion.
        concurrency: Max criteria of one item validated at the same time.
    """

    DEFAULT_CONCURRENCY = 8

    def __init__(self, executor: ValidationExecutor, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self.executor = executor
        self.concurrency = concurrency

    async def run(
        self,
        item: ChecklistItem,
        context: ValidationContext,
        *,
        scope: str = "",
    ) -> ChecklistItemResult:
        """Run all criteria of ``item``. Never raises for criterion failures."""
        semaphore = asyncio.Semaphore(self.concurrency)
        started = time.perf_counter()

        async def _run_criterion(criterion: Criterion) -> CriterionResult:
            async with semaphore:
                t0 = time.perf_counter()
                try:
                    outcome = await self.executor.execute(
                        criterion, context, scope=scope, item_id=item.id
                    )
                    if isinstance(outcome, PendingReview):
                        return scorer.pending_result(criterion, outcome)
                    return scorer.score(
                        outcome, criterion, duration_ms=(time.perf_counter() - t0) * 1000
                    )
                except Exception as e:
                    logger.warning("Criterion %s/%s failed: %s", item.id, criterion.id, e)
                    return scorer.error_result(
                        criterion, e, duration_ms=(time.perf_counter() - t0) * 1000
                    )

        results = await asyncio.gather(*[_run_criterion(c) for c in item.criteria])
        result = aggregate_item(item, list(results))
        result.duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "Item %s: %s (score %.1f, %d criteria)",
            item.id,
            result.status.value,
            result.score,
            len(item.criteria),
        )
        return result


def aggregate_item(item: ChecklistItem, results: list[CriterionResult]) -> ChecklistItemResult:
    """Combine criterion results into an item result.

    Score is the weight-normalized mean of criterion scores. An item with no
    criteria is vacuously satisfied and scores 100. Any pending criterion
    leaves the whole item pending.
    """
    if any(r.pending for r in results):
        return ChecklistItemResult(
            item_id=item.id,
            title=item.title,
            priority=item.priority,
            status=ItemStatus.PENDING,
            passed=False,
            score=0.0,
            criterion_results=results,
        )

    weights = {c.id: c.weight for c in item.criteria}
    total_weight = sum(weights.get(r.criterion_id, 0) for r in results)
    if total_weight == 0:
        item_score = 100.0
    else:
        weighted = sum(r.score * weights.get(r.criterion_id, 0) for r in results)
        item_score = round(weighted / total_weight, 2)

    passed = all(r.passed for r in results)
    if passed:
        status = ItemStatus.PASSED
    elif any(r.error for r in results):
        status = ItemStatus.ERROR
    else:
        status = ItemStatus.FAILED

    blockers: list[str] = []
    if item.priority == Priority.CRITICAL and not passed:
        thresholds = {c.id: c.passing_threshold for c in item.criteria}
        for r in results:
            if r.passed:
                continue
            blockers.append(
                f"BLOCKED: {item.id}/{r.criterion_id} scored {r.score:.0f}, "
                f"below threshold {thresholds.get(r.criterion_id, 0)}"
                + (f" ({r.details})" if r.details else "")
            )

    return ChecklistItemResult(
        item_id=item.id,
        title=item.title,
        priority=item.priority,
        status=status,
        passed=passed,
        score=item_score,
        criterion_results=results,
        blockers=blockers,
    )
