"""Checklist executor.

Drives a generated checklist through the item runner, one item at a time
in topological order:

  pending → running → completed
                    → aborted         (a critical item failed)
                    → cancelled       (cancel requested)
                    → awaiting_input  (an item has open manual reviews;
                                       resume() continues from that item)

Items never attempted are reported as skipped. Progress snapshots can be
read from other threads while a run is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from datetime import datetime

from shared.config import ExecutionConfig
from shared.models import (
    Checklist,
    ChecklistExecutionResult,
    ChecklistItemResult,
    ExecutionStatus,
    ItemStatus,
    Priority,
    QualityLevel,
)
from shared.storage import ExecutionStore

from validation.runner import ItemRunner

logger = logging.getLogger(__name__)

_TERMINAL = (ExecutionStatus.COMPLETED, ExecutionStatus.ABORTED, ExecutionStatus.CANCELLED)


class _Run:
    """Mutable state of one execution. Guarded by ``lock``."""

    def __init__(self, checklist: Checklist) -> None:
        self.execution_id = str(uuid.uuid4())
        self.checklist = checklist
        self.status = ExecutionStatus.PENDING
        self.results: dict[str, ChecklistItemResult] = {}
        self.next_index = 0
        self.current_item: str | None = None
        self.cancel_requested = False
        self.started_at = datetime.now()
        self.finished_at: datetime | None = None
        self.lock = threading.Lock()
        self.drive_lock = asyncio.Lock()


class ChecklistExecutor:
    """Runs checklists and keeps track of their executions.

    Args:
        runner: Item runner used for every checklist item.
        config: Pass threshold and quality level boundaries.
        store: Optional store that receives every finished result.
    """

    def __init__(
        self,
        runner: ItemRunner,
        config: ExecutionConfig | None = None,
        store: ExecutionStore | None = None,
    ) -> None:
        self.runner = runner
        self.config = config or ExecutionConfig()
        self.store = store
        self._runs: dict[str, _Run] = {}
        self._runs_lock = threading.Lock()

    # --- Public API ---

    async def execute(self, checklist: Checklist) -> ChecklistExecutionResult:
        """Start a new execution of ``checklist`` and run until it finishes or suspends.

        Never raises for validation failures; the returned result carries them.
        """
        run = _Run(checklist)
        with self._runs_lock:
            self._runs[run.execution_id] = run
        logger.info(
            "Execution %s started for checklist %s (%d items)",
            run.execution_id,
            checklist.id,
            len(checklist.items),
        )
        return await self._drive(run)

    def execute_sync(self, checklist: Checklist) -> ChecklistExecutionResult:
        """Blocking wrapper around execute() for callers without an event loop."""
        return asyncio.run(self.execute(checklist))

    async def resume(self, execution_id: str) -> ChecklistExecutionResult:
        """Continue an execution that was waiting for manual input.

        Raises:
            KeyError: Unknown execution.
            ValueError: The execution is not awaiting input.
        """
        run = self._get_run(execution_id)
        with run.lock:
            if run.status != ExecutionStatus.AWAITING_INPUT:
                raise ValueError(
                    f"Execution '{execution_id}' is not awaiting input (status: {run.status.value})."
                )
        logger.info("Execution %s resumed at item %s", execution_id, run.current_item)
        return await self._drive(run)

    def cancel(self, execution_id: str) -> ChecklistExecutionResult:
        """Stop issuing new work for an execution.

        A running item is allowed to finish and its result is kept; items
        after it are skipped. A suspended or not yet started execution is
        cancelled immediately.

        Raises:
            KeyError: Unknown execution.
        """
        run = self._get_run(execution_id)
        finished = False
        with run.lock:
            if run.status in _TERMINAL:
                return self._snapshot(run)
            run.cancel_requested = True
            if run.status in (ExecutionStatus.PENDING, ExecutionStatus.AWAITING_INPUT):
                run.results.pop(run.current_item or "", None)
                self._finish(run, ExecutionStatus.CANCELLED)
                finished = True
            snapshot = self._snapshot(run)
        logger.warning("Execution %s cancellation requested", execution_id)
        if finished:
            self._persist(snapshot)
        return snapshot

    def snapshot(self, execution_id: str) -> ChecklistExecutionResult:
        """Current progress of an execution.

        Raises:
            KeyError: Unknown execution.
        """
        run = self._get_run(execution_id)
        with run.lock:
            return self._snapshot(run)

    def checklist_for(self, execution_id: str) -> Checklist:
        """The checklist an execution is running.

        Raises:
            KeyError: Unknown execution.
        """
        return self._get_run(execution_id).checklist

    def executions(self, status: ExecutionStatus | None = None) -> list[ChecklistExecutionResult]:
        with self._runs_lock:
            runs = list(self._runs.values())
        snapshots = []
        for run in runs:
            with run.lock:
                if status is None or run.status == status:
                    snapshots.append(self._snapshot(run))
        return snapshots

    # --- Driving ---

    def _get_run(self, execution_id: str) -> _Run:
        with self._runs_lock:
            run = self._runs.get(execution_id)
        if run is None:
            raise KeyError(f"Execution '{execution_id}' not found.")
        return run

    async def _drive(self, run: _Run) -> ChecklistExecutionResult:
        async with run.drive_lock:
            with run.lock:
                if run.status in _TERMINAL:
                    return self._snapshot(run)
                run.status = ExecutionStatus.RUNNING

            items = run.checklist.items
            final_status = ExecutionStatus.COMPLETED

            while run.next_index < len(items):
                item = items[run.next_index]
                with run.lock:
                    if run.cancel_requested:
                        final_status = ExecutionStatus.CANCELLED
                        break
                    run.current_item = item.id

                result = await self.runner.run(item, run.checklist.context, scope=run.execution_id)

                with run.lock:
                    if run.cancel_requested and result.status == ItemStatus.PENDING:
                        final_status = ExecutionStatus.CANCELLED
                        break
                    run.results[item.id] = result
                    if result.status == ItemStatus.PENDING:
                        run.status = ExecutionStatus.AWAITING_INPUT
                        snapshot = self._snapshot(run)
                        logger.info(
                            "Execution %s awaiting manual input for item %s (%d tickets)",
                            run.execution_id,
                            item.id,
                            len(snapshot.pending_tickets),
                        )
                        return snapshot
                    run.next_index += 1

                if item.priority == Priority.CRITICAL and not result.passed:
                    logger.warning(
                        "Execution %s aborted: critical item %s %s",
                        run.execution_id,
                        item.id,
                        result.status.value,
                    )
                    final_status = ExecutionStatus.ABORTED
                    break

            with run.lock:
                self._finish(run, final_status)
                snapshot = self._snapshot(run)

        logger.info(
            "Execution %s %s: score %.1f, %s",
            run.execution_id,
            snapshot.status.value,
            snapshot.overall_score,
            "passed" if snapshot.passed else "not passed",
        )
        self._persist(snapshot)
        return snapshot

    @staticmethod
    def _finish(run: _Run, status: ExecutionStatus) -> None:
        run.status = status
        run.current_item = None
        run.finished_at = datetime.now()

    def _persist(self, snapshot: ChecklistExecutionResult) -> None:
        if self.store is not None:
            self.store.append(snapshot)

    def _snapshot(self, run: _Run) -> ChecklistExecutionResult:
        """Build a result from run state. Caller holds ``run.lock``."""
        finished = run.status in _TERMINAL
        item_results: list[ChecklistItemResult] = []
        for item in run.checklist.items:
            result = run.results.get(item.id)
            if result is not None:
                item_results.append(result)
            elif finished:
                item_results.append(
                    ChecklistItemResult(
                        item_id=item.id,
                        title=item.title,
                        priority=item.priority,
                        status=ItemStatus.SKIPPED,
                    )
                )

        total = len(run.checklist.items)
        attempted = sum(1 for r in item_results if r.status != ItemStatus.SKIPPED)
        progress = 100.0 if total == 0 and finished else (attempted / total * 100 if total else 0.0)

        return summarize(
            item_results,
            status=run.status,
            config=self.config,
            execution_id=run.execution_id,
            checklist_id=run.checklist.id,
            current_item=run.current_item,
            progress=round(progress, 2),
            started_at=run.started_at,
            finished_at=run.finished_at,
        )


def quality_level(score: float, critical_failed: bool, config: ExecutionConfig) -> QualityLevel:
    """Map an overall score to a quality level. Any critical failure is Poor."""
    if critical_failed:
        return QualityLevel.POOR
    levels = config.quality_levels
    if score >= levels.excellent:
        return QualityLevel.EXCELLENT
    if score >= levels.good:
        return QualityLevel.GOOD
    if score >= levels.fair:
        return QualityLevel.FAIR
    return QualityLevel.POOR


def summarize(
    item_results: list[ChecklistItemResult],
    *,
    status: ExecutionStatus,
    config: ExecutionConfig,
    execution_id: str,
    checklist_id: str,
    current_item: str | None = None,
    progress: float = 0.0,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
) -> ChecklistExecutionResult:
    """Aggregate item results into an execution result.

    Only items that actually ran count towards the scores: skipped and
    pending items are left out of every mean. A completed run with no
    items at all is vacuously perfect.
    """
    ran = [r for r in item_results if r.ran]
    critical = [r for r in ran if r.priority == Priority.CRITICAL]
    critical_failed = any(not r.passed for r in critical)

    vacuous = 100.0 if status == ExecutionStatus.COMPLETED else 0.0
    overall = round(sum(r.score for r in ran) / len(ran), 2) if ran else vacuous
    pass_rate = round(sum(1 for r in ran if r.passed) / len(ran) * 100, 2) if ran else vacuous
    critical_pass_rate = (
        round(sum(1 for r in critical if r.passed) / len(critical) * 100, 2) if critical else 100.0
    )

    passed = (
        status == ExecutionStatus.COMPLETED
        and not critical_failed
        and overall >= config.pass_threshold
    )

    pending_tickets = [
        cr.ticket_id
        for r in item_results
        if r.status == ItemStatus.PENDING
        for cr in r.criterion_results
        if cr.pending and cr.ticket_id
    ]

    return ChecklistExecutionResult(
        execution_id=execution_id,
        checklist_id=checklist_id,
        status=status,
        item_results=item_results,
        overall_score=overall,
        pass_rate=pass_rate,
        critical_pass_rate=critical_pass_rate,
        passed=passed,
        quality_level=quality_level(overall, critical_failed, config),
        current_item=current_item,
        progress=progress,
        pending_tickets=pending_tickets,
        started_at=started_at or datetime.now(),
        finished_at=finished_at,
    )
