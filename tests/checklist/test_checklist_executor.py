"""Tests for the checklist executor."""

import asyncio

import pytest

from shared.config import ExecutionConfig
from shared.models import (
    Checklist,
    ChecklistItem,
    Criterion,
    ExecutionStatus,
    ItemStatus,
    PassRawResult,
    Priority,
    QualityLevel,
    ValidationContext,
    ValidationType,
)
from shared.storage import JSONLBackend

from checklist.executor import ChecklistExecutor, quality_level
from validation.executor import ValidationExecutor
from validation.manual import ManualReviewQueue
from validation.runner import ItemRunner
from validation.tools import ToolRegistry


def _item(item_id: str, priority: Priority = Priority.HIGH, *criteria: Criterion) -> ChecklistItem:
    crits = criteria or (Criterion(id=f"{item_id}-check", validation_method=item_id),)
    return ChecklistItem(
        id=item_id, category="testing", title=item_id.upper(), priority=priority, criteria=crits
    )


def _checklist(*items: ChecklistItem) -> Checklist:
    return Checklist(context=ValidationContext(), items=items)


def _scores(**scores: float) -> ToolRegistry:
    """Tools named after items, each returning a fixed score."""
    tools = ToolRegistry()
    for name, value in scores.items():
        tools.register(name, lambda ctx, v=value: {"score": v})
    return tools


def _executor(tools: ToolRegistry, queue: ManualReviewQueue | None = None, **kw) -> ChecklistExecutor:
    runner = ItemRunner(ValidationExecutor(tools, review_queue=queue, default_timeout=2.0))
    return ChecklistExecutor(runner, **kw)


# --- Completion ---


class TestCompletion:
    @pytest.mark.asyncio
    async def test_all_pass(self):
        executor = _executor(_scores(a=100, b=90))
        result = await executor.execute(_checklist(_item("a"), _item("b")))
        assert result.status == ExecutionStatus.COMPLETED
        assert result.passed
        assert result.overall_score == 95.0
        assert result.pass_rate == 100.0
        assert result.quality_level == QualityLevel.EXCELLENT
        assert result.progress == 100.0
        assert result.finished_at is not None
        assert [r.item_id for r in result.item_results] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_non_critical_failure_continues(self):
        executor = _executor(_scores(a=50, b=100))
        result = await executor.execute(_checklist(_item("a"), _item("b")))
        assert result.status == ExecutionStatus.COMPLETED
        assert result.item_results[1].status == ItemStatus.PASSED
        assert result.overall_score == 75.0
        assert result.pass_rate == 50.0
        assert not result.passed

    @pytest.mark.asyncio
    async def test_passes_at_threshold(self):
        executor = _executor(_scores(a=100, b=60), config=ExecutionConfig(pass_threshold=80))
        item_b = _item("b", Priority.LOW, Criterion(id="b-check", validation_method="b", passing_threshold=50))
        result = await executor.execute(_checklist(_item("a"), item_b))
        assert result.overall_score == 80.0
        assert result.passed

    @pytest.mark.asyncio
    async def test_empty_checklist_vacuously_passes(self):
        result = await _executor(ToolRegistry()).execute(_checklist())
        assert result.status == ExecutionStatus.COMPLETED
        assert result.overall_score == 100.0
        assert result.pass_rate == 100.0
        assert result.critical_pass_rate == 100.0
        assert result.passed

    def test_execute_sync(self):
        result = _executor(_scores(a=100)).execute_sync(_checklist(_item("a")))
        assert result.passed

    @pytest.mark.asyncio
    async def test_persists_finished_result(self, tmp_path):
        store = JSONLBackend(tmp_path)
        executor = _executor(_scores(a=100), store=store)
        result = await executor.execute(_checklist(_item("a")))
        stored = store.get(result.execution_id)
        assert stored is not None
        assert stored.overall_score == 100.0


# --- Critical gating ---


class TestCriticalGating:
    @pytest.mark.asyncio
    async def test_critical_failure_aborts_and_skips_rest(self):
        executor = _executor(_scores(a=40, b=100, c=100))
        checklist = _checklist(_item("a", Priority.CRITICAL), _item("b"), _item("c"))
        result = await executor.execute(checklist)

        assert result.status == ExecutionStatus.ABORTED
        assert not result.passed
        statuses = [r.status for r in result.item_results]
        assert statuses == [ItemStatus.FAILED, ItemStatus.SKIPPED, ItemStatus.SKIPPED]
        assert result.overall_score == 40.0
        assert result.critical_pass_rate == 0.0
        assert result.quality_level == QualityLevel.POOR
        assert result.item_results[0].blockers

    @pytest.mark.asyncio
    async def test_critical_error_aborts(self):
        executor = _executor(ToolRegistry())  # no tools at all
        result = await executor.execute(_checklist(_item("a", Priority.CRITICAL), _item("b")))
        assert result.status == ExecutionStatus.ABORTED
        assert result.item_results[0].status == ItemStatus.ERROR

    @pytest.mark.asyncio
    async def test_high_score_cannot_mask_critical_failure(self):
        # Critical item scores 79 against an 80 threshold; others are perfect
        executor = _executor(_scores(a=100, b=100, c=79))
        checklist = _checklist(_item("a"), _item("b"), _item("c", Priority.CRITICAL))
        result = await executor.execute(checklist)
        assert result.overall_score > 90
        assert not result.passed
        assert result.quality_level == QualityLevel.POOR


# --- Manual input ---


def _manual_item() -> ChecklistItem:
    return _item(
        "review",
        Priority.HIGH,
        Criterion(id="auto", validation_method="review"),
        Criterion(id="human", validation_method="human-review", validation_type=ValidationType.MANUAL),
    )


class TestManualInput:
    @pytest.mark.asyncio
    async def test_suspends_on_pending_review(self):
        queue = ManualReviewQueue()
        executor = _executor(_scores(a=100, review=100, c=100), queue)
        result = await executor.execute(_checklist(_item("a"), _manual_item(), _item("c")))

        assert result.status == ExecutionStatus.AWAITING_INPUT
        assert result.current_item == "review"
        assert len(result.pending_tickets) == 1
        # Not finished: later items are not reported as skipped yet
        assert [r.item_id for r in result.item_results] == ["a", "review"]
        assert result.item_results[1].status == ItemStatus.PENDING
        assert not result.passed

    @pytest.mark.asyncio
    async def test_resume_after_submission(self):
        queue = ManualReviewQueue()
        executor = _executor(_scores(a=100, review=100, c=100), queue)
        suspended = await executor.execute(_checklist(_item("a"), _manual_item(), _item("c")))

        queue.submit_manual_result(suspended.pending_tickets[0], PassRawResult(passed=True))
        result = await executor.resume(suspended.execution_id)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.passed
        assert [r.status for r in result.item_results] == [ItemStatus.PASSED] * 3

    @pytest.mark.asyncio
    async def test_resume_without_submission_stays_suspended(self):
        queue = ManualReviewQueue()
        executor = _executor(_scores(review=100), queue)
        suspended = await executor.execute(_checklist(_manual_item()))
        again = await executor.resume(suspended.execution_id)
        assert again.status == ExecutionStatus.AWAITING_INPUT
        assert again.pending_tickets == suspended.pending_tickets

    @pytest.mark.asyncio
    async def test_resume_rejects_finished_execution(self):
        executor = _executor(_scores(a=100))
        result = await executor.execute(_checklist(_item("a")))
        with pytest.raises(ValueError):
            await executor.resume(result.execution_id)

    @pytest.mark.asyncio
    async def test_resume_unknown_execution(self):
        with pytest.raises(KeyError):
            await _executor(ToolRegistry()).resume("missing")


# --- Cancellation and progress ---


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_suspended_execution(self):
        queue = ManualReviewQueue()
        executor = _executor(_scores(a=100, review=100), queue)
        suspended = await executor.execute(_checklist(_item("a"), _manual_item()))

        result = executor.cancel(suspended.execution_id)
        assert result.status == ExecutionStatus.CANCELLED
        assert [r.status for r in result.item_results] == [ItemStatus.PASSED, ItemStatus.SKIPPED]
        assert not result.passed

    @pytest.mark.asyncio
    async def test_cancel_lets_running_item_finish(self):
        release = asyncio.Event()
        started = asyncio.Event()
        tools = _scores(b=100)

        async def slow(ctx):
            started.set()
            await release.wait()
            return {"score": 100}

        tools.register("a", slow)
        executor = _executor(tools)
        task = asyncio.create_task(executor.execute(_checklist(_item("a"), _item("b"))))

        await started.wait()
        (running,) = executor.executions(ExecutionStatus.RUNNING)
        assert running.current_item == "a"
        assert running.progress == 0.0

        executor.cancel(running.execution_id)
        release.set()
        result = await task

        assert result.status == ExecutionStatus.CANCELLED
        assert [r.status for r in result.item_results] == [ItemStatus.PASSED, ItemStatus.SKIPPED]
        assert result.progress == 50.0

    @pytest.mark.asyncio
    async def test_cancel_finished_is_noop(self):
        executor = _executor(_scores(a=100))
        result = await executor.execute(_checklist(_item("a")))
        assert executor.cancel(result.execution_id).status == ExecutionStatus.COMPLETED

    def test_cancel_unknown(self):
        with pytest.raises(KeyError):
            _executor(ToolRegistry()).cancel("missing")

    @pytest.mark.asyncio
    async def test_snapshot_matches_result(self):
        executor = _executor(_scores(a=90))
        result = await executor.execute(_checklist(_item("a")))
        snap = executor.snapshot(result.execution_id)
        assert snap.overall_score == result.overall_score
        assert snap.status == result.status


# --- Quality levels ---


class TestQualityLevel:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (100, QualityLevel.EXCELLENT),
            (95, QualityLevel.EXCELLENT),
            (94.9, QualityLevel.GOOD),
            (85, QualityLevel.GOOD),
            (70, QualityLevel.FAIR),
            (69.9, QualityLevel.POOR),
        ],
    )
    def test_boundaries(self, score, expected):
        assert quality_level(score, False, ExecutionConfig()) == expected

    def test_critical_failure_is_poor(self):
        assert quality_level(100, True, ExecutionConfig()) == QualityLevel.POOR
