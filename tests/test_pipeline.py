"""End-to-end tests for the quality pipeline."""

import pytest

from shared.config import QualityPipelineConfig, ResponsibilityConfig
from shared.errors import DependencyCycleError, MaxEscalationReached
from shared.models import (
    AssignmentStatus,
    ExecutionStatus,
    ItemStatus,
    PassRawResult,
    Person,
    Urgency,
    ValidationContext,
)
from shared.storage import JSONLBackend

from checklist.catalog import CatalogRegistry
from pipeline import QualityPipeline
from validation.tools import ToolRegistry

TEAM = [
    Person(name="dev-ann", roles=["developer"]),
    Person(name="lead-lee", roles=["tech-lead"]),
    Person(name="em-eve", roles=["engineering-manager"]),
]


def _catalog(manual: bool = False) -> CatalogRegistry:
    review = [
        {"id": "walkthrough", "validation_type": "manual", "validation_method": "walkthrough"}
    ] if manual else []
    return CatalogRegistry.from_dicts(
        [
            {
                "id": "unit-tests",
                "category": "testing",
                "title": "Unit tests",
                "priority": "critical",
                "criteria": [
                    {"id": "tests-pass", "validation_method": "unit-tests", "weight": 3},
                    {"id": "coverage", "validation_method": "coverage", "weight": 2},
                ],
            },
            {
                "id": "docs",
                "category": "documentation",
                "title": "Docs",
                "priority": "low",
                "dependencies": ["unit-tests"],
                "criteria": [{"id": "docstrings", "validation_method": "docstrings"}, *review],
            },
        ]
    )


def _tools(coverage: float = 92.0) -> ToolRegistry:
    tools = ToolRegistry()
    tools.register("unit-tests", lambda ctx: {"passed": True})
    tools.register("coverage", lambda ctx: {"percentage": coverage})
    tools.register("docstrings", lambda ctx: {"score": 85})
    return tools


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, recipient, payload):
        self.sent.append((recipient, payload))


def _pipeline(coverage=92.0, manual=False, **kw) -> QualityPipeline:
    config = QualityPipelineConfig(responsibility=ResponsibilityConfig(people=TEAM))
    return QualityPipeline(config, catalog=_catalog(manual), tools=_tools(coverage), **kw)


# --- Happy path ---


class TestPassingRun:
    @pytest.mark.asyncio
    async def test_passes_without_routing(self):
        outcome = await _pipeline().run(ValidationContext())
        assert outcome.result.passed
        assert outcome.result.status == ExecutionStatus.COMPLETED
        assert outcome.responsibilities is None
        assert outcome.escalations == []
        assert [i.id for i in outcome.checklist.items] == ["unit-tests", "docs"]

    @pytest.mark.asyncio
    async def test_stores_result(self, tmp_path):
        store = JSONLBackend(tmp_path)
        outcome = await _pipeline(store=store).run(ValidationContext())
        assert store.get(outcome.result.execution_id) is not None

    def test_generate_checklist_deterministic(self):
        pipeline = _pipeline()
        ctx = ValidationContext()
        first = pipeline.generate_checklist(ctx)
        second = pipeline.generate_checklist(ctx)
        assert [i.id for i in first.items] == [i.id for i in second.items]


# --- Failure routing ---


class TestFailingRun:
    @pytest.mark.asyncio
    async def test_critical_failure_is_escalated(self):
        notifier = RecordingNotifier()
        outcome = await _pipeline(coverage=55.0, notifier=notifier).run(ValidationContext())

        assert outcome.result.status == ExecutionStatus.ABORTED
        assert outcome.result.item_results[1].status == ItemStatus.SKIPPED
        assert outcome.responsibilities is not None
        assert len(outcome.responsibilities.assignments) == 2

        (record,) = outcome.escalations
        assert record.to_role == "tech-lead"
        assert record.to_person == "lead-lee"
        assert record.urgency == Urgency.CRITICAL
        assert "blocker" in record.reason
        assert notifier.sent[0][0] == "lead-lee"

    @pytest.mark.asyncio
    async def test_manual_escalation_until_exhausted(self):
        pipeline = _pipeline(coverage=55.0)
        outcome = await pipeline.run(ValidationContext())
        assignment = outcome.responsibilities.for_item("unit-tests")

        second = pipeline.escalate(assignment.id, "still red")
        assert second.level == 2
        assert second.to_person == "em-eve"
        with pytest.raises(MaxEscalationReached):
            pipeline.escalate(assignment.id, "again")
        assert pipeline.escalation.get_assignment(assignment.id).status == (
            AssignmentStatus.MAX_ESCALATION_REACHED
        )

    @pytest.mark.asyncio
    async def test_unassigned_items_reported(self):
        config = QualityPipelineConfig()  # nobody in the directory
        pipeline = QualityPipeline(config, catalog=_catalog(), tools=_tools(coverage=10.0))
        outcome = await pipeline.run(ValidationContext())
        assert set(outcome.responsibilities.unassigned) == {"unit-tests", "docs"}
        assert outcome.escalations == []

    @pytest.mark.asyncio
    async def test_escalation_state_persisted(self, tmp_path):
        pipeline = _pipeline(coverage=55.0, escalation_path=tmp_path)
        outcome = await pipeline.run(ValidationContext())
        assignment = outcome.responsibilities.for_item("unit-tests")

        restarted = _pipeline(escalation_path=tmp_path)
        assert restarted.escalate(assignment.id, "after restart").level == 2


# --- Manual review flow ---


class TestManualReview:
    @pytest.mark.asyncio
    async def test_suspend_and_resume_on_submission(self):
        pipeline = _pipeline(manual=True)
        outcome = await pipeline.run(ValidationContext())
        result = outcome.result
        assert result.status == ExecutionStatus.AWAITING_INPUT
        assert outcome.responsibilities is None

        (ticket,) = pipeline.open_reviews(result.execution_id)
        assert ticket.item_id == "docs"

        resumed = await pipeline.submit_manual_result(ticket.id, PassRawResult(passed=True), "ann")
        assert resumed is not None
        assert resumed.result.status == ExecutionStatus.COMPLETED
        assert resumed.result.passed
        assert resumed.responsibilities is None
        assert pipeline.open_reviews(result.execution_id) == []

    @pytest.mark.asyncio
    async def test_submission_without_resume(self):
        pipeline = _pipeline(manual=True)
        outcome = await pipeline.run(ValidationContext())
        (ticket,) = pipeline.open_reviews(outcome.result.execution_id)
        resumed = await pipeline.submit_manual_result(
            ticket.id, PassRawResult(passed=True), resume=False
        )
        assert resumed is None
        snapshot = pipeline.executor.snapshot(outcome.result.execution_id)
        assert snapshot.status == ExecutionStatus.AWAITING_INPUT

    @pytest.mark.asyncio
    async def test_failed_manual_review_fails_item(self):
        pipeline = _pipeline(manual=True)
        outcome = await pipeline.run(ValidationContext())
        (ticket,) = pipeline.open_reviews(outcome.result.execution_id)
        resumed = await pipeline.submit_manual_result(ticket.id, PassRawResult(passed=False))
        assert resumed.result.status == ExecutionStatus.COMPLETED
        assert resumed.result.item_results[1].status == ItemStatus.FAILED
        assert not resumed.result.passed
        assert resumed.responsibilities.for_item("docs").primary_owner == "dev-ann"

    @pytest.mark.asyncio
    async def test_critical_review_failure_is_routed_after_resume(self):
        catalog = CatalogRegistry.from_dicts(
            [
                {
                    "id": "threat-model",
                    "category": "security",
                    "title": "Threat model",
                    "priority": "critical",
                    "criteria": [
                        {"id": "review", "validation_type": "manual", "validation_method": "review"}
                    ],
                }
            ]
        )
        people = [
            *TEAM,
            Person(name="sec-sam", roles=["security-engineer"]),
            Person(name="sec-lead", roles=["security-lead"]),
        ]
        config = QualityPipelineConfig(responsibility=ResponsibilityConfig(people=people))
        notifier = RecordingNotifier()
        pipeline = QualityPipeline(config, catalog=catalog, tools=ToolRegistry(), notifier=notifier)

        outcome = await pipeline.run(ValidationContext())
        (ticket,) = pipeline.open_reviews(outcome.result.execution_id)
        resumed = await pipeline.submit_manual_result(ticket.id, PassRawResult(passed=False))

        assert resumed.result.status == ExecutionStatus.ABORTED
        assignment = resumed.responsibilities.for_item("threat-model")
        assert assignment.primary_owner == "sec-sam"
        (record,) = resumed.escalations
        assert record.assignment_id == assignment.id
        assert record.urgency == Urgency.CRITICAL
        assert notifier.sent[0][0] == "sec-lead"

    @pytest.mark.asyncio
    async def test_resume_routes_failure(self):
        pipeline = _pipeline(manual=True)
        outcome = await pipeline.run(ValidationContext())
        (ticket,) = pipeline.open_reviews(outcome.result.execution_id)
        await pipeline.submit_manual_result(ticket.id, PassRawResult(passed=False), resume=False)

        resumed = await pipeline.resume(outcome.result.execution_id)
        assert not resumed.result.passed
        assert resumed.checklist.id == outcome.checklist.id
        assert [r.to_role for r in resumed.escalations] == ["tech-lead"]

    @pytest.mark.asyncio
    async def test_resume_unknown_execution(self):
        with pytest.raises(KeyError):
            await _pipeline().resume("missing")


# --- Structural errors ---


class TestStructure:
    def test_cycle_surfaces_from_generate(self):
        catalog = CatalogRegistry.from_dicts(
            [
                {"id": "a", "category": "c", "title": "A", "dependencies": ["b"]},
                {"id": "b", "category": "c", "title": "B", "dependencies": ["a"]},
            ]
        )
        pipeline = QualityPipeline(QualityPipelineConfig(), catalog=catalog, tools=ToolRegistry())
        with pytest.raises(DependencyCycleError):
            pipeline.generate_checklist(ValidationContext())

    @pytest.mark.asyncio
    async def test_empty_catalog_vacuously_passes(self):
        pipeline = QualityPipeline(
            QualityPipelineConfig(), catalog=CatalogRegistry([]), tools=ToolRegistry()
        )
        outcome = await pipeline.run(ValidationContext())
        assert outcome.checklist.items == ()
        assert outcome.result.passed
        assert outcome.result.overall_score == 100.0
