"""Quality validation pipeline.

Wires the pieces together and exposes the library entry points:

    generate_checklist(context)                   -> Checklist
    execute_checklist(checklist)                  -> ChecklistExecutionResult
    resolve_responsibilities(checklist, context)  -> ResponsibilityReport
    escalate(assignment_id, reason, urgency)      -> EscalationRecord

run() chains them: responsibilities are only resolved, and failures only
escalated, when the execution did not pass. A run suspended on manual
reviews is routed by resume() once it finishes.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from shared.config import QualityPipelineConfig, load_config
from shared.errors import MaxEscalationReached
from shared.models import (
    Checklist,
    ChecklistExecutionResult,
    EscalationRecord,
    ExecutionStatus,
    RawResult,
    ResponsibilityReport,
    Urgency,
    ValidationContext,
)
from shared.storage import ExecutionStore

from checklist.catalog import CatalogRegistry, catalog_from_config
from checklist.executor import ChecklistExecutor
from checklist.generator import ChecklistGenerator
from responsibility.escalation import EscalationEngine, Notifier
from responsibility.resolver import ResponsibilityResolver
from responsibility.roles import OwnerDirectory, RoleRegistry, StaticDirectory
from validation.executor import ValidationExecutor
from validation.manual import ManualReviewQueue, ReviewTicket
from validation.runner import ItemRunner
from validation.tools import ToolRegistry

logger = logging.getLogger(__name__)


class PipelineRun(BaseModel):
    """Everything one end-to-end validation produced."""

    checklist: Checklist
    result: ChecklistExecutionResult
    responsibilities: ResponsibilityReport | None = None
    escalations: list[EscalationRecord] = Field(default_factory=list)
    exhausted: list[str] = Field(default_factory=list)  # assignment ids


class QualityPipeline:
    """Generates, executes, assigns and escalates quality checklists.

    Every collaborator can be injected; anything left out is built from
    the config.

    Args:
        config: Pipeline configuration. Loaded from disk if not provided.
        catalog: Item catalog. Defaults to the configured or built-in one.
        tools: Validator tools. Defaults to the configured command tools.
        directory: People/availability lookup. Defaults to configured people.
        notifier: Escalation notice delivery. Defaults to logging only.
        store: Receives finished execution results.
        review_queue: Manual review tickets.
        escalation_path: Directory for escalation state; None keeps it in memory.
    """

    def __init__(
        self,
        config: QualityPipelineConfig | None = None,
        *,
        catalog: CatalogRegistry | None = None,
        tools: ToolRegistry | None = None,
        directory: OwnerDirectory | None = None,
        notifier: Notifier | None = None,
        store: ExecutionStore | None = None,
        review_queue: ManualReviewQueue | None = None,
        escalation_path: str | Path | None = None,
    ) -> None:
        if config is None:
            config = load_config()
        self.config = config

        self.catalog = catalog if catalog is not None else catalog_from_config(config.catalog)
        self.tools = tools if tools is not None else ToolRegistry.from_config(config.validators)
        self.directory = (
            directory if directory is not None else StaticDirectory(config.responsibility.people)
        )
        self.review_queue = review_queue if review_queue is not None else ManualReviewQueue()

        self.generator = ChecklistGenerator(self.catalog)
        self.validation_executor = ValidationExecutor(
            self.tools,
            review_queue=self.review_queue,
            default_timeout=config.execution.default_timeout_seconds,
        )
        self.item_runner = ItemRunner(
            self.validation_executor, concurrency=config.execution.criterion_concurrency
        )
        self.executor = ChecklistExecutor(self.item_runner, config=config.execution, store=store)
        self.resolver = ResponsibilityResolver(
            RoleRegistry.from_config(config.responsibility), self.directory
        )
        self.escalation = EscalationEngine(
            storage_path=escalation_path, notifier=notifier, directory=self.directory
        )

    # --- Library entry points ---

    def generate_checklist(self, context: ValidationContext) -> Checklist:
        return self.generator.generate(context)

    async def execute_checklist(self, checklist: Checklist) -> ChecklistExecutionResult:
        return await self.executor.execute(checklist)

    def resolve_responsibilities(
        self, checklist: Checklist, context: ValidationContext
    ) -> ResponsibilityReport:
        """Assign every item and start tracking the assignments for escalation."""
        report = self.resolver.resolve_all(checklist, context)
        self.escalation.track_all(report)
        return report

    def escalate(
        self, assignment_id: str, reason: str, urgency: Urgency = Urgency.NORMAL
    ) -> EscalationRecord:
        return self.escalation.escalate(assignment_id, reason, urgency)

    # --- Manual reviews ---

    def open_reviews(self, execution_id: str | None = None) -> list[ReviewTicket]:
        return self.review_queue.open_tickets(scope=execution_id)

    async def submit_manual_result(
        self,
        ticket_id: str,
        result: RawResult,
        submitted_by: str = "",
        *,
        resume: bool = True,
    ) -> PipelineRun | None:
        """Record a manual review result.

        With ``resume`` set, the owning execution continues once none of its
        tickets are open any more, and a failure after resuming is routed
        like any other run.

        Returns:
            The resumed run, or None if nothing resumed.
        """
        ticket = self.review_queue.submit_manual_result(ticket_id, result, submitted_by)
        if not resume or not ticket.scope:
            return None
        if self.review_queue.open_tickets(scope=ticket.scope):
            return None
        try:
            snapshot = self.executor.snapshot(ticket.scope)
        except KeyError:
            return None
        if snapshot.status != ExecutionStatus.AWAITING_INPUT:
            return None
        return await self.resume(ticket.scope)

    async def resume(self, execution_id: str) -> PipelineRun:
        """Continue a suspended execution and route it if it fails.

        Raises:
            KeyError: Unknown execution.
            ValueError: The execution is not awaiting input.
        """
        checklist = self.executor.checklist_for(execution_id)
        result = await self.executor.resume(execution_id)
        return self._route_if_failed(PipelineRun(checklist=checklist, result=result))

    # --- End to end ---

    async def run(self, context: ValidationContext) -> PipelineRun:
        """Generate and execute a checklist, then route failures to their owners.

        Raises:
            ChecklistStructureError: The catalog cannot produce a checklist.
        """
        checklist = self.generate_checklist(context)
        result = await self.execute_checklist(checklist)
        return self._route_if_failed(PipelineRun(checklist=checklist, result=result))

    def _route_if_failed(self, outcome: PipelineRun) -> PipelineRun:
        # A suspended run is routed once it is resumed and finishes.
        result = outcome.result
        if result.passed or result.status == ExecutionStatus.AWAITING_INPUT:
            return outcome

        outcome.responsibilities = self.resolve_responsibilities(
            outcome.checklist, outcome.checklist.context
        )
        outcome.escalations, outcome.exhausted = self.route_failures(
            result, outcome.responsibilities
        )
        return outcome

    def route_failures(
        self,
        result: ChecklistExecutionResult,
        report: ResponsibilityReport,
    ) -> tuple[list[EscalationRecord], list[str]]:
        """Escalate every failed item that has an assignment.

        Returns:
            (escalation records, ids of assignments whose path is exhausted)
        """
        records: list[EscalationRecord] = []
        exhausted: list[str] = []
        for item_result in result.failed_items():
            assignment = report.for_item(item_result.item_id)
            if assignment is None:
                logger.warning("Failed item %s has no owner to escalate to", item_result.item_id)
                continue
            reason = f"Item {item_result.item_id} {item_result.status.value} with score {item_result.score:.1f}"
            if item_result.blockers:
                reason += f"; {len(item_result.blockers)} blocker(s)"
            try:
                records.append(
                    self.escalate(assignment.id, reason, Urgency.for_priority(item_result.priority))
                )
            except MaxEscalationReached:
                exhausted.append(assignment.id)
        return records, exhausted
