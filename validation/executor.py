"""Validation executor.

Runs a single criterion against a context by dispatching on its
validation type:

  automated:      invoke the registered tool, bounded by a timeout
  semi-automated: invoke the tool; the recommendation only counts once a
                  human confirmation is present
  manual:         open (or look up) a review ticket; returns PendingReview
                  until a human submits a result

Errors are raised as ValidationError subclasses; the item runner turns
them into failed criterion results.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta

from shared.errors import ToolUnavailable, ValidationTimeout
from shared.models import (
    Criterion,
    PendingReview,
    RawResult,
    ValidationContext,
    ValidationType,
)

from validation.manual import ManualReviewQueue
from validation.tools import ToolRegistry, coerce_raw_result

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("validation.audit")


class ValidationExecutor:
    """Dispatches criteria to validator tools or the manual review queue.

    Args:
        tools: Registry of validator tools keyed by validation method.
        review_queue: Queue for manual criteria. Manual criteria are
            unavailable without one.
        default_timeout: Timeout in seconds for tool invocations when the
            criterion does not set its own. None disables it.
    """

    DEFAULT_TIMEOUT = 300.0

    def __init__(
        self,
        tools: ToolRegistry,
        review_queue: ManualReviewQueue | None = None,
        default_timeout: float | None = DEFAULT_TIMEOUT,
    ) -> None:
        self.tools = tools
        self.review_queue = review_queue
        self.default_timeout = default_timeout

    async def execute(
        self,
        criterion: Criterion,
        context: ValidationContext,
        *,
        scope: str = "",
        item_id: str = "",
    ) -> RawResult | PendingReview:
        """Validate one criterion.

        Args:
            criterion: The criterion to validate.
            context: The change being validated.
            scope: Groups manual review tickets, usually the execution id.
            item_id: Owning checklist item, recorded on review tickets.

        Raises:
            ToolUnavailable: No tool (or review queue) can serve the criterion.
            ValidationTimeout: The tool or manual review exceeded its timeout.
            MalformedResultError: The tool returned an unknown result shape.
        """
        if criterion.validation_type == ValidationType.MANUAL:
            return self._manual(criterion, scope=scope, item_id=item_id)

        raw = await self._invoke_tool(criterion, context)

        if criterion.validation_type == ValidationType.SEMI_AUTOMATED:
            if not raw.confirmed and criterion.id in context.confirmations:
                raw = raw.model_copy(update={"confirmed": True})

        audit_logger.info(
            "criterion=%s method=%s type=%s result=%s confirmed=%s",
            criterion.id,
            criterion.validation_method,
            criterion.validation_type.value,
            raw.kind,
            raw.confirmed,
        )
        return raw

    async def _invoke_tool(self, criterion: Criterion, context: ValidationContext) -> RawResult:
        tool = self.tools.get(criterion.validation_method)
        timeout = criterion.timeout_seconds or self.default_timeout

        async def _call() -> object:
            if inspect.iscoroutinefunction(tool) or inspect.iscoroutinefunction(
                getattr(tool, "__call__", None)
            ):
                return await tool(context)
            output = await asyncio.to_thread(tool, context)
            if inspect.isawaitable(output):
                output = await output
            return output

        try:
            output = await asyncio.wait_for(_call(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ValidationTimeout(criterion.validation_method, timeout or 0.0) from None
        return coerce_raw_result(output, criterion.validation_method)

    def _manual(self, criterion: Criterion, *, scope: str, item_id: str) -> RawResult | PendingReview:
        if self.review_queue is None:
            raise ToolUnavailable(criterion.validation_method, "no manual review queue configured")

        ticket_id = self.review_queue.request_manual_review(criterion, scope=scope, item_id=item_id)
        ticket = self.review_queue.get(ticket_id)
        if ticket is not None and ticket.result is not None:
            audit_logger.info(
                "criterion=%s method=%s type=manual ticket=%s submitted_by=%s",
                criterion.id,
                criterion.validation_method,
                ticket_id,
                ticket.submitted_by,
            )
            return ticket.result

        # Manual reviews only time out when the criterion asks for it
        if ticket is not None and criterion.timeout_seconds is not None:
            deadline = ticket.requested_at + timedelta(seconds=criterion.timeout_seconds)
            if datetime.now() >= deadline:
                raise ValidationTimeout(criterion.validation_method, criterion.timeout_seconds)

        return PendingReview(ticket_id=ticket_id, criterion_id=criterion.id)
