"""Two-phase manual review queue.

Manual criteria never block a worker. The executor requests a review and
gets a ticket back; a human later submits the result against the ticket,
which lets the suspended checklist item be resumed.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from shared.models import Criterion, RawResult

logger = logging.getLogger(__name__)


class TicketStatus(str, Enum):
    OPEN = "open"
    SUBMITTED = "submitted"


class ReviewTicket(BaseModel):
    """A request for a human to evaluate one manual criterion."""

    id: str
    scope: str = ""  # Usually the execution id
    item_id: str = ""
    criterion_id: str
    validation_method: str = ""
    description: str = ""
    requested_at: datetime = Field(default_factory=datetime.now)
    status: TicketStatus = TicketStatus.OPEN
    result: RawResult | None = None
    submitted_by: str = ""
    submitted_at: datetime | None = None


class ManualReviewQueue:
    """In-memory ticket store for manual reviews. Thread-safe."""

    def __init__(self) -> None:
        self._tickets: dict[str, ReviewTicket] = {}
        self._by_key: dict[tuple[str, str, str], str] = {}
        self._listeners: list[Callable[[ReviewTicket], None]] = []
        self._lock = threading.Lock()

    def request_manual_review(
        self,
        criterion: Criterion,
        *,
        scope: str = "",
        item_id: str = "",
    ) -> str:
        """Open a review ticket, or return the existing one for the same criterion.

        Returns:
            The ticket id.
        """
        key = (scope, item_id, criterion.id)
        with self._lock:
            existing = self._by_key.get(key)
            if existing is not None:
                return existing

            ticket = ReviewTicket(
                id=str(uuid.uuid4()),
                scope=scope,
                item_id=item_id,
                criterion_id=criterion.id,
                validation_method=criterion.validation_method,
                description=criterion.description,
            )
            self._tickets[ticket.id] = ticket
            self._by_key[key] = ticket.id

        logger.info(
            "Manual review requested for %s/%s (ticket %s)", item_id, criterion.id, ticket.id
        )
        return ticket.id

    def submit_manual_result(
        self,
        ticket_id: str,
        result: RawResult,
        submitted_by: str = "",
    ) -> ReviewTicket:
        """Record a human's result for a ticket and notify listeners.

        Raises:
            KeyError: If the ticket does not exist.
            ValueError: If a result was already submitted.
        """
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                raise KeyError(f"Review ticket '{ticket_id}' not found.")
            if ticket.status != TicketStatus.OPEN:
                raise ValueError(f"Review ticket '{ticket_id}' already has a result.")

            ticket = ticket.model_copy(
                update={
                    "status": TicketStatus.SUBMITTED,
                    "result": result,
                    "submitted_by": submitted_by,
                    "submitted_at": datetime.now(),
                }
            )
            self._tickets[ticket_id] = ticket
            listeners = list(self._listeners)

        logger.info("Manual result submitted for ticket %s by %s", ticket_id, submitted_by or "?")
        for listener in listeners:
            listener(ticket)
        return ticket

    def get(self, ticket_id: str) -> ReviewTicket | None:
        with self._lock:
            return self._tickets.get(ticket_id)

    def result_for(self, ticket_id: str) -> RawResult | None:
        ticket = self.get(ticket_id)
        return ticket.result if ticket is not None else None

    def open_tickets(self, scope: str | None = None) -> list[ReviewTicket]:
        """Tickets still waiting for a human, optionally limited to one scope."""
        with self._lock:
            return [
                t
                for t in self._tickets.values()
                if t.status == TicketStatus.OPEN and (scope is None or t.scope == scope)
            ]

    def on_submit(self, listener: Callable[[ReviewTicket], None]) -> None:
        """Call ``listener`` after every successful submission."""
        with self._lock:
            self._listeners.append(listener)
