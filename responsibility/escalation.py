"""Escalation engine.

Per-assignment state machine:

  assigned → (escalated)* → resolved
                          → max_escalation_reached

Each escalate() call advances the assignment's level by exactly one hop
along its escalation path and records an EscalationRecord. The level is
stored on the assignment; callers can only advance it, never set it.

State is persisted as JSONL so levels survive restarts. Records are
appended before the assignment is rewritten, so on load an assignment
whose stored level lags its records is caught up by scanning the record
log.

Notifications are fire-and-forget: a failed delivery is logged and the
recorded hop stands. Each level is delivered once, by the escalate() call
that created it; levels only move forward, so a (assignment, level) pair
is never notified twice, and records loaded after a restart are not
re-delivered.
"""

from __future__ import annotations

import fcntl
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from shared.errors import MaxEscalationReached
from shared.models import (
    AssignmentStatus,
    EscalationRecord,
    ResponsibilityAssignment,
    ResponsibilityReport,
    Urgency,
)

from responsibility.roles import OwnerDirectory

logger = logging.getLogger(__name__)

_ACTIVE = (AssignmentStatus.ASSIGNED, AssignmentStatus.ESCALATED)


@runtime_checkable
class Notifier(Protocol):
    """Delivers escalation notices. Best effort; return value is ignored."""

    def notify(self, recipient: str, payload: dict[str, Any]) -> None:
        ...


class LogNotifier:
    """Notifier that only writes to the log."""

    def notify(self, recipient: str, payload: dict[str, Any]) -> None:
        logger.info("Notify %s: %s", recipient, payload.get("summary", payload))


class EscalationEngine:
    """Tracks assignments and walks their escalation paths.

    Args:
        storage_path: Directory for the JSONL state files. None keeps state
            in memory only.
        notifier: Delivers escalation notices. Defaults to LogNotifier.
        directory: Resolves the person holding an escalation role.
        clock: Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        storage_path: str | Path | None = None,
        notifier: Notifier | None = None,
        directory: OwnerDirectory | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.notifier = notifier or LogNotifier()
        self.directory = directory
        self.clock = clock
        self._storage_path = Path(storage_path) if storage_path is not None else None
        if self._storage_path is not None:
            self._storage_path.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._assignments: dict[str, ResponsibilityAssignment] = {}
        self._records: list[EscalationRecord] = []
        self._load()

    # --- Persistence ---

    def _assignments_file(self) -> Path | None:
        return self._storage_path / "assignments.jsonl" if self._storage_path else None

    def _records_file(self) -> Path | None:
        return self._storage_path / "escalations.jsonl" if self._storage_path else None

    def _load(self) -> None:
        for assignment in _read_jsonl(self._assignments_file(), ResponsibilityAssignment):
            self._assignments[assignment.id] = assignment
        self._records = _read_jsonl(self._records_file(), EscalationRecord)

        for record in self._records:
            assignment = self._assignments.get(record.assignment_id)
            if assignment is not None and assignment.escalation_level < record.level:
                logger.warning(
                    "Assignment %s level %d behind its records; recovering level %d",
                    assignment.id,
                    assignment.escalation_level,
                    record.level,
                )
                self._assignments[assignment.id] = assignment.model_copy(
                    update={"escalation_level": record.level, "status": AssignmentStatus.ESCALATED}
                )

    def _save_assignments(self) -> None:
        target = self._assignments_file()
        if target is None:
            return
        with open(target, "w") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                for a in self._assignments.values():
                    f.write(a.model_dump_json() + "\n")
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _append_record(self, record: EscalationRecord) -> None:
        self._records.append(record)
        target = self._records_file()
        if target is None:
            return
        with open(target, "a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                f.write(record.model_dump_json() + "\n")
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    # --- Tracking ---

    def track(self, assignment: ResponsibilityAssignment) -> ResponsibilityAssignment:
        """Start tracking an assignment.

        Raises:
            ValueError: If an assignment with the same id is already tracked.
        """
        with self._lock:
            if assignment.id in self._assignments:
                raise ValueError(f"Assignment '{assignment.id}' is already tracked.")
            self._assignments[assignment.id] = assignment
            self._save_assignments()
        return assignment

    def track_all(self, report: ResponsibilityReport) -> list[ResponsibilityAssignment]:
        return [self.track(a) for a in report.assignments]

    def get_assignment(self, assignment_id: str) -> ResponsibilityAssignment | None:
        with self._lock:
            return self._assignments.get(assignment_id)

    def assignments(self, status: AssignmentStatus | None = None) -> list[ResponsibilityAssignment]:
        with self._lock:
            return [a for a in self._assignments.values() if status is None or a.status == status]

    def history(self, assignment_id: str) -> list[EscalationRecord]:
        """Escalation records for an assignment, oldest first."""
        with self._lock:
            return [r for r in self._records if r.assignment_id == assignment_id]

    def exhausted(self) -> list[ResponsibilityAssignment]:
        """Assignments whose escalation path ran out; these need a human decision."""
        return self.assignments(AssignmentStatus.MAX_ESCALATION_REACHED)

    # --- Transitions ---

    def escalate(
        self,
        assignment_id: str,
        reason: str,
        urgency: Urgency = Urgency.NORMAL,
    ) -> EscalationRecord:
        """Move an assignment one hop up its escalation path.

        Raises:
            KeyError: Unknown assignment.
            ValueError: The assignment is already resolved.
            MaxEscalationReached: Every role on the path has been escalated to.
        """
        with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None:
                raise KeyError(f"Assignment '{assignment_id}' not found.")
            if assignment.status == AssignmentStatus.RESOLVED:
                raise ValueError(f"Assignment '{assignment_id}' is already resolved.")

            level = assignment.escalation_level
            path = assignment.escalation_path
            if level >= len(path):
                if assignment.status != AssignmentStatus.MAX_ESCALATION_REACHED:
                    self._assignments[assignment_id] = assignment.model_copy(
                        update={"status": AssignmentStatus.MAX_ESCALATION_REACHED}
                    )
                    self._save_assignments()
                logger.error(
                    "Assignment %s (item %s) exhausted its escalation path: %s",
                    assignment_id,
                    assignment.item_id,
                    reason,
                )
                raise MaxEscalationReached(assignment_id, level)

            to_role = path[level]
            person = self.directory.find_available_owner(to_role) if self.directory else None
            now = self.clock()
            record = EscalationRecord(
                assignment_id=assignment_id,
                from_role=path[level - 1] if level > 0 else assignment.primary_role,
                to_role=to_role,
                to_person=person.name if person else None,
                reason=reason,
                urgency=urgency,
                level=level + 1,
                timestamp=now,
            )
            self._append_record(record)
            self._assignments[assignment_id] = assignment.model_copy(
                update={
                    "escalation_level": level + 1,
                    "status": AssignmentStatus.ESCALATED,
                    "due_date": now + timedelta(hours=assignment.sla_hours),
                }
            )
            self._save_assignments()

        logger.info(
            "Escalated %s (item %s) to %s at level %d: %s",
            assignment_id,
            assignment.item_id,
            record.to_person or record.to_role,
            record.level,
            reason,
        )
        self._deliver(record, assignment.item_id)
        return record

    def resolve(self, assignment_id: str, resolved_by: str = "") -> ResponsibilityAssignment:
        """Close an assignment.

        Raises:
            KeyError: Unknown assignment.
            ValueError: Already resolved.
        """
        with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None:
                raise KeyError(f"Assignment '{assignment_id}' not found.")
            if assignment.status == AssignmentStatus.RESOLVED:
                raise ValueError(f"Assignment '{assignment_id}' is already resolved.")
            updated = assignment.model_copy(update={"status": AssignmentStatus.RESOLVED})
            self._assignments[assignment_id] = updated
            self._save_assignments()
        logger.info("Assignment %s resolved by %s", assignment_id, resolved_by or "?")
        return updated

    def check_overdue(self, now: datetime | None = None) -> list[EscalationRecord]:
        """Escalate every active assignment past its due date.

        Assignments that cannot go any higher are marked
        max_escalation_reached (see exhausted()) instead of raising.
        """
        now = now or self.clock()
        overdue = [
            a
            for a in self.assignments()
            if a.status in _ACTIVE and a.due_date is not None and a.due_date <= now
        ]
        records: list[EscalationRecord] = []
        for assignment in overdue:
            try:
                records.append(
                    self.escalate(
                        assignment.id,
                        reason=f"SLA of {assignment.sla_hours:g}h breached",
                        urgency=Urgency.HIGH,
                    )
                )
            except MaxEscalationReached:
                continue
        return records

    def _deliver(self, record: EscalationRecord, item_id: str) -> None:
        payload = {
            "summary": f"Escalation level {record.level} for item {item_id}: {record.reason}",
            "assignment_id": record.assignment_id,
            "item_id": item_id,
            "level": record.level,
            "from_role": record.from_role,
            "to_role": record.to_role,
            "urgency": record.urgency.value,
            "reason": record.reason,
        }
        try:
            self.notifier.notify(record.to_person or record.to_role, payload)
        except Exception as e:
            logger.warning("Failed to notify %s for %s: %s", record.to_role, record.assignment_id, e)


def _read_jsonl(path: Path | None, model: Any) -> list[Any]:
    if path is None or not path.exists():
        return []
    entries = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(model.model_validate_json(line))
            except ValidationError:
                logger.warning("Skipping malformed line in %s", path.name)
    return entries
