"""Responsibility resolver.

Binds each checklist item to a primary owner, secondary owners,
reviewers, approvers, an escalation path, and an SLA due date.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from shared.errors import (
    AssignmentError,
    MissingEscalationPathError,
    NoAvailableOwnerError,
    NoResponsibilityRuleError,
)
from shared.models import (
    Checklist,
    ChecklistItem,
    Priority,
    ResponsibilityAssignment,
    ResponsibilityReport,
    ValidationContext,
)

from responsibility.roles import OwnerDirectory, RoleRegistry

logger = logging.getLogger(__name__)


class ResponsibilityResolver:
    """Resolves the people responsible for checklist items.

    Args:
        registry: Role-to-item mapping.
        directory: Availability lookup for people holding roles.
        clock: Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        registry: RoleRegistry,
        directory: OwnerDirectory,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.registry = registry
        self.directory = directory
        self.clock = clock

    def resolve(
        self,
        item: ChecklistItem,
        context: ValidationContext,
        *,
        checklist_id: str = "",
    ) -> ResponsibilityAssignment:
        """Assign an item.

        The change author (``context.requested_by``) is never picked as a
        reviewer or approver of their own change.

        Raises:
            NoResponsibilityRuleError: No matrix rule matches the item.
            NoAvailableOwnerError: Nobody holding the primary role is available.
            MissingEscalationPathError: A critical item has no escalation path.
        """
        try:
            rule = self.registry.rule_for(item)
        except KeyError:
            raise NoResponsibilityRuleError(item.id) from None

        owner = self.directory.find_available_owner(rule.primary_role)
        if owner is None:
            raise NoAvailableOwnerError(item.id, rule.primary_role)

        taken = {owner.name}
        secondary = self._people_for(rule.secondary_roles, exclude=taken)
        taken.update(secondary)

        author = {context.requested_by} if context.requested_by else set()
        reviewers = self._people_for(rule.reviewer_roles, exclude=author)
        approvers = self._people_for(rule.approver_roles, exclude=author)

        escalation_path = list(rule.escalation_path)
        if not escalation_path and item.priority == Priority.CRITICAL:
            escalation_path = list(self.registry.default_escalation_path)
            if not escalation_path:
                raise MissingEscalationPathError(item.id)

        sla_hours = rule.sla_hours or self.registry.default_sla_hours
        assigned_at = self.clock()

        return ResponsibilityAssignment(
            checklist_id=checklist_id,
            item_id=item.id,
            priority=item.priority,
            primary_role=rule.primary_role,
            primary_owner=owner.name,
            secondary_owners=secondary,
            reviewers=reviewers,
            approvers=approvers,
            escalation_path=escalation_path,
            sla_hours=sla_hours,
            assigned_at=assigned_at,
            due_date=assigned_at + timedelta(hours=sla_hours),
        )

    def resolve_all(self, checklist: Checklist, context: ValidationContext) -> ResponsibilityReport:
        """Assign every item of a checklist.

        Items that cannot be assigned are reported as unassigned and
        do not stop the others from being assigned.
        """
        report = ResponsibilityReport(checklist_id=checklist.id)
        for item in checklist.items:
            try:
                report.assignments.append(self.resolve(item, context, checklist_id=checklist.id))
            except AssignmentError as e:
                logger.warning("Item %s left unassigned: %s", item.id, e)
                report.unassigned[item.id] = str(e)
        return report

    def _people_for(self, roles: list[str], exclude: set[str]) -> list[str]:
        names: list[str] = []
        for role in roles:
            person = self.directory.find_available_owner(role, exclude=exclude | set(names))
            if person is None:
                logger.info("No available person for role %s", role)
                continue
            names.append(person.name)
        return names
