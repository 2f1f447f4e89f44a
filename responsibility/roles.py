"""Role registry and owner directory.

The registry maps checklist items (by category and phase) to the roles
that own, review, approve, and receive escalations for them. The
directory answers which person currently holds a role.
"""

from __future__ import annotations

import threading
from collections.abc import Collection
from typing import Protocol, runtime_checkable

from shared.config import ResponsibilityConfig, ResponsibilityRule
from shared.models import ChecklistItem, Person


class RoleRegistry:
    """Role-to-item mapping built from responsibility rules.

    When several rules match an item, the most specific one wins:
    category and phase, then category only, then phase only, then the
    wildcard rule.

    Args:
        rules: Responsibility rules, in priority order for equal specificity.
        default_escalation_path: Used for critical items whose rule has none.
        default_sla_hours: Used when the rule does not set an SLA.
    """

    def __init__(
        self,
        rules: list[ResponsibilityRule],
        default_escalation_path: list[str] | None = None,
        default_sla_hours: float = 24.0,
    ) -> None:
        self.rules = list(rules)
        self.default_escalation_path = list(default_escalation_path or [])
        self.default_sla_hours = default_sla_hours

    @classmethod
    def from_config(cls, config: ResponsibilityConfig) -> RoleRegistry:
        return cls(
            config.matrix,
            default_escalation_path=config.default_escalation_path,
            default_sla_hours=config.default_sla_hours,
        )

    def rule_for(self, item: ChecklistItem) -> ResponsibilityRule:
        """Most specific rule matching the item.

        Raises:
            KeyError: If no rule matches at all.
        """
        best: ResponsibilityRule | None = None
        best_rank = -1
        for rule in self.rules:
            category_match = rule.category == item.category
            phase_match = rule.phase == item.phase.value
            if not (category_match or rule.category == "*"):
                continue
            if not (phase_match or rule.phase == "*"):
                continue
            rank = 2 * category_match + phase_match
            if rank > best_rank:
                best, best_rank = rule, rank
        if best is None:
            raise KeyError(f"No responsibility rule matches item '{item.id}'.")
        return best

    def roles(self) -> list[str]:
        """Every role mentioned by any rule."""
        names: set[str] = set(self.default_escalation_path)
        for rule in self.rules:
            names.add(rule.primary_role)
            names.update(rule.secondary_roles)
            names.update(rule.reviewer_roles)
            names.update(rule.approver_roles)
            names.update(rule.escalation_path)
        return sorted(names)


# --- Directory ---


@runtime_checkable
class OwnerDirectory(Protocol):
    """Looks up who can currently take a role."""

    def find_available_owner(self, role: str, exclude: Collection[str] = ()) -> Person | None:
        ...


class StaticDirectory:
    """Directory backed by a fixed list of people.

    The first available person holding a role is returned, so lookups are
    deterministic. Availability can be toggled at runtime.
    """

    def __init__(self, people: list[Person] | None = None) -> None:
        self._people = [p.model_copy() for p in people or []]
        self._lock = threading.Lock()

    def find_available_owner(self, role: str, exclude: Collection[str] = ()) -> Person | None:
        with self._lock:
            for person in self._people:
                if person.available and role in person.roles and person.name not in exclude:
                    return person
        return None

    def members(self, role: str) -> list[Person]:
        with self._lock:
            return [p for p in self._people if role in p.roles]

    def set_availability(self, name: str, available: bool) -> None:
        """Mark someone (un)available.

        Raises:
            KeyError: Unknown person.
        """
        with self._lock:
            for i, person in enumerate(self._people):
                if person.name == name:
                    self._people[i] = person.model_copy(update={"available": available})
                    return
        raise KeyError(f"Person '{name}' not found.")
