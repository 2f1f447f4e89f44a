"""Checklist generator.

Selects the catalog items that apply to a validation context, orders them
topologically by dependency, and estimates duration and automation
coverage. Selection and ordering are pure functions of the context and
the catalog, so the same context always yields the same checklist items
in the same order.
"""

from __future__ import annotations

import heapq
import logging

from shared.errors import DependencyCycleError, MissingDependencyError
from shared.models import Checklist, ChecklistItem, ValidationContext, ValidationType

from checklist.catalog import CatalogRegistry

logger = logging.getLogger(__name__)


class ChecklistGenerator:
    """Builds checklists from an injected catalog.

    Args:
        catalog: Immutable item catalog.
    """

    def __init__(self, catalog: CatalogRegistry) -> None:
        self.catalog = catalog

    def select(self, context: ValidationContext) -> list[ChecklistItem]:
        """Base-set items plus items whose applicability matches, in catalog order."""
        return [item for item in self.catalog.values() if item.applies_when.matches(context)]

    def generate(self, context: ValidationContext) -> Checklist:
        """Generate an ordered checklist for ``context``.

        Raises:
            MissingDependencyError: A selected item depends on an id not in the catalog.
            DependencyCycleError: Dependencies among selected items form a cycle.
        """
        selected = self.select(context)
        ordered = order_items(selected, self.catalog)

        checklist = Checklist(
            context=context,
            items=tuple(ordered),
            estimated_duration=sum(item.estimated_time for item in ordered),
            automation_coverage=automation_coverage(ordered),
        )
        logger.info(
            "Generated checklist %s: %d items, ~%d min, %.0f%% automated",
            checklist.id,
            len(ordered),
            checklist.estimated_duration,
            checklist.automation_coverage * 100,
        )
        return checklist


def automation_coverage(items: list[ChecklistItem]) -> float:
    """Fraction of criteria validated without human action, rounded to two decimals."""
    criteria = [c for item in items for c in item.criteria]
    if not criteria:
        return 0.0
    automated = sum(1 for c in criteria if c.validation_type == ValidationType.AUTOMATED)
    return round(automated / len(criteria), 2)


def order_items(items: list[ChecklistItem], catalog: CatalogRegistry) -> list[ChecklistItem]:
    """Topologically sort items by their dependencies.

    Only dependencies on other items in ``items`` constrain the order; a
    dependency on a catalog item that was not selected is ignored. Among
    items that are ready at the same time, critical comes first, then
    catalog declaration order.

    Raises:
        MissingDependencyError: A dependency is not in the catalog at all.
        DependencyCycleError: The dependencies among ``items`` are cyclic.
    """
    by_id = {item.id: item for item in items}

    for item in items:
        for dep in item.dependencies:
            if dep not in catalog:
                raise MissingDependencyError(item.id, dep)

    remaining: dict[str, int] = {}
    dependents: dict[str, list[str]] = {item_id: [] for item_id in by_id}
    for item in items:
        deps = {dep for dep in item.dependencies if dep in by_id}
        remaining[item.id] = len(deps)
        for dep in deps:
            dependents[dep].append(item.id)

    def _key(item_id: str) -> tuple[int, int]:
        return (by_id[item_id].priority.rank, catalog.index_of(item_id))

    ready = [(_key(item_id), item_id) for item_id, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    ordered: list[ChecklistItem] = []
    while ready:
        _, item_id = heapq.heappop(ready)
        ordered.append(by_id[item_id])
        for dependent in dependents[item_id]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (_key(dependent), dependent))

    if len(ordered) != len(items):
        stuck = {item_id for item_id, count in remaining.items() if count > 0}
        raise DependencyCycleError(_find_cycle(stuck, by_id))
    return ordered


def _find_cycle(stuck: set[str], by_id: dict[str, ChecklistItem]) -> list[str]:
    """Walk dependencies among unsortable items until one repeats."""
    start = min(stuck)
    path: list[str] = []
    seen: dict[str, int] = {}
    current = start
    while current not in seen:
        seen[current] = len(path)
        path.append(current)
        current = next(dep for dep in sorted(by_id[current].dependencies) if dep in stuck)
    return path[seen[current]:] + [current]


def validate_catalog(catalog: CatalogRegistry) -> None:
    """Check the whole catalog for missing dependencies and cycles."""
    order_items(catalog.items_in_order(), catalog)
