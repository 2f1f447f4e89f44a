"""Checklist item catalog.

The catalog is loaded once at startup (from YAML or the built-in
definitions) into an immutable registry keyed by item id, then injected
into the generator and resolver.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from shared.config import CatalogConfig
from shared.models import ChecklistItem


class CatalogRegistry(Mapping[str, ChecklistItem]):
    """Read-only table of checklist items, in declaration order.

    Raises:
        ValueError: On duplicate item ids.
    """

    def __init__(self, items: Iterable[ChecklistItem]) -> None:
        table: dict[str, ChecklistItem] = {}
        for item in items:
            if item.id in table:
                raise ValueError(f"Duplicate catalog item id '{item.id}'")
            table[item.id] = item
        self._items = MappingProxyType(table)
        self._order = {item_id: i for i, item_id in enumerate(table)}

    def __getitem__(self, item_id: str) -> ChecklistItem:
        return self._items[item_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def index_of(self, item_id: str) -> int:
        """Declaration position of an item, used as the final ordering tie-breaker."""
        return self._order[item_id]

    def items_in_order(self) -> list[ChecklistItem]:
        return list(self._items.values())

    @classmethod
    def from_dicts(cls, data: Iterable[dict[str, Any]]) -> CatalogRegistry:
        return cls(ChecklistItem.model_validate(entry) for entry in data)


def load_catalog(path: str | Path) -> CatalogRegistry:
    """Load a catalog from a YAML file with a top-level ``items`` list."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict) or not isinstance(data.get("items", []), list):
        raise ValueError(f"Catalog file {path} must contain an 'items' list")
    return CatalogRegistry.from_dicts(data.get("items", []))


def catalog_from_config(config: CatalogConfig | None = None) -> CatalogRegistry:
    """Catalog from the configured file, or the built-in one when no path is set."""
    if config is not None and config.path:
        return load_catalog(config.path)
    return default_catalog()


def default_catalog() -> CatalogRegistry:
    return CatalogRegistry.from_dicts(DEFAULT_ITEMS)


# --- Built-in Catalog ---

DEFAULT_ITEMS: list[dict[str, Any]] = [
    {
        "id": "code-standards",
        "category": "code-standards",
        "title": "Code standards",
        "description": "Linting, formatting and complexity limits.",
        "priority": "high",
        "phase": "development",
        "estimated_time": 30,
        "guideline": "code-design-guidelines",
        "criteria": [
            {"id": "lint", "description": "No lint errors", "validation_method": "lint",
             "passing_threshold": 90, "weight": 3},
            {"id": "formatting", "description": "Code is formatted", "validation_method": "format-check",
             "passing_threshold": 100, "weight": 1},
            {"id": "complexity", "description": "Cyclomatic complexity within limits",
             "validation_method": "complexity", "passing_threshold": 70, "weight": 2},
        ],
    },
    {
        "id": "unit-tests",
        "category": "testing",
        "title": "Unit tests and coverage",
        "priority": "critical",
        "phase": "development",
        "dependencies": ["code-standards"],
        "estimated_time": 20,
        "guideline": "testing-strategy",
        "criteria": [
            {"id": "tests-pass", "description": "All unit tests pass", "validation_method": "unit-tests",
             "passing_threshold": 100, "weight": 3},
            {"id": "coverage", "description": "Line coverage at least 80%", "validation_method": "coverage",
             "passing_threshold": 80, "weight": 2},
        ],
    },
    {
        "id": "dependency-audit",
        "category": "security",
        "title": "Dependency and secret audit",
        "priority": "critical",
        "phase": "development",
        "estimated_time": 10,
        "guideline": "security-guidelines",
        "criteria": [
            {"id": "no-critical-vulnerabilities", "description": "No known critical vulnerabilities",
             "validation_method": "dependency-audit", "passing_threshold": 100, "weight": 2},
            {"id": "no-secrets", "description": "No secrets committed", "validation_method": "secret-scan",
             "passing_threshold": 100, "weight": 1},
        ],
    },
    {
        "id": "security-review",
        "category": "security",
        "title": "Security review",
        "description": "Static analysis and threat model review for security-relevant changes.",
        "priority": "critical",
        "phase": "post-development",
        "dependencies": ["dependency-audit", "unit-tests"],
        "estimated_time": 60,
        "guideline": "security-guidelines",
        "applies_when": {"change_types": ["security"], "flags": ["includes_security_changes"]},
        "criteria": [
            {"id": "sast", "description": "Static analysis finds no high-severity issues",
             "validation_method": "sast", "passing_threshold": 90, "weight": 2},
            {"id": "threat-model", "description": "Threat model reviewed",
             "validation_type": "manual", "validation_method": "threat-model-review",
             "passing_threshold": 100, "weight": 1},
        ],
    },
    {
        "id": "api-contract",
        "category": "testing",
        "title": "API contract",
        "priority": "high",
        "phase": "development",
        "dependencies": ["unit-tests"],
        "estimated_time": 25,
        "guideline": "api-design-guidelines",
        "applies_when": {"flags": ["includes_api_changes"]},
        "criteria": [
            {"id": "contract-tests", "description": "Contract tests pass",
             "validation_method": "contract-tests", "passing_threshold": 100, "weight": 2},
            {"id": "api-spec-lint", "description": "API specification is valid",
             "validation_method": "openapi-lint", "passing_threshold": 90, "weight": 1},
        ],
    },
    {
        "id": "database-migration",
        "category": "data",
        "title": "Database migration safety",
        "priority": "high",
        "phase": "development",
        "dependencies": ["unit-tests"],
        "estimated_time": 20,
        "applies_when": {"flags": ["includes_database_changes"]},
        "criteria": [
            {"id": "migration-reversible", "description": "Migrations apply and roll back cleanly",
             "validation_method": "migration-check", "passing_threshold": 100, "weight": 2},
            {"id": "migration-review", "description": "Migration plan reviewed",
             "validation_type": "semi-automated", "validation_method": "migration-review",
             "passing_threshold": 100, "weight": 1},
        ],
    },
    {
        "id": "performance",
        "category": "performance",
        "title": "Performance budget",
        "priority": "medium",
        "phase": "post-development",
        "dependencies": ["unit-tests"],
        "estimated_time": 45,
        "guideline": "performance-guidelines",
        "applies_when": {"change_types": ["infrastructure"], "flags": ["performance_sensitive"]},
        "criteria": [
            {"id": "response-time", "description": "p95 response time within budget",
             "validation_method": "performance-benchmark", "passing_threshold": 85, "weight": 2},
            {"id": "memory", "description": "Memory usage within budget",
             "validation_method": "memory-profile", "passing_threshold": 80, "weight": 1},
        ],
    },
    {
        "id": "accessibility",
        "category": "accessibility",
        "title": "Accessibility",
        "priority": "high",
        "phase": "post-development",
        "dependencies": ["code-standards"],
        "estimated_time": 40,
        "guideline": "accessibility-guidelines",
        "applies_when": {"change_types": ["ui"], "flags": ["includes_ui_changes"]},
        "criteria": [
            {"id": "a11y-scan", "description": "Automated accessibility scan passes",
             "validation_method": "axe-scan", "passing_threshold": 95, "weight": 2},
            {"id": "lighthouse-a11y", "description": "Lighthouse accessibility score",
             "validation_method": "lighthouse-accessibility", "passing_threshold": 90, "weight": 1},
            {"id": "keyboard-navigation", "description": "Keyboard navigation verified",
             "validation_type": "manual", "validation_method": "keyboard-navigation-review",
             "passing_threshold": 100, "weight": 1},
        ],
    },
    {
        "id": "react-practices",
        "category": "code-standards",
        "title": "React practices",
        "priority": "medium",
        "phase": "development",
        "dependencies": ["code-standards"],
        "estimated_time": 15,
        "applies_when": {"technologies": ["react"]},
        "criteria": [
            {"id": "hooks-rules", "description": "Rules of hooks respected",
             "validation_method": "eslint-react-hooks", "passing_threshold": 100, "weight": 1},
            {"id": "bundle-size", "description": "Bundle size within budget",
             "validation_method": "bundle-size", "passing_threshold": 80, "weight": 1},
        ],
    },
    {
        "id": "story-completion",
        "category": "story-completion",
        "title": "Story and task completion",
        "priority": "high",
        "phase": "post-development",
        "dependencies": ["unit-tests"],
        "estimated_time": 15,
        "guideline": "definition-of-done",
        "criteria": [
            {"id": "tasks-closed", "description": "All story tasks are closed",
             "validation_method": "task-completion", "passing_threshold": 100, "weight": 2},
            {"id": "acceptance-criteria", "description": "Acceptance criteria met",
             "validation_type": "semi-automated", "validation_method": "acceptance-criteria-check",
             "passing_threshold": 100, "weight": 1},
        ],
    },
    {
        "id": "documentation",
        "category": "documentation",
        "title": "Documentation",
        "priority": "low",
        "phase": "post-development",
        "estimated_time": 20,
        "applies_when": {"change_types": ["feature", "documentation"], "flags": ["includes_api_changes"]},
        "criteria": [
            {"id": "changelog", "description": "Changelog updated",
             "validation_method": "changelog-check", "passing_threshold": 100, "weight": 1},
            {"id": "docs-build", "description": "Documentation builds",
             "validation_method": "docs-build", "passing_threshold": 100, "weight": 1},
        ],
    },
    {
        "id": "deployment-readiness",
        "category": "deployment",
        "title": "Deployment readiness",
        "priority": "critical",
        "phase": "deployment",
        "dependencies": ["unit-tests", "dependency-audit"],
        "estimated_time": 15,
        "guideline": "deployment-guidelines",
        "applies_when": {"change_types": ["feature", "hotfix", "infrastructure", "security"]},
        "criteria": [
            {"id": "build", "description": "Release build succeeds", "validation_method": "build",
             "passing_threshold": 100, "weight": 2},
            {"id": "smoke-tests", "description": "Smoke tests pass", "validation_method": "smoke-tests",
             "passing_threshold": 100, "weight": 2},
            {"id": "rollback-plan", "description": "Rollback plan documented",
             "validation_type": "semi-automated", "validation_method": "rollback-plan-check",
             "passing_threshold": 100, "weight": 1},
        ],
    },
]
