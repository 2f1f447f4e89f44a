"""Configuration management for the quality pipeline.

Loads YAML config with cascading precedence: repo root → user home → defaults.
"""

import functools
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from shared.models import Person

# --- Config Schema ---

CONFIG_FILENAME = ".quality-pipeline.yaml"


class QualityLevelThresholds(BaseModel):
    """Minimum overall score for each quality level. Anything lower is Poor."""

    excellent: float = 95.0
    good: float = 85.0
    fair: float = 70.0


class ExecutionConfig(BaseModel):
    """Configuration for checklist execution."""

    pass_threshold: float = Field(default=80.0, ge=0.0, le=100.0)
    quality_levels: QualityLevelThresholds = Field(default_factory=QualityLevelThresholds)
    default_timeout_seconds: float = Field(default=300.0, gt=0)
    criterion_concurrency: int = Field(default=8, ge=1)


class ValidatorToolConfig(BaseModel):
    """An external command registered as a validator tool.

    ``parse`` selects how the command's output becomes a raw result:
    ``exit-code`` maps a zero exit status to pass, ``json`` reads a
    ``{"score"|"passed"|"percentage": ...}`` object from stdout.
    """

    command: list[str]
    parse: str = "exit-code"  # exit-code | json
    cwd: str = ""


class CatalogConfig(BaseModel):
    """Where the item/criterion catalog is loaded from. Empty path → built-in catalog."""

    path: str = ""


class ResponsibilityRule(BaseModel):
    """Maps items of a category/phase to the roles responsible for them.

    ``"*"`` matches any category or phase. More specific rules win.
    """

    category: str = "*"
    phase: str = "*"
    primary_role: str
    secondary_roles: list[str] = Field(default_factory=list)
    reviewer_roles: list[str] = Field(default_factory=list)
    approver_roles: list[str] = Field(default_factory=list)
    escalation_path: list[str] = Field(default_factory=list)
    sla_hours: float | None = Field(default=None, gt=0)


def _default_matrix() -> list[ResponsibilityRule]:
    return [
        ResponsibilityRule(
            category="code-standards",
            primary_role="developer",
            reviewer_roles=["tech-lead"],
            approver_roles=["tech-lead"],
            escalation_path=["tech-lead", "engineering-manager"],
            sla_hours=24,
        ),
        ResponsibilityRule(
            category="testing",
            primary_role="developer",
            secondary_roles=["qa-engineer"],
            reviewer_roles=["qa-engineer"],
            approver_roles=["tech-lead"],
            escalation_path=["tech-lead", "engineering-manager"],
            sla_hours=24,
        ),
        ResponsibilityRule(
            category="security",
            primary_role="security-engineer",
            secondary_roles=["developer"],
            reviewer_roles=["security-engineer"],
            approver_roles=["security-lead"],
            escalation_path=["security-lead", "ciso"],
            sla_hours=8,
        ),
        ResponsibilityRule(
            category="performance",
            primary_role="developer",
            reviewer_roles=["performance-engineer"],
            approver_roles=["tech-lead"],
            escalation_path=["tech-lead", "engineering-manager"],
            sla_hours=48,
        ),
        ResponsibilityRule(
            category="accessibility",
            primary_role="frontend-developer",
            reviewer_roles=["accessibility-specialist"],
            approver_roles=["design-lead"],
            escalation_path=["design-lead", "engineering-manager"],
            sla_hours=48,
        ),
        ResponsibilityRule(
            category="story-completion",
            primary_role="developer",
            reviewer_roles=["product-owner"],
            approver_roles=["product-owner"],
            escalation_path=["product-owner", "engineering-manager"],
            sla_hours=24,
        ),
        ResponsibilityRule(
            phase="deployment",
            primary_role="devops-engineer",
            reviewer_roles=["tech-lead"],
            approver_roles=["release-manager"],
            escalation_path=["release-manager", "engineering-manager", "cto"],
            sla_hours=4,
        ),
        ResponsibilityRule(
            primary_role="developer",
            reviewer_roles=["tech-lead"],
            approver_roles=["tech-lead"],
            escalation_path=["tech-lead", "engineering-manager"],
        ),
    ]


class ResponsibilityConfig(BaseModel):
    """Configuration for responsibility resolution and escalation."""

    matrix: list[ResponsibilityRule] = Field(default_factory=_default_matrix)
    default_escalation_path: list[str] = Field(
        default_factory=lambda: ["tech-lead", "engineering-manager", "cto"]
    )
    default_sla_hours: float = Field(default=24.0, gt=0)
    people: list[Person] = Field(default_factory=list)


class StorageConfig(BaseModel):
    """Configuration for the storage backend."""

    backend: str = "jsonl"
    path: str = "./quality-pipeline-data/"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class QualityPipelineConfig(BaseModel):
    """Top-level configuration for the quality pipeline."""

    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    validators: dict[str, ValidatorToolConfig] = Field(default_factory=dict)
    responsibility: ResponsibilityConfig = Field(default_factory=ResponsibilityConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# --- Config Loading ---


def _find_config_files(start_dir: Path | None = None) -> list[Path]:
    """Find config files in cascading order: user home (lowest) → repo root (highest).

    Returns paths in precedence order (lowest first, highest last) so that
    later entries override earlier ones when merged.
    """
    candidates: list[Path] = []

    home_config = Path.home() / CONFIG_FILENAME
    if home_config.is_file():
        candidates.append(home_config)

    search_dir = start_dir or Path.cwd()
    repo_config = search_dir / CONFIG_FILENAME
    if repo_config.is_file():
        candidates.append(repo_config)

    return candidates


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge override into base. Override values take precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: Path | None = None,
    start_dir: Path | None = None,
) -> QualityPipelineConfig:
    """Load pipeline configuration with cascading precedence.

    Priority (highest to lowest):
    1. Explicit config_path (if provided)
    2. Repo root / start_dir .quality-pipeline.yaml
    3. User home .quality-pipeline.yaml
    4. Built-in defaults

    Args:
        config_path: Explicit path to a config file (overrides discovery).
        start_dir: Directory to search for config files (defaults to cwd).

    Returns:
        Validated QualityPipelineConfig.
    """
    merged: dict[str, Any] = {}

    if config_path is not None:
        if config_path.is_file():
            merged = _load_yaml(config_path)
    else:
        for path in _find_config_files(start_dir):
            merged = _deep_merge(merged, _load_yaml(path))

    return QualityPipelineConfig.model_validate(merged)


@functools.lru_cache(maxsize=1)
def get_config() -> QualityPipelineConfig:
    """Get the cached global configuration. Loaded once per session."""
    return load_config()


def clear_config_cache() -> None:
    """Clear the cached configuration. Useful for testing."""
    get_config.cache_clear()


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Set up root logging for CLI and API entry points."""
    if config is None:
        config = LoggingConfig()
    logging.basicConfig(level=config.level.upper(), format=config.format)
