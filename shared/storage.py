"""Storage backends for checklist execution results.

Append-only storage with query support. JSONL is the default backend.
"""

from __future__ import annotations

import fcntl
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from shared.config import StorageConfig
from shared.models import ChecklistExecutionResult, ExecutionStatus

logger = logging.getLogger(__name__)


# --- Query Filters ---


class QueryFilters(BaseModel):
    """Filters for querying stored execution results."""

    start_date: datetime | None = None
    end_date: datetime | None = None
    checklist_id: str | None = None
    status: ExecutionStatus | None = None
    passed: bool | None = None
    min_score: float | None = Field(default=None, ge=0.0, le=100.0)
    max_score: float | None = Field(default=None, ge=0.0, le=100.0)


def _matches(result: ChecklistExecutionResult, filters: QueryFilters) -> bool:
    """Check if an execution result matches the given filters."""
    if filters.start_date and result.started_at < filters.start_date:
        return False
    if filters.end_date and result.started_at > filters.end_date:
        return False
    if filters.checklist_id and result.checklist_id != filters.checklist_id:
        return False
    if filters.status is not None and result.status != filters.status:
        return False
    if filters.passed is not None and result.passed != filters.passed:
        return False
    if filters.min_score is not None and result.overall_score < filters.min_score:
        return False
    if filters.max_score is not None and result.overall_score > filters.max_score:
        return False
    return True


# --- Storage Protocol ---


@runtime_checkable
class ExecutionStore(Protocol):
    """Protocol for execution result storage backends."""

    def append(self, result: ChecklistExecutionResult) -> None:
        """Append an execution result to storage."""
        ...

    def query(self, filters: QueryFilters | None = None) -> list[ChecklistExecutionResult]:
        """Query stored results with optional filters."""
        ...

    def count(self, filters: QueryFilters | None = None) -> int:
        """Count results matching filters."""
        ...

    def summarize(self, filters: QueryFilters | None = None) -> dict[str, Any]:
        """Aggregate statistics over matching results."""
        ...


# --- JSONL Backend ---


class JSONLBackend:
    """Append-only JSONL storage with daily file rotation.

    Files are stored as: {base_path}/executions-YYYY-MM-DD.jsonl
    Thread-safe via file locking on append.
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _file_for_date(self, dt: datetime) -> Path:
        return self.base_path / f"executions-{dt.strftime('%Y-%m-%d')}.jsonl"

    def _all_files(self) -> list[Path]:
        return sorted(self.base_path.glob("executions-*.jsonl"))

    def _files_in_range(self, filters: QueryFilters | None) -> list[Path]:
        """Get JSONL files that could contain results matching the date range."""
        all_files = self._all_files()
        if not filters or (not filters.start_date and not filters.end_date):
            return all_files

        result = []
        for f in all_files:
            try:
                date_str = f.stem.replace("executions-", "")
                file_date = datetime.strptime(date_str, "%Y-%m-%d").date()
            except ValueError:
                continue

            if filters.start_date and file_date < filters.start_date.date():
                continue
            if filters.end_date and file_date > filters.end_date.date():
                continue
            result.append(f)
        return result

    def append(self, result: ChecklistExecutionResult) -> None:
        """Append an execution result. Thread-safe via file locking."""
        target_file = self._file_for_date(result.started_at)
        line = result.model_dump_json() + "\n"

        with open(target_file, "a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                f.write(line)
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _read_file(self, path: Path) -> list[ChecklistExecutionResult]:
        results: list[ChecklistExecutionResult] = []
        if not path.exists():
            return results
        with open(path) as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    results.append(ChecklistExecutionResult.model_validate_json(line))
                except ValidationError:
                    logger.warning("Skipping malformed record %s:%d", path.name, lineno)
        return results

    def query(self, filters: QueryFilters | None = None) -> list[ChecklistExecutionResult]:
        """Query results with optional filters."""
        results = []
        for f in self._files_in_range(filters):
            for result in self._read_file(f):
                if filters is None or _matches(result, filters):
                    results.append(result)
        return results

    def get(self, execution_id: str) -> ChecklistExecutionResult | None:
        """Latest stored snapshot of an execution, or None."""
        found = None
        for result in self.query():
            if result.execution_id == execution_id:
                found = result
        return found

    def count(self, filters: QueryFilters | None = None) -> int:
        return len(self.query(filters))

    def summarize(self, filters: QueryFilters | None = None) -> dict[str, Any]:
        """Aggregate statistics over matching results.

        Returns:
            {"count": N, "passed": N, "avg_score": X, "min_score": X,
             "max_score": X, "by_status": {status: N}}
        """
        results = self.query(filters)
        by_status: dict[str, int] = {}
        for r in results:
            by_status[r.status.value] = by_status.get(r.status.value, 0) + 1

        scores = [r.overall_score for r in results]
        return {
            "count": len(results),
            "passed": sum(1 for r in results if r.passed),
            "avg_score": sum(scores) / len(scores) if scores else 0.0,
            "min_score": min(scores) if scores else 0.0,
            "max_score": max(scores) if scores else 0.0,
            "by_status": by_status,
        }


# --- Factory ---


def create_storage(config: StorageConfig | None = None) -> JSONLBackend:
    """Create a storage backend from configuration.

    Args:
        config: Storage configuration. If None, uses defaults.

    Returns:
        A configured storage backend.
    """
    if config is None:
        config = StorageConfig()

    if config.backend == "jsonl":
        return JSONLBackend(base_path=Path(config.path) / "executions")

    raise ValueError(f"Unknown storage backend: {config.backend!r}. Supported: 'jsonl'")
