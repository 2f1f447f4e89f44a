"""Execution reports.

JSON reports round-trip a ChecklistExecutionResult exactly (verdict,
scores, item order). Markdown rendering is for humans: paste into a PR,
chat, or docs.
"""

from __future__ import annotations

import json

from shared.models import ChecklistExecutionResult, ItemStatus

REPORT_FORMAT = "quality-pipeline-report"
REPORT_VERSION = 1


def to_report(result: ChecklistExecutionResult) -> str:
    """Serialize an execution result to a JSON report."""
    envelope = {
        "format": REPORT_FORMAT,
        "version": REPORT_VERSION,
        "result": result.model_dump(mode="json"),
    }
    return json.dumps(envelope, indent=2)


def from_report(text: str) -> ChecklistExecutionResult:
    """Parse a JSON report produced by to_report().

    Raises:
        ValueError: If the text is not a report of a supported version.
    """
    try:
        envelope = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Report is not valid JSON: {e}") from e

    if not isinstance(envelope, dict) or envelope.get("format") != REPORT_FORMAT:
        raise ValueError("Not a quality pipeline report")
    if envelope.get("version") != REPORT_VERSION:
        raise ValueError(f"Unsupported report version: {envelope.get('version')!r}")
    return ChecklistExecutionResult.model_validate(envelope["result"])


# --- Markdown ---

_STATUS_ICONS = {
    ItemStatus.PASSED: "PASS",
    ItemStatus.FAILED: "FAIL",
    ItemStatus.ERROR: "ERROR",
    ItemStatus.PENDING: "WAIT",
    ItemStatus.SKIPPED: "SKIP",
}


def format_table(headers: list[str], rows: list[list[str]]) -> str:
    """Format data as a Markdown table."""
    if not rows:
        return "(no data)\n"

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            if i < len(widths):
                widths[i] = max(widths[i], len(cell))

    lines = []
    lines.append("| " + " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)) + " |")
    lines.append("|-" + "-|-".join("-" * w for w in widths) + "-|")
    for row in rows:
        padded = [cell.ljust(widths[i]) if i < len(widths) else cell for i, cell in enumerate(row)]
        lines.append("| " + " | ".join(padded) + " |")
    return "\n".join(lines) + "\n"


def score_bar(score: float, width: int = 20) -> str:
    filled = int(score / 100 * width)
    return "█" * filled + "░" * (width - filled)


def render_markdown(result: ChecklistExecutionResult) -> str:
    """Render a human-readable summary of an execution."""
    verdict = "PASSED" if result.passed else "NOT PASSED"
    lines = [
        f"## Quality validation: {verdict}",
        "",
        f"Execution: `{result.execution_id}` ({result.status.value})",
        f"Overall score: {score_bar(result.overall_score)} {result.overall_score:.1f}"
        f" ({result.quality_level.value})",
        f"Pass rate: {result.pass_rate:.0f}%  Critical pass rate: {result.critical_pass_rate:.0f}%",
        "",
    ]

    rows = [
        [
            _STATUS_ICONS[r.status],
            r.item_id,
            r.priority.value,
            f"{r.score:.1f}" if r.ran else "-",
        ]
        for r in result.item_results
    ]
    lines.append(format_table(["Status", "Item", "Priority", "Score"], rows))

    blockers = [b for r in result.item_results for b in r.blockers]
    if blockers:
        lines.append("### Blockers")
        lines.extend(f"- {b}" for b in blockers)
        lines.append("")

    if result.pending_tickets:
        lines.append("### Awaiting manual review")
        lines.extend(f"- ticket `{t}`" for t in result.pending_tickets)
        lines.append("")

    return "\n".join(lines)
