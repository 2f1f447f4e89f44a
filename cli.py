"""Unified CLI for the quality pipeline.

Chains checklist generation -> execution -> responsibility/escalation.

Usage:
    python -m cli generate [--change-type feature] [--security] [--ui] [--tech react]
    python -m cli run [context flags] [--confirm CRITERION] [--store] [--report-out FILE]
    python -m cli report [--since 7d] [--failed]
    python -m cli catalog
    python -m cli escalate <assignment-id> --reason TEXT [--urgency high]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path

from shared.config import QualityPipelineConfig, configure_logging, load_config
from shared.errors import ChecklistStructureError, MaxEscalationReached
from shared.models import ChangeType, Checklist, ExecutionStatus, Urgency, ValidationContext
from shared.storage import QueryFilters, create_storage

from checklist.catalog import catalog_from_config
from checklist.generator import validate_catalog
from checklist.report import format_table, render_markdown, to_report
from pipeline import PipelineRun, QualityPipeline
from validation.manual import ReviewTicket


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="quality-pipeline",
        description="Generate, run and route quality validation checklists",
    )
    parser.add_argument("--config", default=None, help="Path to config file")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_context_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument(
            "--change-type",
            default=ChangeType.FEATURE.value,
            choices=[c.value for c in ChangeType],
            help="Kind of change being validated",
        )
        sp.add_argument("--security", action="store_true", help="Change touches security")
        sp.add_argument("--ui", action="store_true", help="Change touches the UI")
        sp.add_argument("--api", action="store_true", help="Change touches a public API")
        sp.add_argument("--database", action="store_true", help="Change includes migrations")
        sp.add_argument("--performance", action="store_true", help="Change is performance sensitive")
        sp.add_argument("--tech", action="append", default=[], help="Technology in use (repeatable)")
        sp.add_argument("--user", default="", help="Author of the change")
        sp.add_argument("--workdir", default="", help="Directory validator commands run in")

    # --- generate ---
    sp_generate = subparsers.add_parser("generate", help="Show the checklist for a change")
    add_context_args(sp_generate)

    # --- run ---
    sp_run = subparsers.add_parser(
        "run",
        help="Generate and execute a checklist",
        description=(
            "Generate and execute a checklist. Manual review criteria cannot be "
            "submitted from the CLI: a run that needs them stops awaiting input. "
            "Serve the REST API (uvicorn api.app:create_app --factory) to run "
            "checklists with manual reviews."
        ),
    )
    add_context_args(sp_run)
    sp_run.add_argument(
        "--confirm",
        action="append",
        default=[],
        help="Criterion id whose tool recommendation a human confirmed (repeatable)",
    )
    sp_run.add_argument("--store", action="store_true", help="Store result in the JSONL backend")
    sp_run.add_argument("--report-out", default="", help="Write the JSON report to this file")

    # --- report ---
    sp_report = subparsers.add_parser("report", help="Summarize stored executions")
    sp_report.add_argument("--since", default="", help="Time range: 7d, 30d, 24h, 1w")
    sp_report.add_argument("--failed", action="store_true", help="Only executions that did not pass")

    # --- catalog ---
    subparsers.add_parser("catalog", help="List catalog items and check their dependencies")

    # --- escalate ---
    sp_escalate = subparsers.add_parser("escalate", help="Escalate an assignment one level")
    sp_escalate.add_argument("assignment_id", help="Assignment to escalate")
    sp_escalate.add_argument("--reason", required=True, help="Why it is escalated")
    sp_escalate.add_argument(
        "--urgency",
        default=Urgency.NORMAL.value,
        choices=[u.value for u in Urgency],
        help="Urgency of the escalation",
    )

    return parser


def _load(args: argparse.Namespace) -> QualityPipelineConfig:
    config_path = Path(args.config) if args.config else None
    config = load_config(config_path=config_path)
    configure_logging(config.logging)
    return config


def _context_from_args(args: argparse.Namespace) -> ValidationContext:
    metadata = {"workdir": args.workdir} if args.workdir else {}
    return ValidationContext(
        change_type=ChangeType(args.change_type),
        includes_security_changes=args.security,
        includes_ui_changes=args.ui,
        includes_api_changes=args.api,
        includes_database_changes=args.database,
        performance_sensitive=args.performance,
        technologies=args.tech,
        requested_by=args.user,
        confirmations=set(getattr(args, "confirm", [])),
        metadata=metadata,
    )


def _make_pipeline(config: QualityPipelineConfig, store: bool = False) -> QualityPipeline:
    return QualityPipeline(
        config,
        store=create_storage(config.storage) if store else None,
        escalation_path=Path(config.storage.path) / "escalations",
    )


def parse_since(since: str) -> datetime:
    """Parse a relative time string like '7d', '30d', '24h' into a datetime."""
    since = since.strip().lower()
    now = datetime.now()
    if since.endswith("d"):
        return now - timedelta(days=int(since[:-1]))
    elif since.endswith("h"):
        return now - timedelta(hours=int(since[:-1]))
    elif since.endswith("w"):
        return now - timedelta(weeks=int(since[:-1]))
    else:
        return datetime.fromisoformat(since)


def _print_checklist(checklist: Checklist) -> str:
    """Format a Checklist for display. Returns the formatted string."""
    rows = [
        [
            str(i),
            item.id,
            item.priority.value,
            item.phase.value,
            str(len(item.criteria)),
            ", ".join(item.dependencies) or "-",
        ]
        for i, item in enumerate(checklist.items, 1)
    ]
    lines = [
        f"Checklist: {checklist.id}",
        f"Items: {len(checklist.items)}  Estimated: {checklist.estimated_duration} min  "
        f"Automation: {checklist.automation_coverage:.0%}",
        "",
        format_table(["#", "Item", "Priority", "Phase", "Criteria", "Depends on"], rows),
    ]
    return "\n".join(lines)


def _print_routing(outcome: PipelineRun) -> str:
    """Format assignments and escalations of a failed run."""
    lines: list[str] = []
    report = outcome.responsibilities
    if report is None:
        return ""

    lines.append("### Responsibilities")
    for a in report.assignments:
        lines.append(f"- {a.item_id}: {a.primary_owner} ({a.primary_role}), due {a.due_date:%Y-%m-%d %H:%M}")
    for item_id, reason in report.unassigned.items():
        lines.append(f"- {item_id}: UNASSIGNED ({reason})")

    if outcome.escalations:
        lines.append("")
        lines.append("### Escalations")
        for r in outcome.escalations:
            lines.append(
                f"- {r.assignment_id}: {r.from_role} -> {r.to_person or r.to_role} "
                f"(level {r.level}, {r.urgency.value})"
            )
    for assignment_id in outcome.exhausted:
        lines.append(f"- {assignment_id}: escalation path exhausted, needs a human decision")
    return "\n".join(lines)


def _print_pending(tickets: list[ReviewTicket]) -> str:
    """Explain a run suspended on manual reviews."""
    lines = [f"Awaiting {len(tickets)} manual review(s):"]
    for t in tickets:
        lines.append(f"- {t.id}: {t.item_id}/{t.criterion_id}")
    lines.append(
        "Manual reviews cannot be submitted from the CLI. Serve the REST API "
        "(uvicorn api.app:create_app --factory) to run this checklist and submit "
        "reviews with POST /reviews/{ticket_id}."
    )
    return "\n".join(lines)


def cmd_generate(args: argparse.Namespace) -> int:
    """Generate and print a checklist without running it."""
    config = _load(args)
    pipeline = QualityPipeline(config)
    try:
        checklist = pipeline.generate_checklist(_context_from_args(args))
    except ChecklistStructureError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(_print_checklist(checklist))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Run the full pipeline: generate, execute, and route failures."""
    config = _load(args)
    pipeline = _make_pipeline(config, store=args.store)
    try:
        outcome = asyncio.run(pipeline.run(_context_from_args(args)))
    except ChecklistStructureError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(_print_checklist(outcome.checklist))
    print(render_markdown(outcome.result))
    routing = _print_routing(outcome)
    if routing:
        print(routing)
    if outcome.result.status == ExecutionStatus.AWAITING_INPUT:
        print(_print_pending(pipeline.open_reviews(outcome.result.execution_id)), file=sys.stderr)

    if args.report_out:
        Path(args.report_out).write_text(to_report(outcome.result))
        print(f"\nReport written to {args.report_out}.")
    if args.store:
        print("\nResult stored.")

    return 0 if outcome.result.passed else 1


def cmd_report(args: argparse.Namespace) -> int:
    """Summarize stored execution results."""
    config = _load(args)
    storage = create_storage(config.storage)

    filters = QueryFilters()
    if args.since:
        filters.start_date = parse_since(args.since)
    if args.failed:
        filters.passed = False

    results = storage.query(filters)
    summary = storage.summarize(filters)
    since_label = f"since {args.since}" if args.since else "all time"

    print(f"## Executions ({since_label})")
    print("")
    print(f"Total: {summary['count']}  Passed: {summary['passed']}  Avg score: {summary['avg_score']:.1f}")
    print("")
    rows = [
        [
            r.started_at.strftime("%Y-%m-%d %H:%M"),
            r.execution_id[:8],
            r.status.value,
            f"{r.overall_score:.1f}",
            r.quality_level.value,
            "yes" if r.passed else "no",
        ]
        for r in results
    ]
    print(format_table(["Started", "Execution", "Status", "Score", "Level", "Passed"], rows))
    return 0


def cmd_catalog(args: argparse.Namespace) -> int:
    """List catalog items."""
    config = _load(args)
    try:
        catalog = catalog_from_config(config.catalog)
        validate_catalog(catalog)
    except (ChecklistStructureError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    rows = []
    for item in catalog.values():
        when = item.applies_when
        applies = "always" if when.is_base else ", ".join(
            [c.value for c in when.change_types] + list(when.flags) + list(when.technologies)
        )
        rows.append([item.id, item.category, item.priority.value, str(len(item.criteria)), applies])
    print(format_table(["Item", "Category", "Priority", "Criteria", "Applies when"], rows))
    return 0


def cmd_escalate(args: argparse.Namespace) -> int:
    """Escalate a tracked assignment one level up its path."""
    config = _load(args)
    pipeline = _make_pipeline(config)
    try:
        record = pipeline.escalate(args.assignment_id, args.reason, Urgency(args.urgency))
    except KeyError:
        print(f"Assignment '{args.assignment_id}' not found.", file=sys.stderr)
        return 1
    except MaxEscalationReached as e:
        print(f"Error: {e}. A human decision is required.", file=sys.stderr)
        return 3
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Escalated to {record.to_person or record.to_role} (level {record.level}).")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "generate": cmd_generate,
        "run": cmd_run,
        "report": cmd_report,
        "catalog": cmd_catalog,
        "escalate": cmd_escalate,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
