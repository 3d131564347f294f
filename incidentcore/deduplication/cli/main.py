"""Command-line interface for incident deduplication."""

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ...config import ConfigManager, DedupConfig
from ...errors import BaseIncidentError, SafetyGateError
from ...logging_config import setup_logging
from ...models import IncidentType
from ...repositories import SQLiteIncidentRepository
from ...services.creation import IncidentCreationService
from ..audit_system import DeduplicationAudit
from ..consolidation import ConsolidationOptions, ConsolidationRunner
from .ui_components import UIComponents

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SAFETY_GATE = 2


def parse_datetime(value: str) -> datetime:
    """argparse type for ``YYYY-MM-DD`` or ISO 8601 timestamps (UTC if naive)."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not a date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_end_datetime(value: str) -> datetime:
    """Like ``parse_datetime``, but a bare date means the end of that day."""
    parsed = parse_datetime(value)
    if len(value.strip()) == len("YYYY-MM-DD"):
        parsed += timedelta(days=1, microseconds=-1)
    return parsed


def parse_incident_type(value: str) -> IncidentType:
    try:
        return IncidentType(value.strip().upper())
    except ValueError:
        choices = ", ".join(t.value for t in IncidentType)
        raise argparse.ArgumentTypeError(f"Unknown incident type {value!r} (choose from {choices})")


def load_config(args) -> DedupConfig:
    config = ConfigManager(config_path=args.config).load()
    if args.db:
        config = config.model_copy(update={"database_path": args.db})
    return config


def consolidate(args, config: DedupConfig, ui: UIComponents) -> int:
    """Run the offline consolidation pass."""
    repository = SQLiteIncidentRepository(config.database_path)
    options = ConsolidationOptions.from_config(
        config.consolidation,
        dry_run=args.dry_run,
        min_corpus_size=args.min_corpus_size,
        max_deletions_per_run=args.max_deletions,
        similarity_threshold=args.threshold,
        incident_type=args.type,
        since=args.since,
        until=args.until,
    )
    audit = None if options.dry_run else DeduplicationAudit(config.audit_db_path)
    runner = ConsolidationRunner(repository, config, audit=audit)

    try:
        report = runner.run(options)
    except SafetyGateError as e:
        if args.json:
            print(json.dumps({"error": e.to_dict(), "gate": e.gate, "limit": e.limit, "actual": e.actual}, default=str))
        else:
            ui.print_gate_error(e)
        return EXIT_SAFETY_GATE
    finally:
        repository.close()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        ui.print_report(report)

    return EXIT_OK if not report.failed_clusters else EXIT_ERROR


def ingest(args, config: DedupConfig, ui: UIComponents) -> int:
    """Create incidents from a JSON file through the duplicate-checking path."""
    with open(args.file, "r", encoding="utf-8") as f:
        items = json.load(f)
    if isinstance(items, dict):
        items = [items]

    repository = SQLiteIncidentRepository(config.database_path)
    audit = DeduplicationAudit(config.audit_db_path)
    service = IncidentCreationService(repository, config, audit=audit)

    try:
        result = service.create_batch(items, user_id=args.user).to_dict()
    finally:
        repository.close()

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        ui.console.print(ui.create_batch_table(result))

    return EXIT_OK if not result["errors"] else EXIT_ERROR


def backfill_hashes(args, config: DedupConfig, ui: UIComponents) -> int:
    """Compute missing content hashes and merge hash-collision losers."""
    repository = SQLiteIncidentRepository(config.database_path)
    dry_run = args.dry_run is not False
    audit = None if dry_run else DeduplicationAudit(config.audit_db_path)
    runner = ConsolidationRunner(repository, config, audit=audit)

    try:
        result = runner.backfill_content_hashes(dry_run=dry_run)
    finally:
        repository.close()

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        ui.print_backfill(result)
    return EXIT_OK


def generate_config(args, ui: UIComponents) -> int:
    """Generate a configuration template."""
    manager = ConfigManager(load_env=False)
    if args.output:
        manager.save_template(args.output)
        ui.console.print(f"✅ Configuration template saved to: {args.output}")
    else:
        print(json.dumps(manager.DEFAULT_CONFIG, indent=2))
    return EXIT_OK


def _add_mode_flags(parser: argparse.ArgumentParser):
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run", dest="dry_run", action="store_const", const=True, default=None,
        help="Plan only, change nothing (default unless configured otherwise)",
    )
    mode.add_argument(
        "--apply", dest="dry_run", action="store_const", const=False,
        help="Apply the planned merges",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="incident-dedup",
        description="Duplicate detection and consolidation for incident records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview consolidation of all airstrikes since January
  incident-dedup consolidate --type AIRSTRIKE --since 2024-01-01

  # Apply, allowing at most 20 deletions
  incident-dedup consolidate --apply --max-deletions 20

  # Ingest new reports with duplicate checking
  incident-dedup ingest reports.json --user analyst-7
""",
    )
    parser.add_argument("-c", "--config", help="Path to configuration file")
    parser.add_argument("--db", help="Incident database path (overrides config)")
    parser.add_argument("--log-level", help="Logging level (overrides config)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    consolidate_parser = subparsers.add_parser("consolidate", help="Find and merge duplicate incidents")
    _add_mode_flags(consolidate_parser)
    consolidate_parser.add_argument("--min-corpus-size", type=int, help="Refuse to run on fewer records")
    consolidate_parser.add_argument("--max-deletions", type=int, help="Refuse to delete more records")
    consolidate_parser.add_argument("--threshold", type=float, help="Duplicate similarity threshold")
    consolidate_parser.add_argument("--type", type=parse_incident_type, help="Only this incident type")
    consolidate_parser.add_argument("--since", type=parse_datetime, help="Only incidents on or after")
    consolidate_parser.add_argument("--until", type=parse_end_datetime, help="Only incidents on or before")
    consolidate_parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    ingest_parser = subparsers.add_parser("ingest", help="Create incidents from a JSON file")
    ingest_parser.add_argument("file", help="JSON file with one incident or a list of incidents")
    ingest_parser.add_argument("--user", help="User id recorded as author")
    ingest_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    backfill_parser = subparsers.add_parser("backfill-hashes", help="Compute missing content hashes")
    _add_mode_flags(backfill_parser)
    backfill_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    config_parser = subparsers.add_parser("generate-config", help="Generate configuration template")
    config_parser.add_argument("-o", "--output", help="Save to file (default: print to stdout)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    ui = UIComponents()

    try:
        if args.command == "generate-config":
            return generate_config(args, ui)

        config = load_config(args)
        setup_logging(
            format=config.logging.format,
            level=args.log_level or config.logging.level,
            log_file=config.logging.file,
        )

        if args.command == "consolidate":
            return consolidate(args, config, ui)
        elif args.command == "ingest":
            return ingest(args, config, ui)
        elif args.command == "backfill-hashes":
            return backfill_hashes(args, config, ui)
    except KeyboardInterrupt:
        ui.console.print("\n⚠️  Interrupted by user")
        return EXIT_ERROR
    except BaseIncidentError as e:
        ui.print_error(e)
        return EXIT_ERROR
    except (OSError, json.JSONDecodeError) as e:
        ui.console.print(f"[bold red]❌ Error:[/bold red] {e}")
        return EXIT_ERROR

    return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
