"""Command-line entry point for the Parse to Supabase migration."""

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError, SourceUnavailable, TargetUnavailable
from .models.migration import MigrationConfig, Stage
from .extractors.parse_extractor import ParseExtractor
from .loaders.supabase_store import SupabaseStore
from .orchestrator import MigrationOrchestrator
from .services.validator import MigrationValidator


EPILOG = """\
Available tables:
  users      Migrate Parse _User to Supabase auth.users
  foods      Migrate Parse Food to Supabase foods
  foodlogs   Migrate Parse FoodLog to Supabase food_logs

Dependencies:
  foodlogs needs users and foods. When they are not part of the same run,
  their ID mappings are rebuilt from data already in Supabase.

Environment variables required:
  PARSE_APPLICATION_ID      Parse application ID
  PARSE_MASTER_KEY          Parse master key
  PARSE_SERVER_URL          Parse server URL
  SUPABASE_URL              Supabase project URL
  SUPABASE_SERVICE_ROLE_KEY Supabase service role key
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nutrimigrate",
        description="Migrate nutrition tracker data from Parse Server to Supabase",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser(
        "run",
        help="Run the migration",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument(
        "--tables",
        default="all",
        help="Tables to migrate: 'all' or a comma-separated subset of users,foods,foodlogs",
    )
    run_parser.add_argument("--dry-run", action="store_true", help="Read and transform without writing")
    run_parser.add_argument("--limit", type=int, help="Max legacy records to read per table")
    run_parser.add_argument("--batch-size", type=int, help="Records per insert call")
    run_parser.add_argument("--workers", type=int, help="Parallel insert/photo workers")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Connection check
    check_parser = subparsers.add_parser("check", help="Test connections to Parse and Supabase")
    check_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Post-migration validation
    validate_parser = subparsers.add_parser("validate", help="Compare Parse and Supabase after a migration")
    validate_parser.add_argument("--sample", type=int, default=5, help="Food logs to check for valid references")
    validate_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    stages = None
    if args.command == "run":
        try:
            stages = Stage.parse_selection(args.tables)
        except ValueError as e:
            parser.error(str(e))

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    load_dotenv()

    if args.command == "run":
        return run_migration(args, stages)
    elif args.command == "check":
        return run_check(args)
    elif args.command == "validate":
        return run_validation(args)

    parser.print_help()
    return 0


def load_config(args: argparse.Namespace) -> MigrationConfig:
    """Environment configuration with command-line overrides applied."""
    config = MigrationConfig.from_env()
    if getattr(args, "dry_run", False):
        config.dry_run = True
    if getattr(args, "limit", None) is not None:
        config.source_limit = args.limit
    if getattr(args, "batch_size", None) is not None:
        config.batch_size = args.batch_size
    if getattr(args, "workers", None) is not None:
        config.parallel_workers = args.workers
    config.validate()
    return config


def run_migration(args: argparse.Namespace, stages: List[Stage]) -> int:
    """Run the selected stages and print the report."""
    try:
        config = load_config(args)
        orchestrator = MigrationOrchestrator(config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Could not initialize clients: {e}", file=sys.stderr)
        return 1

    try:
        stats = orchestrator.run(stages)
    except (SourceUnavailable, TargetUnavailable) as e:
        if orchestrator.stats is not None:
            print(orchestrator.stats.format_report())
        print(f"\nMigration failed: {e}", file=sys.stderr)
        return 1

    print(stats.format_report())
    print("\nMigration completed!")
    return 0


def run_check(args: argparse.Namespace) -> int:
    """Check both connections and show legacy record counts."""
    try:
        config = load_config(args)
        extractor = ParseExtractor.from_config(config)
        store = SupabaseStore.from_config(config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Could not initialize clients: {e}", file=sys.stderr)
        return 1

    ok = True
    try:
        extractor.validate_connection()
        print(f"Parse connection successful ({config.parse_server_url})")
        print("Parse data overview:")
        for entity in ("User", "Food", "FoodLog"):
            print(f"  - {entity}: {extractor.count(entity)}")
    except SourceUnavailable as e:
        print(f"Parse connection failed: {e}", file=sys.stderr)
        ok = False

    try:
        store.validate_connection()
        print(f"Supabase connection successful ({config.supabase_url})")
    except TargetUnavailable as e:
        print(f"Supabase connection failed: {e}", file=sys.stderr)
        ok = False

    return 0 if ok else 1


def run_validation(args: argparse.Namespace) -> int:
    """Compare both backends after a migration."""
    try:
        config = load_config(args)
        validator = MigrationValidator(ParseExtractor.from_config(config), SupabaseStore.from_config(config))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Could not initialize clients: {e}", file=sys.stderr)
        return 1

    try:
        report = validator.run(sample=args.sample)
    except Exception as e:
        print(f"Validation failed: {e}", file=sys.stderr)
        return 1

    print(report.format_report())
    return 0


if __name__ == "__main__":
    sys.exit(main())
