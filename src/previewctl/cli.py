"""Command-line interface for previewctl."""

import argparse
import sys
from collections.abc import Callable
from pathlib import Path
from typing import NoReturn

import yaml
from sqlalchemy.exc import SQLAlchemyError

from previewctl import __version__
from previewctl.config import get_config, use_config_file
from previewctl.exceptions import MissingCredentialsError, PreviewError, ProviderError
from previewctl.logger import get_logger
from previewctl.models.environment import utcnow
from previewctl.services.environment import LifecycleManager, get_lifecycle_manager, get_sweep

EXAMPLES = """
Examples:
  previewctl create 123 feature/new-ui    # Create preview for PR #123
  previewctl delete pr-123-feature-new-ui # Delete a specific preview
  previewctl list --detailed              # List previews with health status
  previewctl cleanup                      # Delete expired previews
  previewctl --dry-run reconcile          # Show what the scheduled job would do
"""


class _ArgumentParser(argparse.ArgumentParser):
    """Exit with status 1 on invalid usage."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="previewctl",
        description="previewctl - Preview environment orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EXAMPLES,
    )
    parser.add_argument("--config", type=Path, metavar="PATH", help="YAML config file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run every read and decision, but only log provider and store mutations",
    )
    parser.add_argument("--version", action="version", version=f"previewctl {__version__}")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND", parser_class=_ArgumentParser)

    create = commands.add_parser("create", help="Create preview environment for a PR")
    create.add_argument("pr_number", help="Pull request number")
    create.add_argument("branch_name", nargs="?", help="Branch name (default: feature)")

    delete = commands.add_parser("delete", help="Delete a specific preview environment")
    delete.add_argument("preview_name", help="Preview name, e.g. pr-123-feature-new-ui")

    list_cmd = commands.add_parser("list", help="List all preview environments")
    list_cmd.add_argument("-d", "--detailed", action="store_true", help="Include health status")

    commands.add_parser("cleanup", help="Delete expired preview environments")
    commands.add_parser("orphans", help="Delete provider resources with no live preview")
    commands.add_parser("health", help="Check health of active previews")
    commands.add_parser("monitor", help="Report resource usage and estimated cost")
    commands.add_parser("reconcile", help="Run cleanup, orphan detection, usage and health, then notify")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (default from config)")
    serve.add_argument("--port", type=int, help="Port (default from config)")

    commands.add_parser("help", help="Show this help")
    return parser


def _cmd_create(manager: LifecycleManager, args: argparse.Namespace) -> int:
    record = manager.create(args.pr_number, args.branch_name)
    print(f"Preview environment ready: {record.preview_name}")
    print(f"  URL:      {record.url}")
    print(f"  Worker:   {record.resources.worker_name}")
    print(f"  Database: {record.database_mode}")
    return 0


def _cmd_delete(manager: LifecycleManager, args: argparse.Namespace) -> int:
    result = manager.delete(args.preview_name)
    if result.ok:
        print(f"Deleted preview environment: {result.preview_name}")
    else:
        print(f"Deleted {result.preview_name} with residue (left for orphan cleanup):")
        for resource, error in sorted(result.failed.items()):
            print(f"  {resource}: {error}")
    return 0


def _cmd_list(manager: LifecycleManager, args: argparse.Namespace) -> int:
    items = manager.list_environments(detailed=args.detailed)
    if not items:
        print("No preview environments")
        return 0
    now = utcnow()
    for item in items:
        record = item.record
        age_days = record.age(now).total_seconds() / 86400
        line = f"{record.preview_name:<32} {record.status:<12} {age_days:5.1f}d  {record.url}"
        if args.detailed:
            if item.health is None:
                health = "-"
            elif item.health.healthy:
                health = "healthy"
            else:
                health = f"unhealthy ({item.health.error})"
            line += f"  PR #{record.pr_number} {record.branch_name}  db={record.database_mode}  {health}"
        print(line)
    print(f"{len(items)} preview environments")
    return 0


def _cmd_cleanup(manager: LifecycleManager, args: argparse.Namespace) -> int:
    summary = manager.cleanup()
    for outcome in summary.outcomes:
        if outcome.action != "kept":
            print(f"  {outcome.action:<8} {outcome.preview_name} ({outcome.reason})")
    print(f"Cleanup complete: {summary.line()}")
    return 0


def _cmd_orphans(manager: LifecycleManager, args: argparse.Namespace) -> int:
    report = manager.detect_orphans()
    if report.aborted:
        print(f"Orphan detection aborted: {report.aborted}")
        return 0
    for name in report.deleted:
        print(f"  cleaned  {name}")
    for resource, error in sorted(report.failed.items()):
        print(f"  error    {resource}: {error}")
    print(
        f"Orphan cleanup complete: {len(report.deleted)} cleaned, {report.errors} errors, "
        f"{len(report.skipped_in_flight)} in flight"
    )
    return 0


def _cmd_health(manager: LifecycleManager, args: argparse.Namespace) -> int:
    report = manager.check_health()
    for probe in report.probes:
        state = "healthy" if probe.healthy else f"unhealthy ({probe.error})"
        print(f"  {probe.preview_name:<32} {state}")
    print(f"Health check complete: {report.checked} checked, {report.unhealthy_count} unhealthy")
    return 0


def _cmd_monitor(manager: LifecycleManager, args: argparse.Namespace) -> int:
    report = manager.usage_report()
    print(f"Active previews:     {report.active_previews}/{report.max_previews}")
    print(f"KV namespaces:       {report.kv_namespaces}")
    print(f"Database branches:   {report.database_branches}")
    print(f"Estimated cost:      ${report.estimated_monthly_cost_usd:.2f}/month")
    if report.requests_24h:
        print(f"Requests (24h):      {report.total_requests_24h}")
        for script, count in sorted(report.requests_24h.items(), key=lambda kv: -kv[1]):
            print(f"  {script:<40} {count}")
    if report.suggest_cleanup:
        print("Consider cleaning up old previews to reduce costs")
    if report.high_usage:
        print("High preview traffic detected")
    return 0


def _cmd_reconcile(manager: LifecycleManager, args: argparse.Namespace) -> int:
    report = get_sweep().run()
    if report.cleanup is not None:
        print(f"Cleanup:  {report.cleanup.line()}")
    if report.orphans is not None:
        print(f"Orphans:  {len(report.orphans.deleted)} cleaned, {report.orphans.errors} errors")
    if report.usage is not None:
        print(f"Usage:    {report.usage.active_previews} active, ${report.usage.estimated_monthly_cost_usd:.2f}/month")
    if report.health is not None:
        print(f"Health:   {report.health.checked} checked, {report.health.unhealthy_count} unhealthy")
    for stage, error in report.stage_errors.items():
        print(f"Stage {stage} failed: {error}")
    print(f"Notifications sent: {report.notifications_sent}")
    return 0


COMMANDS: dict[str, Callable[[LifecycleManager, argparse.Namespace], int]] = {
    "create": _cmd_create,
    "delete": _cmd_delete,
    "list": _cmd_list,
    "cleanup": _cmd_cleanup,
    "orphans": _cmd_orphans,
    "health": _cmd_health,
    "monitor": _cmd_monitor,
    "reconcile": _cmd_reconcile,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point with CLI argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command in (None, "help"):
        parser.print_help()
        return 0

    try:
        config = use_config_file(args.config) if args.config else get_config()
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1
    if args.dry_run:
        config.advanced.dry_run = True
    # Reconfigure logging with the loaded level and format
    logger = get_logger(__name__)
    if config.advanced.dry_run:
        logger.info("Dry run: provider and store mutations are only logged")

    if args.command == "serve":
        from previewctl.main import run_server

        run_server(host=args.host, port=args.port)
        return 0

    try:
        manager = get_lifecycle_manager()
    except (OSError, SQLAlchemyError) as e:
        print(f"Error: cannot open metadata store: {e}", file=sys.stderr)
        return 1

    try:
        try:
            manager.verify_credentials()
        except (MissingCredentialsError, ProviderError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return COMMANDS[args.command](manager, args)
    except PreviewError as e:
        logger.error("Command failed", command=args.command, error=e.code, message=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        manager.close()


if __name__ == "__main__":
    sys.exit(main())
