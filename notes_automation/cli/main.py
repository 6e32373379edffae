"""Main CLI entry point for Notes Automation diagnostics."""

import argparse
import sys
from typing import Optional

from rich.console import Console
from rich.panel import Panel

from notes_automation.config.config_loader import load_config, get_config_example
from notes_automation.core.health import check_health
from notes_automation.core.sync_monitor import SyncMonitor
from notes_automation.osascript.executor import AutomationCommand, ScriptExecutor
from notes_automation.utils.logging import LogContext, log_check_result, setup_logging

console = Console()


def _print_error(message: str, suggestion: str = None, details: str = None) -> None:
    """Print a formatted error message with optional suggestions.

    Args:
        message: The main error message
        suggestion: Optional suggestion for how to fix the issue
        details: Optional additional details
    """
    console.print(f"[bold red]❌ Error:[/bold red] {message}")

    if details:
        console.print(f"[dim]{details}[/dim]")

    if suggestion:
        console.print(f"[yellow]💡 Suggestion:[/yellow] {suggestion}")


def _print_success(message: str, details: dict = None) -> None:
    """Print a formatted success message.

    Args:
        message: The main success message
        details: Optional dictionary of details to display
    """
    console.print(f"[bold green]✅ {message}[/bold green]")

    if details:
        for key, value in details.items():
            console.print(f"  [cyan]{key}:[/cyan] {value}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notesauto",
        description="Notes Automation - Run AppleScript against Notes.app and inspect iCloud sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a script with up to 3 attempts
  notesauto run 'tell application "Notes" to get name of every folder' --max-attempts 3

  # Read a script from stdin
  cat list_notes.applescript | notesauto run -

  # Show iCloud sync status, bypassing the cache
  notesauto sync-status --fresh

  # Verify Notes.app is reachable and automation is permitted
  notesauto health
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version="notesauto 0.1.0",
    )

    parser.add_argument(
        "--config-example",
        action="store_true",
        help="Print example configuration file and exit",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (DEBUG log level and per-attempt logging)",
    )

    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output (sets log level to ERROR)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level explicitly (overrides -v/-q)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run",
        help="Run an AppleScript and print its output",
    )
    run_parser.add_argument("script", help="AppleScript source, or '-' to read stdin")
    run_parser.add_argument(
        "--timeout-ms",
        type=int,
        default=None,
        help="Per-attempt timeout in milliseconds (default: from config or 30000)",
    )
    run_parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Total attempts for transient failures (default: from config or 1)",
    )
    run_parser.add_argument(
        "--retry-delay-ms",
        type=int,
        default=None,
        help="Base backoff delay in milliseconds (default: from config or 1000)",
    )

    sync_parser = subparsers.add_parser(
        "sync-status",
        help="Show iCloud sync activity for the Notes database",
    )
    sync_parser.add_argument(
        "--fresh",
        action="store_true",
        help="Bypass the status cache",
    )

    subparsers.add_parser(
        "health",
        help="Check that Notes.app is reachable and automation is permitted",
    )

    return parser


def _resolve_log_level(args: argparse.Namespace, default: str) -> str:
    """CLI flags override the configured log level."""
    if args.log_level:
        return args.log_level
    if args.verbose:
        return "DEBUG"
    if args.quiet:
        return "ERROR"
    return default


def _read_script(script_arg: str) -> str:
    if script_arg == "-":
        return sys.stdin.read()
    return script_arg


def _pick(override: Optional[int], default: int) -> int:
    return default if override is None else override


def _handle_run(args: argparse.Namespace, executor: ScriptExecutor) -> None:
    try:
        command = AutomationCommand(
            script=_read_script(args.script),
            timeout_ms=_pick(args.timeout_ms, executor.timeout_ms),
            max_attempts=_pick(args.max_attempts, executor.max_attempts),
            retry_base_delay_ms=_pick(args.retry_delay_ms, executor.retry_base_delay_ms),
        )
    except ValueError as e:
        _print_error(str(e), suggestion="Check the --timeout-ms/--max-attempts values")
        sys.exit(1)

    outcome = executor.execute_with_retry(command)

    if outcome.success:
        if outcome.output:
            console.print(outcome.output, markup=False, highlight=False)
        sys.exit(0)

    _print_error(
        outcome.error.message,
        details=f"kind={outcome.error.kind.value}, attempts={outcome.attempts}",
    )
    sys.exit(1)


def _handle_sync_status(args: argparse.Namespace, monitor: SyncMonitor) -> None:
    status = monitor.get_status(use_cache=not args.fresh)

    if status.probe_error:
        _print_error(
            f"Sync status unknown: {status.probe_error}",
            details=f"Database: {monitor.database_path}",
        )
        sys.exit(1)

    details = {
        "Pending uploads": status.pending_count,
        "Seconds since last change": status.seconds_since_last_change,
        "Recent activity": status.recent_activity,
    }
    if status.activity_detected:
        console.print(f"[yellow]⚠️  {status.warning}[/yellow]")
        _print_success("iCloud sync: Active", details=details)
    else:
        _print_success("iCloud sync: Idle", details=details)
    sys.exit(0)


def _handle_health(executor: ScriptExecutor, monitor: SyncMonitor) -> None:
    with LogContext("Checking Notes.app health..."):
        report = check_health(executor, monitor)
        for check in report.checks:
            log_check_result(check.name, check.passed, check.message)

    if report.healthy:
        _print_success("Notes.app automation is healthy")
        sys.exit(0)

    _print_error(
        "Notes.app automation is not healthy",
        suggestion="Open Notes.app and grant access in System Settings > Privacy & Security > Automation",
    )
    sys.exit(1)


def main() -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args()

    if args.config_example:
        console.print(
            Panel(
                get_config_example(),
                title="📄 Example .notesauto.toml Configuration",
                border_style="cyan",
            )
        )
        console.print(
            "\n[dim]Save this as .notesauto.toml in your project root or ~/.notesauto.toml for user defaults[/dim]"
        )
        sys.exit(0)

    # Resolved once; the executor and monitor keep these values for the run
    config = load_config()
    setup_logging(level=_resolve_log_level(args, config.log_level))

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.verbose:
        config.verbose = True

    executor = ScriptExecutor.from_config(config)
    monitor = SyncMonitor.from_config(config)

    if args.command == "run":
        _handle_run(args, executor)
    elif args.command == "sync-status":
        _handle_sync_status(args, monitor)
    elif args.command == "health":
        _handle_health(executor, monitor)


if __name__ == "__main__":
    main()
