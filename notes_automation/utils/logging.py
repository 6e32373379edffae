"""Logging utilities for Notes Automation with colored console output."""

import logging
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# Global console instance for colored output
_console: Optional[Console] = None

_notes_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "section": "bold magenta",
        "dim": "dim",
    }
)


def _get_console() -> Console:
    """Get or create global console instance."""
    global _console
    if _console is None:
        _console = Console(theme=_notes_theme, stderr=True)
    return _console


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration for Notes Automation with rich formatting.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    console = _get_console()

    logging.basicConfig(
        level=numeric_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                show_path=False,
            )
        ],
    )

    logger = logging.getLogger("notes_automation")
    logger.setLevel(numeric_level)

    console.print(
        f"[dim]Logging configured at {level} level - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}[/dim]"
    )


def get_logger(name: str) -> logging.Logger:
    """Get logger for specific module.

    Args:
        name: Module name relative to the package

    Returns:
        Configured logger instance
    """
    return logging.getLogger(f"notes_automation.{name}")


def log_check_result(name: str, passed: bool, message: str) -> None:
    """Print a single health check line with a pass/fail indicator.

    Args:
        name: Check identifier (e.g., "notes_app", "permissions")
        passed: Whether the check passed
        message: Human-readable outcome
    """
    console = _get_console()

    if passed:
        console.print(f"  [success]✓[/success] [dim]{name}[/dim] {message}")
    else:
        console.print(f"  [error]✗[/error] [dim]{name}[/dim] {message}")


class LogContext:
    """Context manager that prints a section header around related output."""

    def __init__(self, title: str, style: str = "info"):
        """Initialize log context.

        Args:
            title: Title for the context section
            style: Style to apply (info, warning, error, success)
        """
        self.title = title
        self.style = style
        self.console = _get_console()

    def __enter__(self):
        self.console.print(f"[{self.style}]▶ {self.title}[/{self.style}]")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.console.print(f"[error]  ✗ Failed with {exc_type.__name__}[/error]")
        return False
