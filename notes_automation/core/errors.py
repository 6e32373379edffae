"""Error taxonomy and classification for osascript failures.

osascript reports failures as free text on stderr, usually in the form
``execution error: Notes got an error: Can't get note "Foo". (-1728)``.
This module reduces that text to an :class:`ErrorInfo` carrying a kind,
a user-facing message with a suggested action, and whether the failure is
worth retrying.
"""

import re
from dataclasses import dataclass
from enum import Enum
from string import Template
from typing import Any, List, Optional, Pattern

UNKNOWN_ERROR_MESSAGE = "Unknown AppleScript error"
EMPTY_SCRIPT_MESSAGE = "Cannot execute empty AppleScript"

_EXECUTION_ERROR_PATTERN = re.compile(
    r"execution error: (.+?)(?:\s*\(-?\d+\))?$", re.MULTILINE
)
_CANT_GET_PATTERN = re.compile(r"Can[’']t get (.+?)\.")


class ErrorKind(Enum):
    """Categories of automation failures."""

    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    TRANSIENT_BUSY = "transient_busy"
    CONNECTION_LOST = "connection_lost"
    ALREADY_EXISTS = "already_exists"
    LOCKED = "locked"
    SYNTAX = "syntax"
    EMPTY_SCRIPT = "empty_script"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {ErrorKind.TIMEOUT, ErrorKind.TRANSIENT_BUSY, ErrorKind.CONNECTION_LOST}
)


@dataclass(frozen=True)
class ErrorInfo:
    """Classified failure from an automation command.

    Attributes:
        kind: Failure category
        message: Ready-to-display message with a suggested action
        entity: Entity type for NOT_FOUND errors ("note", "folder", "account")
        lookup: How the missing entity was addressed ("name" or "id")
        raw: Raw error text the classification was derived from
    """

    kind: ErrorKind
    message: str
    entity: Optional[str] = None
    lookup: Optional[str] = None
    raw: str = ""

    @property
    def retryable(self) -> bool:
        """Whether the failure is expected to resolve itself shortly."""
        return self.kind in RETRYABLE_KINDS


@dataclass(frozen=True)
class _ErrorRule:
    pattern: Pattern[str]
    kind: ErrorKind
    message: str
    entity: Optional[str] = None
    lookup: Optional[str] = None


def _rule(
    pattern: str,
    kind: ErrorKind,
    message: str,
    entity: Optional[str] = None,
    lookup: Optional[str] = None,
) -> _ErrorRule:
    return _ErrorRule(re.compile(pattern, re.IGNORECASE), kind, message, entity, lookup)


# Evaluated in order; the first matching rule wins.
ERROR_RULES: List[_ErrorRule] = [
    _rule(
        r"not authorized|not permitted|access.*denied",
        ErrorKind.PERMISSION,
        "Permission denied. Grant automation access in System Settings > "
        "Privacy & Security > Automation.",
    ),
    _rule(
        r"application isn[’']t running|not running|not responding|is busy",
        ErrorKind.TRANSIENT_BUSY,
        "Notes.app is not responding. Try opening Notes.app manually.",
    ),
    _rule(
        r"AppleEvent timed out",
        ErrorKind.TIMEOUT,
        "Notes.app did not answer in time. It may be busy syncing.",
    ),
    _rule(
        r"connection is invalid|lost connection",
        ErrorKind.CONNECTION_LOST,
        "Lost connection to Notes.app. The app may have crashed or been restarted.",
    ),
    _rule(
        r"can[’']t get note \"(?P<name>[^\"]+)\"",
        ErrorKind.NOT_FOUND,
        'Note "$name" not found. Verify the title is exact (case-sensitive).',
        entity="note",
        lookup="name",
    ),
    _rule(
        r"can[’']t get note id",
        ErrorKind.NOT_FOUND,
        "Note not found. The note may have been deleted or the ID is invalid.",
        entity="note",
        lookup="id",
    ),
    _rule(
        r"can[’']t get folder \"(?P<name>[^\"]+)\"",
        ErrorKind.NOT_FOUND,
        'Folder "$name" not found. Use list-folders to see available folders.',
        entity="folder",
        lookup="name",
    ),
    _rule(
        r"can[’']t get account \"(?P<name>[^\"]+)\"",
        ErrorKind.NOT_FOUND,
        'Account "$name" not found. Use list-accounts to see available accounts.',
        entity="account",
        lookup="name",
    ),
    _rule(
        r"folder.*already exists",
        ErrorKind.ALREADY_EXISTS,
        "A folder with that name already exists.",
        entity="folder",
    ),
    _rule(
        r"can[’']t delete|cannot delete",
        ErrorKind.LOCKED,
        "Cannot delete. The item may be locked or in use.",
    ),
    _rule(
        r"password protected|locked note",
        ErrorKind.LOCKED,
        "Note is password-protected. Unlock it in Notes.app first.",
        entity="note",
    ),
    _rule(
        r"syntax error|expected",
        ErrorKind.SYNTAX,
        "Internal error. Please report this issue.",
    ),
]


def classify_error(raw_error_text: Any) -> ErrorInfo:
    """Map raw osascript error output to a classified ErrorInfo.

    Args:
        raw_error_text: Error text from stderr or an exception message

    Returns:
        ErrorInfo for the first matching rule, a generic NOT_FOUND for
        unrecognised "Can't get X." errors, or UNKNOWN otherwise
    """
    raw = _normalize_text(raw_error_text)
    core_error = _extract_core_error(raw)

    for rule in ERROR_RULES:
        match = rule.pattern.search(core_error)
        if match:
            return ErrorInfo(
                kind=rule.kind,
                message=Template(rule.message).safe_substitute(match.groupdict()),
                entity=rule.entity,
                lookup=rule.lookup,
                raw=raw,
            )

    not_found = _CANT_GET_PATTERN.search(core_error)
    if not_found:
        return ErrorInfo(
            kind=ErrorKind.NOT_FOUND,
            message=f"Not found: {not_found.group(1)}",
            raw=raw,
        )

    return ErrorInfo(
        kind=ErrorKind.UNKNOWN,
        message=core_error.strip() or UNKNOWN_ERROR_MESSAGE,
        raw=raw,
    )


def timeout_error(timeout_ms: int) -> ErrorInfo:
    """Build the error reported when the interpreter exceeds its time budget.

    Args:
        timeout_ms: Configured timeout in milliseconds

    Returns:
        TIMEOUT ErrorInfo mentioning the timeout in whole seconds
    """
    # Half-seconds round up
    timeout_seconds = int(timeout_ms / 1000 + 0.5)
    return ErrorInfo(
        kind=ErrorKind.TIMEOUT,
        message=(
            f"Operation timed out after {timeout_seconds} seconds. Notes.app may "
            "be unresponsive or the operation involves too many notes."
        ),
    )


def empty_script_error() -> ErrorInfo:
    """Build the error reported for blank scripts."""
    return ErrorInfo(kind=ErrorKind.EMPTY_SCRIPT, message=EMPTY_SCRIPT_MESSAGE)


def _normalize_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _extract_core_error(text: str) -> str:
    """Strip the osascript ``execution error:`` wrapper and numeric code."""
    execution_error = _EXECUTION_ERROR_PATTERN.search(text)
    if execution_error:
        return execution_error.group(1).strip()
    return text
