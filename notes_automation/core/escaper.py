"""Shell escaping for AppleScript passed to osascript."""

from typing import Any

SHELL_QUOTE = "'"
ESCAPED_SHELL_QUOTE = "'\\''"


def escape_for_shell(raw: Any) -> str:
    """Escape text for embedding inside a single-quoted shell argument.

    Each single quote closes the quoted string, emits an escaped quote and
    reopens the string, so nothing in ``raw`` can end the argument early.

    Args:
        raw: Script text to escape. Falsy values produce an empty string.

    Returns:
        Shell-safe version of the text

    Example:
        Input:  tell app "Notes" to get note "Rob's Note"
        Output: tell app "Notes" to get note "Rob'\\''s Note"
    """
    if not raw:
        return ""
    if not isinstance(raw, str):
        raw = str(raw)
    return raw.replace(SHELL_QUOTE, ESCAPED_SHELL_QUOTE)
