"""Tests for single-attempt osascript execution."""

import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from notes_automation.config.config_loader import AutomationConfig
from notes_automation.core.errors import ErrorKind
from notes_automation.osascript.executor import (
    AutomationCommand,
    ExecutionOutcome,
    ScriptExecutor,
)

POPEN = "notes_automation.osascript.executor.subprocess.Popen"
KILLPG = "notes_automation.osascript.executor.os.killpg"


def _mock_process(returncode=0, stdout="", stderr=""):
    """Create a Popen stand-in whose communicate() returns the given output."""
    process = MagicMock()
    process.pid = 4242
    process.returncode = returncode
    process.communicate.return_value = (stdout, stderr)
    return process


class TestAutomationCommand:
    """Tests for AutomationCommand defaults and validation."""

    def test_defaults(self):
        command = AutomationCommand("return 1")

        assert command.timeout_ms == 30000
        assert command.max_attempts == 1
        assert command.retry_base_delay_ms == 1000

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"timeout_ms": 0},
            {"max_attempts": 0},
            {"retry_base_delay_ms": -1},
        ],
    )
    def test_invalid_settings_are_rejected(self, kwargs):
        with pytest.raises(ValueError):
            AutomationCommand("return 1", **kwargs)


class TestExecute:
    """Tests for ScriptExecutor.execute."""

    def test_success_returns_trimmed_output(self):
        executor = ScriptExecutor()
        with patch(POPEN, return_value=_mock_process(stdout="  Note Title  \n")):
            outcome = executor.execute(AutomationCommand('tell app "Notes" to get name of note 1'))

        assert isinstance(outcome, ExecutionOutcome)
        assert outcome.success is True
        assert outcome.output == "Note Title"
        assert outcome.error is None
        assert outcome.attempts == 1

    @pytest.mark.parametrize("script", ["", "   ", "\n\t  \n"])
    def test_empty_script_never_spawns(self, script):
        executor = ScriptExecutor()
        with patch(POPEN) as mock_popen:
            outcome = executor.execute(AutomationCommand(script))

        mock_popen.assert_not_called()
        assert outcome.success is False
        assert outcome.output == ""
        assert outcome.error.kind == ErrorKind.EMPTY_SCRIPT
        assert outcome.error.message == "Cannot execute empty AppleScript"

    def test_command_line_quotes_and_escapes_script(self):
        executor = ScriptExecutor()
        script = "\n  tell application \"Notes\"\n    get note \"Rob's Note\"\n  end tell\n"
        with patch(POPEN, return_value=_mock_process(stdout="ok")) as mock_popen:
            executor.execute(AutomationCommand(script))

        command_line = mock_popen.call_args[0][0]
        assert command_line.startswith("osascript -e '")
        assert command_line.endswith("end tell'")
        assert "Rob'\\''s Note" in command_line
        # Internal newlines are preserved for AppleScript blocks
        assert "\n    get note" in command_line
        assert mock_popen.call_args[1]["shell"] is True
        assert mock_popen.call_args[1]["encoding"] == "utf-8"

    def test_custom_interpreter(self):
        executor = ScriptExecutor(interpreter="/usr/bin/osascript")
        with patch(POPEN, return_value=_mock_process(stdout="ok")) as mock_popen:
            executor.execute(AutomationCommand("return 1"))

        assert mock_popen.call_args[0][0].startswith("/usr/bin/osascript -e ")

    def test_timeout_is_passed_in_seconds(self):
        executor = ScriptExecutor()
        process = _mock_process(stdout="ok")
        with patch(POPEN, return_value=process):
            executor.execute(AutomationCommand("return 1", timeout_ms=2500))

        process.communicate.assert_called_once_with(timeout=2.5)

    def test_nonzero_exit_is_classified_from_stderr(self):
        executor = ScriptExecutor()
        stderr = 'execution error: Notes got an error: Can\'t get note "Missing". (-1728)\n'
        with patch(POPEN, return_value=_mock_process(returncode=1, stderr=stderr)):
            outcome = executor.execute(AutomationCommand('get note "Missing"'))

        assert outcome.success is False
        assert outcome.output == ""
        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert '"Missing"' in outcome.error.message

    def test_nonzero_exit_without_output_mentions_status(self):
        executor = ScriptExecutor()
        with patch(POPEN, return_value=_mock_process(returncode=3)):
            outcome = executor.execute(AutomationCommand("return 1"))

        assert outcome.error.kind == ErrorKind.UNKNOWN
        assert "status 3" in outcome.error.message

    def test_timeout_kills_process_group(self):
        executor = ScriptExecutor()
        process = _mock_process()
        process.communicate.side_effect = [
            subprocess.TimeoutExpired("osascript", 30),
            ("", ""),
        ]
        with patch(POPEN, return_value=process), patch(KILLPG) as mock_killpg:
            outcome = executor.execute(AutomationCommand("delay 100", timeout_ms=30000))

        mock_killpg.assert_called_once()
        assert mock_killpg.call_args[0][0] == 4242
        assert process.communicate.call_count == 2
        assert outcome.success is False
        assert outcome.error.kind == ErrorKind.TIMEOUT
        assert "30 seconds" in outcome.error.message
        assert outcome.error.retryable is True

    def test_timeout_when_process_already_gone(self):
        executor = ScriptExecutor()
        process = _mock_process()
        process.communicate.side_effect = [
            subprocess.TimeoutExpired("osascript", 1),
            ("", ""),
        ]
        with patch(POPEN, return_value=process), patch(
            KILLPG, side_effect=ProcessLookupError
        ):
            outcome = executor.execute(AutomationCommand("delay 100", timeout_ms=1000))

        assert outcome.error.kind == ErrorKind.TIMEOUT
        assert "1 seconds" in outcome.error.message

    def test_sigterm_exit_counts_as_timeout(self):
        """A child terminated by SIGTERM is reported as a timeout, not classified."""
        executor = ScriptExecutor()
        with patch(POPEN, return_value=_mock_process(returncode=-15, stderr="not authorized")):
            outcome = executor.execute(AutomationCommand("return 1", timeout_ms=5000))

        assert outcome.error.kind == ErrorKind.TIMEOUT
        assert "5 seconds" in outcome.error.message

    def test_spawn_failure_is_returned_not_raised(self):
        executor = ScriptExecutor()
        with patch(POPEN, side_effect=OSError("Permission denied: /bin/sh")):
            outcome = executor.execute(AutomationCommand("return 1"))

        assert outcome.success is False
        assert outcome.error is not None

    @pytest.mark.parametrize(
        "script",
        [
            'return "a\x00b"',
            'return "\ud800"',
        ],
    )
    def test_unencodable_script_is_returned_not_raised(self, script):
        """Scripts the shell cannot receive become failed outcomes."""
        executor = ScriptExecutor()

        outcome = executor.execute(AutomationCommand(script))

        assert outcome.success is False
        assert outcome.error is not None
        assert outcome.attempts == 1

    def test_argument_error_from_popen_is_classified(self):
        executor = ScriptExecutor()
        with patch(POPEN, side_effect=ValueError("embedded null byte")):
            outcome = executor.execute_with_retry(
                AutomationCommand("return 1", max_attempts=3)
            )

        assert outcome.success is False
        assert outcome.error.kind == ErrorKind.UNKNOWN
        assert "embedded null byte" in outcome.error.message
        assert outcome.attempts == 1

    def test_failure_is_logged_with_attempt_and_preview(self):
        executor = ScriptExecutor()
        long_script = "return " + "x" * 1000
        with patch(POPEN, return_value=_mock_process(returncode=1, stderr="not authorized")):
            with patch.object(executor.logger, "error") as mock_error:
                executor.execute(AutomationCommand(long_script))

        mock_error.assert_called_once()
        message = mock_error.call_args[0][0]
        assert "attempt 1/1" in message
        assert "permission" in message
        assert "script: return xxx" in message
        assert len(message) < 800

    def test_failure_log_names_the_script(self):
        executor = ScriptExecutor()
        with patch(POPEN, return_value=_mock_process(returncode=1, stderr="boom")):
            with patch.object(executor.logger, "error") as mock_error:
                executor.execute(AutomationCommand('  tell application "Notes" to quit  '))

        assert 'script: tell application "Notes" to quit' in mock_error.call_args[0][0]

    def test_success_is_silent_unless_verbose(self):
        quiet = ScriptExecutor(verbose=False)
        with patch(POPEN, return_value=_mock_process(stdout="ok")):
            with patch.object(quiet.logger, "info") as mock_info:
                quiet.execute(AutomationCommand("return 1"))
        mock_info.assert_not_called()

        verbose = ScriptExecutor(verbose=True)
        with patch(POPEN, return_value=_mock_process(stdout="ok")):
            with patch.object(verbose.logger, "info") as mock_info:
                verbose.execute(AutomationCommand("return 1"))
        assert mock_info.call_count == 2


def test_create_preview_truncates():
    executor = ScriptExecutor()

    assert executor._create_preview("short") == "short"
    preview = executor._create_preview("a" * 500)
    assert len(preview) == ScriptExecutor.MAX_PREVIEW_LENGTH + 3
    assert preview.endswith("...")


def test_from_config_uses_settings():
    config = AutomationConfig(
        interpreter="/opt/osascript",
        verbose=True,
        timeout_ms=5000,
        max_attempts=3,
        retry_base_delay_ms=250,
    )
    executor = ScriptExecutor.from_config(config)

    assert executor.interpreter == "/opt/osascript"
    assert executor.verbose is True
    assert executor.timeout_ms == 5000
    assert executor.max_attempts == 3
    assert executor.retry_base_delay_ms == 250


class TestRealShell:
    """Runs the executor against /bin/sh with stand-in interpreters."""

    def test_script_reaches_interpreter_as_single_argument(self):
        executor = ScriptExecutor(interpreter="printf '%s|%s'")
        script = 'get note "Rob\'s Note"; echo injected'

        outcome = executor.execute(AutomationCommand(script, timeout_ms=5000))

        assert outcome.success is True
        assert outcome.output == f"-e|{script}"

    def test_stderr_is_classified(self):
        interpreter = "sh -c 'printf \"%s\" \"$2\" >&2; exit 1' sh"
        executor = ScriptExecutor(interpreter=interpreter)

        outcome = executor.execute(
            AutomationCommand('execution error: Can\'t get note "Foo". (-1728)', timeout_ms=5000)
        )

        assert outcome.success is False
        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert '"Foo"' in outcome.error.message

    def test_hanging_interpreter_is_killed_at_timeout(self):
        executor = ScriptExecutor(interpreter="sleep 10 #")

        start = time.monotonic()
        outcome = executor.execute(AutomationCommand("return 1", timeout_ms=300))
        elapsed = time.monotonic() - start

        assert elapsed < 5
        assert outcome.error.kind == ErrorKind.TIMEOUT
