"""osascript Executor - Runs AppleScript against Notes.app with timeouts and retries."""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from notes_automation.config.config_loader import AutomationConfig
from notes_automation.core.errors import (
    ErrorInfo,
    classify_error,
    empty_script_error,
    timeout_error,
)
from notes_automation.core.escaper import escape_for_shell

logger = logging.getLogger(__name__)

DEFAULT_INTERPRETER = "osascript"
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_ATTEMPTS = 1
DEFAULT_RETRY_BASE_DELAY_MS = 1000


@dataclass(frozen=True)
class AutomationCommand:
    """An AppleScript to run together with its execution budget.

    Attributes:
        script: Raw AppleScript source
        timeout_ms: Wall-clock budget for a single attempt
        max_attempts: Total attempts allowed, 1 means no retry
        retry_base_delay_ms: Delay before the second attempt, doubled after each retry
    """

    script: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_base_delay_ms: int = DEFAULT_RETRY_BASE_DELAY_MS

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.retry_base_delay_ms < 0:
            raise ValueError(
                f"retry_base_delay_ms must not be negative, got {self.retry_base_delay_ms}"
            )


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of running an AutomationCommand."""

    success: bool
    output: str = ""
    error: Optional[ErrorInfo] = None
    attempts: int = 1
    elapsed: float = 0.0


class ScriptExecutor:
    """Runs AppleScript through the osascript command-line interpreter.

    Every call blocks until the interpreter exits or its timeout elapses.
    Failures are returned as ExecutionOutcome values and never raised.
    """

    MAX_PREVIEW_LENGTH = 300

    def __init__(
        self,
        interpreter: str = DEFAULT_INTERPRETER,
        verbose: bool = False,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay_ms: int = DEFAULT_RETRY_BASE_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            interpreter: Command used to run AppleScript (default: "osascript")
            verbose: If True, log every attempt instead of only failures
            timeout_ms: Default timeout for commands built by run()
            max_attempts: Default attempt limit for commands built by run()
            retry_base_delay_ms: Default base backoff for commands built by run()
            sleep: Blocking sleep used between retries, takes seconds
        """
        self.interpreter = interpreter
        self.verbose = verbose
        self.timeout_ms = timeout_ms
        self.max_attempts = max_attempts
        self.retry_base_delay_ms = retry_base_delay_ms
        self.logger = logger
        self._sleep = sleep
        # Notes.app sessions are not safe for parallel automation
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls, config: AutomationConfig, sleep: Callable[[float], None] = time.sleep
    ) -> "ScriptExecutor":
        """Create an executor from loaded configuration.

        Args:
            config: Configuration resolved at startup
            sleep: Blocking sleep used between retries

        Returns:
            Configured ScriptExecutor
        """
        return cls(
            interpreter=config.interpreter,
            verbose=config.verbose,
            timeout_ms=config.timeout_ms,
            max_attempts=config.max_attempts,
            retry_base_delay_ms=config.retry_base_delay_ms,
            sleep=sleep,
        )

    def run(
        self,
        script: str,
        timeout_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_base_delay_ms: Optional[int] = None,
    ) -> ExecutionOutcome:
        """Run a script with the executor defaults, retrying transient failures.

        Args:
            script: AppleScript source
            timeout_ms: Override for the per-attempt timeout
            max_attempts: Override for the attempt limit
            retry_base_delay_ms: Override for the base backoff delay

        Returns:
            Outcome of the last attempt
        """
        command = AutomationCommand(
            script=script,
            timeout_ms=self.timeout_ms if timeout_ms is None else timeout_ms,
            max_attempts=self.max_attempts if max_attempts is None else max_attempts,
            retry_base_delay_ms=(
                self.retry_base_delay_ms
                if retry_base_delay_ms is None
                else retry_base_delay_ms
            ),
        )
        return self.execute_with_retry(command)

    def execute(self, command: AutomationCommand) -> ExecutionOutcome:
        """Run a command once.

        Args:
            command: The command to execute

        Returns:
            ExecutionOutcome with trimmed stdout or a classified error
        """
        return self._run_attempt(command, attempt=1)

    def execute_with_retry(self, command: AutomationCommand) -> ExecutionOutcome:
        """Run a command, retrying retryable failures with exponential backoff.

        Attempt k+1 starts after retry_base_delay_ms * 2**(k-1) milliseconds.
        Non-retryable failures are returned after the first attempt.

        Args:
            command: The command to execute

        Returns:
            Outcome of the last attempt made
        """
        attempt = 1
        while True:
            outcome = self._run_attempt(command, attempt)
            if outcome.success or not self._should_retry(outcome, attempt, command):
                return outcome

            delay_ms = self._calculate_backoff_ms(command.retry_base_delay_ms, attempt)
            self.logger.warning(
                f"🔁 Retrying in {delay_ms}ms (attempt {attempt + 1}/{command.max_attempts}): "
                f"{outcome.error.message}"
            )
            self._sleep(delay_ms / 1000)
            attempt += 1

    def _should_retry(
        self, outcome: ExecutionOutcome, attempt: int, command: AutomationCommand
    ) -> bool:
        """Decide whether a failed attempt is worth repeating.

        Args:
            outcome: The failed outcome
            attempt: Number of the attempt that produced it
            command: The command being executed

        Returns:
            True if the error is retryable and attempts remain
        """
        if attempt >= command.max_attempts:
            return False
        return outcome.error is not None and outcome.error.retryable

    @staticmethod
    def _calculate_backoff_ms(base_delay_ms: int, attempt: int) -> int:
        """Backoff before the attempt following ``attempt``."""
        return base_delay_ms * 2 ** (attempt - 1)

    def _run_attempt(self, command: AutomationCommand, attempt: int) -> ExecutionOutcome:
        """Execute a single attempt and convert every failure into an outcome.

        Args:
            command: The command to execute
            attempt: 1-based attempt number, used for logging

        Returns:
            ExecutionOutcome for this attempt
        """
        start_time = time.monotonic()

        if not command.script or not command.script.strip():
            return self._create_failure(
                empty_script_error(), command, attempt, start_time
            )

        shell_command = self._build_shell_command(command.script)
        self._log_attempt_start(command, attempt)

        try:
            returncode, stdout, stderr = self._spawn(shell_command, command.timeout_ms)
        except subprocess.TimeoutExpired:
            return self._create_failure(
                timeout_error(command.timeout_ms), command, attempt, start_time
            )
        except (ValueError, OSError) as e:
            return self._create_failure(
                classify_error(str(e)), command, attempt, start_time
            )

        if returncode == 0:
            return self._create_success(stdout, command, attempt, start_time)

        if returncode == -signal.SIGTERM:
            return self._create_failure(
                timeout_error(command.timeout_ms), command, attempt, start_time
            )

        error_text = (
            (stderr or "").strip()
            or (stdout or "").strip()
            or f"{self.interpreter} exited with status {returncode}"
        )
        return self._create_failure(
            classify_error(error_text), command, attempt, start_time
        )

    def _build_shell_command(self, script: str) -> str:
        """Build the shell command line for a script.

        Args:
            script: Raw AppleScript source

        Returns:
            Command line passing the escaped script as a single quoted argument
        """
        return f"{self.interpreter} -e '{escape_for_shell(script.strip())}'"

    def _spawn(self, shell_command: str, timeout_ms: int) -> Tuple[int, str, str]:
        """Run the interpreter and wait for it within the timeout.

        Args:
            shell_command: Full command line to hand to the shell
            timeout_ms: Wall-clock budget in milliseconds

        Returns:
            Tuple of (returncode, stdout, stderr)

        Raises:
            subprocess.TimeoutExpired: If the process exceeded the timeout
            OSError: If the shell could not be started
            ValueError: If the command line cannot be passed to the shell
        """
        with self._lock:
            process = subprocess.Popen(
                shell_command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
            try:
                stdout, stderr = process.communicate(timeout=timeout_ms / 1000)
            except subprocess.TimeoutExpired:
                self._cleanup_timed_out_process(process)
                raise
            return process.returncode, stdout, stderr

    def _cleanup_timed_out_process(self, process: subprocess.Popen) -> None:
        """Kill the shell and osascript together and reap them.

        Args:
            process: The timed out subprocess
        """
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        process.communicate()

    def _create_success(
        self,
        stdout: str,
        command: AutomationCommand,
        attempt: int,
        start_time: float,
    ) -> ExecutionOutcome:
        """Create a success outcome with optional verbose logging."""
        elapsed_time = self._calculate_elapsed_time(start_time)
        output = (stdout or "").strip()

        if self.verbose:
            self.logger.info(
                f"✅ osascript succeeded (attempt {attempt}/{command.max_attempts}, "
                f"{elapsed_time:.2f}s, {len(output)} chars): {self._create_preview(output)}"
            )

        return ExecutionOutcome(
            success=True, output=output, attempts=attempt, elapsed=elapsed_time
        )

    def _create_failure(
        self,
        error: ErrorInfo,
        command: AutomationCommand,
        attempt: int,
        start_time: float,
    ) -> ExecutionOutcome:
        """Create a failure outcome and log it.

        Args:
            error: Classified error
            command: The command that failed
            attempt: Attempt number
            start_time: Attempt start time

        Returns:
            Failed ExecutionOutcome
        """
        elapsed_time = self._calculate_elapsed_time(start_time)

        self.logger.error(
            f"❌ osascript failed (attempt {attempt}/{command.max_attempts}, "
            f"{elapsed_time:.2f}s, {error.kind.value}): {self._create_preview(error.message)} "
            f"| script: {self._create_preview((command.script or '').strip())}"
        )
        if error.raw and error.raw != error.message:
            self.logger.debug(f"Raw error: {self._create_preview(error.raw)}")

        return ExecutionOutcome(
            success=False, output="", error=error, attempts=attempt, elapsed=elapsed_time
        )

    def _log_attempt_start(self, command: AutomationCommand, attempt: int) -> None:
        """Log the start of an attempt when verbose logging is enabled."""
        if not self.verbose:
            return
        self.logger.info(
            f"🍎 Running {self.interpreter} (attempt {attempt}/{command.max_attempts}, "
            f"timeout={command.timeout_ms}ms)"
        )
        self.logger.debug(f"Script preview: {self._create_preview(command.script.strip())}")

    def _create_preview(self, text: str) -> str:
        """Create a truncated preview of text for logging.

        Args:
            text: Text to preview

        Returns:
            Truncated text with ellipsis if needed
        """
        if len(text) <= self.MAX_PREVIEW_LENGTH:
            return text
        return text[: self.MAX_PREVIEW_LENGTH] + "..."

    def _calculate_elapsed_time(self, start_time: float) -> float:
        return time.monotonic() - start_time
