"""Health check for Notes.app automation."""

from dataclasses import dataclass, field
from typing import List, Optional

from notes_automation.core.errors import ErrorKind
from notes_automation.core.sync_monitor import SyncMonitor
from notes_automation.osascript.executor import AutomationCommand, ScriptExecutor
from notes_automation.utils.logging import get_logger

logger = get_logger("core.health")

APP_CHECK_SCRIPT = 'tell application "Notes" to return "ok"'
PERMISSION_CHECK_SCRIPT = 'tell application "Notes" to get name of account 1'
HEALTH_CHECK_TIMEOUT_MS = 10000


@dataclass
class HealthCheck:
    """Outcome of a single health check."""

    name: str
    passed: bool
    message: str


@dataclass
class HealthReport:
    """Overall health with the individual checks that were run."""

    healthy: bool
    checks: List[HealthCheck] = field(default_factory=list)


def check_health(
    executor: ScriptExecutor, monitor: Optional[SyncMonitor] = None
) -> HealthReport:
    """Verify that Notes.app can be automated.

    Checks run in order and stop at the first blocking failure:
    1. Notes.app answers a trivial script
    2. Automation permission is granted (reading the first account name)
    3. Sync status can be read (only when a monitor is given, never blocking)

    Args:
        executor: Executor used to reach Notes.app
        monitor: Optional sync monitor to include in the report

    Returns:
        HealthReport with overall status and individual check details
    """
    checks: List[HealthCheck] = []

    app_check = executor.execute(
        AutomationCommand(APP_CHECK_SCRIPT, timeout_ms=HEALTH_CHECK_TIMEOUT_MS)
    )
    if not (app_check.success and app_check.output == "ok"):
        hint = ""
        if app_check.error and app_check.error.kind == ErrorKind.PERMISSION:
            hint = " (check Automation permissions in System Settings)"
        checks.append(
            HealthCheck("notes_app", False, f"Notes.app is not accessible{hint}")
        )
        return _finish(checks, healthy=False)
    checks.append(HealthCheck("notes_app", True, "Notes.app is accessible"))

    permission_check = executor.execute(
        AutomationCommand(PERMISSION_CHECK_SCRIPT, timeout_ms=HEALTH_CHECK_TIMEOUT_MS)
    )
    if permission_check.success:
        checks.append(
            HealthCheck("permissions", True, "AppleScript automation permissions granted")
        )
    elif permission_check.error.kind == ErrorKind.PERMISSION:
        checks.append(
            HealthCheck("permissions", False, permission_check.error.message)
        )
        return _finish(checks, healthy=False)
    else:
        # Not a permission problem (e.g. no accounts yet), so keep going
        checks.append(
            HealthCheck(
                "permissions",
                True,
                f"Permission check returned: {permission_check.error.message}",
            )
        )

    if monitor is not None:
        checks.append(_check_sync(monitor))

    return _finish(checks, healthy=True)


def _check_sync(monitor: SyncMonitor) -> HealthCheck:
    status = monitor.get_status(use_cache=False)
    if status.probe_error:
        return HealthCheck("sync", True, f"Sync status unavailable: {status.probe_error}")
    return HealthCheck("sync", True, monitor.summary())


def _finish(checks: List[HealthCheck], healthy: bool) -> HealthReport:
    failed = [check.name for check in checks if not check.passed]
    if failed:
        logger.warning(f"Health check failed: {', '.join(failed)}")
    else:
        logger.debug(f"Health check passed ({len(checks)} checks)")
    return HealthReport(healthy=healthy, checks=checks)
