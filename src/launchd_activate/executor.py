"""Apply a reconciliation plan against the filesystem and launchd."""
from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .identity import ServiceTarget
from .plan import Plan
from .providers.filesystem import FileInstaller, FileOperationError, InstallMethod
from .providers.launchctl import LaunchctlError, ServiceManager, format_command

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class Phase(str, Enum):
    """Execution phases, in the order they run."""

    FILES = "files"
    STOP = "stop"
    CONFIRM_STOP = "confirm-stop"
    START = "start"
    CONFIRM_START = "confirm-start"


# Phases whose successful actions change the system.
MUTATING_PHASES = frozenset({Phase.FILES, Phase.STOP, Phase.START})


@dataclass(slots=True, frozen=True)
class ActionResult:
    """Outcome of a single planned action.

    ``command`` is the shell-escaped command line the action ran (or would
    have run in dry-run mode); confirmations leave it empty.
    """

    phase: Phase
    action: str
    subject: str
    ok: bool
    detail: str = ""
    timed_out: bool = False
    dry_run: bool = False
    command: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "phase": self.phase.value,
            "action": self.action,
            "subject": self.subject,
            "ok": self.ok,
            "detail": self.detail,
            "timed_out": self.timed_out,
            "dry_run": self.dry_run,
            "command": self.command,
        }


@dataclass(slots=True)
class ExecutionReport:
    """Ordered record of every action attempted while executing a plan."""

    dry_run: bool = False
    results: list[ActionResult] = field(default_factory=list)

    @property
    def failures(self) -> list[ActionResult]:
        """Return the failed actions."""
        return [result for result in self.results if not result.ok]

    @property
    def error_count(self) -> int:
        """Return the number of failed actions."""
        return len(self.failures)

    @property
    def timeout_count(self) -> int:
        """Return the number of confirmations that timed out."""
        return sum(1 for result in self.results if result.timed_out)

    @property
    def changed_count(self) -> int:
        """Return the number of successful file and service changes."""
        if self.dry_run:
            return 0
        return sum(
            1 for result in self.results if result.ok and result.phase in MUTATING_PHASES
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "dry_run": self.dry_run,
            "error_count": self.error_count,
            "timeouts": self.timeout_count,
            "changed": self.changed_count,
            "results": [result.to_dict() for result in self.results],
        }


ResultCallback = Callable[[ActionResult], None]


def _command_line(outcome: object) -> str:
    """Return the command line recorded in a provider's return value."""
    if isinstance(outcome, subprocess.CompletedProcess):
        return format_command(outcome.args)
    if isinstance(outcome, Sequence) and not isinstance(outcome, str) and outcome:
        return format_command(outcome)
    return ""


@dataclass(slots=True)
class PlanExecutor:
    """Run the phases of a :class:`Plan`, counting failures instead of aborting.

    Phases run strictly in order: file changes, stops, stop confirmation,
    starts, start confirmation. Every action inside a phase is attempted even
    when others fail.
    """

    service_manager: ServiceManager
    installer: FileInstaller
    install_method: InstallMethod
    stop_timeout: float = 30.0
    start_timeout: float = 30.0
    poll_interval: float = DEFAULT_POLL_INTERVAL
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    on_result: ResultCallback | None = None

    def execute(self, plan: Plan, *, dry_run: bool = False) -> int:
        """Execute *plan* and return the number of failed operations."""
        return self.run(plan, dry_run=dry_run).error_count

    def run(self, plan: Plan, *, dry_run: bool = False) -> ExecutionReport:
        """Execute *plan* and return the full report."""
        report = ExecutionReport(dry_run=dry_run)
        method = self.install_method

        for destination, source in sorted(plan.enable.items(), key=lambda item: str(item[0])):
            command = format_command(self.installer.install_args(source, destination, method))
            try:
                self.installer.install(source, destination, method, dry_run=dry_run)
            except FileOperationError as exc:
                ok, detail = False, str(exc)
            else:
                ok, detail = True, f"{method.value} from {source}"
            self._record(report, Phase.FILES, "install", str(destination), ok, detail, command)

        for destination in sorted(plan.disable, key=str):
            command = format_command(self.installer.remove_args(destination))
            try:
                self.installer.remove(destination, dry_run=dry_run)
            except FileOperationError as exc:
                ok, detail = False, str(exc)
            else:
                ok, detail = True, ""
            self._record(report, Phase.FILES, "remove", str(destination), ok, detail, command)

        stopping = sorted(plan.bootout, key=str)
        for target in stopping:
            try:
                outcome = self.service_manager.bootout(target, dry_run=dry_run)
            except LaunchctlError as exc:
                self._record(report, Phase.STOP, "bootout", str(target), False, str(exc))
            else:
                command = _command_line(outcome)
                self._record(report, Phase.STOP, "bootout", str(target), True, "", command)

        if not dry_run:
            for target in stopping:
                self._confirm(report, Phase.CONFIRM_STOP, target, loaded=False)

        starting = sorted(plan.bootstrap.items(), key=lambda item: str(item[0]))
        for target, path in starting:
            try:
                outcome = self.service_manager.bootstrap(target.domain, path, dry_run=dry_run)
            except LaunchctlError as exc:
                self._record(report, Phase.START, "bootstrap", str(target), False, str(exc))
            else:
                command = _command_line(outcome)
                detail = f"from {path}"
                self._record(report, Phase.START, "bootstrap", str(target), True, detail, command)

        if not dry_run:
            for target, _path in starting:
                self._confirm(report, Phase.CONFIRM_START, target, loaded=True)

        return report

    # ------------------------------------------------------------------
    def _confirm(
        self,
        report: ExecutionReport,
        phase: Phase,
        target: ServiceTarget,
        *,
        loaded: bool,
    ) -> None:
        state = "load" if loaded else "unload"
        timeout = self.start_timeout if loaded else self.stop_timeout
        try:
            reached = self.wait_for_load_state(target, loaded=loaded, timeout=timeout)
        except LaunchctlError as exc:
            self._record(report, phase, f"wait-{state}", str(target), False, str(exc))
            return
        if reached:
            self._record(report, phase, f"wait-{state}", str(target), True)
        else:
            self._record(
                report,
                phase,
                f"wait-{state}",
                str(target),
                False,
                f"Timed out waiting for {target} to {state}",
                timed_out=True,
            )

    def wait_for_load_state(self, target: ServiceTarget, *, loaded: bool, timeout: float) -> bool:
        """Poll until *target* reaches the *loaded* state; return ``False`` on timeout."""
        start = self.clock()
        while self.service_manager.is_loaded(target) != loaded:
            if self.clock() - start > timeout:
                return False
            self.sleep(self.poll_interval)
        return True

    def _record(
        self,
        report: ExecutionReport,
        phase: Phase,
        action: str,
        subject: str,
        ok: bool,
        detail: str = "",
        command: str = "",
        *,
        timed_out: bool = False,
    ) -> None:
        result = ActionResult(
            phase=phase,
            action=action,
            subject=subject,
            ok=ok,
            detail=detail,
            timed_out=timed_out,
            dry_run=report.dry_run,
            command=command,
        )
        if not ok:
            LOGGER.debug("%s %s failed: %s", action, subject, detail)
        report.results.append(result)
        if self.on_result is not None:
            self.on_result(result)


__all__ = [
    "ActionResult",
    "DEFAULT_POLL_INTERVAL",
    "ExecutionReport",
    "Phase",
    "PlanExecutor",
    "ResultCallback",
]
