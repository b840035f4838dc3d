"""launchctl provider for loading and unloading launchd services."""
from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from ..identity import DomainTarget, ServicePath, ServiceTarget

LOGGER = logging.getLogger(__name__)


class LaunchctlError(RuntimeError):
    """Raised when launchctl operations fail."""


class ServiceManager(Protocol):
    """Operations the reconciliation engine needs from the service manager."""

    def is_loaded(self, target: ServiceTarget) -> bool:
        """Return ``True`` when *target* is currently loaded."""
        ...

    def bootstrap(
        self,
        domain: DomainTarget,
        path: ServicePath,
        *,
        dry_run: bool = False,
    ) -> object:
        """Load the definition at *path* into *domain*."""
        ...

    def bootout(self, target: ServiceTarget, *, dry_run: bool = False) -> object:
        """Unload *target*."""
        ...


def format_command(args: Sequence[str]) -> str:
    """Render *args* as a shell-escaped command line."""
    return shlex.join([str(arg) for arg in args])


@dataclass(slots=True)
class LaunchctlProvider:
    """Drive launchd through the ``launchctl`` command line tool."""

    launchctl_bin: str = "/bin/launchctl"
    sudo_bin: str = "/usr/bin/sudo"

    def print_args(self, target: ServiceTarget) -> list[str]:
        """Return the argv used to query *target*."""
        return [self.launchctl_bin, "print", str(target)]

    def bootstrap_args(self, domain: DomainTarget, path: ServicePath) -> list[str]:
        """Return the argv used to load *path* into *domain*."""
        return self._escalate(
            [self.launchctl_bin, "bootstrap", str(domain), str(path)],
            privileged=domain.is_system,
        )

    def bootout_args(self, target: ServiceTarget) -> list[str]:
        """Return the argv used to unload *target*."""
        return self._escalate(
            [self.launchctl_bin, "bootout", str(target)],
            privileged=target.domain.is_system,
        )

    def is_loaded(self, target: ServiceTarget) -> bool:
        """Return ``True`` when ``launchctl print`` knows about *target*."""
        args = self.print_args(target)
        try:
            result = subprocess.run(  # noqa: S603
                args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError as exc:
            raise LaunchctlError(f"{format_command(args)} could not run: {exc}") from exc
        return result.returncode == 0

    def bootstrap(
        self,
        domain: DomainTarget,
        path: ServicePath,
        *,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Load the definition at *path* into *domain*."""
        return self._run_command(self.bootstrap_args(domain, path), dry_run=dry_run)

    def bootout(
        self,
        target: ServiceTarget,
        *,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Unload *target* from its domain."""
        return self._run_command(self.bootout_args(target), dry_run=dry_run)

    # ------------------------------------------------------------------
    def _escalate(self, args: list[str], *, privileged: bool) -> list[str]:
        if privileged:
            return [self.sudo_bin, "--", *args]
        return args

    def _run_command(
        self,
        args: Sequence[str],
        *,
        dry_run: bool,
    ) -> subprocess.CompletedProcess[str]:
        command = format_command(args)
        if dry_run:
            LOGGER.debug("dry-run: %s", command)
            return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")
        LOGGER.debug("running: %s", command)
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise LaunchctlError(f"{command} could not run: {exc}") from exc
        if result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise LaunchctlError(f"{command} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["LaunchctlError", "LaunchctlProvider", "ServiceManager", "format_command"]
