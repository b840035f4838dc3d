"""Install and remove service definition files, escalating when required."""
from __future__ import annotations

import filecmp
import logging
import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from ..identity import ServicePath
from .launchctl import format_command

LOGGER = logging.getLogger(__name__)


class FileOperationError(RuntimeError):
    """Raised when installing or removing a definition file fails."""


class InstallMethod(str, Enum):
    """How a definition is activated in its destination directory."""

    SYMLINK = "symlink"
    COPY = "copy"


def destination_matches(
    source: ServicePath,
    destination: ServicePath,
    method: InstallMethod,
) -> bool:
    """Return ``True`` when *destination* already holds *source* for *method*.

    Symlink installs match when the destination is a link pointing at the
    source path. Copy installs match when the destination is a regular file
    with byte-identical contents.
    """
    dest = destination.path
    if method is InstallMethod.SYMLINK:
        if not dest.is_symlink():
            return False
        try:
            return os.readlink(dest) == str(source.path)
        except OSError:
            return False
    if method is InstallMethod.COPY:
        if dest.is_symlink() or not dest.is_file():
            return False
        try:
            return filecmp.cmp(source.path, dest, shallow=False)
        except OSError:
            return False
    raise ValueError(f"Unsupported install method: {method!r}")


def destination_exists(destination: ServicePath) -> bool:
    """Return ``True`` when anything (including a dangling link) sits at *destination*."""
    return destination.path.is_symlink() or destination.path.exists()


@dataclass(slots=True)
class FileInstaller:
    """Apply file changes, using ``sudo`` for system-owned destinations."""

    sudo_bin: str = "/usr/bin/sudo"
    ln_bin: str = "/bin/ln"
    cp_bin: str = "/bin/cp"
    rm_bin: str = "/bin/rm"

    def install_args(
        self,
        source: ServicePath,
        destination: ServicePath,
        method: InstallMethod,
    ) -> list[str]:
        """Return the equivalent shell command for an install."""
        if method is InstallMethod.SYMLINK:
            args = [self.ln_bin, "-fs", str(source), str(destination)]
        elif method is InstallMethod.COPY:
            args = [self.cp_bin, str(source), str(destination)]
        else:
            raise ValueError(f"Unsupported install method: {method!r}")
        return self._escalate(args, privileged=destination.needs_privilege)

    def remove_args(self, destination: ServicePath) -> list[str]:
        """Return the equivalent shell command for a removal."""
        return self._escalate(
            [self.rm_bin, "-f", str(destination)],
            privileged=destination.needs_privilege,
        )

    def install(
        self,
        source: ServicePath,
        destination: ServicePath,
        method: InstallMethod,
        *,
        dry_run: bool = False,
    ) -> list[str]:
        """Install *source* at *destination*, replacing whatever is there."""
        args = self.install_args(source, destination, method)
        if dry_run:
            LOGGER.debug("dry-run: %s", format_command(args))
            return args
        if source.path == destination.path:
            raise FileOperationError(f"Refusing to install {source} onto itself.")
        if not source.path.is_file():
            raise FileOperationError(f"Source definition {source} does not exist.")
        if destination.needs_privilege:
            self._run_command(args)
            return args

        LOGGER.debug("running: %s", format_command(args))
        dest = destination.path
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if method is InstallMethod.SYMLINK:
                if destination_exists(destination):
                    dest.unlink()
                dest.symlink_to(source.path)
            else:
                temp = dest.with_name(f".{dest.name}.tmp")
                shutil.copyfile(source.path, temp)
                temp.chmod(0o644)
                temp.replace(dest)
        except OSError as exc:
            raise FileOperationError(f"{format_command(args)} failed: {exc}") from exc
        return args

    def remove(self, destination: ServicePath, *, dry_run: bool = False) -> list[str]:
        """Remove *destination* when present."""
        args = self.remove_args(destination)
        if dry_run:
            LOGGER.debug("dry-run: %s", format_command(args))
            return args
        if destination.needs_privilege:
            self._run_command(args)
            return args

        LOGGER.debug("running: %s", format_command(args))
        try:
            destination.path.unlink(missing_ok=True)
        except OSError as exc:
            raise FileOperationError(f"{format_command(args)} failed: {exc}") from exc
        return args

    # ------------------------------------------------------------------
    def _escalate(self, args: list[str], *, privileged: bool) -> list[str]:
        if privileged:
            return [self.sudo_bin, "--", *args]
        return args

    def _run_command(self, args: Sequence[str]) -> None:
        command = format_command(args)
        LOGGER.debug("running: %s", command)
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise FileOperationError(f"{command} could not run: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or "no output"
            raise FileOperationError(f"{command} failed (exit {result.returncode}): {message}")


__all__ = [
    "FileInstaller",
    "FileOperationError",
    "InstallMethod",
    "destination_exists",
    "destination_matches",
]
