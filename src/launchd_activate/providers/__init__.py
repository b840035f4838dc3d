"""Provider interfaces for launchd-activate."""
from __future__ import annotations

from .filesystem import (
    FileInstaller,
    FileOperationError,
    InstallMethod,
    destination_exists,
    destination_matches,
)
from .launchctl import LaunchctlError, LaunchctlProvider, ServiceManager, format_command

__all__ = [
    "FileInstaller",
    "FileOperationError",
    "InstallMethod",
    "LaunchctlError",
    "LaunchctlProvider",
    "ServiceManager",
    "destination_exists",
    "destination_matches",
    "format_command",
]
