"""Reconciliation engine: diff two definition directories into an action plan.

Planning is read-only. It scans the new and previous source directories,
inspects the destination directory and asks the service manager which
services are loaded, then records every install, removal, stop and start it
decides on in a :class:`Plan`. Nothing is changed until the plan is handed to
:class:`~launchd_activate.executor.PlanExecutor`.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .identity import (
    DomainTarget,
    ServiceDirectory,
    ServiceDirectoryError,
    ServicePath,
    ServiceTarget,
    scan_service_paths,
)
from .providers.filesystem import InstallMethod, destination_exists, destination_matches
from .providers.launchctl import LaunchctlError, ServiceManager

LOGGER = logging.getLogger(__name__)

Matcher = Callable[[ServicePath, ServicePath, InstallMethod], bool]


@dataclass(slots=True)
class Plan:
    """Inert set of file and service actions needed to reconcile a domain."""

    enable: dict[ServicePath, ServicePath] = field(default_factory=dict)
    disable: set[ServicePath] = field(default_factory=set)
    bootstrap: dict[ServiceTarget, ServicePath] = field(default_factory=dict)
    bootout: set[ServiceTarget] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def total_operations(self) -> int:
        """Return the number of planned actions."""
        return len(self.enable) + len(self.disable) + len(self.bootout) + len(self.bootstrap)

    @property
    def is_empty(self) -> bool:
        """Return ``True`` when nothing needs to change."""
        return self.total_operations == 0

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable, deterministically ordered representation."""
        return {
            "enable": [
                {"source": str(source), "destination": str(destination)}
                for destination, source in sorted(
                    self.enable.items(), key=lambda item: str(item[0])
                )
            ],
            "disable": sorted(str(path) for path in self.disable),
            "bootout": sorted(str(target) for target in self.bootout),
            "bootstrap": [
                {"service": str(target), "path": str(path)}
                for target, path in sorted(self.bootstrap.items(), key=lambda item: str(item[0]))
            ],
            "warnings": list(self.warnings),
            "skipped": list(self.skipped),
            "total_operations": self.total_operations,
        }

    def summary_lines(self) -> list[str]:
        """Return a human-readable summary of the plan."""
        lines = ["Plan execution summary:"]
        if self.enable:
            lines.extend(["", "File operations (enable/install):"])
            for destination, source in sorted(self.enable.items(), key=lambda item: str(item[0])):
                lines.append(f"  • Install: {source} → {destination}")
        if self.disable:
            lines.extend(["", "File operations (disable/remove):"])
            for path in sorted(self.disable, key=str):
                lines.append(f"  • Remove: {path}")
        if self.bootout:
            lines.extend(["", "Services to bootout (unload):"])
            for target in sorted(self.bootout, key=str):
                lines.append(f"  • Bootout: {target}")
        if self.bootstrap:
            lines.extend(["", "Services to bootstrap (load):"])
            for target, path in sorted(self.bootstrap.items(), key=lambda item: str(item[0])):
                lines.append(f"  • Bootstrap: {target} from {path}")

        lines.append("")
        if self.is_empty:
            lines.append("No operations planned.")
        else:
            lines.extend(
                [
                    f"Total operations: {self.total_operations}",
                    f"  - File installs: {len(self.enable)}",
                    f"  - File removals: {len(self.disable)}",
                    f"  - Service bootouts: {len(self.bootout)}",
                    f"  - Service bootstraps: {len(self.bootstrap)}",
                ]
            )
        return lines

    def warn(self, message: str) -> None:
        """Record a planning-soft condition."""
        LOGGER.debug("plan warning: %s", message)
        self.warnings.append(message)


def prepare_plan(
    domain: DomainTarget,
    destination: ServiceDirectory,
    new_directory: Path,
    old_directory: Path | None = None,
    *,
    service_manager: ServiceManager,
    install_method: InstallMethod,
    matcher: Matcher = destination_matches,
) -> Plan:
    """Compute the plan that moves *destination* from *old_directory* to *new_directory*.

    An unreadable *new_directory* raises :class:`ServiceDirectoryError` because
    the desired state is unknown. An unreadable *old_directory* only records a
    warning and is treated as empty.
    """
    plan = Plan()

    def skip_invalid(path: Path, reason: str) -> None:
        message = f"Skipping {path}: {reason}"
        if message not in plan.warnings:
            plan.warn(message)

    new_paths = scan_service_paths(new_directory, on_invalid=skip_invalid)
    old_paths: dict[str, ServicePath] = {}
    if old_directory is not None:
        try:
            old_paths = scan_service_paths(old_directory, on_invalid=skip_invalid)
        except ServiceDirectoryError as exc:
            plan.warn(str(exc))

    added = sorted(name for name in new_paths if name not in old_paths)
    removed = sorted(name for name in old_paths if name not in new_paths)
    changed = sorted(name for name in new_paths if name in old_paths)

    for name in added:
        _plan_added(plan, domain, destination, new_paths[name], service_manager)
    for name in removed:
        _plan_removed(plan, domain, destination, old_paths[name], service_manager)
    for name in changed:
        _plan_changed(
            plan,
            domain,
            destination,
            new_paths[name],
            service_manager,
            install_method,
            matcher,
        )
    return plan


def _query_loaded(
    plan: Plan,
    service_manager: ServiceManager,
    target: ServiceTarget,
) -> bool | None:
    """Return the load state of *target*, or ``None`` when it cannot be determined."""
    try:
        return service_manager.is_loaded(target)
    except LaunchctlError as exc:
        plan.warn(f"Could not determine whether {target} is loaded: {exc}")
        return None


def _plan_added(
    plan: Plan,
    domain: DomainTarget,
    destination: ServiceDirectory,
    source: ServicePath,
    service_manager: ServiceManager,
) -> None:
    target = source.service_target(domain)
    dest_path = destination.service_path(source.name)

    if destination_exists(dest_path):
        plan.warn(f"{dest_path} already exists")
    plan.enable[dest_path] = source

    # A leftover instance from an earlier partial run is stopped first so the
    # bootstrap starts from the new definition.
    if _query_loaded(plan, service_manager, target) is True:
        plan.warn(f"{target} already loaded")
        plan.bootout.add(target)
    plan.bootstrap[target] = dest_path


def _plan_removed(
    plan: Plan,
    domain: DomainTarget,
    destination: ServiceDirectory,
    source: ServicePath,
    service_manager: ServiceManager,
) -> None:
    target = source.service_target(domain)
    dest_path = destination.service_path(source.name)

    if destination_exists(dest_path):
        plan.disable.add(dest_path)
    else:
        plan.warn(f"{dest_path} does not exist")

    if _query_loaded(plan, service_manager, target) is False:
        plan.warn(f"{target} already unloaded")
    else:
        plan.bootout.add(target)


def _plan_changed(
    plan: Plan,
    domain: DomainTarget,
    destination: ServiceDirectory,
    source: ServicePath,
    service_manager: ServiceManager,
    install_method: InstallMethod,
    matcher: Matcher,
) -> None:
    target = source.service_target(domain)
    dest_path = destination.service_path(source.name)

    if destination_exists(dest_path):
        unchanged = matcher(source, dest_path, install_method)
    else:
        plan.warn(f"{dest_path} does not exist")
        unchanged = False
    loaded = _query_loaded(plan, service_manager, target)

    if unchanged and loaded is True:
        LOGGER.debug("%s is up to date and loaded", target)
        plan.skipped.append(target.name)
        return

    if not unchanged:
        plan.enable[dest_path] = source
    if loaded is False:
        LOGGER.debug("%s not loaded", target)
    else:
        plan.bootout.add(target)
    plan.bootstrap[target] = dest_path


__all__ = ["Matcher", "Plan", "prepare_plan"]
