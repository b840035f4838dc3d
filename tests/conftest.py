"""Shared fixtures and fakes for the launchd-activate test suite."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from launchd_activate.identity import DomainTarget, ServicePath, ServiceTarget
from launchd_activate.providers.launchctl import LaunchctlError

PLIST_BODY = """<?xml version="1.0" encoding="UTF-8"?>
<plist version="1.0">
<dict>
  <key>Label</key>
  <string>{label}</string>
</dict>
</plist>
"""


def write_plist(directory: Path, name: str, body: str | None = None) -> Path:
    """Create ``<directory>/<name>.plist`` and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.plist"
    path.write_text(body if body is not None else PLIST_BODY.format(label=name), encoding="utf-8")
    return path


@dataclass
class FakeServiceManager:
    """In-memory stand-in for launchd.

    ``loaded`` holds the names of loaded services. Names listed in ``stuck``
    never change state, which lets tests exercise confirmation timeouts.
    """

    loaded: set[str] = field(default_factory=set)
    fail_bootout: set[str] = field(default_factory=set)
    fail_bootstrap: set[str] = field(default_factory=set)
    query_errors: set[str] = field(default_factory=set)
    stuck: set[str] = field(default_factory=set)
    calls: list[tuple[str, str, bool]] = field(default_factory=list)

    def is_loaded(self, target: ServiceTarget) -> bool:
        self.calls.append(("is_loaded", str(target), False))
        if target.name in self.query_errors:
            raise LaunchctlError(f"launchctl print {target} could not run")
        return target.name in self.loaded

    def bootout(self, target: ServiceTarget, *, dry_run: bool = False) -> list[str]:
        self.calls.append(("bootout", str(target), dry_run))
        args = ["launchctl", "bootout", str(target)]
        if dry_run:
            return args
        if target.name in self.fail_bootout:
            raise LaunchctlError(f"launchctl bootout {target} failed (exit 5): boom")
        if target.name not in self.stuck:
            self.loaded.discard(target.name)
        return args

    def bootstrap(
        self,
        domain: DomainTarget,
        path: ServicePath,
        *,
        dry_run: bool = False,
    ) -> list[str]:
        self.calls.append(("bootstrap", f"{domain}/{path.name}", dry_run))
        args = ["launchctl", "bootstrap", str(domain), str(path)]
        if dry_run:
            return args
        if path.name in self.fail_bootstrap:
            raise LaunchctlError(f"launchctl bootstrap {domain} {path} failed (exit 5): boom")
        if path.name not in self.stuck:
            self.loaded.add(path.name)
        return args

    def actions(self) -> list[tuple[str, str, bool]]:
        """Return every recorded call except state queries."""
        return [call for call in self.calls if call[0] != "is_loaded"]


@dataclass
class FakeClock:
    """Monotonic clock that only advances when ``sleep`` is called."""

    now: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def service_manager() -> FakeServiceManager:
    """Return an empty fake service manager."""
    return FakeServiceManager()


@pytest.fixture
def clock() -> FakeClock:
    """Return a fake clock starting at zero."""
    return FakeClock()


@pytest.fixture
def gui_domain() -> DomainTarget:
    """Return the GUI domain used throughout the tests."""
    return DomainTarget.gui(501)
