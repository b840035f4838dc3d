"""Value types identifying launchd service definitions and service instances.

A *service definition* is a ``.plist`` file identified solely by its filename
stem. The same stem names the running service inside an execution domain, so
``ServicePath`` and ``ServiceTarget`` are always derived from one another and
share the same naming rules.
"""
from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

PLIST_SUFFIX = ".plist"
SYSTEM_LIBRARY = Path("/Library")
SYSTEM_DAEMONS_ROOT = SYSTEM_LIBRARY / "LaunchDaemons"
ALL_USERS_AGENTS_ROOT = SYSTEM_LIBRARY / "LaunchAgents"
USER_AGENTS_SUBDIR = Path("Library") / "LaunchAgents"
CONSOLE_DEVICE = Path("/dev/console")


class ServiceDirectoryError(RuntimeError):
    """Raised when a directory of service definitions cannot be listed."""


def _validate_name(name: str) -> str:
    if not name:
        raise ValueError("Service name must not be empty.")
    if any(char.isspace() for char in name):
        raise ValueError(f"Service name {name!r} must not contain whitespace.")
    if name.endswith(PLIST_SUFFIX):
        raise ValueError(f"Service name {name!r} must not include the {PLIST_SUFFIX} suffix.")
    return name


class DomainKind(str, Enum):
    """Variants of a launchd execution domain."""

    SYSTEM = "system"
    GUI = "gui"


@dataclass(frozen=True, slots=True)
class DomainTarget:
    """Execution domain: the system domain or a user's GUI session."""

    kind: DomainKind
    uid: int | None = None

    def __post_init__(self) -> None:
        """Reject variant/uid combinations that cannot exist."""
        if self.kind is DomainKind.SYSTEM and self.uid is not None:
            raise ValueError("The system domain does not carry a uid.")
        if self.kind is DomainKind.GUI and (self.uid is None or self.uid < 0):
            raise ValueError("GUI domains require a non-negative uid.")

    @classmethod
    def system(cls) -> DomainTarget:
        """Return the system domain."""
        return cls(DomainKind.SYSTEM)

    @classmethod
    def gui(cls, uid: int) -> DomainTarget:
        """Return the GUI domain for *uid*."""
        return cls(DomainKind.GUI, uid)

    @property
    def is_system(self) -> bool:
        """Return ``True`` for the system domain."""
        if self.kind is DomainKind.SYSTEM:
            return True
        if self.kind is DomainKind.GUI:
            return False
        raise ValueError(f"Unsupported domain kind: {self.kind!r}")

    def service(self, name: str) -> ServiceTarget:
        """Return the service *name* inside this domain."""
        return ServiceTarget(domain=self, name=name)

    def __str__(self) -> str:
        if self.kind is DomainKind.SYSTEM:
            return "system"
        if self.kind is DomainKind.GUI:
            return f"gui/{self.uid}"
        raise ValueError(f"Unsupported domain kind: {self.kind!r}")


@dataclass(frozen=True, slots=True)
class ServiceTarget:
    """A runnable service instance addressed as ``<domain>/<name>``."""

    domain: DomainTarget
    name: str

    def __post_init__(self) -> None:
        """Validate the service name."""
        _validate_name(self.name)

    def __str__(self) -> str:
        return f"{self.domain}/{self.name}"


@dataclass(frozen=True, slots=True)
class ServicePath:
    """Location of a service definition file."""

    path: Path

    def __post_init__(self) -> None:
        """Ensure the path names a ``.plist`` file with a valid stem."""
        path = Path(self.path)
        object.__setattr__(self, "path", path)
        if path.suffix != PLIST_SUFFIX:
            raise ValueError(f"Expected a {PLIST_SUFFIX} file, got {path}.")
        _validate_name(path.stem)

    @property
    def name(self) -> str:
        """Return the service name (filename without extension)."""
        return self.path.stem

    @property
    def needs_privilege(self) -> bool:
        """Return ``True`` when the file lives under the system-wide Library."""
        return self.path.is_absolute() and self.path.is_relative_to(SYSTEM_LIBRARY)

    def service_target(self, domain: DomainTarget) -> ServiceTarget:
        """Return the service this definition describes inside *domain*."""
        return ServiceTarget(domain=domain, name=self.name)

    def __str__(self) -> str:
        return str(self.path)


class DirectoryKind(str, Enum):
    """Kinds of destination directory launchd reads definitions from."""

    SYSTEM = "system"
    ALL_USERS = "all-users"
    USER = "user"


@dataclass(frozen=True, slots=True)
class ServiceDirectory:
    """Destination directory where active service definitions are installed."""

    kind: DirectoryKind
    root: Path

    @classmethod
    def system(cls, root: Path | None = None) -> ServiceDirectory:
        """Return the system daemons directory."""
        return cls(DirectoryKind.SYSTEM, root or SYSTEM_DAEMONS_ROOT)

    @classmethod
    def all_users(cls, root: Path | None = None) -> ServiceDirectory:
        """Return the agents directory shared by all users."""
        return cls(DirectoryKind.ALL_USERS, root or ALL_USERS_AGENTS_ROOT)

    @classmethod
    def current_user(cls, home: Path | None = None) -> ServiceDirectory:
        """Return the agents directory under *home* (the invoking user's by default)."""
        base = home if home is not None else Path.home()
        return cls(DirectoryKind.USER, base / USER_AGENTS_SUBDIR)

    def service_path(self, name: str) -> ServicePath:
        """Return the destination path for the service called *name*."""
        return ServicePath(self.root / f"{_validate_name(name)}{PLIST_SUFFIX}")

    def __str__(self) -> str:
        return str(self.root)


ConsoleUserResolver = Callable[[], int]


def current_console_uid(console: Path = CONSOLE_DEVICE) -> int:
    """Return the uid of the user owning the console session.

    The login window owns the console as root, which maps to uid 0 just like a
    missing or unreadable console device.
    """
    try:
        return os.stat(console).st_uid
    except OSError:
        return 0


def current_gui_domain(resolver: ConsoleUserResolver = current_console_uid) -> DomainTarget:
    """Return the GUI domain of the console user reported by *resolver*."""
    return DomainTarget.gui(resolver())


class ActivationScope(str, Enum):
    """Where services are activated: system daemons, all-user or per-user agents."""

    SYSTEM = "system"
    USER = "user"
    ALL_USERS = "user-all"


InvalidEntryHandler = Callable[[Path, str], None]


def scan_service_paths(
    directory: Path,
    *,
    on_invalid: InvalidEntryHandler | None = None,
) -> dict[str, ServicePath]:
    """Index every ``.plist`` file in *directory* by service name.

    Entries whose stem is not a valid service name are left out of the index
    and reported to *on_invalid* together with the reason.
    """
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        raise ServiceDirectoryError(
            f"Reading plists from {directory} failed: {exc.strerror or exc}"
        ) from exc

    found: dict[str, ServicePath] = {}
    for entry in entries:
        if entry.suffix != PLIST_SUFFIX:
            continue
        try:
            service_path = ServicePath(entry)
        except ValueError as exc:
            if on_invalid is not None:
                on_invalid(entry, str(exc))
            continue
        found[service_path.name] = service_path
    return found


__all__ = [
    "ALL_USERS_AGENTS_ROOT",
    "ActivationScope",
    "ConsoleUserResolver",
    "DirectoryKind",
    "DomainKind",
    "DomainTarget",
    "InvalidEntryHandler",
    "PLIST_SUFFIX",
    "SYSTEM_DAEMONS_ROOT",
    "ServiceDirectory",
    "ServiceDirectoryError",
    "ServicePath",
    "ServiceTarget",
    "current_console_uid",
    "current_gui_domain",
    "scan_service_paths",
]
