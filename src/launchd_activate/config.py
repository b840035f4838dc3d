"""Configuration loader for launchd-activate.

Settings are layered, later sources winning:

1. Built-in defaults (:data:`DEFAULTS`).
2. The YAML file at ``~/.config/launchd-activate/config.yml``, or the path given
   with ``--config-file`` / ``LAUNCHD_ACTIVATE_CONFIG_FILE``.
3. ``LAUNCHD_ACTIVATE_*`` environment variables. A double underscore descends
   into a section::

       export LAUNCHD_ACTIVATE_START_TIMEOUT=60
       export LAUNCHD_ACTIVATE_DIRECTORIES__USER=/tmp/agents

4. Overrides passed in by the CLI.

Environment values go through ``yaml.safe_load`` so ``60`` arrives as a number
and ``null`` as ``None``.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "LAUNCHD_ACTIVATE_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
INSTALL_METHODS = ("auto", "copy", "symlink")


class ConfigError(RuntimeError):
    """Raised when a configuration source is malformed."""


@dataclass(frozen=True)
class LaunchctlConfig:
    """Binaries used to talk to launchd."""

    launchctl_bin: str = "/bin/launchctl"
    sudo_bin: str = "/usr/bin/sudo"

    def to_dict(self) -> dict[str, object]:
        return {"launchctl_bin": self.launchctl_bin, "sudo_bin": self.sudo_bin}


@dataclass(frozen=True)
class CommandsConfig:
    """Binaries used for privileged file operations."""

    ln_bin: str = "/bin/ln"
    cp_bin: str = "/bin/cp"
    rm_bin: str = "/bin/rm"

    def to_dict(self) -> dict[str, object]:
        return {"ln_bin": self.ln_bin, "cp_bin": self.cp_bin, "rm_bin": self.rm_bin}


@dataclass(frozen=True)
class DirectoriesConfig:
    """Destination directory overrides; ``None`` keeps the launchd default."""

    system: Path | None = None
    all_users: Path | None = None
    user: Path | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            name: None if value is None else str(value)
            for name, value in (
                ("system", self.system),
                ("all_users", self.all_users),
                ("user", self.user),
            )
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for launchd-activate."""

    config_file: Path
    logs_dir: Path
    install_method: str
    stop_timeout: float
    start_timeout: float
    poll_interval: float
    launchctl: LaunchctlConfig
    commands: CommandsConfig
    directories: DirectoriesConfig

    def to_dict(self) -> dict[str, object]:
        """Return the configuration as plain JSON-friendly data."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "install_method": self.install_method,
            "stop_timeout": self.stop_timeout,
            "start_timeout": self.start_timeout,
            "poll_interval": self.poll_interval,
            "launchctl": self.launchctl.to_dict(),
            "commands": self.commands.to_dict(),
            "directories": self.directories.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/launchd-activate/config.yml",
    "logs_dir": "~/Library/Logs/launchd-activate",
    "install_method": "auto",
    "stop_timeout": 30.0,
    "start_timeout": 30.0,
    "poll_interval": 1.0,
    "launchctl": LaunchctlConfig().to_dict(),
    "commands": CommandsConfig().to_dict(),
    "directories": DirectoriesConfig().to_dict(),
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Resolve every configuration layer into an :class:`AppConfig`."""
    environ = os.environ if env is None else env
    settings = copy.deepcopy(DEFAULTS)

    if config_file:
        path = Path(config_file).expanduser()
    elif environ.get(CONFIG_ENV_VAR):
        path = Path(environ[CONFIG_ENV_VAR]).expanduser()
    else:
        path = Path(str(DEFAULTS["config_file"])).expanduser()

    _merge(settings, _read_config_file(path), source=str(path))
    _merge(settings, _environment_layer(environ), source="environment")
    if overrides:
        _merge(
            settings,
            {key: value for key, value in overrides.items() if value is not None},
            source="overrides",
        )
    settings["config_file"] = str(path)

    return _build(settings)


def _read_config_file(path: Path) -> dict[str, object]:
    if not path.is_file():
        return {}
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return dict(loaded)


def _environment_layer(environ: Mapping[str, str]) -> dict[str, object]:
    layer: dict[str, object] = {}
    for key, raw in environ.items():
        if key == CONFIG_ENV_VAR or not key.startswith(ENV_PREFIX):
            continue
        segments = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not segments:
            continue
        node = layer
        for segment in segments[:-1]:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment variable {key} conflicts with {segment}.")
            node = child
        node[segments[-1]] = _parse_env_value(raw)
    return layer


def _parse_env_value(raw: str) -> object:
    text = raw.strip()
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def _merge(
    target: MutableMapping[str, object],
    layer: Mapping[object, object],
    *,
    source: str,
) -> None:
    for key, value in layer.items():
        if not isinstance(key, str):
            raise ConfigError(f"Configuration keys must be strings ({source}): {key!r}.")
        current = target.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _merge(current, value, source=source)
        else:
            target[key] = value


def _build(settings: Mapping[str, object]) -> AppConfig:
    unknown = sorted(set(settings) - set(DEFAULTS))
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}.")

    method = settings["install_method"]
    if method not in INSTALL_METHODS:
        raise ConfigError(
            f"Unsupported install method '{method}'. Allowed: {', '.join(INSTALL_METHODS)}."
        )

    launchctl = _section(settings, "launchctl")
    commands = _section(settings, "commands")
    directories = _section(settings, "directories")

    return AppConfig(
        config_file=_path(settings["config_file"], "config_file"),
        logs_dir=_path(settings["logs_dir"], "logs_dir"),
        install_method=str(method),
        stop_timeout=_positive_number(settings["stop_timeout"], "stop_timeout"),
        start_timeout=_positive_number(settings["start_timeout"], "start_timeout"),
        poll_interval=_positive_number(settings["poll_interval"], "poll_interval"),
        launchctl=LaunchctlConfig(**{key: str(value) for key, value in launchctl.items()}),
        commands=CommandsConfig(**{key: str(value) for key, value in commands.items()}),
        directories=DirectoriesConfig(
            **{
                key: None if value in (None, "") else _path(value, f"directories.{key}")
                for key, value in directories.items()
            }
        ),
    )


def _section(settings: Mapping[str, object], name: str) -> dict[str, object]:
    value = settings.get(name)
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {name} to be a mapping. Got {type(value).__name__}.")
    allowed = set(cast(Mapping[str, object], DEFAULTS[name]))
    unknown = sorted(set(value) - allowed)
    if unknown:
        raise ConfigError(f"Unknown {name} configuration keys: {', '.join(unknown)}.")
    return dict(value)


def _path(value: object, label: str) -> Path:
    if isinstance(value, (str, Path)):
        return Path(value).expanduser()
    raise ConfigError(f"Expected {label} to be a path. Got {value!r}.")


def _positive_number(value: object, label: str) -> float:
    # bool is an int subclass; "true" must not become 1.0.
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"Expected {label} to be a number. Got {value!r}.")
    try:
        number = float(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    if number <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {number}.")
    return number


__all__ = [
    "AppConfig",
    "CONFIG_ENV_VAR",
    "CommandsConfig",
    "ConfigError",
    "DirectoriesConfig",
    "LaunchctlConfig",
    "load_config",
]
