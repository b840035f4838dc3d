"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from launchd_activate.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.install_method == "auto"
    assert config.stop_timeout == 30.0
    assert config.start_timeout == 30.0
    assert config.poll_interval == 1.0
    assert config.logs_dir == Path("~/Library/Logs/launchd-activate").expanduser()
    assert config.launchctl.launchctl_bin == "/bin/launchctl"
    assert config.launchctl.sudo_bin == "/usr/bin/sudo"
    assert config.commands.cp_bin == "/bin/cp"
    assert config.directories.user is None


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "install_method: copy\n"
        "stop_timeout: 10\n"
        "launchctl:\n"
        "  launchctl_bin: /usr/local/bin/launchctl\n"
        "directories:\n"
        "  user: {agents}\n".format(agents=tmp_path / "agents")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.install_method == "copy"
    assert config.stop_timeout == 10.0
    assert config.start_timeout == 30.0
    assert config.launchctl.launchctl_bin == "/usr/local/bin/launchctl"
    assert config.launchctl.sudo_bin == "/usr/bin/sudo"
    assert config.directories.user == tmp_path / "agents"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("start_timeout: 5\ninstall_method: copy\n")
    env = {
        "LAUNCHD_ACTIVATE_START_TIMEOUT": "45",
        "LAUNCHD_ACTIVATE_INSTALL_METHOD": "symlink",
        "LAUNCHD_ACTIVATE_COMMANDS__RM_BIN": "/usr/bin/rm",
        "LAUNCHD_ACTIVATE_LOGS_DIR": str(tmp_path / "logs"),
    }

    config = load_config(config_file=cfg, env=env)

    assert config.start_timeout == 45.0
    assert config.install_method == "symlink"
    assert config.commands.rm_bin == "/usr/bin/rm"
    assert config.logs_dir == tmp_path / "logs"


def test_config_file_can_come_from_environment(tmp_path: Path) -> None:
    """The config path itself may be supplied through the environment."""
    cfg = tmp_path / "from-env.yml"
    cfg.write_text("poll_interval: 0.25\n")

    config = load_config(env={"LAUNCHD_ACTIVATE_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.poll_interval == 0.25


def test_overrides_take_precedence_and_ignore_none(tmp_path: Path) -> None:
    """Explicit overrides beat the environment; ``None`` values are ignored."""
    env = {"LAUNCHD_ACTIVATE_STOP_TIMEOUT": "20"}

    config = load_config(
        config_file=tmp_path / "missing.yml",
        env=env,
        overrides={"stop_timeout": 3, "start_timeout": None},
    )

    assert config.stop_timeout == 3.0
    assert config.start_timeout == 30.0


def test_unknown_keys_raise_error(tmp_path: Path) -> None:
    """Unknown top-level keys are rejected."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unexpected: true\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys: unexpected"):
        load_config(config_file=cfg, env={})


def test_unknown_section_keys_raise_error(tmp_path: Path) -> None:
    """Unknown keys inside a section are rejected."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("launchctl:\n  plutil_bin: /usr/bin/plutil\n")

    with pytest.raises(ConfigError, match="Unknown launchctl configuration keys"):
        load_config(config_file=cfg, env={})


def test_invalid_install_method_raises_error(tmp_path: Path) -> None:
    """Only auto, copy and symlink are accepted install methods."""
    with pytest.raises(ConfigError, match="Unsupported install method 'hardlink'"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={"LAUNCHD_ACTIVATE_INSTALL_METHOD": "hardlink"},
        )


@pytest.mark.parametrize("value", ["0", "-5", "soon", "true"])
def test_timeouts_must_be_positive_numbers(tmp_path: Path, value: str) -> None:
    """Timeouts reject zero, negatives, strings and booleans."""
    with pytest.raises(ConfigError):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={"LAUNCHD_ACTIVATE_STOP_TIMEOUT": value},
        )


def test_config_file_must_contain_mapping(tmp_path: Path) -> None:
    """A YAML list at the top level is rejected."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("- one\n- two\n")

    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_config(config_file=cfg, env={})


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """The resolved configuration renders as plain data."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    data = config.to_dict()

    assert data["config_file"] == str(tmp_path / "missing.yml")
    assert data["directories"] == {"system": None, "all_users": None, "user": None}
    assert data["launchctl"] == {"launchctl_bin": "/bin/launchctl", "sudo_bin": "/usr/bin/sudo"}
