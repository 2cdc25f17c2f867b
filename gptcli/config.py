"""Configuration files for gpt-cli.

Two optional TOML files set the same options as the command-line flags: the
user's ``~/.config/gpt-cli/config.toml`` and a ``gpt.toml`` in the working
directory. Flags beat the project file, which beats the user file, which
beats the built-in defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import NamedTuple

from .errors import ConfigError

_UNSET = object()  # argparse default meaning "flag not given"

PROJECT_CONFIG_NAME = "gpt.toml"
GLOBAL_CONFIG_NAME = "config.toml"


class Setting(NamedTuple):
    kind: type
    default: object = None
    dest: str | None = None  # argparse dest, when it differs from the key


SETTINGS: dict[str, Setting] = {
    "provider": Setting(str),
    "model": Setting(str),
    "api_key": Setting(str),
    "base_url": Setting(str),
    "effort": Setting(str),
    "gemini": Setting(bool, False),
    "thinking": Setting(bool, False),
    "system_prompt": Setting(str, dest="system"),
    "agent": Setting(bool, False),
    "interactive": Setting(bool, False),
    "debug": Setting(bool, False),
    "color": Setting(bool, False),
    "quiet": Setting(bool, False),
    "db_path": Setting(str),
}

# Flags with no config key of their own.
_FLAG_DEFAULTS = {"no_color": False}


def global_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / "gpt-cli"


def _warn(msg: str) -> None:
    print(f"warning: {msg}", file=sys.stderr)


def _check_types(config: dict, label: str) -> dict:
    """Drop unknown keys with a warning; raise ConfigError on a wrongly typed value."""
    checked = {}
    for key, value in config.items():
        setting = SETTINGS.get(key)
        if setting is None:
            _warn(f"{label}: unknown config key {key!r}")
            continue
        # isinstance(True, int) holds, so bools are matched separately.
        if isinstance(value, bool) != (setting.kind is bool) or not isinstance(
            value, setting.kind
        ):
            raise ConfigError(
                f"{label}: {key!r} expected {setting.kind.__name__}, "
                f"got {type(value).__name__}"
            )
        checked[key] = value
    return checked


def _read(path: Path) -> dict:
    """Parse one config file. A missing file is an empty config."""
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: invalid TOML: {e}") from e

    config = _check_types(raw, str(path))
    if "db_path" in config:
        db_path = Path(config["db_path"]).expanduser()
        if not db_path.is_absolute():
            db_path = path.parent / db_path
        config["db_path"] = str(db_path)
    return config


def _inside_git_checkout(path: Path) -> bool:
    return any((parent / ".git").exists() for parent in path.parents)


def load_config(cwd: Path) -> dict:
    """Merge the user and project config files.

    Only keys actually present in a file are returned; defaults are applied
    later by apply_config_to_args().
    """
    config = _read(global_config_dir() / GLOBAL_CONFIG_NAME)

    project_path = Path(cwd).resolve() / PROJECT_CONFIG_NAME
    project = _read(project_path)
    if "api_key" in project and _inside_git_checkout(project_path):
        _warn(
            f"{project_path}: an api_key in a project config inside a git checkout "
            "can end up committed. Prefer an environment variable."
        )
    config.update(project)
    return config


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Fill every flag the user did not pass from ``config``, else its default."""

    def unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # The color key drives the --color/--no-color pair, unless either flag was given.
    if "color" in config and unset("color") and unset("no_color"):
        args.color = config["color"]
        args.no_color = not config["color"]

    for key, setting in SETTINGS.items():
        dest = setting.dest or key
        if not unset(dest):
            continue
        value = setting.default if key == "color" else config.get(key, setting.default)
        setattr(args, dest, value)

    for dest, default in _FLAG_DEFAULTS.items():
        if unset(dest):
            setattr(args, dest, default)
