"""Server configuration.

Settings live in the ``[server]`` table of a TOML file. Two files are
discovered and merged, the project file winning over the user file:

    ~/.config/jsonnet-lsp/config.toml   (user)
    <project>/.jsonnet-lsp.toml         (project)

Example:

    [server]
    evaluate = true
    publish_evaluation_errors = false
    formatting_placeholder = "TODO: test"
    shutdown_timeout = 30.0
    log_level = "INFO"
    log_file = "/tmp/jsonnet-lsp.log"

Usage:
    config = load_all_configs(Path.cwd())
    config = load_config(Path("custom.toml"))  # explicit file, strict
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

USER_CONFIG_PATH = Path("~/.config/jsonnet-lsp/config.toml")
PROJECT_CONFIG_NAME = ".jsonnet-lsp.toml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """A configuration file could not be read or holds invalid values."""


@dataclass
class ServerConfig:
    """Settings for one server process."""

    # Run the evaluator on documents that parse
    evaluate: bool = True
    # Publish evaluation errors instead of only logging them
    publish_evaluation_errors: bool = False
    formatting_placeholder: str = "TODO: test"
    # Seconds to wait for exit after a shutdown request
    shutdown_timeout: float = 30.0
    log_level: str = "WARNING"
    log_file: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: ServerConfig | None = None) -> ServerConfig:
        """Build a config from a ``[server]`` table, on top of ``base``.

        Raises:
            ConfigError: On unknown keys or values of the wrong type
        """
        config = base or cls()
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values = {f.name: getattr(config, f.name) for f in fields(cls)}
        for key in ("evaluate", "publish_evaluation_errors"):
            if key in data:
                if not isinstance(data[key], bool):
                    raise ConfigError(f"{key} must be a boolean")
                values[key] = data[key]
        if "formatting_placeholder" in data:
            if not isinstance(data["formatting_placeholder"], str):
                raise ConfigError("formatting_placeholder must be a string")
            values["formatting_placeholder"] = data["formatting_placeholder"]
        if "shutdown_timeout" in data:
            timeout = data["shutdown_timeout"]
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ConfigError("shutdown_timeout must be a positive number")
            values["shutdown_timeout"] = float(timeout)
        if "log_level" in data:
            values["log_level"] = parse_log_level(data["log_level"])
        if "log_file" in data:
            if not isinstance(data["log_file"], str):
                raise ConfigError("log_file must be a string")
            values["log_file"] = Path(data["log_file"]).expanduser()
        return cls(**values)


def parse_log_level(value: Any) -> str:
    """Normalize a log level name.

    Raises:
        ConfigError: If ``value`` is not a known level
    """
    if not isinstance(value, str) or value.upper() not in LOG_LEVELS:
        raise ConfigError(f"Invalid log level {value!r}; expected one of {', '.join(LOG_LEVELS)}")
    return value.upper()


def _read_table(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    server = data.get("server", {})
    if not isinstance(server, dict):
        raise ConfigError(f"{path}: [server] must be a table")
    return server


def load_config(path: Path, base: ServerConfig | None = None) -> ServerConfig:
    """Load an explicitly named config file.

    Raises:
        ConfigError: If the file is missing, unparsable or invalid
    """
    table = _read_table(path)
    try:
        return ServerConfig.from_dict(table, base)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from e


def load_all_configs(project_root: Path | None = None, user_path: Path | None = None) -> ServerConfig:
    """Merge the user and project config files that exist.

    Files that fail to load are logged and skipped.

    Args:
        project_root: Directory holding ``.jsonnet-lsp.toml``; defaults to cwd
        user_path: Override for the user config location
    """
    config = ServerConfig()
    candidates = [
        (user_path or USER_CONFIG_PATH).expanduser(),
        (project_root or Path.cwd()) / PROJECT_CONFIG_NAME,
    ]
    for path in candidates:
        if not path.is_file():
            continue
        try:
            config = load_config(path, config)
        except ConfigError as e:
            logger.warning(f"Ignoring config file: {e}")
        else:
            logger.debug("Loaded config from %s", path)
    return config


__all__ = [
    "LOG_LEVELS",
    "PROJECT_CONFIG_NAME",
    "USER_CONFIG_PATH",
    "ConfigError",
    "ServerConfig",
    "load_all_configs",
    "load_config",
    "parse_log_level",
]
