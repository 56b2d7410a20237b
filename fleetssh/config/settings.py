"""Application settings from the config file and environment variables.

Layering (lowest to highest): defaults, YAML config file, FLEETSSH_*
environment variables. Command line options are applied on top by the CLI.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from fleetssh.exceptions import SettingsError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".fleetssh.yaml"
ON_ERROR_POLICIES = ("skip", "raise")


@dataclass
class TmuxSettings:
    """Options for the tmux launchers."""

    pane_layout: str = "tiled"
    use_panes: bool = False
    sync_panes: bool = True
    sync_panes_key: str = "s"


@dataclass
class Settings:
    """Settings shared by every fleetssh invocation."""

    ssh_user: str | None = None
    ssh_port: int | None = None
    ssh_gateway: str | None = None
    ssh_attribute: str | None = None
    identity_file: str | None = None
    inventory: str | None = None
    concurrency: int | None = None
    on_error: str = "skip"
    tmux: TmuxSettings = field(default_factory=TmuxSettings)

    # Logging
    log_level: str = "WARNING"
    color: bool = True

    def __post_init__(self) -> None:
        if self.on_error not in ON_ERROR_POLICIES:
            raise SettingsError(
                f"Invalid on_error policy {self.on_error!r}; "
                f"expected one of {', '.join(ON_ERROR_POLICIES)}"
            )
        if self.concurrency is not None and self.concurrency <= 0:
            logger.warning(
                "concurrency must be > 0, got %d. Connecting without a limit",
                self.concurrency,
            )
            self.concurrency = None

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "Settings":
        """Load settings from a YAML config file.

        A missing file yields defaults.

        Args:
            path: Config file path (default: ~/.fleetssh.yaml)

        Returns:
            Settings instance

        Raises:
            SettingsError: If the file is not valid YAML or not a mapping
        """
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        if not config_path.exists():
            logger.debug("No config file at %s, using defaults", config_path)
            return cls()

        try:
            data = yaml.safe_load(config_path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise SettingsError(f"Cannot read config file {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise SettingsError(
                f"Config file {config_path} must contain a mapping, "
                f"got {type(data).__name__}"
            )

        logger.debug("Loaded settings from %s", config_path)
        return cls._from_mapping(data)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from the config file, then apply environment overrides.

        The config file path comes from FLEETSSH_CONFIG when set.

        Returns:
            Settings instance
        """
        settings = cls.from_file(os.getenv("FLEETSSH_CONFIG") or None)

        for name in ("ssh_user", "ssh_gateway", "ssh_attribute", "identity_file", "inventory"):
            if value := os.getenv(f"FLEETSSH_{name.upper()}", "").strip():
                setattr(settings, name, value)

        port = cls._get_int("FLEETSSH_SSH_PORT")
        if port is not None:
            settings.ssh_port = port

        concurrency = cls._get_int("FLEETSSH_CONCURRENCY")
        if concurrency is not None and concurrency > 0:
            settings.concurrency = concurrency

        on_error = os.getenv("FLEETSSH_ON_ERROR", "").lower()
        if on_error in ON_ERROR_POLICIES:
            settings.on_error = on_error

        if log_level := os.getenv("FLEETSSH_LOG_LEVEL"):
            settings.log_level = log_level.upper()
        settings.color = cls._get_bool("FLEETSSH_COLOR", settings.color)

        logger.debug(
            "Settings initialized: ssh_user=%s, ssh_port=%s, gateway=%s, "
            "attribute=%s, concurrency=%s, on_error=%s",
            settings.ssh_user,
            settings.ssh_port,
            settings.ssh_gateway,
            settings.ssh_attribute,
            settings.concurrency,
            settings.on_error,
        )
        return settings

    @classmethod
    def _from_mapping(cls, data: dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

        values = {key: value for key, value in data.items() if key in known}
        tmux = values.pop("tmux", None) or {}
        if not isinstance(tmux, dict):
            raise SettingsError(
                f"Config key 'tmux' must be a mapping, got {type(tmux).__name__}"
            )
        tmux_known = {f.name for f in fields(TmuxSettings)}
        values["tmux"] = TmuxSettings(
            **{key: value for key, value in tmux.items() if key in tmux_known}
        )
        for key in ("ssh_user", "ssh_gateway", "ssh_attribute", "identity_file"):
            if isinstance(values.get(key), str):
                values[key] = values[key].strip()
        return cls(**values)

    @staticmethod
    def _get_int(key: str) -> int | None:
        """Get integer from environment.

        Args:
            key: Environment variable key

        Returns:
            Integer value, or None when unset or invalid
        """
        value = os.getenv(key)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid int for %s: %s, ignoring", key, value)
            return None

    @staticmethod
    def _get_bool(key: str, default: bool) -> bool:
        """Get boolean from environment.

        Args:
            key: Environment variable key
            default: Default value if not set

        Returns:
            Boolean value from environment or default
        """
        value = os.getenv(key)
        if value is None:
            return default
        return value.lower() in ("1", "true", "yes", "on")
