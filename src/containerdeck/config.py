"""
Configuration management for containerdeck.

This module provides configuration file support with YAML format
and default settings.

Features:
- YAML configuration file at ~/.config/containerdeck/config.yaml
  (CONTAINERDECK_CONFIG overrides the location)
- Default values with user overrides
- Tool discovery paths and command timeouts
- Helper socket, authkey and call deadlines
- Refresh intervals and optional system auto-start
- Log location override

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults
- Provides typed access to settings
- Handles missing/invalid config gracefully
"""

import os
import secrets
import yaml
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path

from . import get_runtime_dir
from .locator import DEFAULT_TOOL_PATHS
from .executor import DEFAULT_SEARCH_PATHS

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CONTAINERDECK_CONFIG"


@dataclass
class ToolConfig:
    """Where to find the `container` tool and how long it may run."""
    candidate_paths: List[str] = field(default_factory=lambda: list(DEFAULT_TOOL_PATHS))
    search_paths: List[str] = field(default_factory=lambda: list(DEFAULT_SEARCH_PATHS))
    command_timeout: float = 300.0
    follow_window: float = 5.0


@dataclass
class HelperConfig:
    """Helper process and IPC settings."""
    enabled: bool = False  # False runs the tool in-process
    socket_path: Optional[str] = None  # None for <runtime dir>/helper.sock
    authkey: Optional[str] = None  # None for a generated key file next to the socket
    listing_timeout: float = 5.0
    action_timeout: float = 120.0
    connect_timeout: float = 5.0  # bound on the authkey handshake
    max_workers: int = 4


@dataclass
class RefreshConfig:
    containers_interval: float = 2.0
    others_interval: float = 10.0
    auto_start_system: bool = False
    system_start_grace: float = 2.0


@dataclass
class TerminalConfig:
    command: List[str] = field(default_factory=lambda: ["open", "-a", "Terminal", "--args"])
    shell: str = "sh"


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    tool: ToolConfig = field(default_factory=ToolConfig)
    helper: HelperConfig = field(default_factory=HelperConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    terminal: TerminalConfig = field(default_factory=TerminalConfig)
    logging: LogConfig = field(default_factory=LogConfig)


def default_config_file() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "containerdeck" / "config.yaml"


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else default_config_file()
        self.config_dir = self.config_file.parent
        self._config: AppConfig = AppConfig()

        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create config directory {self.config_dir}: {e}")

        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise ValueError("top level is not a mapping")

                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self._config = AppConfig()
                self.save_config()
                logger.info(f"Created default configuration at {self.config_file}")
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        try:
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(asdict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        for section in fields(AppConfig):
            updates = user.get(section.name)
            if isinstance(updates, dict):
                self._merge_dataclass(getattr(default, section.name), updates)
            elif updates is not None:
                logger.warning(f"Ignoring config section '{section.name}': not a mapping")
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        for key, value in updates.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
            else:
                logger.warning(f"Unknown config key '{key}' ignored")

    def get_log_level(self) -> str:
        """Get configured log level."""
        return str(self._config.logging.level).upper()

    def get_custom_log_path(self) -> Optional[str]:
        """Get custom log file path if configured."""
        return self._config.logging.file_path

    def get_socket_path(self) -> str:
        return self._config.helper.socket_path or os.path.join(get_runtime_dir(), "helper.sock")

    def get_authkey(self) -> bytes:
        """
        Shared secret for the helper handshake.

        A configured key wins. Otherwise the key is read from `authkey`
        next to the socket, and generated (mode 0600) when missing.
        """
        if self._config.helper.authkey:
            return self._config.helper.authkey.encode("utf-8")

        key_file = Path(self.get_socket_path()).parent / "authkey"
        try:
            return key_file.read_bytes().strip()
        except FileNotFoundError:
            pass
        key_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        key = secrets.token_hex(32).encode("ascii")
        try:
            fd = os.open(str(key_file), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            # Another process generated it first
            return key_file.read_bytes().strip()
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        logger.info(f"Generated helper authkey at {key_file}")
        return key

    def should_auto_start_system(self) -> bool:
        return bool(self._config.refresh.auto_start_system)


# Global config instance
config_manager = ConfigManager()
