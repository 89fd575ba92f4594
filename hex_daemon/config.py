"""
Configuration management for hex-daemon
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from hex_daemon.protocol import DEFAULT_PRELOAD, default_socket_path

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = "hex-daemon"
CONFIG_FILE_NAME = "config.yml"


@dataclass
class DaemonConfig:
    """Daemon and client configuration"""
    socket_path: Optional[str] = None
    language: str = "en"
    preload: List[str] = field(default_factory=lambda: list(DEFAULT_PRELOAD))
    timeout: float = 120.0
    status_timeout: float = 2.0


@dataclass
class EngineConfig:
    """faster-whisper engine configuration"""
    device: str = "auto"
    compute_type: str = "default"
    download_root: Optional[str] = None
    beam_size: int = 5


@dataclass
class Config:
    """Main configuration container"""
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    config_path: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML file

        Args:
            config_path: Path to config file. If None, looks for
                        $XDG_CONFIG_HOME/hex-daemon/config.yml and falls back
                        to built-in defaults when it does not exist.

        Returns:
            Config object

        Raises:
            SystemExit: If an explicit config file is missing or invalid
        """
        if config_path is not None:
            if not config_path.exists():
                logger.error(f"Config file not found: {config_path}")
                logger.error("Please copy config.example.yml to that path and customize it.")
                sys.exit(1)
            resolved_path = config_path
        else:
            resolved_path = default_config_path()
            if not resolved_path.exists():
                logger.debug(f"No config file at {resolved_path}, using defaults")
                return cls()

        config_data = _load_yaml(resolved_path)
        logger.info(f"Loaded config from {resolved_path}")

        try:
            return cls(
                daemon=DaemonConfig(**(config_data.get("daemon") or {})),
                engine=EngineConfig(**(config_data.get("engine") or {})),
                config_path=resolved_path.parent,
            )
        except TypeError as e:
            logger.error(f"Invalid config file {resolved_path}: {e}")
            sys.exit(1)

    def get_socket_path(self) -> Path:
        """Get the absolute path to the socket file"""
        if not self.daemon.socket_path:
            return default_socket_path()
        socket_path = Path(self.daemon.socket_path).expanduser()
        if socket_path.is_absolute() or self.config_path is None:
            return socket_path.absolute()
        return self.config_path / socket_path


def default_config_path() -> Path:
    """$XDG_CONFIG_HOME/hex-daemon/config.yml (~/.config when unset)"""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return as dict"""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading config file {path}: {e}")
        sys.exit(1)

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.error(f"Error loading config file {path}: top level must be a mapping")
        sys.exit(1)
    return data
