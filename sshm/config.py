"""
Persistent connection settings for sshm.
Stored in ~/.sshm/config.json
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Callable, Optional

import paramiko

from .errors import ConfigurationError
from .session.hostkeys import (
    HostKeyPolicy,
    InsecurePolicy,
    KnownHostsPolicy,
    DEFAULT_KNOWN_HOSTS,
    UNKNOWN_REJECT,
)
from .session.probe import DEFAULT_PROBE_TIMEOUT
from .session.transport import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_BANNER_TIMEOUT,
    DEFAULT_KEEPALIVE_INTERVAL,
)
from .session.driver import DEFAULT_TERM_TYPE

logger = logging.getLogger(__name__)

# Default config location
DEFAULT_CONFIG_DIR = Path.home() / ".sshm"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"

# Host store written by the host manager
DEFAULT_HOSTS_FILE = "~/.sshm.json"

POLICY_KNOWN_HOSTS = "known_hosts"
POLICY_INSECURE = "insecure"


@dataclass
class Settings:
    """
    Connection settings that persist across runs.
    """
    # Timeouts (seconds)
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    banner_timeout: float = DEFAULT_BANNER_TIMEOUT
    keepalive_interval: int = DEFAULT_KEEPALIVE_INTERVAL

    # Terminal
    term_type: str = DEFAULT_TERM_TYPE

    # Host key trust
    host_key_policy: str = POLICY_KNOWN_HOSTS
    known_hosts_path: str = DEFAULT_KNOWN_HOSTS
    unknown_hosts: str = UNKNOWN_REJECT

    # Host records
    hosts_file: str = DEFAULT_HOSTS_FILE

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Settings:
        """Deserialize from dict, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)


def build_host_key_policy(
    settings: Settings,
    confirm: Optional[Callable[[str, paramiko.PKey], bool]] = None,
) -> HostKeyPolicy:
    """Turn settings into a policy object."""
    if settings.host_key_policy == POLICY_INSECURE:
        return InsecurePolicy()
    if settings.host_key_policy == POLICY_KNOWN_HOSTS:
        return KnownHostsPolicy(
            settings.known_hosts_path,
            on_unknown=settings.unknown_hosts,
            confirm=confirm,
        )
    raise ConfigurationError(f"unknown host key policy '{settings.host_key_policy}'")


class SettingsManager:
    """
    Manages loading and saving settings.

    Usage:
        manager = SettingsManager()
        settings = manager.settings

        settings.connect_timeout = 5
        manager.save()
    """

    def __init__(self, config_path: Path = None):
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_FILE
        self._settings: Optional[Settings] = None

    @property
    def settings(self) -> Settings:
        """Get current settings, loading from disk if needed."""
        if self._settings is None:
            self._settings = self.load()
        return self._settings

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> Settings:
        """Load settings from disk, or return defaults."""
        if self._config_path.exists():
            try:
                data = json.loads(self._config_path.read_text())
                logger.debug(f"Loaded settings from {self._config_path}")
                return Settings.from_dict(data)
            except (json.JSONDecodeError, TypeError, AttributeError) as e:
                logger.warning(f"Failed to load settings: {e}, using defaults")
                return Settings()
        else:
            logger.debug("No settings file found, using defaults")
            return Settings()

    def save(self) -> None:
        """Save current settings to disk."""
        if self._settings is None:
            return

        self._config_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._config_path.write_text(
                json.dumps(self._settings.to_dict(), indent=2)
            )
            logger.debug(f"Saved settings to {self._config_path}")
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")

    def reset(self) -> Settings:
        """Reset to default settings (does not save automatically)."""
        self._settings = Settings()
        return self._settings
