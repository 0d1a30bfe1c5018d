"""
Configuration management for IMAP Mail Reader.

Handles loading of reader settings from JSON files with support for
local overrides, and loading of IMAP credentials from the environment.
"""

import copy
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv


class InvalidConfiguration(ValueError):
    """Raised when a setting or credential is missing or invalid."""


def validate_positive(name: str, value: Any) -> int:
    """Validate that a setting is a positive integer.

    Args:
        name: Setting name used in the error message
        value: Value to validate

    Returns:
        The value as an int

    Raises:
        InvalidConfiguration: If the value is not a positive integer
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfiguration(f"{name} must be a positive integer, got {value!r}")
    if value < 1:
        raise InvalidConfiguration(f"{name} must be a positive integer, got {value}")
    return value


@dataclass(frozen=True)
class Credentials:
    """IMAP server address and login."""

    server: str
    port: int
    username: str
    password: str

    ENV_VARS = ("IMAP_SERVER", "IMAP_PORT", "IMAP_EMAIL", "IMAP_PASSWORD")

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env") -> "Credentials":
        """Load credentials from the environment.

        Values from ``env_file`` are loaded first; variables already set in
        the process environment take precedence.

        Args:
            env_file: Path to a dotenv file, or None to skip it

        Returns:
            Credentials: Loaded credentials

        Raises:
            InvalidConfiguration: If a variable is missing or the port is invalid
        """
        if env_file:
            load_dotenv(env_file)

        missing = [var for var in cls.ENV_VARS if not os.getenv(var)]
        if missing:
            raise InvalidConfiguration(f"Missing required environment variables: {', '.join(missing)}")

        raw_port = os.getenv("IMAP_PORT").strip()
        try:
            port = int(raw_port)
        except ValueError:
            raise InvalidConfiguration(f"Invalid port: {raw_port!r}") from None
        if not 0 < port < 65536:
            raise InvalidConfiguration(f"Invalid port: {port}")

        return cls(
            server=os.getenv("IMAP_SERVER"),
            port=port,
            username=os.getenv("IMAP_EMAIL"),
            password=os.getenv("IMAP_PASSWORD"),
        )

    def masked(self) -> str:
        """Return a display string with the password hidden."""
        return f"[{self.server}:{self.port}] {self.username}:*****"

    def __repr__(self) -> str:
        return f"Credentials(server={self.server!r}, port={self.port}, username={self.username!r})"


class ConfigManager:
    """Handles configuration loading and validation."""

    DEFAULT_CONFIG = {
        "mail_settings": {
            "mailbox": "INBOX",
            "search_criteria": "UNSEEN"
        },
        "reader_settings": {
            "chunk_size": 10,
            "pool_size": 5,
            "verbose": True,
            "timeout": 30,
            "retry_count": 3
        }
    }

    def __init__(self, config_file: str = "config.json", local_config_file: str = "config.local.json"):
        """Initialize configuration manager.

        Args:
            config_file: Main configuration file path
            local_config_file: Local overrides configuration file path
        """
        self.config_file = config_file
        self.local_config_file = local_config_file
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from files with fallback to defaults."""
        config = copy.deepcopy(self.DEFAULT_CONFIG)

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                user_config = json.load(f)
            self._merge_config(config, user_config)
        except FileNotFoundError:
            print(f"[!] {self.config_file} not found, using default configuration")
        except json.JSONDecodeError as e:
            print(f"[!] Error parsing {self.config_file}: {e}, using default configuration")

        # Load local overrides
        try:
            with open(self.local_config_file, "r", encoding="utf-8") as f:
                local_config = json.load(f)
            self._merge_config(config, local_config)
            print(f"[i] Loaded local configuration overrides from {self.local_config_file}")
        except FileNotFoundError:
            pass
        except json.JSONDecodeError as e:
            print(f"[!] Error parsing {self.local_config_file}: {e}, ignoring local config")

        return config

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        """Recursively merge configuration dictionaries.

        Args:
            base: Base configuration dictionary to merge into
            override: Override configuration dictionary to merge from
        """
        for section, values in override.items():
            if section not in base:
                base[section] = values
            elif isinstance(values, dict) and isinstance(base[section], dict):
                self._merge_config(base[section], values)
            else:
                base[section] = values

    def apply_overrides(self, chunk_size: Optional[int] = None, pool_size: Optional[int] = None,
                        verbose: Optional[bool] = None) -> None:
        """Apply command line overrides on top of the loaded files.

        Args:
            chunk_size: Number of UIDs per processing chunk
            pool_size: Number of pooled IMAP connections
            verbose: Whether to print verbose output
        """
        settings = self.config["reader_settings"]
        if chunk_size is not None:
            settings["chunk_size"] = chunk_size
        if pool_size is not None:
            settings["pool_size"] = pool_size
        if verbose is not None:
            settings["verbose"] = verbose

    def get_mail_settings(self) -> Dict[str, Any]:
        """Get mailbox settings."""
        return self.config["mail_settings"]

    def get_reader_settings(self) -> Dict[str, Any]:
        """Get validated reader settings.

        Raises:
            InvalidConfiguration: If a size, timeout or retry count is not a positive integer
        """
        settings = self.config["reader_settings"]
        for key in ("chunk_size", "pool_size", "timeout", "retry_count"):
            validate_positive(key, settings[key])
        return settings
