"""
Client configuration management utilities.

This module loads named client profiles from a YAML configuration file at
the project root. A profile names the OpenCode server to connect to and
optionally overrides connection and paging settings.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from ocstream.platform.event import ConnectionConfig
from ocstream.runtime.types import SyncConfig

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    """One resolved client profile."""

    server_url: str
    project_path: Optional[str] = None
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def get_config_path() -> Path:
    """
    Get the path to the client configuration file.

    Looks for ocstream_config.yaml in the current working directory (project root).
    """
    return Path(os.getcwd()) / "ocstream_config.yaml"


def _build_section(cls: type, values: Any, section: str, profile: str) -> Any:
    if values is None:
        return cls()
    if not isinstance(values, dict):
        raise ValueError(f"Section '{section}' of profile '{profile}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(
            f"Unknown {section} settings for profile '{profile}': {', '.join(unknown)}"
        )
    return cls(**values)


def load_client_config(profile: str = "default") -> ClientConfig:
    """
    Load a client profile from YAML file at project root.

    Args:
        profile: The key identifying the profile in the config file

    Returns:
        ClientConfig for the profile

    Raises:
        FileNotFoundError: If ocstream_config.yaml doesn't exist
        ValueError: If the profile is missing, has no server_url or has
            unknown settings
    """
    config_path = get_config_path()
    logger.debug(f"Loading config from: {config_path}")

    if not config_path.exists():
        raise FileNotFoundError(
            f"ocstream_config.yaml not found at {config_path}. "
            "Copy ocstream_config.yaml.example to ocstream_config.yaml and configure your servers."
        )

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}

        profile_config = config.get(profile, {})

        if not profile_config:
            raise ValueError(
                f"Profile '{profile}' not found in {config_path}. "
                f"Please add the profile configuration."
            )

        server_url = profile_config.get("server_url")
        if not server_url:
            raise ValueError(
                f"Missing required field for profile '{profile}': server_url"
            )

        return ClientConfig(
            server_url=server_url,
            project_path=profile_config.get("project_path"),
            connection=_build_section(
                ConnectionConfig, profile_config.get("connection"), "connection", profile
            ),
            sync=_build_section(SyncConfig, profile_config.get("sync"), "sync", profile),
        )
    except ValueError:
        raise
    except Exception as e:
        raise RuntimeError(f"Error loading client config: {e}")
