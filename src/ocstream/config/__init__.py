"""
Client configuration utilities.

Usage:
    from ocstream.config import load_client_config

    config = load_client_config("default")
"""

from ocstream.config.loader import ClientConfig, get_config_path, load_client_config

__all__ = ["ClientConfig", "load_client_config", "get_config_path"]
