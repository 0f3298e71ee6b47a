"""
Config loading tests - verify client profile management.

Tests cover the error paths and section overrides for loading client
profiles from YAML configuration files.
"""

import pytest

from ocstream.config import load_client_config


def write_config(tmp_path, monkeypatch, content: str):
    config_file = tmp_path / "ocstream_config.yaml"
    config_file.write_text(content)
    monkeypatch.setattr("ocstream.config.loader.get_config_path", lambda: config_file)
    return config_file


def test_load_valid_config_success(tmp_path, monkeypatch):
    """Should load the server URL and defaults for a minimal profile."""
    write_config(
        tmp_path,
        monkeypatch,
        """
default:
  server_url: http://localhost:4096
  project_path: /work/app
""",
    )

    config = load_client_config()

    assert config.server_url == "http://localhost:4096"
    assert config.project_path == "/work/app"
    assert config.connection.max_retries == 10
    assert config.sync.initial_load_limit == 20


def test_section_overrides(tmp_path, monkeypatch):
    """Should apply connection and sync overrides from the profile."""
    write_config(
        tmp_path,
        monkeypatch,
        """
laptop:
  server_url: http://laptop:4096
  connection:
    heartbeat_interval_seconds: 10
    max_retries: 3
  sync:
    older_display_limit: 5
""",
    )

    config = load_client_config("laptop")

    assert config.connection.heartbeat_interval_seconds == 10
    assert config.connection.max_retries == 3
    assert config.connection.max_missed_heartbeats == 3
    assert config.sync.older_display_limit == 5
    assert config.project_path is None


def test_missing_config_file(tmp_path, monkeypatch):
    """Should raise FileNotFoundError with helpful message when config missing."""
    non_existent = tmp_path / "does_not_exist.yaml"
    monkeypatch.setattr("ocstream.config.loader.get_config_path", lambda: non_existent)

    with pytest.raises(FileNotFoundError) as exc_info:
        load_client_config()

    assert "ocstream_config.yaml not found" in str(exc_info.value)
    assert "ocstream_config.yaml.example" in str(exc_info.value)


def test_profile_not_in_config(tmp_path, monkeypatch):
    """Should raise ValueError when the requested profile doesn't exist."""
    write_config(tmp_path, monkeypatch, "default:\n  server_url: http://localhost:4096\n")

    with pytest.raises(ValueError) as exc_info:
        load_client_config("staging")

    assert "staging" in str(exc_info.value)
    assert "not found" in str(exc_info.value)


def test_missing_server_url(tmp_path, monkeypatch):
    """Should raise ValueError when server_url is missing."""
    write_config(tmp_path, monkeypatch, "default:\n  project_path: /work/app\n")

    with pytest.raises(ValueError, match="server_url"):
        load_client_config()


def test_unknown_setting(tmp_path, monkeypatch):
    """Should reject settings that don't exist."""
    write_config(
        tmp_path,
        monkeypatch,
        """
default:
  server_url: http://localhost:4096
  connection:
    retries: 3
""",
    )

    with pytest.raises(ValueError, match="retries"):
        load_client_config()


def test_empty_file(tmp_path, monkeypatch):
    """Should treat an empty file as having no profiles."""
    write_config(tmp_path, monkeypatch, "")

    with pytest.raises(ValueError, match="not found"):
        load_client_config()


def test_invalid_yaml(tmp_path, monkeypatch):
    """Should wrap YAML parse errors in RuntimeError."""
    write_config(tmp_path, monkeypatch, "default: [unclosed\n")

    with pytest.raises(RuntimeError, match="Error loading client config"):
        load_client_config()
