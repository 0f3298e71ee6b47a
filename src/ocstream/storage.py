"""
Key-value stores for persisted client selections.

Keys used by the orchestrator: lastConnectedUrl, lastSelectedProject,
lastSelectedSession, lastSelectedModel. Values must be YAML/JSON friendly.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

LAST_CONNECTED_URL = "lastConnectedUrl"
LAST_SELECTED_PROJECT = "lastSelectedProject"
LAST_SELECTED_SESSION = "lastSelectedSession"
LAST_SELECTED_MODEL = "lastSelectedModel"


class MemoryStore:
    """In-process store. Nothing survives a restart."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self.data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any:
        return self.data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = value


class YamlFileStore:
    """
    Store backed by a single YAML file.

    The file is read on first access and rewritten on every set().

    Example:
        store = YamlFileStore(Path.home() / ".ocstream" / "state.yaml")
        await store.set("lastConnectedUrl", "http://localhost:4096")
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._data: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            if self.path.exists():
                with open(self.path, "r") as f:
                    loaded = yaml.safe_load(f) or {}
                if not isinstance(loaded, dict):
                    raise ValueError(f"State file {self.path} must contain a mapping")
                self._data = loaded
            else:
                self._data = {}
        return self._data

    def _dump(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump(self._data, f, default_flow_style=False, sort_keys=True)

    async def get(self, key: str) -> Any:
        async with self._lock:
            return self._load().get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._load()[key] = value
            self._dump()
            logger.debug(f"Persisted {key} to {self.path}")
