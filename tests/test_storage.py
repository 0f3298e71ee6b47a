"""Tests for the persisted selection stores."""

import pytest
import yaml

from ocstream.storage import LAST_CONNECTED_URL, LAST_SELECTED_MODEL, MemoryStore, YamlFileStore


class TestMemoryStore:
    async def test_get_missing_returns_none(self):
        assert await MemoryStore().get("nothing") is None

    async def test_set_then_get(self):
        store = MemoryStore({LAST_CONNECTED_URL: "http://a:4096"})

        await store.set(LAST_SELECTED_MODEL, {"providerID": "p", "modelID": "m"})

        assert await store.get(LAST_CONNECTED_URL) == "http://a:4096"
        assert await store.get(LAST_SELECTED_MODEL) == {"providerID": "p", "modelID": "m"}


class TestYamlFileStore:
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "state" / "state.yaml"

        await YamlFileStore(path).set(LAST_CONNECTED_URL, "http://a:4096")

        assert path.exists()
        assert await YamlFileStore(path).get(LAST_CONNECTED_URL) == "http://a:4096"

    async def test_writes_plain_yaml(self, tmp_path):
        path = tmp_path / "state.yaml"
        store = YamlFileStore(path)

        await store.set(LAST_SELECTED_MODEL, {"providerID": "p", "modelID": "m"})

        assert yaml.safe_load(path.read_text()) == {
            LAST_SELECTED_MODEL: {"providerID": "p", "modelID": "m"}
        }

    async def test_missing_file_is_empty(self, tmp_path):
        assert await YamlFileStore(tmp_path / "none.yaml").get(LAST_CONNECTED_URL) is None

    async def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "state.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="mapping"):
            await YamlFileStore(path).get(LAST_CONNECTED_URL)
