"""Tests for queue storage adapters."""

import json
from pathlib import Path

import pytest

from monitoring_sdk.transport.storage import FileStorage, MemoryStorage, Storage


class TestMemoryStorage:
    """Tests for the in-process adapter."""

    @pytest.mark.asyncio
    async def test_set_get_remove(self) -> None:
        storage = MemoryStorage()
        await storage.set_item("a", "1")
        assert await storage.get_item("a") == "1"
        await storage.remove_item("a")
        assert await storage.get_item("a") is None

    @pytest.mark.asyncio
    async def test_remove_missing_is_noop(self) -> None:
        storage = MemoryStorage()
        await storage.remove_item("nope")
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        storage = MemoryStorage()
        await storage.set_item("a", "1")
        await storage.set_item("b", "2")
        await storage.clear()
        assert len(storage) == 0

    def test_satisfies_protocol(self) -> None:
        assert isinstance(MemoryStorage(), Storage)


class TestFileStorage:
    """Tests for the JSON-file adapter."""

    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path / "nested" / "queue.json")
        await storage.set_item("queue", '[{"id": "1"}]')

        assert await storage.get_item("queue") == '[{"id": "1"}]'
        on_disk = json.loads((tmp_path / "nested" / "queue.json").read_text())
        assert on_disk == {"monitoring_sdk:queue": '[{"id": "1"}]'}

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path: Path) -> None:
        path = tmp_path / "queue.json"
        await FileStorage(path).set_item("k", "v")
        assert await FileStorage(path).get_item("k") == "v"

    @pytest.mark.asyncio
    async def test_missing_file_reads_empty(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path / "absent.json")
        assert await storage.get_item("k") is None

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "queue.json"
        path.write_text("{not json")
        storage = FileStorage(path)

        assert await storage.get_item("k") is None
        await storage.set_item("k", "v")
        assert await storage.get_item("k") == "v"

    @pytest.mark.asyncio
    async def test_remove_item(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path / "queue.json")
        await storage.set_item("k", "v")
        await storage.remove_item("k")
        assert await storage.get_item("k") is None

    @pytest.mark.asyncio
    async def test_clear_only_touches_own_prefix(self, tmp_path: Path) -> None:
        path = tmp_path / "shared.json"
        ours = FileStorage(path, prefix="sdk:")
        theirs = FileStorage(path, prefix="other:")
        await ours.set_item("k", "mine")
        await theirs.set_item("k", "theirs")

        await ours.clear()

        assert await ours.get_item("k") is None
        assert await theirs.get_item("k") == "theirs"

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path / "queue.json")
        for i in range(3):
            await storage.set_item("k", str(i))
        assert [p.name for p in tmp_path.iterdir()] == ["queue.json"]
