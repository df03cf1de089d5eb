"""Key-value persistence adapters for the delivery queue.

Any object satisfying :class:`Storage` can back the queue. Two adapters ship
with the SDK: :class:`MemoryStorage` (process-local, the default) and
:class:`FileStorage`, which keeps every key in a single JSON document on disk
so queued telemetry survives restarts.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from monitoring_sdk.logging import get_logger

log = get_logger("monitoring_sdk.transport.storage")


@runtime_checkable
class Storage(Protocol):
    """Asynchronous string key-value store."""

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def clear(self) -> None: ...


class MemoryStorage:
    """Dict-backed storage; contents are lost when the process exits."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class FileStorage:
    """JSON-file storage with atomic rewrites.

    All keys are stored in one document, namespaced by ``prefix``. ``clear()``
    only removes keys under this adapter's prefix. File I/O runs in a worker
    thread so the event loop is never blocked.
    """

    def __init__(self, path: str | Path, prefix: str = "monitoring_sdk:") -> None:
        self.path = Path(path)
        self.prefix = prefix
        self._lock = asyncio.Lock()

    async def get_item(self, key: str) -> str | None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
        return data.get(self.prefix + key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[self.prefix + key] = value
            await asyncio.to_thread(self._write, data)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            if data.pop(self.prefix + key, None) is not None:
                await asyncio.to_thread(self._write, data)

    async def clear(self) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            remaining = {k: v for k, v in data.items() if not k.startswith(self.prefix)}
            if len(remaining) != len(data):
                await asyncio.to_thread(self._write, remaining)

    # ------------------------------------------------------------------
    # File helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            log.warning("storage_file_corrupt", path=str(self.path))
            return {}
        if not isinstance(data, dict):
            log.warning("storage_file_unexpected_format", path=str(self.path))
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file, then replace
        tmp_fd, tmp_path = tempfile.mkstemp(prefix=".storage_", dir=str(self.path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
                fh.write("\n")
            tmp_file.replace(self.path)
        finally:
            tmp_file.unlink(missing_ok=True)
