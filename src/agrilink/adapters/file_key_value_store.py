"""JSON-file backed key-value store."""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from agrilink.services.storage import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class FileKeyValueStore(KeyValueStore):
    """Key-value store persisted as a single JSON object on disk.

    Writes go to a sibling temp file that is then renamed over the target,
    so a crash mid-write leaves the previous contents intact. File IO runs in
    a worker thread to keep the event loop responsive.
    """

    path: Path
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    async def get(self, key: str) -> str | None:
        entries = await asyncio.to_thread(self._read)
        value = entries.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            entries = await asyncio.to_thread(self._read)
            entries[key] = value
            await asyncio.to_thread(self._write, entries)

    async def remove(self, key: str) -> None:
        async with self._lock:
            entries = await asyncio.to_thread(self._read)
            if key not in entries:
                return
            del entries[key]
            await asyncio.to_thread(self._write, entries)

    def _read(self) -> dict[str, object]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable storage file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, entries: dict[str, object]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(entries, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)
