"""Durable storage for import checkpoints."""

import asyncio
import os
import re
from pathlib import Path
from typing import Dict, Optional, Protocol

_SAFE_KEY = re.compile(r"[^A-Za-z0-9._-]+")


class CheckpointStore(Protocol):
    """Key/value storage holding one checkpoint record per import target."""

    async def write(self, key: str, content: str) -> None:
        ...

    async def read(self, key: str) -> Optional[str]:
        ...

    async def remove(self, key: str) -> None:
        ...

    async def exists(self, key: str) -> bool:
        ...


class FileCheckpointStore:
    """
    Stores each record as ``<directory>/<key>.json``.

    Writes go to a temporary file that replaces the record atomically, so an
    interrupted write never leaves a truncated checkpoint behind.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_SAFE_KEY.sub('_', key)}.json"

    async def write(self, key: str, content: str) -> None:
        await asyncio.to_thread(self._write_sync, self.path_for(key), content)

    async def read(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_text, encoding="utf-8")

    async def remove(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)

    async def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def _write_sync(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)


class MemoryCheckpointStore:
    """In-process store, for embedding without a filesystem."""

    def __init__(self):
        self.records: Dict[str, str] = {}

    async def write(self, key: str, content: str) -> None:
        self.records[key] = content

    async def read(self, key: str) -> Optional[str]:
        return self.records.get(key)

    async def remove(self, key: str) -> None:
        self.records.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self.records
