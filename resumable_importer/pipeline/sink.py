"""Local storage for imported items."""

import asyncio
import json
import re
from pathlib import Path
from typing import Any, Callable, Protocol

from resumable_importer.state.import_state import listing_item_id

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class ItemSink(Protocol):
    """Destination for fetched items."""

    async def store(self, item: Any) -> bool:
        """
        Persist one item.

        Returns:
            True if the item was imported, False if it already existed

        Raises:
            Exception: If the item could not be stored
        """
        ...


class JsonFileSink:
    """Writes each item to ``<directory>/<id>.json``; existing files are skipped."""

    def __init__(
        self,
        directory: Path,
        id_getter: Callable[[Any], str] = listing_item_id,
    ):
        self.directory = Path(directory)
        self.id_getter = id_getter

    def path_for(self, item_id: str) -> Path:
        return self.directory / f"{_UNSAFE_CHARS.sub('_', item_id)}.json"

    async def store(self, item: Any) -> bool:
        path = self.path_for(self.id_getter(item))
        if path.exists():
            return False
        await asyncio.to_thread(self._write, path, item)
        return True

    def _write(self, path: Path, item: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(item, f, indent=2, ensure_ascii=False)
