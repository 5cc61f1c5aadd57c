"""Bounded buffer for requests issued while disconnected."""

import time
from dataclasses import dataclass
from typing import List, Tuple

from resumable_importer.models.data_models import ApiRequest, RequestPriority


@dataclass
class _OfflineEntry:
    request: ApiRequest
    priority: RequestPriority
    added_at: float


class OfflineQueue:
    """
    Holds not-yet-issued requests until connectivity returns.

    When full, the oldest low-priority entry is evicted to make room;
    if there is none, the new request is refused.
    """

    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._entries: List[_OfflineEntry] = []

    def add(self, request: ApiRequest, priority: RequestPriority = RequestPriority.NORMAL) -> bool:
        """
        Buffer a request.

        Returns:
            False only when the buffer is full and holds no low-priority entry
        """
        if len(self._entries) >= self.max_size:
            for idx, entry in enumerate(self._entries):
                if entry.priority == RequestPriority.LOW:
                    del self._entries[idx]
                    break
            else:
                return False

        self._entries.append(_OfflineEntry(request, priority, time.time()))
        return True

    def drain(self) -> List[Tuple[ApiRequest, RequestPriority]]:
        """Return every buffered request sorted high → normal → low and empty the buffer."""
        # sorted() is stable, so insertion order survives within a tier
        ordered = sorted(self._entries, key=lambda e: e.priority.rank)
        self._entries = []
        return [(e.request, e.priority) for e in ordered]

    def size(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries = []
