"""Resumable import state and checkpoint persistence."""

from .checkpoint_store import CheckpointStore, FileCheckpointStore, MemoryCheckpointStore
from .import_state import ImportStateManager, listing_item_id

__all__ = [
    "CheckpointStore",
    "FileCheckpointStore",
    "ImportStateManager",
    "MemoryCheckpointStore",
    "listing_item_id",
]
