"""Import session state with periodic checkpointing for resumable imports."""

import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from resumable_importer.models.data_models import (
    ImportCheckpoint,
    ImportPhase,
    ImportProgress,
    ItemError,
)
from resumable_importer.state.checkpoint_store import CheckpointStore

ProgressCallback = Callable[[ImportProgress], None]


def listing_item_id(item: Any) -> str:
    """
    Extract an item's identifier.

    Accepts listing children (``{"kind": ..., "data": {"id": ...}}``),
    flat records with an ``id`` key, or bare identifier strings.

    Raises:
        ValueError: The item carries no identifier
    """
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        record = item["data"] if isinstance(item.get("data"), dict) else item
        if record.get("id") not in (None, ""):
            return str(record["id"])
    raise ValueError(f"item has no id: {item!r:.80}")


class ImportStateManager:
    """
    Owns one import checkpoint from start (or resume) to completion.

    Responsibilities:
    - Track the pagination cursor and fetched/processed counters
    - Keep the set of fetched-but-unprocessed items for resumption
    - Record per-item failures and auto-pause after too many
    - Persist the checkpoint every ``auto_save_interval`` seconds and
      remove it once the import completes

    Storage failures are logged, never raised: losing one checkpoint write
    must not abort an import.
    """

    def __init__(
        self,
        store: CheckpointStore,
        checkpoint_key: str = "import-checkpoint",
        auto_save_interval: float = 5.0,
        max_errors_before_pause: int = 10,
        enable_checkpointing: bool = True,
        error_log_limit: int = 100,
        id_getter: Callable[[Any], str] = listing_item_id,
        logger: Optional["StructuredLogger"] = None,
        now: Callable[[], float] = time.time,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize state manager.

        Args:
            store: Durable checkpoint storage
            checkpoint_key: Record name of this import target
            auto_save_interval: Seconds between automatic checkpoint writes
            max_errors_before_pause: Failed items that force the phase to paused
            enable_checkpointing: Disable to keep state in memory only
            error_log_limit: Most recent per-item errors kept
            id_getter: Extracts the identifier of a fetched item
            logger: Optional structured logger
            now: Wall clock (checkpoint timestamps survive restarts)
            sleeper: Async sleep used by the auto-save loop
        """
        self.store = store
        self.checkpoint_key = checkpoint_key
        self.auto_save_interval = auto_save_interval
        self.max_errors_before_pause = max_errors_before_pause
        self.enable_checkpointing = enable_checkpointing
        self.error_log_limit = error_log_limit
        self.id_getter = id_getter
        self.logger = logger
        self._now = now
        self._sleep = sleeper

        self.checkpoint: Optional[ImportCheckpoint] = None
        self.total_expected: Optional[int] = None
        self._progress_callback: Optional[ProgressCallback] = None
        self._auto_save_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config: "ImporterConfig",
        store: CheckpointStore,
        logger: Optional["StructuredLogger"] = None,
    ) -> "ImportStateManager":
        return cls(
            store,
            checkpoint_key=config.checkpoint_key,
            auto_save_interval=config.auto_save_interval,
            max_errors_before_pause=config.max_errors_before_pause,
            enable_checkpointing=config.enable_checkpointing,
            error_log_limit=config.error_log_limit,
            logger=logger,
        )

    # Session lifecycle

    def start_session(self) -> ImportCheckpoint:
        """Begin a fresh session in the idle phase."""
        started = self._now()
        self.checkpoint = ImportCheckpoint(
            session_id=f"import-{int(started * 1000)}-{uuid.uuid4().hex[:7]}",
            started_at=started,
            last_updated_at=started,
        )
        self._start_auto_save()
        if self.logger:
            self.logger.checkpoint_event("start", self.checkpoint.session_id)
        return self.checkpoint

    async def resume_session(self) -> Optional[ImportCheckpoint]:
        """
        Restore the last durable checkpoint.

        Returns:
            The checkpoint with its phase forced to paused, or None when there
            is nothing to resume (no record, or it was completed or cancelled)
        """
        saved = await self.load_checkpoint()
        if saved is None or saved.completed or saved.cancelled:
            return None

        # Payloads of the same session still held in memory survive the reload
        held = {}
        if self.checkpoint and self.checkpoint.session_id == saved.session_id:
            held = self.checkpoint.pending_items
        for item_id in saved.pending_items:
            saved.pending_items[item_id] = held.get(item_id)

        saved.phase = ImportPhase.PAUSED
        self.checkpoint = saved
        self._start_auto_save()
        if self.logger:
            self.logger.checkpoint_event(
                "resume", saved.session_id,
                cursor=saved.after_cursor, pending=len(saved.pending_items),
            )
        return self.checkpoint

    async def has_resumable_session(self) -> bool:
        saved = await self.load_checkpoint()
        return saved is not None and not saved.completed and not saved.cancelled

    def set_phase(self, phase: ImportPhase) -> None:
        if not self.checkpoint:
            return
        self.checkpoint.phase = ImportPhase(phase)
        self._touch()
        if self.logger:
            self.logger.phase_change(self.checkpoint.session_id, self.checkpoint.phase.value)
        self._notify_progress()

    def set_cursor(self, cursor: str) -> None:
        if self.checkpoint:
            self.checkpoint.after_cursor = cursor or ""
            self._touch()

    def get_cursor(self) -> str:
        return self.checkpoint.after_cursor if self.checkpoint else ""

    async def mark_completed(self) -> None:
        """Finish the session and delete its durable record."""
        if not self.checkpoint:
            return
        self.checkpoint.completed = True
        self.checkpoint.phase = ImportPhase.COMPLETED
        self._touch()
        self._stop_auto_save()
        self._notify_progress()
        await self.clear_checkpoint()

    async def mark_cancelled(self) -> None:
        """Stop the session, keeping its record on disk."""
        if not self.checkpoint:
            return
        self.checkpoint.cancelled = True
        self.checkpoint.phase = ImportPhase.PAUSED
        self._touch()
        self._stop_auto_save()
        self._notify_progress()
        await self.save_checkpoint()

    async def mark_failed(self, error: str) -> None:
        """Move to the failed phase after an unrecoverable error, keeping the record."""
        if not self.checkpoint:
            return
        self.checkpoint.phase = ImportPhase.FAILED
        self._touch()
        self._stop_auto_save()
        if self.logger:
            self.logger.checkpoint_event("failed", self.checkpoint.session_id, error=error)
        self._notify_progress()
        await self.save_checkpoint()

    async def pause(self) -> None:
        """Pause and save; completed and failed sessions keep their phase."""
        cp = self.checkpoint
        if cp and not cp.completed and cp.phase != ImportPhase.FAILED:
            self.checkpoint.phase = ImportPhase.PAUSED
            self._touch()
            await self.save_checkpoint()
            self._notify_progress()

    def should_continue(self) -> bool:
        """Whether the fetch loop may request another page."""
        cp = self.checkpoint
        if not cp:
            return False
        return (
            not cp.completed
            and not cp.cancelled
            and cp.phase not in (ImportPhase.PAUSED, ImportPhase.FAILED)
        )

    # Per-item bookkeeping

    def item_id(self, item: Any) -> Optional[str]:
        """Identifier of ``item``, or None when it has none."""
        try:
            return self.id_getter(item)
        except (KeyError, TypeError, ValueError):
            return None

    def add_fetched_items(self, items: Iterable[Any]) -> None:
        """
        Queue fetched items for processing.

        Ids already pending are not duplicated and ids already processed (a
        page re-fetched after a resume) are not queued again. Items without
        an id are recorded as non-retryable failures.
        """
        if not self.checkpoint:
            return
        cp = self.checkpoint
        count = 0
        for item in items:
            count += 1
            item_id = self.item_id(item)
            if item_id is None:
                self._record_failure("", f"malformed item: {item!r:.80}", retryable=False)
                continue
            if item_id not in cp.processed_item_ids:
                cp.pending_items[item_id] = item
        # Raw page throughput, independent of dedup
        cp.fetched_count += count
        self._touch()
        self._notify_progress()

    def get_pending_items(self) -> List[Any]:
        """Fetched payloads still awaiting processing (restored ids have none)."""
        if not self.checkpoint:
            return []
        return [item for item in self.checkpoint.pending_items.values() if item is not None]

    def get_pending_item_ids(self) -> List[str]:
        return self.checkpoint.pending_item_ids if self.checkpoint else []

    def mark_item_imported(self, item_id: str) -> None:
        if not self.checkpoint:
            return
        self._mark_processed(item_id)
        self.checkpoint.imported_count += 1
        self._notify_progress()

    def mark_item_skipped(self, item_id: str) -> None:
        if not self.checkpoint:
            return
        self._mark_processed(item_id)
        self.checkpoint.skipped_count += 1
        self._notify_progress()

    def mark_item_failed(self, item_id: str, error: str, retryable: bool = True) -> None:
        if not self.checkpoint:
            return
        self._record_failure(item_id, error, retryable)

    def _record_failure(self, item_id: str, error: str, retryable: bool) -> None:
        cp = self.checkpoint
        self._mark_processed(item_id)
        cp.failed_count += 1

        if retryable and item_id not in cp.failed_item_ids:
            cp.failed_item_ids.append(item_id)

        cp.errors.append(ItemError(
            item_id=item_id,
            error=error,
            timestamp=self._now(),
            retryable=retryable,
        ))
        if len(cp.errors) > self.error_log_limit:
            del cp.errors[:len(cp.errors) - self.error_log_limit]

        if (cp.failed_count >= self.max_errors_before_pause
                and cp.phase not in (ImportPhase.PAUSED, ImportPhase.FAILED)):
            cp.phase = ImportPhase.PAUSED
            if self.logger:
                self.logger.checkpoint_event("auto_pause", cp.session_id, failed=cp.failed_count)

        self._notify_progress()

    def _mark_processed(self, item_id: str) -> None:
        self.checkpoint.pending_items.pop(item_id, None)
        if item_id:
            self.checkpoint.processed_item_ids.add(item_id)
        self.checkpoint.processed_count += 1
        self._touch()

    def get_failed_item_ids(self) -> List[str]:
        return list(self.checkpoint.failed_item_ids) if self.checkpoint else []

    def clear_failed_items(self) -> None:
        if self.checkpoint:
            self.checkpoint.failed_item_ids = []

    def get_recent_errors(self, limit: int = 10) -> List[ItemError]:
        if not self.checkpoint or limit <= 0:
            return []
        return list(self.checkpoint.errors[-limit:])

    # Progress

    def on_progress(self, callback: Optional[ProgressCallback]) -> None:
        self._progress_callback = callback

    def get_progress(self) -> Optional[ImportProgress]:
        cp = self.checkpoint
        if not cp:
            return None

        elapsed = max(0.0, self._now() - cp.started_at)
        processed = cp.imported_count + cp.skipped_count + cp.failed_count
        items_per_second = processed / elapsed if elapsed > 0 else 0.0

        expected = max(self.total_expected or 0, cp.fetched_count)
        remaining_items = max(0, expected - processed)
        estimated_remaining = remaining_items / items_per_second if items_per_second > 0 else None

        return ImportProgress(
            phase=cp.phase,
            fetched_count=cp.fetched_count,
            processed_count=cp.processed_count,
            imported_count=cp.imported_count,
            skipped_count=cp.skipped_count,
            failed_count=cp.failed_count,
            elapsed_seconds=elapsed,
            items_per_second=items_per_second,
            estimated_remaining_seconds=estimated_remaining,
            total_expected=self.total_expected,
        )

    def _notify_progress(self) -> None:
        if self._progress_callback:
            progress = self.get_progress()
            if progress:
                self._progress_callback(progress)

    def _touch(self) -> None:
        self.checkpoint.last_updated_at = self._now()

    # Persistence

    async def save_checkpoint(self) -> None:
        if not self.checkpoint or not self.enable_checkpointing:
            return
        try:
            await self.store.write(self.checkpoint_key, self.checkpoint.to_json())
        except Exception as e:
            if self.logger:
                self.logger.checkpoint_error("save", str(e))
            return
        if self.logger:
            self.logger.checkpoint_event(
                "save", self.checkpoint.session_id,
                processed=self.checkpoint.processed_count,
            )

    async def load_checkpoint(self) -> Optional[ImportCheckpoint]:
        if not self.enable_checkpointing:
            return None
        try:
            content = await self.store.read(self.checkpoint_key)
            if content is None:
                return None
            return ImportCheckpoint.from_json(content)
        except (OSError, ValueError, KeyError, TypeError) as e:
            if self.logger:
                self.logger.checkpoint_error("load", str(e))
            return None

    async def clear_checkpoint(self) -> None:
        try:
            if await self.store.exists(self.checkpoint_key):
                await self.store.remove(self.checkpoint_key)
        except OSError as e:
            if self.logger:
                self.logger.checkpoint_error("clear", str(e))

    def _start_auto_save(self) -> None:
        if not self.enable_checkpointing:
            return
        self._stop_auto_save()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside an event loop only explicit saves are possible
            return
        self._auto_save_task = loop.create_task(self._auto_save_loop())

    def _stop_auto_save(self) -> None:
        if self._auto_save_task is not None:
            self._auto_save_task.cancel()
            self._auto_save_task = None

    async def _auto_save_loop(self) -> None:
        while True:
            await self._sleep(self.auto_save_interval)
            await self.save_checkpoint()

    async def cleanup(self) -> None:
        """Stop auto-saving and release held item payloads."""
        task = self._auto_save_task
        self._stop_auto_save()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        if self.checkpoint:
            self.checkpoint.pending_items = dict.fromkeys(self.checkpoint.pending_items)
