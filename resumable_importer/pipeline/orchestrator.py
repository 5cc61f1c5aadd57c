"""Fetch orchestration: paginate, store items, keep the checkpoint current."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from resumable_importer.fetcher.errors import RequestQueueError
from resumable_importer.fetcher.http_client import AsyncHTTPClient
from resumable_importer.fetcher.request_queue import RequestQueue
from resumable_importer.models.config import ImporterConfig
from resumable_importer.models.data_models import (
    ApiRequest,
    FetchResult,
    ImportPhase,
    ImportProgress,
    ItemError,
    QueueStatus,
    RequestPriority,
)
from resumable_importer.monitoring.logger import StructuredLogger
from resumable_importer.monitoring.performance import (
    Bottleneck,
    PerformanceMonitor,
    PerformanceSummary,
)
from resumable_importer.pipeline.sink import ItemSink, JsonFileSink
from resumable_importer.state.checkpoint_store import FileCheckpointStore
from resumable_importer.state.import_state import ImportStateManager

PageParser = Callable[[Any], Tuple[List[Any], str]]


def parse_listing_page(body: Any) -> Tuple[List[Any], str]:
    """
    Split a listing response into its items and the next cursor.

    Expects ``{"data": {"children": [...], "after": "t3_x" | null}}``.
    """
    data = (body or {}).get("data") or {}
    return list(data.get("children") or []), data.get("after") or ""


def listing_fullname(item: Any) -> Optional[str]:
    """Type-prefixed name (``t3_abc``) of a listing child, if it has one."""
    data = item.get("data") if isinstance(item, dict) else None
    if not isinstance(data, dict):
        return None
    if data.get("name"):
        return str(data["name"])
    if item.get("kind") and data.get("id"):
        return f"{item['kind']}_{data['id']}"
    return None


class FetchOrchestrator:
    """
    Drives cursor pagination through the request queue.

    Each page is fetched at high priority, its items are handed to the state
    manager and stored through the sink, and only then is the cursor
    advanced, so a crash mid-page resumes by re-fetching that page.
    """

    def __init__(
        self,
        request_queue: RequestQueue,
        state_manager: ImportStateManager,
        listing_url: str,
        sink: Optional[ItemSink] = None,
        page_size: int = 100,
        fetch_limit: int = 1000,
        max_items: int = 1000,
        max_pages: int = 50,
        headers: Optional[Dict[str, str]] = None,
        page_parser: PageParser = parse_listing_page,
        unsave_after_import: bool = False,
        unsave_url: str = "/api/unsave",
        performance_monitor: Optional[PerformanceMonitor] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            request_queue: Queue every page request goes through
            state_manager: Owner of the session checkpoint
            listing_url: Paginated listing endpoint
            sink: Local storage for items; None leaves items pending
            page_size: Items requested per page
            fetch_limit: Items to fetch in this run
            max_items: Hard cap the upstream listing serves
            max_pages: Safety limit on pages per run
            headers: Extra request headers (authorization)
            page_parser: Splits a response body into items and next cursor
            unsave_after_import: Unsave each imported item once the listing is done
            unsave_url: Endpoint taking a form body ``id=<fullname>``
            performance_monitor: Optional metrics sink
            logger: Optional structured logger
        """
        self.request_queue = request_queue
        self.state = state_manager
        self.listing_url = listing_url
        self.sink = sink
        self.page_size = page_size
        self.fetch_limit = fetch_limit
        self.max_items = max_items
        self.max_pages = max_pages
        self.headers = headers or {}
        self.page_parser = page_parser
        self.unsave_after_import = unsave_after_import
        self.unsave_url = unsave_url
        self.imported_items: List[Any] = []
        self.performance_monitor = performance_monitor
        self.logger = logger

    async def run(self, resume: bool = True) -> FetchResult:
        """
        Run one import: resume the saved session if allowed, else start fresh.

        A resumed session first stores the pending items whose payloads are
        still in memory, then continues from the saved cursor. The session is
        completed when pagination ends (after unsaving the imported items,
        when enabled), and left paused (and saved) when it is stopped early
        or a page request fails terminally.
        """
        checkpoint = await self.state.resume_session() if resume else None
        if checkpoint is None:
            self.state.start_session()
        else:
            # Resumed sessions come back paused and must be continued explicitly
            self.state.set_phase(ImportPhase.FETCHING)

        self.imported_items = []
        if self.performance_monitor:
            self.performance_monitor.start_session()
        try:
            held = self.state.get_pending_items() if checkpoint is not None else []
            if held:
                await self.process_items(held)
            result = await self.fetch_all(self.state.get_cursor())
        except (asyncio.CancelledError, RequestQueueError):
            await self.state.pause()
            raise
        except Exception as e:
            await self.state.mark_failed(str(e))
            raise
        finally:
            if self.performance_monitor:
                self.performance_monitor.end_session()

        if result.was_cancelled:
            await self.state.pause()
            return result

        if self.unsave_after_import and self.imported_items:
            result.unsaved_count = await self.unsave_items(self.imported_items)
        leftover = self.state.get_pending_item_ids()
        if leftover and self.logger:
            self.logger.log("pending_items_unrecoverable", count=len(leftover))
        await self.state.mark_completed()
        return result

    async def fetch_all(self, start_cursor: str = "") -> FetchResult:
        """
        Fetch pages from ``start_cursor`` until the listing or a limit ends.

        Raises:
            RequestQueueError: A page request failed terminally; the session
                is paused and saved first
        """
        limit = min(self.fetch_limit, self.max_items)
        pages_for_limit = math.ceil(limit / self.page_size) if limit > 0 else 0
        items: List[Any] = []
        after = start_cursor
        has_more = True
        page_count = 0
        was_cancelled = False

        self._enter_phase(ImportPhase.FETCHING)
        if start_cursor:
            self.state.set_cursor(start_cursor)

        while has_more and len(items) < limit and page_count < pages_for_limit:
            if not self.state.should_continue():
                was_cancelled = True
                break

            page_count += 1
            page_size = min(self.page_size, limit - len(items))
            try:
                response = await self.request_queue.enqueue(
                    self._page_request(after, page_size),
                    priority=RequestPriority.HIGH,
                )
            except RequestQueueError as e:
                if self.logger:
                    self.logger.log("page_failed", page=page_count, cursor=after, error=str(e))
                await self.state.pause()
                raise

            children, next_after = self.page_parser(response.json())
            if not children:
                has_more = False
                break

            items.extend(children)
            self.state.add_fetched_items(children)
            if self.performance_monitor:
                self.performance_monitor.record_items_fetched(len(children))

            await self.process_items(children)

            after = next_after
            has_more = bool(after) and len(items) < self.max_items
            if not self.state.should_continue():
                # Leave the cursor on this page so its unprocessed items are re-fetched
                was_cancelled = True
                break
            self.state.set_cursor(after)

            if page_count >= self.max_pages:
                if self.logger:
                    self.logger.log("page_safety_limit", pages=page_count)
                break

        return FetchResult(
            items=items[:limit],
            cursor=after,
            has_more=has_more,
            was_cancelled=was_cancelled,
            pages_fetched=page_count,
        )

    async def process_items(self, items: List[Any]) -> None:
        """Store each pending item and record its outcome."""
        if self.sink is None:
            return
        self._enter_phase(ImportPhase.PROCESSING)
        for item in items:
            if not self.state.should_continue():
                return
            item_id = self.state.item_id(item)
            if item_id is None or item_id not in self.state.checkpoint.pending_items:
                continue
            try:
                imported = await self.sink.store(item)
            except Exception as e:
                # Item failures are data; the state manager auto-pauses on too many
                self.state.mark_item_failed(item_id, str(e), retryable=True)
                self._record_processed("failed")
                continue
            if imported:
                self.state.mark_item_imported(item_id)
                self.imported_items.append(item)
                self._record_processed("imported")
            else:
                self.state.mark_item_skipped(item_id)
                self._record_processed("skipped")
        self._enter_phase(ImportPhase.FETCHING)

    async def unsave_items(self, items: List[Any]) -> int:
        """
        Remove imported items from the upstream listing.

        Each item is unsaved with its own low-priority request, so the calls
        share the rate limit and breaker with everything else. A failed
        unsave is logged and the remaining items are still attempted.

        Returns:
            Number of items unsaved
        """
        self._enter_phase(ImportPhase.UNSAVING)
        if self.logger:
            self.logger.log("unsave_start", count=len(items))

        unsaved = 0
        for item in items:
            fullname = listing_fullname(item)
            if not fullname:
                if self.logger:
                    self.logger.log("unsave_failed", logging.WARNING, item=None, error="item has no fullname")
                continue
            try:
                await self.request_queue.enqueue(
                    self._unsave_request(fullname),
                    priority=RequestPriority.LOW,
                )
            except RequestQueueError as e:
                if self.logger:
                    self.logger.log("unsave_failed", logging.WARNING, item=fullname, error=str(e))
                continue
            unsaved += 1

        if self.logger:
            self.logger.log("unsave_finished", unsaved=unsaved, failed=len(items) - unsaved)
        return unsaved

    def _unsave_request(self, fullname: str) -> ApiRequest:
        headers = dict(self.headers)
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        return ApiRequest(url=self.unsave_url, method="POST", headers=headers, body=f"id={fullname}")

    def _page_request(self, after: str, page_size: int) -> ApiRequest:
        params: Dict[str, Any] = {"limit": page_size}
        if after:
            params["after"] = after
        return ApiRequest(url=self.listing_url, method="GET", headers=dict(self.headers), params=params)

    def _enter_phase(self, phase: ImportPhase) -> None:
        # Never override a pause or failure
        if self.state.should_continue():
            self.state.set_phase(phase)

    def _record_processed(self, result: str) -> None:
        if self.performance_monitor:
            self.performance_monitor.record_item_processed(result)


@dataclass
class ImportRunResult:
    """Everything a run reports once it stops."""
    fetch: Optional[FetchResult]
    progress: Optional[ImportProgress]
    queue_status: QueueStatus
    performance: PerformanceSummary
    recent_errors: List[ItemError] = field(default_factory=list)
    bottlenecks: List[Bottleneck] = field(default_factory=list)
    error: Optional[str] = None


class ImportPipeline:
    """Builds the engine, state manager and sink from configuration and runs one import."""

    def __init__(self, config: ImporterConfig, transport: Optional[Any] = None):
        """
        Initialize pipeline with importer configuration.

        Args:
            config: Importer configuration object
            transport: Optional httpx transport (tests route to a mock app)
        """
        self.config = config
        self.transport = transport
        self.logger = StructuredLogger(level=config.log_level)
        self.performance_monitor = PerformanceMonitor()
        self.state_manager = ImportStateManager.from_config(
            config,
            FileCheckpointStore(Path(config.checkpoint_directory)),
            logger=self.logger,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"User-Agent": self.config.user_agent}
        if self.config.access_token:
            headers["Authorization"] = f"Bearer {self.config.access_token}"
        return headers

    async def has_resumable_session(self) -> bool:
        return await self.state_manager.has_resumable_session()

    async def run(
        self,
        resume: bool = True,
        on_progress: Optional[Callable[[ImportProgress], None]] = None,
    ) -> ImportRunResult:
        """
        Run one import against the configured listing.

        A terminal page failure is reported in the result rather than
        raised; the checkpoint is left on disk for the next run.
        """
        self.state_manager.on_progress(on_progress)
        self.state_manager.total_expected = min(self.config.fetch_limit, self.config.max_items)
        self.logger.log("import_start", url=self.config.listing_url, resume=resume)

        async with AsyncHTTPClient(
            base_url=self.config.base_url,
            connect_timeout=self.config.connect_timeout,
            default_headers=self._headers(),
            transport=self.transport,
        ) as http_client:
            queue = RequestQueue.from_config(
                self.config,
                http_client,
                performance_monitor=self.performance_monitor,
                logger=self.logger,
            )
            orchestrator = FetchOrchestrator(
                queue,
                self.state_manager,
                self.config.listing_url,
                sink=JsonFileSink(Path(self.config.output_directory)),
                page_size=self.config.page_size,
                fetch_limit=self.config.fetch_limit,
                max_items=self.config.max_items,
                max_pages=self.config.max_pages,
                unsave_after_import=self.config.unsave_after_import,
                unsave_url=self.config.unsave_path,
                performance_monitor=self.performance_monitor,
                logger=self.logger,
            )

            fetch_result = None
            error = None
            try:
                fetch_result = await orchestrator.run(resume=resume)
            except RequestQueueError as e:
                error = str(e)
            finally:
                await queue.close()
                await self.state_manager.cleanup()

            result = ImportRunResult(
                fetch=fetch_result,
                progress=self.state_manager.get_progress(),
                queue_status=queue.get_status(),
                performance=self.performance_monitor.get_summary(),
                recent_errors=self.state_manager.get_recent_errors(),
                bottlenecks=self.performance_monitor.identify_bottlenecks(),
                error=error,
            )

        self.logger.log(
            "import_finished",
            phase=result.progress.phase.value if result.progress else None,
            error=error,
        )
        self.logger.log("performance_report", logging.DEBUG, report=self.performance_monitor.format_for_display())
        return result
