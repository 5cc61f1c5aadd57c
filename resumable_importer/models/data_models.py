"""Core data models for the resumable importer."""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RequestPriority(Enum):
    """Request priority levels, drained high → normal → low."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    RequestPriority.HIGH: 0,
    RequestPriority.NORMAL: 1,
    RequestPriority.LOW: 2,
}


class ImportPhase(Enum):
    """Phases of an import session."""
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    UNSAVING = "unsaving"
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


@dataclass
class ApiRequest:
    """Opaque description of one outbound call."""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Optional[Any] = None


@dataclass
class ApiResponse:
    """Response returned by a transport."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        return _lookup_header(self.headers, name, default)

    def int_header(self, name: str, default: int) -> int:
        return _parse_int(self.header(name), default)

    @property
    def rate_limit_remaining(self) -> int:
        return self.int_header("x-ratelimit-remaining", 60)

    @property
    def rate_limit_reset(self) -> int:
        return self.int_header("x-ratelimit-reset", 60)

    @property
    def content_length(self) -> int:
        return self.int_header("content-length", 0)

    def json(self) -> Any:
        if isinstance(self.body, (str, bytes)):
            return json.loads(self.body)
        return self.body


def _lookup_header(headers: Dict[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return default


def _parse_int(value: Optional[str], default: int) -> int:
    # Reddit-style quotas report floats such as "598.0"
    if value is None:
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


@dataclass(eq=False)
class QueuedRequest:
    """A request owned by the RequestQueue until it is settled."""
    id: str
    request: ApiRequest
    priority: RequestPriority
    future: "asyncio.Future[ApiResponse]"
    max_retries: int
    timeout: float
    enqueued_at: float
    retry_count: int = 0

    @property
    def settled(self) -> bool:
        return self.future.done()


@dataclass
class QueueStatus:
    """Read-only snapshot of the request queue."""
    queue_length: int
    active_requests: int
    circuit_state: CircuitState
    available_tokens: float
    is_paused: bool
    is_online: bool
    offline_queue_size: int


@dataclass
class ItemError:
    """Error recorded against a single item."""
    item_id: str
    error: str
    timestamp: float
    retryable: bool


@dataclass
class ImportCheckpoint:
    """
    Durable snapshot of an import session.

    ``pending_items`` maps item id to the fetched payload and keeps insertion
    order. Only the ids are persisted, so items restored from disk carry a
    ``None`` payload until they are fetched again.
    ``processed_item_ids`` holds every id already counted in
    ``processed_count`` so a re-fetched page never queues it again.
    """
    session_id: str
    started_at: float
    last_updated_at: float
    phase: ImportPhase = ImportPhase.IDLE
    after_cursor: str = ""
    fetched_count: int = 0
    processed_count: int = 0
    imported_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    pending_items: Dict[str, Any] = field(default_factory=dict)
    processed_item_ids: Set[str] = field(default_factory=set)
    failed_item_ids: List[str] = field(default_factory=list)
    errors: List[ItemError] = field(default_factory=list)
    completed: bool = False
    cancelled: bool = False

    @property
    def pending_item_ids(self) -> List[str]:
        return list(self.pending_items)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "session_id": self.session_id,
            "started_at": self.started_at,
            "last_updated_at": self.last_updated_at,
            "phase": self.phase.value,
            "after_cursor": self.after_cursor,
            "fetched_count": self.fetched_count,
            "processed_count": self.processed_count,
            "imported_count": self.imported_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "pending_item_ids": self.pending_item_ids,
            "processed_item_ids": sorted(self.processed_item_ids),
            "failed_item_ids": list(self.failed_item_ids),
            "errors": [
                {
                    "item_id": e.item_id,
                    "error": e.error,
                    "timestamp": e.timestamp,
                    "retryable": e.retryable,
                }
                for e in self.errors
            ],
            "completed": self.completed,
            "cancelled": self.cancelled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportCheckpoint":
        """Restore a checkpoint written by ``to_dict``."""
        return cls(
            session_id=data["session_id"],
            started_at=data["started_at"],
            last_updated_at=data.get("last_updated_at", data["started_at"]),
            phase=ImportPhase(data.get("phase", ImportPhase.IDLE.value)),
            after_cursor=data.get("after_cursor", ""),
            fetched_count=data.get("fetched_count", 0),
            processed_count=data.get("processed_count", 0),
            imported_count=data.get("imported_count", 0),
            skipped_count=data.get("skipped_count", 0),
            failed_count=data.get("failed_count", 0),
            pending_items=dict.fromkeys(data.get("pending_item_ids", [])),
            processed_item_ids=set(data.get("processed_item_ids", [])),
            failed_item_ids=list(data.get("failed_item_ids", [])),
            errors=[ItemError(**e) for e in data.get("errors", [])],
            completed=data.get("completed", False),
            cancelled=data.get("cancelled", False),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, content: str) -> "ImportCheckpoint":
        return cls.from_dict(json.loads(content))


@dataclass
class ImportProgress:
    """Derived progress view, recomputed on demand."""
    phase: ImportPhase
    fetched_count: int
    processed_count: int
    imported_count: int
    skipped_count: int
    failed_count: int
    elapsed_seconds: float
    items_per_second: float
    estimated_remaining_seconds: Optional[float] = None
    total_expected: Optional[int] = None


@dataclass
class FetchResult:
    """Result of one orchestrated fetch run."""
    items: List[Dict[str, Any]]
    cursor: str
    has_more: bool
    was_cancelled: bool
    pages_fetched: int = 0
    unsaved_count: int = 0
