"""JSON output formatter for import run summaries.

Serializes an ImportRunResult into the summary file written at the end of
every run: session progress, fetch outcome, request queue status, request
performance and the most recent per-item errors.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from resumable_importer.models.data_models import FetchResult, ImportProgress
from resumable_importer.pipeline.orchestrator import ImportRunResult


class JSONOutputFormatter:
    """
    Formats import results as JSON.

    Example output structure:
    {
        "progress": {"phase": "completed", "fetched": 250, "imported": 240, ...},
        "fetch": {"pages": 3, "cursor": "", "has_more": false, "was_cancelled": false, "unsaved": 0},
        "queue": {"circuit_state": "closed", "available_tokens": 57.0, ...},
        "performance": {"duration_seconds": 4.2, "request_success_rate": 1.0, ...},
        "errors": [...],
        "bottlenecks": [...],
        "error": null
    }
    """

    def format(self, result: ImportRunResult) -> Dict[str, Any]:
        """
        Format run result as JSON-serializable dictionary.

        Args:
            result: Import run result

        Returns:
            Dictionary with progress, fetch, queue, performance and errors sections
        """
        return {
            "progress": self._format_progress(result.progress),
            "fetch": self._format_fetch(result.fetch),
            "queue": self._format_queue(result),
            "performance": self._format_performance(result),
            "errors": [
                {
                    "item_id": e.item_id,
                    "error": e.error,
                    "timestamp": e.timestamp,
                    "retryable": e.retryable,
                }
                for e in result.recent_errors
            ],
            "bottlenecks": [
                {
                    "type": b.type,
                    "severity": b.severity,
                    "description": b.description,
                    "recommendation": b.recommendation,
                }
                for b in result.bottlenecks
            ],
            "error": result.error,
        }

    def _format_progress(self, progress: Optional[ImportProgress]) -> Optional[Dict[str, Any]]:
        if progress is None:
            return None
        return {
            "phase": progress.phase.value,
            "fetched": progress.fetched_count,
            "processed": progress.processed_count,
            "imported": progress.imported_count,
            "skipped": progress.skipped_count,
            "failed": progress.failed_count,
            "elapsed_seconds": round(progress.elapsed_seconds, 2),
            "items_per_second": round(progress.items_per_second, 2),
        }

    def _format_fetch(self, fetch: Optional[FetchResult]) -> Optional[Dict[str, Any]]:
        if fetch is None:
            return None
        return {
            "pages": fetch.pages_fetched,
            "items": len(fetch.items),
            "cursor": fetch.cursor,
            "has_more": fetch.has_more,
            "was_cancelled": fetch.was_cancelled,
            "unsaved": fetch.unsaved_count,
        }

    def _format_queue(self, result: ImportRunResult) -> Dict[str, Any]:
        status = result.queue_status
        return {
            "circuit_state": status.circuit_state.value,
            "available_tokens": round(status.available_tokens, 2),
            "offline_queue_size": status.offline_queue_size,
            "is_online": status.is_online,
        }

    def _format_performance(self, result: ImportRunResult) -> Dict[str, Any]:
        perf = result.performance
        return {
            "duration_seconds": round(perf.duration_seconds, 2),
            "items_per_second": round(perf.items_per_second, 2),
            "avg_request_latency_ms": round(perf.avg_request_latency * 1000, 1),
            "request_success_rate": round(perf.request_success_rate, 4),
            "rate_limit_percentage": round(perf.rate_limit_percentage, 4),
        }

    def save(self, result: ImportRunResult, path: str = "imported/summary.json") -> None:
        """
        Save formatted result to JSON file.

        Creates parent directories if they don't exist.

        Args:
            result: Import run result to save
            path: Output file path
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        formatted_data = self.format(result)

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(formatted_data, f, indent=2, ensure_ascii=False)
