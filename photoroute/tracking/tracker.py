"""
Routing event tracking for PhotoRoute.

Records one event per routing decision (provider, cost class, cache
hit, attempts, latency, outcome) for credit accounting and operational
diagnostics.  Persists to daily JSONL files and keeps an in-memory copy
for fast metric aggregation.
"""

import csv
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from photoroute.config import get_settings

logger = logging.getLogger(__name__)

Outcome = Literal["routed", "requires_upgrade", "failed"]


class RoutingEvent(BaseModel):
    """A single routing decision with full metadata.

    Attributes:
        request_id: Identifier of the edit request.
        timestamp: UTC time of the decision.
        user_id: Requesting user.
        task: Edit task value.
        tier: Subscription tier value.
        quality: Requested quality value.
        outcome: Decision kind.
        provider_id: Backend that served the request, if any.
        cost_class: Cost class of that backend, if any.
        cache_hit: Whether the result came from the cache.
        attempts: Failed dispatch attempts before the outcome.
        credits_charged: Credits committed for this request (0 or 1).
        error_kind: Terminal error kind for failed requests.
        upgrade_reason: Reason for ``requires_upgrade`` outcomes.
        latency_ms: End-to-end latency in milliseconds.
    """

    request_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = ""
    task: str = ""
    tier: str = ""
    quality: str = ""
    outcome: Outcome
    provider_id: Optional[str] = None
    cost_class: Optional[str] = None
    cache_hit: bool = False
    attempts: int = 0
    credits_charged: int = 0
    error_kind: Optional[str] = None
    upgrade_reason: Optional[str] = None
    latency_ms: int = 0


class EventTracker:
    """Tracks routing events and computes analytics.

    Args:
        log_dir: Directory for JSONL log files.  Created if it does
            not exist.
        persist: Write events to disk; when ``False`` events are kept
            in memory only.
    """

    def __init__(self, log_dir: Optional[Path] = None, persist: bool = True) -> None:
        self._log_dir = log_dir if log_dir is not None else Path(get_settings().tracking.log_dir)
        self._persist = persist
        self._lock = threading.Lock()
        self._events: List[RoutingEvent] = []

        if self._persist:
            try:
                self._log_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.error(
                    "Could not create log directory",
                    extra={"path": str(self._log_dir), "error": str(exc)},
                )

    def log_event(self, event: RoutingEvent) -> None:
        """Append an event to memory and persist to the daily JSONL file.

        Args:
            event: The routing event to record.
        """
        with self._lock:
            self._events.append(event)
            if self._persist:
                self._write(event)

        logger.debug(
            "Event logged",
            extra={
                "request_id": event.request_id,
                "outcome": event.outcome,
                "provider": event.provider_id,
                "cache_hit": event.cache_hit,
            },
        )

    def _write(self, event: RoutingEvent) -> None:
        filepath = self._log_dir / f"routing_{event.timestamp.strftime('%Y-%m-%d')}.jsonl"
        try:
            with open(filepath, "a", encoding="utf-8") as fh:
                fh.write(event.model_dump_json() + "\n")
        except OSError as exc:
            logger.error(
                "Failed to write event to log file",
                extra={"path": str(filepath), "error": str(exc)},
            )

    def get_metrics(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Compute aggregate analytics across tracked events.

        Args:
            user_id: If set, only include events for this user.

        Returns:
            Dict containing the analytics summary.
        """
        events = self._select(user_id)
        if not events:
            return {
                "requests": 0,
                "avg_latency_ms": 0.0,
                "cache_hit_rate": 0.0,
                "outcomes": {},
                "requests_by_provider": {},
                "credits_by_provider": {},
                "failures_by_kind": {},
                "credits_charged": 0,
            }

        requests = len(events)
        outcomes: Dict[str, int] = {}
        requests_by_provider: Dict[str, int] = {}
        credits_by_provider: Dict[str, int] = {}
        failures_by_kind: Dict[str, int] = {}
        for event in events:
            outcomes[event.outcome] = outcomes.get(event.outcome, 0) + 1
            if event.provider_id:
                requests_by_provider[event.provider_id] = requests_by_provider.get(event.provider_id, 0) + 1
                credits_by_provider[event.provider_id] = (
                    credits_by_provider.get(event.provider_id, 0) + event.credits_charged
                )
            if event.error_kind:
                failures_by_kind[event.error_kind] = failures_by_kind.get(event.error_kind, 0) + 1

        return {
            "requests": requests,
            "avg_latency_ms": round(sum(e.latency_ms for e in events) / requests, 1),
            "cache_hit_rate": round(sum(1 for e in events if e.cache_hit) / requests, 4),
            "outcomes": outcomes,
            "requests_by_provider": requests_by_provider,
            "credits_by_provider": credits_by_provider,
            "failures_by_kind": failures_by_kind,
            "credits_charged": sum(e.credits_charged for e in events),
        }

    def get_events(
        self,
        since: Optional[datetime] = None,
        limit: int = 100,
        user_id: Optional[str] = None,
    ) -> List[RoutingEvent]:
        """Query in-memory events with optional time and user filter.

        Returns:
            Matching events, newest first, capped at ``limit`` (empty when
            ``limit`` is zero or negative).
        """
        if limit <= 0:
            return []
        events = self._select(user_id)
        if since is not None:
            events = [e for e in events if e.timestamp >= since]
        return list(reversed(events[-limit:]))

    def load_from_file(self, path: Path) -> int:
        """Re-hydrate events from an existing JSONL file.

        Corrupted lines are skipped with a warning.

        Returns:
            Number of events loaded.
        """
        if not path.exists():
            logger.warning("Log file does not exist", extra={"path": str(path)})
            return 0

        loaded: List[RoutingEvent] = []
        with open(path, "r", encoding="utf-8") as fh:
            for line_num, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    loaded.append(RoutingEvent(**json.loads(line)))
                except (json.JSONDecodeError, TypeError, ValidationError) as exc:
                    logger.warning(
                        "Skipping corrupted JSONL line",
                        extra={"path": str(path), "line_number": line_num, "error": str(exc)},
                    )

        with self._lock:
            self._events.extend(loaded)
        logger.info("Events loaded from file", extra={"path": str(path), "count": len(loaded)})
        return len(loaded)

    def export_csv(self, path: Path) -> int:
        """Export all tracked events to a CSV file.

        Returns:
            Number of events written.
        """
        events = self._select(None)
        if not events:
            logger.warning("No events to export")
            return 0

        path.parent.mkdir(parents=True, exist_ok=True)
        fieldnames = list(RoutingEvent.model_fields.keys())
        with open(path, "w", newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=fieldnames)
            writer.writeheader()
            for event in events:
                row = event.model_dump()
                row["timestamp"] = event.timestamp.isoformat()
                writer.writerow(row)

        logger.info("Events exported to CSV", extra={"path": str(path), "count": len(events)})
        return len(events)

    def reset(self) -> None:
        """Clear all in-memory events."""
        with self._lock:
            self._events.clear()

    @property
    def event_count(self) -> int:
        """Number of events tracked in memory."""
        with self._lock:
            return len(self._events)

    def _select(self, user_id: Optional[str]) -> List[RoutingEvent]:
        with self._lock:
            if user_id is None:
                return list(self._events)
            return [e for e in self._events if e.user_id == user_id]
