"""
Date-partitioned, append-only event store.

Every event is one JSON line appended to the partition file of its UTC day.
Partitions are never rewritten; they are only deleted (clear, retention) or
replaced by their gzip-compressed form once the day is over.
"""

import dataclasses
import gzip
import json
import logging
import secrets
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from agent_telemetry.config.loader import TelemetryConfig
from agent_telemetry.core.periods import format_timestamp, normalize_timestamp, utc_now

from .errors import PersistenceError
from .models import (
    ALL_EVENT_TYPES,
    EventType,
    TelemetryEvent,
    build_record,
    event_from_record,
)
from .reader import (
    PARTITION_SUFFIX,
    ScanStats,
    list_partition_files,
    partition_date,
    partition_name,
    scan,
)

logger = logging.getLogger(__name__)

EVENT_ID_PREFIX = "evt_"
DISABLED_ID_PREFIX = "disabled_"

TypeFilter = Union[EventType, str, Iterable[Union[EventType, str]]]


def _new_token() -> str:
    # 9 random bytes encode to 12 URL-safe characters
    return secrets.token_urlsafe(9)


def _resolve_types(type_filter: Optional[TypeFilter]) -> frozenset:
    if type_filter is None:
        return ALL_EVENT_TYPES
    if isinstance(type_filter, (EventType, str)):
        return frozenset({EventType(type_filter)})
    return frozenset(EventType(t) for t in type_filter)


class EventStore:
    """Append-only telemetry log stored as daily NDJSON partitions.

    Instances are cheap; construct one per telemetry directory at process
    start and pass it to whatever needs it.
    """

    def __init__(self, directory: Union[str, Path], config: Optional[TelemetryConfig] = None):
        """Initialize the store.

        Args:
            directory: Root directory holding the partition files
            config: Initial runtime settings (defaults to enabled, 30 day retention)
        """
        self.directory = Path(directory)
        self._config = config or TelemetryConfig()
        self.last_scan: Optional[ScanStats] = None

    # ============ Configuration ============

    def configure(self, enabled: Optional[bool] = None, retention_days: Optional[int] = None) -> TelemetryConfig:
        """Update runtime settings; applies to subsequent emit calls only.

        Raises:
            ValueError: If a setting is invalid
        """
        changes = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if retention_days is not None:
            changes["retention_days"] = retention_days
        self._config = dataclasses.replace(self._config, **changes)
        return self._config

    def get_config(self) -> TelemetryConfig:
        return self._config

    def is_enabled(self) -> bool:
        return self._config.enabled

    # ============ Writes ============

    def emit(
        self,
        event_type: Union[EventType, str],
        *,
        task_id: Optional[str] = None,
        project: Optional[str] = None,
        **fields
    ) -> TelemetryEvent:
        """Record an event.

        The store assigns the id and timestamp. When telemetry is disabled
        nothing is written and the returned event's id starts with
        ``disabled_``.

        Args:
            event_type: Kind of event
            task_id: Task the event belongs to
            project: Project the event belongs to
            **fields: Kind-specific fields in snake_case (agent, success, duration_ms, ...)

        Returns:
            The event as persisted

        Raises:
            ValueError: If id/timestamp are supplied or the fields are invalid
            PersistenceError: If the partition file cannot be written
        """
        if "id" in fields or "timestamp" in fields:
            raise ValueError("id and timestamp are assigned by the event store")

        event_type = EventType(event_type)
        timestamp = format_timestamp(utc_now())
        prefix = EVENT_ID_PREFIX if self._config.enabled else DISABLED_ID_PREFIX
        record = build_record(
            event_type, prefix + _new_token(), timestamp, task_id, project, fields
        )
        # Same validation as on read, so every written line reads back
        event = event_from_record(record)

        if not self._config.enabled:
            return event

        self._append(event)
        return event

    def _append(self, event: TelemetryEvent) -> None:
        """Append one event line to its day's partition."""
        path = self.directory / partition_name(event.date)
        line = json.dumps(event.to_record(), separators=(",", ":")) + "\n"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise PersistenceError(f"Failed to write event to {path}: {e}") from e

    # ============ Queries ============

    def get_events(
        self,
        type: Optional[TypeFilter] = None,
        task_id: Optional[str] = None,
        project: Optional[str] = None,
        since: Optional[Union[str, datetime]] = None,
        until: Optional[Union[str, datetime]] = None,
        limit: Optional[int] = None
    ) -> List[TelemetryEvent]:
        """Query events, newest first.

        Args:
            type: One event type or several
            task_id: Only events for this task
            project: Only events for this project
            since: Only events at or after this instant
            until: Only events at or before this instant
            limit: Maximum number of events to return

        Returns:
            Matching events sorted by timestamp descending
        """
        since_ts = normalize_timestamp(since) if since is not None else None
        until_ts = normalize_timestamp(until) if until is not None else None
        files = list_partition_files(self.directory, since_ts, until_ts)

        events: List[TelemetryEvent] = []

        def collect(event: TelemetryEvent, acc: List[TelemetryEvent]) -> None:
            if task_id is not None and event.task_id != task_id:
                return
            acc.append(event)

        self.last_scan = scan(
            files, _resolve_types(type), since_ts, project, events, collect, until=until_ts
        )

        # Reverse first so events sharing a timestamp keep newest-written first
        events.reverse()
        events.sort(key=lambda e: e.timestamp, reverse=True)

        if limit is not None and limit >= 0:
            events = events[:limit]
        return events

    def get_task_events(self, task_id: str) -> List[TelemetryEvent]:
        """All events for one task, newest first."""
        return self.get_events(task_id=task_id)

    def get_events_since(self, since: Union[str, datetime]) -> List[TelemetryEvent]:
        return self.get_events(since=since)

    def get_bulk_task_events(self, task_ids: Iterable[str]) -> Dict[str, List[TelemetryEvent]]:
        """Events for several tasks in one pass over the log.

        Returns:
            Mapping of task id to its events (newest first); every requested
            id is present, possibly with an empty list
        """
        wanted = list(dict.fromkeys(task_ids))
        result: Dict[str, List[TelemetryEvent]] = {task_id: [] for task_id in wanted}
        if not wanted:
            return result

        def collect(event: TelemetryEvent, acc: Dict[str, List[TelemetryEvent]]) -> None:
            if event.task_id in acc:
                acc[event.task_id].append(event)

        files = list_partition_files(self.directory)
        self.last_scan = scan(files, ALL_EVENT_TYPES, None, None, result, collect)

        for events in result.values():
            events.reverse()
            events.sort(key=lambda e: e.timestamp, reverse=True)
        return result

    def count_events(
        self,
        type: TypeFilter,
        since: Optional[Union[str, datetime]] = None,
        until: Optional[Union[str, datetime]] = None
    ) -> int:
        """Number of events of the given type(s) in an optional window."""
        return len(self.get_events(type=type, since=since, until=until))

    # ============ Maintenance ============

    def partition_files(self) -> List[Path]:
        """Every partition file currently on disk, oldest first."""
        return list_partition_files(self.directory)

    def clear(self) -> None:
        """Delete every partition file. A missing directory is not an error."""
        for path in self.partition_files():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise PersistenceError(f"Failed to delete {path}: {e}") from e
        logger.info("Cleared telemetry partitions in %s", self.directory)

    def prune_expired(self, now: Optional[datetime] = None) -> List[Path]:
        """Delete partitions older than the retention window.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Paths that were deleted
        """
        cutoff = ((now or utc_now()) - timedelta(days=self._config.retention_days)).date().isoformat()
        removed = []
        for path in self.partition_files():
            if partition_date(path) < cutoff:
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise PersistenceError(f"Failed to delete {path}: {e}") from e
                logger.info("Removed expired telemetry partition %s", path.name)
                removed.append(path)
        return removed

    def compress_partitions(self, now: Optional[datetime] = None) -> List[Path]:
        """Gzip every plain partition from before today.

        Today's partition is left alone because it may still be appended to.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Paths of the compressed files written
        """
        today = (now or utc_now()).date().isoformat()
        written = []
        for path in self.partition_files():
            date = partition_date(path)
            if not path.name.endswith(PARTITION_SUFFIX) or date >= today:
                continue
            target = path.with_name(partition_name(date, compressed=True))
            if target.exists():
                logger.warning("Skipping %s: %s already exists", path.name, target.name)
                continue
            try:
                with open(path, "rb") as src, gzip.open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                path.unlink()
            except OSError as e:
                target.unlink(missing_ok=True)
                raise PersistenceError(f"Failed to compress {path}: {e}") from e
            logger.info("Compressed telemetry partition %s", path.name)
            written.append(target)
        return written
