"""
Data models for storage layer.

Defines the telemetry event union and the boundary between on-disk records
(camelCase JSON objects) and Python events (snake_case dataclasses).
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Type

from .errors import MalformedRecord

# Agent name reported when a run event carries none
UNKNOWN_AGENT = "unknown"


class EventType(str, Enum):
    """Kinds of telemetry events."""
    TASK_CREATED = "task.created"
    TASK_STATUS_CHANGED = "task.status_changed"
    TASK_ARCHIVED = "task.archived"
    TASK_RESTORED = "task.restored"
    RUN_STARTED = "run.started"
    RUN_COMPLETED = "run.completed"
    RUN_ERROR = "run.error"
    RUN_TOKENS = "run.tokens"


TASK_EVENT_TYPES = frozenset({
    EventType.TASK_CREATED,
    EventType.TASK_STATUS_CHANGED,
    EventType.TASK_ARCHIVED,
    EventType.TASK_RESTORED,
})
RUN_EVENT_TYPES = frozenset({
    EventType.RUN_STARTED,
    EventType.RUN_COMPLETED,
    EventType.RUN_ERROR,
})
ALL_EVENT_TYPES = frozenset(EventType)


def to_camel(name: str) -> str:
    """Convert a snake_case field name to its camelCase record key."""
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass(frozen=True)
class TelemetryEvent:
    """A persisted telemetry event.

    ``id`` and ``timestamp`` are always assigned by the event store.
    Record keys the model does not know about are kept in ``attributes``
    so that they survive a read.
    """
    id: str
    type: EventType
    timestamp: str
    task_id: Optional[str] = None
    project: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    # Kind-specific fields, in record order
    FIELDS: ClassVar[Tuple[str, ...]] = ()

    @property
    def date(self) -> str:
        """UTC calendar date (YYYY-MM-DD) of the event."""
        return self.timestamp[:10]

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the on-disk record shape."""
        record: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp,
        }
        if self.task_id is not None:
            record["taskId"] = self.task_id
        if self.project is not None:
            record["project"] = self.project
        for name in self.FIELDS:
            value = getattr(self, name)
            if value is not None:
                record[to_camel(name)] = value
        for key, value in self.attributes.items():
            record.setdefault(key, value)
        return record


@dataclass(frozen=True)
class TaskEvent(TelemetryEvent):
    """Task lifecycle transition."""
    status: Optional[str] = None
    previous_status: Optional[str] = None

    FIELDS: ClassVar[Tuple[str, ...]] = ("status", "previous_status")


@dataclass(frozen=True)
class RunEvent(TelemetryEvent):
    """Agent run start, completion or error."""
    agent: Optional[str] = None
    model: Optional[str] = None
    session_key: Optional[str] = None
    attempt_id: Optional[str] = None
    success: Optional[bool] = None
    duration_ms: Optional[float] = None
    exit_code: Optional[int] = None
    error: Optional[str] = None
    stack_trace: Optional[str] = None

    FIELDS: ClassVar[Tuple[str, ...]] = (
        "agent", "model", "session_key", "attempt_id", "success",
        "duration_ms", "exit_code", "error", "stack_trace",
    )

    @property
    def agent_name(self) -> str:
        return self.agent or UNKNOWN_AGENT

    @property
    def succeeded(self) -> bool:
        """True only for a successful run.completed event."""
        return self.type == EventType.RUN_COMPLETED and self.success is True

    @property
    def failed(self) -> bool:
        """True for run.error and unsuccessful run.completed events."""
        if self.type == EventType.RUN_ERROR:
            return True
        return self.type == EventType.RUN_COMPLETED and self.success is not True


@dataclass(frozen=True)
class TokenEvent(TelemetryEvent):
    """Token usage reported for one agent run."""
    agent: Optional[str] = None
    model: Optional[str] = None
    attempt_id: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    cost: Optional[float] = None

    FIELDS: ClassVar[Tuple[str, ...]] = (
        "agent", "model", "attempt_id", "input_tokens", "output_tokens",
        "cache_tokens", "total_tokens", "cost",
    )

    @property
    def agent_name(self) -> str:
        return self.agent or UNKNOWN_AGENT

    @property
    def tokens(self) -> int:
        """Reported total, or input + output when no total was reported."""
        if self.total_tokens is not None:
            return self.total_tokens
        return self.input_tokens + self.output_tokens

    @property
    def cache(self) -> int:
        return self.cache_tokens or 0


def event_class_for(event_type: EventType) -> Type[TelemetryEvent]:
    """Return the dataclass used for an event type."""
    if event_type in TASK_EVENT_TYPES:
        return TaskEvent
    if event_type == EventType.RUN_TOKENS:
        return TokenEvent
    return RunEvent


def _optional_str(record: Dict[str, Any], key: str) -> Optional[str]:
    value = record.get(key)
    if value is None or isinstance(value, str):
        return value
    raise MalformedRecord(f"'{key}' must be a string")


def _optional_number(record: Dict[str, Any], key: str) -> Optional[float]:
    value = record.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRecord(f"'{key}' must be a number")
    if not math.isfinite(value):
        raise MalformedRecord(f"'{key}' must be finite")
    return value


def _optional_int(record: Dict[str, Any], key: str) -> Optional[int]:
    value = _optional_number(record, key)
    return None if value is None else int(value)


def _optional_bool(record: Dict[str, Any], key: str) -> Optional[bool]:
    value = record.get(key)
    if value is None or isinstance(value, bool):
        return value
    raise MalformedRecord(f"'{key}' must be a boolean")


def _run_success(event_type: EventType, record: Dict[str, Any]) -> Optional[bool]:
    success = _optional_bool(record, "success")
    if event_type != EventType.RUN_COMPLETED:
        return success
    # Older producers report `status: "success"` instead of the flag; either one counts
    return success is True or record.get("status") == "success"


def event_from_record(record: Any) -> TelemetryEvent:
    """Build an event from an on-disk record, normalizing legacy fields.

    Args:
        record: Decoded JSON value for one line

    Returns:
        The typed event

    Raises:
        MalformedRecord: If the record is not a valid telemetry event
    """
    if not isinstance(record, dict):
        raise MalformedRecord("record is not a JSON object")

    try:
        event_type = EventType(record.get("type"))
    except (TypeError, ValueError):
        raise MalformedRecord(f"unknown event type: {record.get('type')!r}")

    event_id = record.get("id")
    timestamp = record.get("timestamp")
    if not isinstance(event_id, str) or not event_id:
        raise MalformedRecord("missing event id")
    if not isinstance(timestamp, str) or not timestamp:
        raise MalformedRecord("missing event timestamp")

    common = dict(
        id=event_id,
        type=event_type,
        timestamp=timestamp,
        task_id=_optional_str(record, "taskId"),
        project=_optional_str(record, "project"),
    )
    consumed = {"id", "type", "timestamp", "taskId", "project"}

    cls = event_class_for(event_type)
    if cls is TaskEvent:
        specific = dict(
            status=_optional_str(record, "status"),
            previous_status=_optional_str(record, "previousStatus"),
        )
    elif cls is TokenEvent:
        specific = dict(
            agent=_optional_str(record, "agent"),
            model=_optional_str(record, "model"),
            attempt_id=_optional_str(record, "attemptId"),
            input_tokens=_optional_int(record, "inputTokens") or 0,
            output_tokens=_optional_int(record, "outputTokens") or 0,
            cache_tokens=_optional_int(record, "cacheTokens"),
            total_tokens=_optional_int(record, "totalTokens"),
            cost=_optional_number(record, "cost"),
        )
        counts = ("input_tokens", "output_tokens", "cache_tokens", "total_tokens")
        if any((specific[name] or 0) < 0 for name in counts):
            raise MalformedRecord("token counts cannot be negative")
    else:
        specific = dict(
            agent=_optional_str(record, "agent"),
            model=_optional_str(record, "model"),
            session_key=_optional_str(record, "sessionKey"),
            attempt_id=_optional_str(record, "attemptId"),
            success=_run_success(event_type, record),
            duration_ms=_optional_number(record, "durationMs"),
            exit_code=_optional_int(record, "exitCode"),
            error=_optional_str(record, "error"),
            stack_trace=_optional_str(record, "stackTrace"),
        )
        # The legacy status flag is folded into `success`
        consumed.add("status")

    consumed.update(to_camel(name) for name in cls.FIELDS)
    attributes = {key: value for key, value in record.items() if key not in consumed}

    return cls(attributes=attributes, **common, **specific)


def build_record(
    event_type: EventType,
    event_id: str,
    timestamp: str,
    task_id: Optional[str],
    project: Optional[str],
    fields: Dict[str, Any],
) -> Dict[str, Any]:
    """Assemble an on-disk record from emit() arguments.

    Known snake_case field names are converted to their camelCase keys;
    anything else is stored under the name given.
    """
    known = {name for name in event_class_for(event_type).FIELDS}
    record: Dict[str, Any] = {
        "id": event_id,
        "type": event_type.value,
        "timestamp": timestamp,
    }
    if task_id is not None:
        record["taskId"] = task_id
    if project is not None:
        record["project"] = project
    for name, value in fields.items():
        if value is None:
            continue
        record[to_camel(name) if name in known else name] = value
    return record
