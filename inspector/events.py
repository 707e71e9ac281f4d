"""
Typed progress events and the channel that carries them.

The orchestrator pushes events onto an ``EventChannel`` from whatever
thread runs the loop; the boundary layer (CLI, HTTP stream) iterates the
channel. Emission order is the observable contract:

    task-started
    llm-response
      tool-call (running) → [sub-call running/completed pairs] → tool-call (success|error)
    ... (repeat per iteration)
    task-completed | error      ← exactly one terminal event per task

Wire format is one JSON object per event with camelCase keys; optional
fields are omitted when unset.
"""

import json
import queue
import threading
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Callable, ClassVar, Iterator, Optional


# ---- Event type constants ----

TASK_STARTED = "task-started"
LLM_RESPONSE = "llm-response"
TOOL_CALL = "tool-call"
TASK_COMPLETED = "task-completed"
ERROR = "error"

TERMINAL_TYPES = frozenset({TASK_COMPLETED, ERROR})


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _wire_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(timespec="milliseconds")
    return value


class Event:
    """Base for all events. Subclasses are frozen dataclasses."""

    type: ClassVar[str] = ""

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"type": self.type}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            payload[_camel(f.name)] = _wire_value(value)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES


@dataclass(frozen=True)
class TaskStartedEvent(Event):
    type: ClassVar[str] = TASK_STARTED
    task_id: str
    timestamp: datetime


@dataclass(frozen=True)
class LLMResponseEvent(Event):
    """The model's text between tool calls, with usage for that one call."""
    type: ClassVar[str] = LLM_RESPONSE
    content: str
    input_tokens: int
    output_tokens: int
    duration_ms: int
    has_tool_calls: bool


@dataclass(frozen=True)
class ToolCallEvent(Event):
    type: ClassVar[str] = TOOL_CALL
    tool_call_id: str
    server_name: str
    tool_name: str
    args: dict
    status: str  # running | success | error
    result: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    is_sub_tool_call: Optional[bool] = None
    parent_tool_call_id: Optional[str] = None


@dataclass(frozen=True)
class TaskCompletedEvent(Event):
    type: ClassVar[str] = TASK_COMPLETED
    status: str
    total_duration_ms: int
    total_input_tokens: int
    total_output_tokens: int
    final_answer: Optional[str] = None


@dataclass(frozen=True)
class ErrorEvent(Event):
    type: ClassVar[str] = ERROR
    message: str
    code: Optional[str] = None


# ---- Channel ----

_CLOSED = object()


class EventChannel:
    """Thread-safe FIFO of events with optional synchronous listeners.

    ``emit()`` may be called from the loop's worker thread while another
    thread iterates. Iteration ends once ``close()`` has been called and
    every queued event has been consumed.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._listeners: list[Callable[[Event], None]] = []
        self._history: list[Event] = []
        self._closed = False

    def emit(self, event: Event) -> Event:
        with self._lock:
            if self._closed:
                raise RuntimeError("EventChannel is closed")
            self._history.append(event)
            listeners = list(self._listeners)
            self._queue.put(event)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                pass  # Never let a listener break the emitter
        return event

    def subscribe(self, listener: Callable[[Event], None]) -> None:
        """Register a listener called synchronously on each emit()."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[Event], None]) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def history(self) -> list[Event]:
        """Every event emitted so far, in order."""
        with self._lock:
            return list(self._history)

    def get(self, timeout: float | None = None) -> Optional[Event]:
        """Block for the next event; ``None`` once the channel is drained and closed."""
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Leave the sentinel for any other consumer
            self._queue.put(_CLOSED)
            return None
        return item

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event


def to_ndjson(event: Event) -> str:
    """Encode *event* as one newline-terminated JSON line."""
    return event.to_json() + "\n"
