"""
In-process trace ledger for tasks, tool calls and model calls.

This module provides:
- TaskStatus / ToolCallStatus / ModelCallRole: lifecycle enums
- Task, ToolCall, ModelCall: trace records
- TraceStore: the explicit, lock-guarded store injected into the orchestrator

Nothing here touches disk. Records live until ``clear()`` or until the
store object is dropped.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from .tool_timing import utc_now
from .truncation import trunc


class TaskStatus(Enum):
    """Lifecycle states for a task."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_TASK_STATES


_TERMINAL_TASK_STATES = frozenset({
    TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED, TaskStatus.TIMEOUT,
})


class ToolCallStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


class ModelCallRole(Enum):
    INITIAL = "initial"
    TOOL_RESULT = "tool-result"


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

# USD per million tokens: (input, output). Longest prefix wins.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4": (15.0, 75.0),
    "claude-sonnet-4": (3.0, 15.0),
    "claude-3-7-sonnet": (3.0, 15.0),
    "claude-3-5-sonnet": (3.0, 15.0),
    "claude-3-5-haiku": (0.80, 4.0),
    "claude-haiku-4": (1.0, 5.0),
    "claude-3-haiku": (0.25, 1.25),
}

# Unknown models are priced like Sonnet.
FALLBACK_PRICING: tuple[float, float] = (3.0, 15.0)


def get_pricing(model: str) -> tuple[float, float]:
    """Return (input, output) USD per million tokens for *model*."""
    best, best_len = FALLBACK_PRICING, 0
    for prefix, prices in MODEL_PRICING.items():
        if model and model.startswith(prefix) and len(prefix) > best_len:
            best, best_len = prices, len(prefix)
    return best


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    price_in, price_out = get_pricing(model)
    return (input_tokens * price_in + output_tokens * price_out) / 1_000_000


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


@dataclass
class Task:
    """One end-to-end run of the agent loop.

    Attributes:
        id: ``task_`` + 8 hex chars
        user_message: The operator's request
        model: Model identifier used for every call
        provider_ids: Providers requested for this task
        status: Current lifecycle state; frozen once terminal
        iteration_count: Model calls started (rate-limit retries excluded)
        total_input_tokens / total_output_tokens / total_cost: Aggregates,
            recomputed from the task's model calls on completion
    """
    id: str
    user_message: str
    model: str
    provider_ids: list[str]
    created_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    final_answer: Optional[str] = None
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    iteration_count: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "createdAt": _iso(self.created_at),
            "status": self.status.value,
            "model": self.model,
            "servers": list(self.provider_ids),
            "userMessage": self.user_message,
            "finalAnswer": self.final_answer,
            "totalInputTokens": self.total_input_tokens,
            "totalOutputTokens": self.total_output_tokens,
            "totalCost": self.total_cost,
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "durationMs": self.duration_ms,
            "errorMessage": self.error_message,
            "iterationCount": self.iteration_count,
        }


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation. Replaced (not mutated) when completed."""
    id: str
    task_id: str
    provider_name: str
    tool_name: str
    arguments: str
    started_at: datetime
    sequence_number: int
    status: ToolCallStatus = ToolCallStatus.RUNNING
    result: Optional[str] = None
    error_message: Optional[str] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.finished_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "serverName": self.provider_name,
            "toolName": self.tool_name,
            "arguments": self.arguments,
            "result": self.result,
            "status": self.status.value,
            "errorMessage": self.error_message,
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "durationMs": self.duration_ms,
            "sequenceNumber": self.sequence_number,
        }


@dataclass(frozen=True)
class ModelCall:
    id: str
    task_id: str
    role: ModelCallRole
    input_tokens: int
    output_tokens: int
    duration_ms: int
    created_at: datetime
    stop_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "type": self.role.value,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "durationMs": self.duration_ms,
            "createdAt": _iso(self.created_at),
            "stopReason": self.stop_reason,
        }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class TraceStore:
    """Task-scoped ledger of Task, ToolCall and ModelCall records.

    All methods are thread-safe. Lookups for unknown ids return ``None``
    (or an empty list) rather than raising.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}
        self._tool_calls: dict[str, list[ToolCall]] = {}
        self._model_calls: dict[str, list[ModelCall]] = {}

    # -- Tasks -----------------------------------------------------------------

    def create_task(self, user_message: str, model: str, provider_ids: list[str]) -> Task:
        task = Task(
            id=_short_id("task"),
            user_message=user_message,
            model=model,
            provider_ids=list(provider_ids),
            created_at=utc_now(),
        )
        with self._lock:
            self._tasks[task.id] = task
            self._tool_calls[task.id] = []
            self._model_calls[task.id] = []
        return replace(task)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def list_tasks(self) -> list[Task]:
        with self._lock:
            return [replace(t) for t in self._tasks.values()]

    def start_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return None
            task.status = TaskStatus.RUNNING
            task.started_at = utc_now()
            return replace(task)

    def complete_task(
        self,
        task_id: str,
        status: TaskStatus,
        final_answer: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Task]:
        """Move a task to a terminal *status* and recompute its aggregates.

        A task that is already terminal is returned unchanged.
        """
        if not status.is_terminal:
            raise ValueError(f"Not a terminal task status: {status.value}")
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            if task.status.is_terminal:
                return replace(task)

            finished_at = utc_now()
            calls = self._model_calls.get(task_id, [])
            task.status = status
            task.final_answer = final_answer
            task.error_message = error
            task.finished_at = finished_at
            task.duration_ms = (
                int((finished_at - task.started_at).total_seconds() * 1000)
                if task.started_at else None
            )
            task.total_input_tokens = sum(mc.input_tokens for mc in calls)
            task.total_output_tokens = sum(mc.output_tokens for mc in calls)
            task.total_cost = estimate_cost(
                task.model, task.total_input_tokens, task.total_output_tokens
            )
            return replace(task)

    def increment_iteration(self, task_id: str) -> int:
        """Bump and return the task's iteration count (0 for unknown ids)."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return 0
            task.iteration_count += 1
            return task.iteration_count

    # -- Tool calls --------------------------------------------------------------

    def start_tool_call(
        self, task_id: str, provider_name: str, tool_name: str, args: dict
    ) -> ToolCall:
        with self._lock:
            calls = self._tool_calls.setdefault(task_id, [])
            tool_call = ToolCall(
                id=_short_id("tc"),
                task_id=task_id,
                provider_name=provider_name,
                tool_name=tool_name,
                arguments=trunc(json.dumps(args, default=str), "trace.arguments"),
                started_at=utc_now(),
                sequence_number=len(calls) + 1,
            )
            calls.append(tool_call)
            return tool_call

    def complete_tool_call(
        self,
        tool_call_id: str,
        task_id: str,
        status: ToolCallStatus,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[ToolCall]:
        """Finalize a tool call. Returns ``None`` if unknown or already completed."""
        with self._lock:
            calls = self._tool_calls.get(task_id)
            if not calls:
                return None
            for index, tool_call in enumerate(calls):
                if tool_call.id == tool_call_id:
                    break
            else:
                return None
            if tool_call.completed:
                return None

            finished_at = utc_now()
            updated = replace(
                tool_call,
                status=status,
                result=trunc(result, "trace.result") if result is not None else None,
                error_message=error,
                finished_at=finished_at,
                duration_ms=int((finished_at - tool_call.started_at).total_seconds() * 1000),
            )
            calls[index] = updated
            return updated

    def get_tool_calls(self, task_id: str) -> list[ToolCall]:
        with self._lock:
            return list(self._tool_calls.get(task_id, []))

    # -- Model calls -------------------------------------------------------------

    def record_model_call(
        self,
        task_id: str,
        role: ModelCallRole,
        input_tokens: int,
        output_tokens: int,
        duration_ms: int,
        stop_reason: Optional[str] = None,
    ) -> ModelCall:
        model_call = ModelCall(
            id=_short_id("mc"),
            task_id=task_id,
            role=role,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
            created_at=utc_now(),
            stop_reason=stop_reason,
        )
        with self._lock:
            self._model_calls.setdefault(task_id, []).append(model_call)
        return model_call

    def get_model_calls(self, task_id: str) -> list[ModelCall]:
        with self._lock:
            return list(self._model_calls.get(task_id, []))

    # -- Lifecycle ---------------------------------------------------------------

    def snapshot(self, task_id: str) -> Optional[dict]:
        """Task plus its tool and model calls, JSON-ready."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            return {
                "task": task.to_dict(),
                "toolCalls": [tc.to_dict() for tc in self._tool_calls.get(task_id, [])],
                "modelCalls": [mc.to_dict() for mc in self._model_calls.get(task_id, [])],
            }

    def clear(self) -> None:
        with self._lock:
            self._tasks.clear()
            self._tool_calls.clear()
            self._model_calls.clear()
