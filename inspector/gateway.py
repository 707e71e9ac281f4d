"""
Tool invocation gateway.

Routes a tool name to its owning provider, runs the call under a hard
timeout and normalizes every outcome into a ``ToolResult``. Tool-level
failures (unknown tool, timeout, provider error) are returned as data,
never raised, so the model can see them and react.
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import ToolTimeout
from .logging import tagged
from .providers import ConnectionManager
from .truncation import trunc

logger = logging.getLogger("mcp_inspector")

NOT_FOUND = "not_found"
TIMEOUT = "timeout"
ERROR = "error"


@dataclass(frozen=True)
class SubCall:
    """One nested tool call reported inside a composite tool outcome."""
    tool_name: str
    args: dict
    status: str
    result: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def is_error(self) -> bool:
        return self.status != "success"


@dataclass(frozen=True)
class ToolResult:
    """Normalized outcome of one gateway invocation.

    ``kind`` is ``None`` on success, otherwise one of ``not_found``,
    ``timeout`` or ``error``.
    """
    content: str
    is_error: bool = False
    kind: Optional[str] = None
    provider_name: Optional[str] = None
    sub_calls: tuple[SubCall, ...] = field(default_factory=tuple)
    final_result: Optional[str] = None

    @property
    def timed_out(self) -> bool:
        return self.kind == TIMEOUT


def flatten_content(content: list[dict]) -> str:
    """Join text blocks with newlines; fall back to the JSON of the raw blocks."""
    text = "\n".join(
        block.get("text", "") for block in content if block.get("type") == "text"
    )
    return text or json.dumps(content)


def parse_composite(text: str) -> tuple[tuple[SubCall, ...], Optional[str]]:
    """Extract ``toolCalls``/``finalResult`` from a composite tool outcome.

    Returns ``((), None)`` when *text* is not a composite payload.
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return (), None
    if not isinstance(payload, dict):
        return (), None
    calls = payload.get("toolCalls")
    final = payload.get("finalResult")
    if not isinstance(calls, list) or not isinstance(final, str):
        return (), None

    subs = []
    for item in calls:
        if not isinstance(item, dict) or not isinstance(item.get("toolName"), str):
            continue
        result = item.get("result")
        subs.append(SubCall(
            tool_name=item["toolName"],
            args=item.get("args") if isinstance(item.get("args"), dict) else {},
            status=item.get("status") or "success",
            result=result if result is None or isinstance(result, str) else json.dumps(result),
            error_message=item.get("errorMessage"),
            duration_ms=item.get("durationMs"),
        ))
    return tuple(subs), final


class ToolGateway:
    """Executes tool calls against the providers held by a ``ConnectionManager``."""

    def __init__(self, manager: ConnectionManager, *, max_workers: int = 4):
        self._manager = manager
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tool-call"
        )

    def invoke(self, tool_name: str, args: dict, timeout_s: float = 30.0) -> ToolResult:
        owner = self._manager.find_owner(tool_name)
        if owner is None:
            logger.warning("Tool not found: %s", tool_name, extra=tagged("gateway"))
            return ToolResult(content=f"Tool not found: {tool_name}", is_error=True, kind=NOT_FOUND)

        provider_name = owner.name
        timeout_ms = int(timeout_s * 1000)
        logger.debug(
            "Executing tool: %s on %s args=%s",
            tool_name, provider_name, trunc(json.dumps(args, default=str), "console.args"),
            extra=tagged("gateway"),
        )

        future = self._executor.submit(owner.session.call_tool, tool_name, args, timeout_s)
        try:
            output = future.result(timeout=timeout_s)
        except (concurrent.futures.TimeoutError, ToolTimeout):
            # Late outcome is discarded
            future.cancel()
            message = f"Tool execution timed out after {timeout_ms}ms"
            logger.warning("%s: %s", tool_name, message, extra=tagged("gateway"))
            return ToolResult(
                content=message, is_error=True, kind=TIMEOUT, provider_name=provider_name
            )
        except Exception as e:
            message = f"Tool execution failed: {e}"
            logger.error(
                "Tool execution error: %s", trunc(str(e), "console.error"), extra=tagged("gateway")
            )
            return ToolResult(content=message, is_error=True, kind=ERROR, provider_name=provider_name)

        content = flatten_content(output.content)
        sub_calls, final_result = parse_composite(content)
        return ToolResult(
            content=content,
            is_error=output.is_error,
            kind=ERROR if output.is_error else None,
            provider_name=provider_name,
            sub_calls=sub_calls,
            final_result=final_result,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
