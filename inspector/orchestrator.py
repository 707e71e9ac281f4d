"""
Agent orchestration loop.

Drives one task from creation to a terminal state:

    pending -> running -> succeeded | failed | timeout | cancelled

Each iteration makes one model call and then runs the requested tools in
order through the gateway. Every step is recorded in the trace store and
announced on an ``EventChannel``; exactly one terminal event
(``task-completed`` or ``error``) ends the stream.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Iterator, Optional

from config import AppConfig, load_app_config

from .errors import (
    CancelledByCaller,
    IterationBudgetExceeded,
    ModelServiceError,
    NoProvidersConnected,
    NoToolsAvailable,
    TaskTimeoutExceeded,
    error_code,
)
from .events import (
    ErrorEvent,
    Event,
    EventChannel,
    LLMResponseEvent,
    TaskCompletedEvent,
    TaskStartedEvent,
    ToolCallEvent,
)
from .gateway import ToolGateway, ToolResult
from .llm.base import FunctionSchema, LLMResponse, ModelClient, ToolCall, looks_like_rate_limit
from .logging import attach_log_file, detach_log_file, set_task_id, tagged
from .prompts import get_system_prompt
from .providers import ConnectionManager, ToolDescriptor
from .tool_timing import ToolTimer, elapsed_ms
from .trace import ModelCallRole, Task, TaskStatus, ToolCallStatus, TraceStore
from .truncation import trunc

logger = logging.getLogger("mcp_inspector")


def tools_to_schemas(tools: list[ToolDescriptor]) -> list[FunctionSchema]:
    """Tool descriptors as model-facing declarations."""
    return [
        FunctionSchema(
            name=t.name,
            description=t.description or f"Tool from {t.provider_name}",
            parameters=t.input_schema,
        )
        for t in tools
    ]


class Orchestrator:
    """Runs tasks against a connection manager, gateway, model client and trace store.

    One task at a time. The collaborators are injected so tests can swap in
    fakes and so the model client is constructed once per process.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        gateway: ToolGateway,
        model_client: ModelClient,
        store: TraceStore,
        app_config: Optional[AppConfig] = None,
        *,
        system_prompt: Optional[str] = None,
        log_files: bool = False,
    ):
        self.manager = manager
        self.gateway = gateway
        self.model_client = model_client
        self.store = store
        self.config = app_config or load_app_config()
        self.system_prompt = system_prompt if system_prompt is not None else get_system_prompt()
        self.log_files = log_files

    # -- Public API ------------------------------------------------------------

    def run(
        self,
        user_message: str,
        provider_ids: list[str],
        *,
        model: Optional[str] = None,
        channel: Optional[EventChannel] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Task:
        """Run one task to completion and return its final record.

        Never raises for task-level failures: they end the task with a
        terminal status and an ``error`` event instead.
        """
        channel = channel if channel is not None else EventChannel()
        cancel_event = cancel_event if cancel_event is not None else threading.Event()
        model = model or self.config.model
        started = time.monotonic()

        task = self.store.create_task(user_message, model, provider_ids)
        if self.log_files:
            attach_log_file(task.id)
        else:
            set_task_id(task.id)
        logger.info(
            "Task %s: model=%s providers=%s", task.id, model, ",".join(provider_ids),
            extra=tagged("task"),
        )
        channel.emit(TaskStartedEvent(task_id=task.id, timestamp=task.created_at))

        already_connected = {pid for pid in provider_ids if self.manager.is_connected(pid)}
        connected_here: list[str] = []
        try:
            connected = self.manager.connect_many(provider_ids)
            connected_here = [p.id for p in connected if p.id not in already_connected]
            if not connected:
                raise NoProvidersConnected()

            tools = self.manager.list_tools([p.id for p in connected])
            if not tools:
                raise NoToolsAvailable()

            self.store.start_task(task.id)
            answer = self._loop(task, model, tools, channel, cancel_event, started)

            final = self.store.complete_task(task.id, TaskStatus.SUCCEEDED, final_answer=answer)
            logger.info(
                "Task %s succeeded after %d iteration(s)", task.id, final.iteration_count,
                extra=tagged("task"),
            )
            channel.emit(TaskCompletedEvent(
                status=final.status.value,
                total_duration_ms=elapsed_ms(started),
                total_input_tokens=final.total_input_tokens,
                total_output_tokens=final.total_output_tokens,
                final_answer=answer,
            ))
        except (IterationBudgetExceeded, TaskTimeoutExceeded) as e:
            self._fail(task, TaskStatus.TIMEOUT, e, channel)
        except CancelledByCaller as e:
            self._fail(task, TaskStatus.CANCELLED, e, channel)
        except KeyboardInterrupt:
            self._fail(task, TaskStatus.CANCELLED, CancelledByCaller("Task interrupted"), channel)
            raise
        except Exception as e:
            logger.debug("Task %s failed", task.id, exc_info=True, extra=tagged("task"))
            self._fail(task, TaskStatus.FAILED, e, channel)
        finally:
            for provider_id in connected_here:
                self.manager.disconnect(provider_id)
            if self.log_files:
                detach_log_file()
            else:
                set_task_id("")

        return self.store.get_task(task.id)

    def stream(
        self,
        user_message: str,
        provider_ids: list[str],
        *,
        model: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[Event]:
        """Run a task on a worker thread and yield its events as they arrive.

        Closing the iterator early cancels the task.
        """
        channel = EventChannel()
        cancel_event = cancel_event if cancel_event is not None else threading.Event()

        def _worker() -> None:
            try:
                self.run(
                    user_message, provider_ids,
                    model=model, channel=channel, cancel_event=cancel_event,
                )
            except Exception:
                logger.exception("Orchestrator worker crashed", extra=tagged("task"))
            finally:
                channel.close()

        worker = threading.Thread(target=_worker, name="orchestrator", daemon=True)
        worker.start()
        try:
            yield from channel
        finally:
            if not channel.closed:
                cancel_event.set()

    # -- Loop ------------------------------------------------------------------

    def _loop(
        self,
        task: Task,
        model: str,
        tools: list[ToolDescriptor],
        channel: EventChannel,
        cancel_event: threading.Event,
        started: float,
    ) -> str:
        cfg = self.config
        schemas = tools_to_schemas(tools)
        messages: list[dict] = [{"role": "user", "content": task.user_message}]
        iteration = 0

        while True:
            if cancel_event.is_set():
                raise CancelledByCaller()
            if iteration >= cfg.max_iterations:
                raise IterationBudgetExceeded("Max iterations exceeded")
            if elapsed_ms(started) >= cfg.task_timeout_ms:
                raise TaskTimeoutExceeded(f"Task timed out after {cfg.task_timeout_ms}ms")

            iteration = self.store.increment_iteration(task.id)
            logger.debug("Iteration %d/%d", iteration, cfg.max_iterations, extra=tagged("loop"))

            response, duration_ms = self._call_model(schemas, messages, model, cancel_event)
            self.store.record_model_call(
                task.id,
                ModelCallRole.INITIAL if iteration == 1 else ModelCallRole.TOOL_RESULT,
                response.usage.input_tokens,
                response.usage.output_tokens,
                duration_ms,
                response.stop_reason,
            )
            if response.text:
                logger.debug("Model: %s", trunc(response.text, "console.text"), extra=tagged("loop"))
            channel.emit(LLMResponseEvent(
                content=response.text,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                duration_ms=duration_ms,
                has_tool_calls=bool(response.tool_calls),
            ))

            if response.tool_calls:
                messages.append({"role": "assistant", "content": response.content_blocks})
                results = [self._run_tool(task, call, channel) for call in response.tool_calls]
                messages.append({"role": "user", "content": results})
                continue

            if response.stop_reason == "end_turn" or response.text:
                return response.text
            raise ModelServiceError(
                f"model stopped without an answer ({response.stop_reason})"
            )

    def _call_model(
        self,
        schemas: list[FunctionSchema],
        messages: list[dict],
        model: str,
        cancel_event: threading.Event,
    ) -> tuple[LLMResponse, int]:
        """One model call, retrying rate limits without touching the iteration count."""
        cfg = self.config
        retries = 0
        while True:
            try:
                with ToolTimer() as timer:
                    response = self.model_client.complete(
                        self.system_prompt, schemas, messages,
                        model=model, max_tokens=cfg.max_tokens,
                    )
                return response, timer.elapsed_ms
            except ModelServiceError as e:
                if not e.transient:
                    raise
                last_error: Exception = e
            except Exception as e:
                if not looks_like_rate_limit(e):
                    raise
                last_error = e

            retries += 1
            if retries > cfg.rate_limit_max_retries:
                raise ModelServiceError(
                    f"Rate limit persisted after {cfg.rate_limit_max_retries} retries: {last_error}"
                ) from last_error
            logger.warning(
                "Rate limited, waiting %dms before retry %d/%d",
                cfg.rate_limit_backoff_ms, retries, cfg.rate_limit_max_retries,
                extra=tagged("loop"),
            )
            if cancel_event.wait(cfg.rate_limit_backoff_s):
                raise CancelledByCaller()

    def _run_tool(self, task: Task, call: ToolCall, channel: EventChannel) -> dict:
        """Invoke one requested tool, trace it and emit its events.

        Returns the tool-result block for the next user turn.
        """
        owner = self.manager.find_owner(call.name)
        server_name = owner.name if owner is not None else "unknown"
        args = call.args or {}

        record = self.store.start_tool_call(task.id, server_name, call.name, args)
        channel.emit(ToolCallEvent(
            tool_call_id=record.id,
            server_name=server_name,
            tool_name=call.name,
            args=args,
            status="running",
        ))
        logger.debug(
            "Tool call #%d: %s(%s)", record.sequence_number, call.name,
            trunc(json.dumps(args, default=str), "console.args"),
            extra=tagged("tool"),
        )

        with ToolTimer() as timer:
            result = self.gateway.invoke(call.name, args, self.config.tool_timeout_s)

        self._emit_sub_calls(record.id, server_name, result, channel)

        content = result.final_result if result.final_result is not None else result.content
        if result.timed_out:
            status = ToolCallStatus.TIMEOUT
        elif result.is_error:
            status = ToolCallStatus.ERROR
        else:
            status = ToolCallStatus.SUCCESS
        error_message = result.content if result.is_error else None
        self.store.complete_tool_call(
            record.id, task.id, status, result=content, error=error_message
        )
        if result.is_error:
            logger.debug(
                "Tool %s failed: %s", call.name, trunc(result.content, "console.error"),
                extra=tagged("tool"),
            )
        else:
            logger.debug(
                "Tool %s result: %s", call.name, trunc(content, "console.result"),
                extra=tagged("tool"),
            )

        channel.emit(ToolCallEvent(
            tool_call_id=record.id,
            server_name=server_name,
            tool_name=call.name,
            args=args,
            status="error" if result.is_error else "success",
            result=content,
            error_message=error_message,
            duration_ms=timer.elapsed_ms,
        ))
        return self.model_client.make_tool_result_message(
            call.id, content, is_error=result.is_error
        )

    @staticmethod
    def _emit_sub_calls(
        parent_id: str, server_name: str, result: ToolResult, channel: EventChannel
    ) -> None:
        for n, sub in enumerate(result.sub_calls, start=1):
            sub_id = f"{parent_id}-sub-{n}"
            channel.emit(ToolCallEvent(
                tool_call_id=sub_id,
                server_name=server_name,
                tool_name=sub.tool_name,
                args=sub.args,
                status="running",
                is_sub_tool_call=True,
                parent_tool_call_id=parent_id,
            ))
            # Already ran inside the provider, so completion follows immediately
            channel.emit(ToolCallEvent(
                tool_call_id=sub_id,
                server_name=server_name,
                tool_name=sub.tool_name,
                args=sub.args,
                status="error" if sub.is_error else "success",
                result=sub.result,
                error_message=sub.error_message,
                duration_ms=sub.duration_ms,
                is_sub_tool_call=True,
                parent_tool_call_id=parent_id,
            ))

    # -- Termination -----------------------------------------------------------

    def _fail(
        self, task: Task, status: TaskStatus, exc: Exception, channel: EventChannel
    ) -> None:
        message = str(exc) or type(exc).__name__
        code = error_code(exc)
        self.store.complete_task(task.id, status, error=message)
        logger.warning(
            "Task %s ended %s [%s]: %s", task.id, status.value, code, message,
            extra=tagged("task"),
        )
        channel.emit(ErrorEvent(message=message, code=code))
