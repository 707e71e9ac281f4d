from __future__ import annotations

import copy
from typing import Any, Callable

import pytest

import config
from config import AppConfig
from inspector.gateway import ToolGateway
from inspector.llm.base import FunctionSchema, LLMResponse, ModelClient, ToolCall, UsageMetadata
from inspector.mcp_client import ToolOutput
from inspector.orchestrator import Orchestrator
from inspector.providers import ConnectionManager, ProviderDefinition
from inspector.trace import TraceStore


# ---- Provider doubles ----

def tool(name: str, description: str = "", schema: dict | None = None) -> dict:
    """Raw ``tools/list`` entry as an MCP server would report it."""
    return {
        "name": name,
        "description": description,
        "inputSchema": schema if schema is not None else {"type": "object", "properties": {}},
    }


def text_output(text: str, *, is_error: bool = False) -> ToolOutput:
    return ToolOutput(content=[{"type": "text", "text": text}], is_error=is_error)


class FakeSession:
    """Test-only session double matching MCPSession's synchronous surface."""

    def __init__(
        self,
        definition: ProviderDefinition,
        tools: list[dict],
        handlers: dict[str, Callable[[dict], Any]],
        *,
        fail_start: Exception | None = None,
    ) -> None:
        self.definition = definition
        self.tools = list(tools)
        self.handlers = handlers
        self.fail_start = fail_start
        self.started = False
        self.closed = False
        self.close_error: Exception | None = None
        self.list_error: Exception | None = None
        self.list_calls = 0
        self.calls: list[tuple[str, dict]] = []

    def start(self) -> None:
        if self.fail_start is not None:
            raise self.fail_start
        self.started = True

    def list_tools(self) -> list[dict]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.tools)

    def call_tool(self, name: str, args: dict, timeout: float = 30.0) -> ToolOutput:
        self.calls.append((name, args))
        handler = self.handlers.get(name)
        if handler is None:
            return text_output(f"{name} ok")
        result = handler(args)
        if isinstance(result, ToolOutput):
            return result
        return text_output(str(result))

    def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeProviders:
    """Session factory plus the definitions it knows how to serve."""

    def __init__(self) -> None:
        self._specs: dict[str, dict[str, Any]] = {}
        self._definitions: dict[str, ProviderDefinition] = {}
        self.fail_start: dict[str, Exception] = {}
        self.sessions: list[FakeSession] = []

    def add(
        self,
        provider_id: str,
        tools: list[dict],
        handlers: dict[str, Callable[[dict], Any]] | None = None,
        *,
        name: str | None = None,
        transport: str = "stdio",
    ) -> ProviderDefinition:
        definition = ProviderDefinition(
            id=provider_id,
            name=name or provider_id.title(),
            command="fake-server",
            args=(provider_id,),
            transport=transport,
        )
        self._definitions[provider_id] = definition
        self._specs[provider_id] = {"tools": tools, "handlers": handlers or {}}
        return definition

    def definitions(self) -> list[ProviderDefinition]:
        return list(self._definitions.values())

    def manager(self) -> ConnectionManager:
        return ConnectionManager(self.definitions(), session_factory=self)

    def latest(self, provider_id: str) -> FakeSession:
        return [s for s in self.sessions if s.definition.id == provider_id][-1]

    def __call__(self, definition: ProviderDefinition) -> FakeSession:
        spec = self._specs[definition.id]
        session = FakeSession(
            definition, spec["tools"], spec["handlers"],
            fail_start=self.fail_start.get(definition.id),
        )
        self.sessions.append(session)
        return session


# ---- Model double ----

def text_reply(
    text: str, *, stop_reason: str = "end_turn", input_tokens: int = 10, output_tokens: int = 5
) -> LLMResponse:
    return LLMResponse(
        text=text,
        usage=UsageMetadata(input_tokens=input_tokens, output_tokens=output_tokens),
        stop_reason=stop_reason,
        content_blocks=[{"type": "text", "text": text}] if text else [],
    )


def tool_reply(
    *calls: tuple[str, dict],
    text: str = "",
    input_tokens: int = 20,
    output_tokens: int = 8,
) -> LLMResponse:
    tool_calls = [
        ToolCall(name=name, args=args, id=f"toolu_{i}") for i, (name, args) in enumerate(calls, 1)
    ]
    blocks = [{"type": "text", "text": text}] if text else []
    blocks += [{"type": "tool_use", "id": c.id, "name": c.name, "input": c.args} for c in tool_calls]
    return LLMResponse(
        text=text,
        tool_calls=tool_calls,
        usage=UsageMetadata(input_tokens=input_tokens, output_tokens=output_tokens),
        stop_reason="tool_use",
        content_blocks=blocks,
    )


class FakeModelClient(ModelClient):
    """Replays a script of responses (or exceptions), then ``default``."""

    def __init__(self, script: list[Any] | None = None, *, default: Any = None) -> None:
        self.script = list(script or [])
        self.default = default
        self.calls: list[dict[str, Any]] = []

    def complete(
        self,
        system_prompt: str,
        tools: list[FunctionSchema],
        messages: list[dict],
        *,
        model: str,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        self.calls.append({
            "system": system_prompt,
            "tools": [t.name for t in tools],
            "messages": copy.deepcopy(messages),
            "model": model,
        })
        item = self.script.pop(0) if self.script else self.default
        if item is None:
            item = text_reply("done")
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(messages)
        return item

    def make_tool_result_message(
        self, tool_call_id: str | None, content: str, *, is_error: bool = False
    ) -> dict:
        return {
            "type": "tool_result",
            "tool_use_id": tool_call_id,
            "content": content,
            "is_error": is_error,
        }


# ---- Fixtures ----

@pytest.fixture(autouse=True)
def _isolated_data_dir(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MCP_INSPECTOR_DIR", str(tmp_path))
    config._reset_data_dir()
    yield
    config._reset_data_dir()


@pytest.fixture
def providers() -> FakeProviders:
    fp = FakeProviders()
    fp.add(
        "filesystem",
        [tool("read_file", "Read a file"), tool("list_directory", "List a directory")],
        name="Filesystem",
    )
    fp.add("search", [tool("web_search", "Search the web")], name="Brave Search")
    return fp


@pytest.fixture
def manager(providers: FakeProviders) -> ConnectionManager:
    return providers.manager()


@pytest.fixture
def store() -> TraceStore:
    return TraceStore()


@pytest.fixture
def fast_config() -> AppConfig:
    return AppConfig(
        max_iterations=20,
        tool_timeout_ms=500,
        task_timeout_ms=30_000,
        rate_limit_backoff_ms=0,
        rate_limit_max_retries=3,
    )


@pytest.fixture
def make_orchestrator(manager: ConnectionManager, store: TraceStore, fast_config: AppConfig):
    def _make(
        model_client: ModelClient,
        *,
        app_config: AppConfig | None = None,
        mgr: ConnectionManager | None = None,
    ) -> Orchestrator:
        m = mgr or manager
        return Orchestrator(
            manager=m,
            gateway=ToolGateway(m),
            model_client=model_client,
            store=store,
            app_config=app_config or fast_config,
            system_prompt="test prompt",
        )

    return _make
