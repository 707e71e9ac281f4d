from __future__ import annotations

import json
import time

import pytest

from inspector.gateway import ToolGateway, flatten_content, parse_composite
from inspector.mcp_client import ToolOutput

from .conftest import FakeProviders, text_output, tool


@pytest.fixture
def gateway(providers: FakeProviders):
    def slow(args):
        time.sleep(0.5)
        return "too late"

    def explode(args):
        raise RuntimeError("disk on fire")

    composite = json.dumps({
        "toolCalls": [
            {"toolName": "read_file", "args": {"path": "/a"}, "status": "success",
             "result": "A", "durationMs": 4},
            {"toolName": "read_file", "args": {"path": "/b"}, "status": "error",
             "errorMessage": "ENOENT", "durationMs": 1},
        ],
        "finalResult": "read 1 of 2 files",
    })

    providers.add("code", [
        tool("echo"), tool("slow"), tool("explode"), tool("fails"),
        tool("image"), tool("multi"), tool("composite"), tool("plain_json"),
    ], {
        "echo": lambda args: f"echo {args.get('text', '')}",
        "slow": slow,
        "explode": explode,
        "fails": lambda args: text_output("permission denied", is_error=True),
        "image": lambda args: ToolOutput(content=[{"type": "image", "data": "AAA", "mimeType": "image/png"}]),
        "multi": lambda args: ToolOutput(content=[
            {"type": "text", "text": "line 1"}, {"type": "text", "text": "line 2"},
        ]),
        "composite": lambda args: composite,
        "plain_json": lambda args: json.dumps({"toolCalls": [], "other": 1}),
    }, name="Code Runner")
    manager = providers.manager()
    manager.connect_many(["code"])
    gw = ToolGateway(manager)
    yield gw
    gw.shutdown()


def test_unknown_tool_is_data_not_exception(gateway: ToolGateway) -> None:
    result = gateway.invoke("nope", {})

    assert result.is_error
    assert result.kind == "not_found"
    assert result.content == "Tool not found: nope"
    assert result.provider_name is None


def test_success_returns_text(gateway: ToolGateway) -> None:
    result = gateway.invoke("echo", {"text": "hi"})

    assert not result.is_error
    assert result.kind is None
    assert result.content == "echo hi"
    assert result.provider_name == "Code Runner"


def test_text_blocks_are_joined_with_newlines(gateway: ToolGateway) -> None:
    assert gateway.invoke("multi", {}).content == "line 1\nline 2"


def test_non_text_content_falls_back_to_json(gateway: ToolGateway) -> None:
    result = gateway.invoke("image", {})

    assert json.loads(result.content) == [{"type": "image", "data": "AAA", "mimeType": "image/png"}]


def test_provider_reported_error(gateway: ToolGateway) -> None:
    result = gateway.invoke("fails", {})

    assert result.is_error
    assert result.kind == "error"
    assert result.content == "permission denied"


def test_provider_exception_is_normalized(gateway: ToolGateway) -> None:
    result = gateway.invoke("explode", {})

    assert result.is_error
    assert result.kind == "error"
    assert result.content == "Tool execution failed: disk on fire"


def test_timeout_returns_promptly(gateway: ToolGateway) -> None:
    started = time.monotonic()
    result = gateway.invoke("slow", {}, timeout_s=0.05)
    elapsed = time.monotonic() - started

    assert result.is_error
    assert result.timed_out
    assert result.content == "Tool execution timed out after 50ms"
    assert elapsed < 0.4


def test_composite_outcome_exposes_sub_calls(gateway: ToolGateway) -> None:
    result = gateway.invoke("composite", {})

    assert result.final_result == "read 1 of 2 files"
    assert [s.tool_name for s in result.sub_calls] == ["read_file", "read_file"]
    assert result.sub_calls[0].result == "A"
    assert result.sub_calls[1].is_error
    assert result.sub_calls[1].error_message == "ENOENT"


def test_json_without_final_result_is_not_composite(gateway: ToolGateway) -> None:
    result = gateway.invoke("plain_json", {})

    assert result.sub_calls == ()
    assert result.final_result is None


def test_helpers_tolerate_odd_payloads() -> None:
    assert flatten_content([]) == "[]"
    assert parse_composite("not json") == ((), None)
    assert parse_composite("[1, 2]") == ((), None)
    subs, final = parse_composite(json.dumps({
        "toolCalls": [{"args": {}}, {"toolName": "ok", "result": {"n": 1}}],
        "finalResult": "",
    }))
    assert [s.tool_name for s in subs] == ["ok"]
    assert subs[0].result == '{"n": 1}'
    assert subs[0].status == "success"
    assert final == ""
