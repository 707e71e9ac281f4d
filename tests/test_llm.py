from __future__ import annotations

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from inspector.errors import ModelServiceError
from inspector.llm import AnthropicModelClient, FunctionSchema
from inspector.llm.anthropic_adapter import _build_tools, _ensure_alternation, _parse_response

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _raw(*blocks, stop_reason="tool_use", usage=(12, 34)):
    return SimpleNamespace(
        content=list(blocks),
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=usage[0], output_tokens=usage[1]),
    )


class _Messages:
    def __init__(self, outcome):
        self.outcome = outcome
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _client(outcome) -> tuple[AnthropicModelClient, _Messages]:
    messages = _Messages(outcome)
    return AnthropicModelClient("", client=SimpleNamespace(messages=messages)), messages


def test_parse_response_splits_text_and_tool_use() -> None:
    raw = _raw(
        SimpleNamespace(type="text", text="Let me look. "),
        SimpleNamespace(type="tool_use", id="toolu_9", name="read_file", input={"path": "/a"}),
        SimpleNamespace(type="text", text="Done."),
    )

    response = _parse_response(raw)

    assert response.text == "Let me look. Done."
    assert [(c.name, c.args, c.id) for c in response.tool_calls] == [("read_file", {"path": "/a"}, "toolu_9")]
    assert response.usage.input_tokens == 12
    assert response.usage.output_tokens == 34
    assert response.stop_reason == "tool_use"
    assert response.content_blocks[1] == {
        "type": "tool_use", "id": "toolu_9", "name": "read_file", "input": {"path": "/a"},
    }


def test_ensure_alternation_merges_same_role() -> None:
    merged = _ensure_alternation([
        {"role": "user", "content": "hi"},
        {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t", "content": "x"}]},
        {"role": "assistant", "content": "ok"},
    ])

    assert len(merged) == 2
    assert merged[0]["content"][0] == {"type": "text", "text": "hi"}
    assert merged[0]["content"][1]["type"] == "tool_result"


def test_build_tools() -> None:
    assert _build_tools([]) is None
    assert _build_tools([FunctionSchema("f", "does f", {"type": "object"})]) == [
        {"name": "f", "description": "does f", "input_schema": {"type": "object"}},
    ]


def test_complete_sends_system_tools_and_model() -> None:
    client, messages = _client(_raw(SimpleNamespace(type="text", text="hi"), stop_reason="end_turn"))

    response = client.complete(
        "sys", [FunctionSchema("f", "d", {"type": "object"})],
        [{"role": "user", "content": "q"}], model="claude-sonnet-4-20250514", max_tokens=99,
    )

    assert response.text == "hi"
    assert messages.kwargs["system"] == "sys"
    assert messages.kwargs["model"] == "claude-sonnet-4-20250514"
    assert messages.kwargs["max_tokens"] == 99
    assert messages.kwargs["tools"][0]["name"] == "f"


def test_rate_limit_maps_to_transient_error() -> None:
    error = anthropic.RateLimitError(
        "rate limited", response=httpx.Response(429, request=_REQUEST), body=None,
    )
    client, _ = _client(error)

    with pytest.raises(ModelServiceError) as excinfo:
        client.complete("", [], [{"role": "user", "content": "q"}], model="m")

    assert excinfo.value.transient is True


def test_server_error_is_not_transient() -> None:
    error = anthropic.InternalServerError(
        "boom", response=httpx.Response(500, request=_REQUEST), body=None,
    )
    client, _ = _client(error)

    with pytest.raises(ModelServiceError) as excinfo:
        client.complete("", [], [{"role": "user", "content": "q"}], model="m")

    assert excinfo.value.transient is False
    assert excinfo.value.code == "MODEL_ERROR"


def test_missing_api_key_is_rejected() -> None:
    with pytest.raises(ValueError):
        AnthropicModelClient("")


def test_tool_result_block() -> None:
    client, _ = _client(None)

    block = client.make_tool_result_message("toolu_1", "result text", is_error=True)

    assert block == {
        "type": "tool_result", "tool_use_id": "toolu_1", "content": "result text", "is_error": True,
    }
