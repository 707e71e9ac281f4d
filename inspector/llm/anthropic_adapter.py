"""Anthropic client - wraps the ``anthropic`` SDK for Claude models.

This is the **only** module that imports the ``anthropic`` package.

Anthropic API notes that shape the conversation:
- System prompt is a separate ``system`` parameter, not a message.
- Strict user/assistant alternation - consecutive same-role messages
  must be merged.
- Tool results are sent inside a ``user`` message with ``tool_result`` blocks.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import anthropic

from ..errors import ModelServiceError
from .base import (
    FunctionSchema,
    LLMResponse,
    ModelClient,
    ToolCall,
    UsageMetadata,
    looks_like_rate_limit,
)

logger = logging.getLogger("mcp_inspector")

# HTTP statuses worth retrying: rate limited, overloaded
_TRANSIENT_STATUSES = frozenset({429, 529})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to Anthropic tool format."""
    if not schemas:
        return None
    return [
        {
            "name": s.name,
            "description": s.description,
            "input_schema": s.parameters,
        }
        for s in schemas
    ]


def _block_to_dict(block) -> dict | None:
    if block.type == "text":
        return {"type": "text", "text": block.text}
    if block.type == "tool_use":
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": block.input if isinstance(block.input, dict) else {},
        }
    return None


def _parse_response(raw) -> LLMResponse:
    """Parse an Anthropic Messages response into a backend-neutral LLMResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    blocks: list[dict] = []

    for block in raw.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use":
            tool_calls.append(
                ToolCall(
                    name=block.name,
                    args=block.input if isinstance(block.input, dict) else {},
                    id=block.id,
                )
            )
        as_dict = _block_to_dict(block)
        if as_dict is not None:
            blocks.append(as_dict)

    usage = UsageMetadata()
    if raw.usage:
        usage = UsageMetadata(
            input_tokens=getattr(raw.usage, "input_tokens", 0) or 0,
            output_tokens=getattr(raw.usage, "output_tokens", 0) or 0,
        )

    return LLMResponse(
        text="".join(text_parts),
        tool_calls=tool_calls,
        usage=usage,
        stop_reason=raw.stop_reason,
        content_blocks=blocks,
        raw=raw,
    )


def _as_blocks(content) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content)


def _ensure_alternation(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages; the Messages API requires strict alternation."""
    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev["content"] = _as_blocks(prev.get("content", "")) + _as_blocks(msg.get("content", ""))
        else:
            merged.append(dict(msg))
    return merged


def is_transient_error(exc: Exception) -> bool:
    """Return True if ``exc`` is a rate-limit or overload error worth retrying."""
    if isinstance(exc, anthropic.RateLimitError):
        return True
    if isinstance(exc, anthropic.APIStatusError):
        return exc.status_code in _TRANSIENT_STATUSES
    return looks_like_rate_limit(exc)


# ---------------------------------------------------------------------------
# AnthropicModelClient
# ---------------------------------------------------------------------------


class AnthropicModelClient(ModelClient):
    """Model client that wraps the ``anthropic`` SDK.

    Construct once at startup and hand the instance to the orchestrator.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout_ms: int = 300_000,
        client: Any = None,
    ):
        if client is not None:
            self._client = client
            return
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")
        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": timeout_ms / 1000.0,
            # Rate limits are retried by the orchestrator, without iteration cost
            "max_retries": 0,
        }
        if base_url:
            kwargs["base_url"] = base_url
        self._client = anthropic.Anthropic(**kwargs)

    def complete(
        self,
        system_prompt: str,
        tools: list[FunctionSchema],
        messages: list[dict],
        *,
        model: str,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": _ensure_alternation(messages),
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        anthropic_tools = _build_tools(tools)
        if anthropic_tools:
            kwargs["tools"] = anthropic_tools

        try:
            raw = self._client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            transient = is_transient_error(exc)
            logger.debug("Anthropic call failed (transient=%s): %s", transient, exc)
            raise ModelServiceError(str(exc), transient=transient) from exc

        return _parse_response(raw)

    def make_tool_result_message(
        self, tool_call_id: str | None, content: str, *, is_error: bool = False
    ) -> dict:
        """Build an Anthropic tool_result content block."""
        return {
            "type": "tool_result",
            "tool_use_id": tool_call_id or f"toolu_{uuid.uuid4().hex[:24]}",
            "content": content,
            "is_error": is_error,
        }
