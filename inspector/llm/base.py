"""Backend-neutral types and the abstract model client.

The orchestrator depends on these types only, never on the provider SDK.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    """A single tool invocation requested by the model.

    Attributes:
        name: Tool name.
        args: Parsed arguments dict.
        id: Provider-assigned call id (``toolu_xxxxx``); echoed back in the
            matching tool result.
    """
    name: str
    args: dict
    id: str | None = None


@dataclass
class UsageMetadata:
    """Normalized token counts."""
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class LLMResponse:
    """Backend-neutral response from one model call.

    Attributes:
        text: Concatenated text output.
        tool_calls: Requested tool invocations, in the order returned.
        usage: Token usage for this call.
        stop_reason: Why generation stopped (``end_turn``, ``tool_use``,
            ``max_tokens``...).
        content_blocks: The assistant turn as message-ready dicts, appended
            to the conversation verbatim.
        raw: The original SDK response object.
    """
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    stop_reason: str | None = None
    content_blocks: list[dict] = field(default_factory=list)
    raw: Any = None


@dataclass
class FunctionSchema:
    """A tool declaration as sent to the model.

    ``parameters`` is the JSON schema of the tool input.
    """
    name: str
    description: str
    parameters: dict


# ---------------------------------------------------------------------------
# ModelClient ABC
# ---------------------------------------------------------------------------

class ModelClient(ABC):
    """Interface of the language-model service consumed by the orchestrator."""

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        tools: list[FunctionSchema],
        messages: list[dict],
        *,
        model: str,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Run one model call over the full conversation.

        Raises:
            ModelServiceError: on any service failure; ``transient=True``
                for rate-limit/overload errors.
        """

    @abstractmethod
    def make_tool_result_message(
        self, tool_call_id: str | None, content: str, *, is_error: bool = False
    ) -> dict:
        """Build one tool-result block for the next user turn."""


def looks_like_rate_limit(exc: Exception) -> bool:
    """Heuristic for rate-limit errors raised outside the SDK's typed hierarchy."""
    msg = str(exc).lower()
    return "429" in msg or "rate limit" in msg or "rate_limit" in msg
