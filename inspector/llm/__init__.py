"""LLM abstraction layer - backend-neutral interface for model calls.

Re-exports the public API so consumers can write:
    from inspector.llm import ModelClient, AnthropicModelClient, LLMResponse, ...
"""

from .base import ModelClient, LLMResponse, ToolCall, UsageMetadata, FunctionSchema
from .anthropic_adapter import AnthropicModelClient
