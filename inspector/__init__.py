"""Agent orchestration engine: provider sessions, tool gateway, trace store and loop.

Lazy imports keep ``import inspector`` cheap and avoid the cycle
config -> inspector.providers -> inspector.logging -> config.
"""


def __getattr__(name: str):
    if name in ("Orchestrator", "tools_to_schemas"):
        from . import orchestrator
        return getattr(orchestrator, name)
    if name in ("ConnectionManager", "ProviderDefinition", "ToolDescriptor", "ProviderStatus"):
        from . import providers
        return getattr(providers, name)
    if name in ("ToolGateway", "ToolResult"):
        from . import gateway
        return getattr(gateway, name)
    if name in ("TraceStore", "TaskStatus"):
        from . import trace
        return getattr(trace, name)
    if name == "EventChannel":
        from .events import EventChannel
        return EventChannel
    raise AttributeError(f"module 'inspector' has no attribute {name!r}")
