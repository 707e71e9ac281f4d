"""
Exception taxonomy for the orchestration engine.

Every error that can end a task carries a ``code`` that is copied verbatim
into the terminal ``error`` event. Tool-level errors (not found, timeout)
are normally absorbed by the gateway and surfaced to the model as data;
the classes exist so callers that invoke providers directly can raise
and catch them.
"""


class InspectorError(Exception):
    """Base class for all engine errors."""

    code = "UNKNOWN_ERROR"


class ProviderConnectionError(InspectorError):
    """Provider could not be launched, or its handshake failed."""

    code = "CONNECTION_ERROR"


class ToolNameConflict(ProviderConnectionError):
    """A provider exposes a tool name already owned by another connected provider."""

    code = "TOOL_NAME_CONFLICT"

    def __init__(self, tool_name: str, owner_id: str, provider_id: str):
        self.tool_name = tool_name
        self.owner_id = owner_id
        self.provider_id = provider_id
        super().__init__(
            f"Tool '{tool_name}' from '{provider_id}' is already provided by '{owner_id}'"
        )


class NoProvidersConnected(InspectorError):
    code = "NO_PROVIDERS"

    def __init__(self, message: str = "no providers connected"):
        super().__init__(message)


class NoToolsAvailable(InspectorError):
    code = "NO_TOOLS"

    def __init__(self, message: str = "no tools available"):
        super().__init__(message)


class ToolNotFound(InspectorError):
    code = "TOOL_NOT_FOUND"


class ToolTimeout(InspectorError):
    code = "TOOL_TIMEOUT"


class ModelServiceError(InspectorError):
    """The language-model call failed.

    ``transient`` marks rate-limit style failures the loop may retry.
    """

    code = "MODEL_ERROR"

    def __init__(self, message: str, *, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class IterationBudgetExceeded(InspectorError):
    code = "MAX_ITERATIONS"


class TaskTimeoutExceeded(InspectorError):
    code = "TASK_TIMEOUT"


class CancelledByCaller(InspectorError):
    code = "CANCELLED"

    def __init__(self, message: str = "Task cancelled by caller"):
        super().__init__(message)


def error_code(exc: BaseException) -> str:
    """Return the event code for *exc* (``UNKNOWN_ERROR`` for foreign exceptions)."""
    if isinstance(exc, InspectorError):
        return exc.code
    return InspectorError.code
