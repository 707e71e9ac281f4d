"""
Provider registry and connection manager.

Owns the provider definitions, the live sessions and their tool snapshots.
All mutation goes through ``ConnectionManager``; the provider map is
guarded by a re-entrant lock so the health-check thread and the
orchestrator never see a half-restarted entry.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ProviderConnectionError, ToolNameConflict
from .logging import tagged
from .mcp_client import ToolOutput, create_session
from .tool_timing import utc_now

logger = logging.getLogger("mcp_inspector")

DEFAULT_HEALTH_CHECK_INTERVAL_S = 30.0


# ---------------------------------------------------------------------------
# Definitions and descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderDefinition:
    """Static description of a tool provider process."""
    id: str
    name: str
    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    transport: str = "stdio"

    def __hash__(self) -> int:
        return hash(self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "command": self.command,
            "args": list(self.args),
            "transport": self.transport,
        }


class ProviderStatus(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ToolDescriptor(BaseModel):
    """Validated, immutable snapshot of one tool exposed by a provider."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="inputSchema",
    )
    provider_id: Optional[str] = None
    provider_name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("tool name is blank")
        return v

    @field_validator("description", mode="before")
    @classmethod
    def _description_default(cls, v):
        return v or ""

    @field_validator("input_schema", mode="before")
    @classmethod
    def _schema_default(cls, v):
        return {"type": "object", "properties": {}} if v is None else v

    @field_validator("input_schema")
    @classmethod
    def _schema_is_object(cls, v: dict) -> dict:
        if v.get("type") != "object":
            raise ValueError("input schema must have type 'object'")
        return v

    def tagged_with(self, definition: ProviderDefinition) -> "ToolDescriptor":
        return self.model_copy(
            update={"provider_id": definition.id, "provider_name": definition.name}
        )


class Session(Protocol):
    """What the manager needs from a live provider session."""

    def start(self) -> None: ...
    def list_tools(self) -> list[dict]: ...
    def call_tool(self, name: str, args: dict, timeout: float = ...) -> ToolOutput: ...
    def close(self) -> None: ...


SessionFactory = Callable[[ProviderDefinition], Session]


@dataclass
class ConnectedProvider:
    definition: ProviderDefinition
    session: Session
    tools: tuple[ToolDescriptor, ...]
    status: ProviderStatus = ProviderStatus.CONNECTED
    last_health_check: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def name(self) -> str:
        return self.definition.name

    def has_tool(self, tool_name: str) -> bool:
        return any(t.name == tool_name for t in self.tools)


def validate_tools(definition: ProviderDefinition, raw_tools: Iterable[dict]) -> tuple[ToolDescriptor, ...]:
    """Validate raw ``tools/list`` entries, dropping (and logging) invalid ones."""
    valid: list[ToolDescriptor] = []
    for raw in raw_tools:
        try:
            valid.append(ToolDescriptor.model_validate(raw).tagged_with(definition))
        except ValidationError as e:
            name = raw.get("name") if isinstance(raw, dict) else None
            logger.warning(
                "Quarantined tool %r from %s: %s",
                name, definition.name, "; ".join(err["msg"] for err in e.errors()),
                extra=tagged("providers"),
            )
    return tuple(valid)


# ---------------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------------

class ConnectionManager:
    """Connects, health-checks and restarts tool providers."""

    def __init__(
        self,
        definitions: Iterable[ProviderDefinition],
        session_factory: Optional[SessionFactory] = None,
    ):
        self._definitions: dict[str, ProviderDefinition] = {d.id: d for d in definitions}
        self._session_factory = session_factory or create_session
        self._providers: dict[str, ConnectedProvider] = {}
        self._status: dict[str, ProviderStatus] = {}
        self._lock = threading.RLock()
        self._health_thread: Optional[threading.Thread] = None
        self._health_stop = threading.Event()

    # -- Connect / disconnect ------------------------------------------------

    def connect(self, definition: ProviderDefinition) -> ConnectedProvider:
        """Launch *definition*, list and validate its tools, and register it.

        Raises:
            ProviderConnectionError: launch, handshake or transport failure.
            ToolNameConflict: a tool name is already owned by another provider.
        """
        logger.info("Connecting to provider: %s...", definition.name, extra=tagged("providers"))
        if definition.transport != "stdio":
            self._set_status(definition.id, ProviderStatus.ERROR)
            raise ProviderConnectionError(f"Unsupported transport: {definition.transport}")

        session = self._session_factory(definition)
        try:
            session.start()
            tools = validate_tools(definition, session.list_tools())
        except ProviderConnectionError:
            self._abandon(definition, session)
            raise
        except Exception as e:
            self._abandon(definition, session)
            raise ProviderConnectionError(f"Failed to connect to {definition.name}: {e}") from e

        with self._lock:
            names = {t.name for t in tools}
            for other in self._providers.values():
                if other.id == definition.id:
                    continue
                clash = next((t.name for t in other.tools if t.name in names), None)
                if clash is not None:
                    self._abandon(definition, session)
                    raise ToolNameConflict(clash, other.id, definition.id)

            previous = self._providers.get(definition.id)
            connected = ConnectedProvider(
                definition=definition,
                session=session,
                tools=tools,
                last_health_check=utc_now(),
            )
            self._providers[definition.id] = connected
            self._status[definition.id] = ProviderStatus.CONNECTED

        if previous is not None:
            self._close_session(previous)
        logger.info(
            "Connected to %s with %d tools: %s",
            definition.name, len(tools), ", ".join(t.name for t in tools),
            extra=tagged("providers"),
        )
        return connected

    def connect_many(self, provider_ids: Iterable[str]) -> list[ConnectedProvider]:
        """Connect each id not already connected; failures are logged and skipped."""
        results: list[ConnectedProvider] = []
        for provider_id in provider_ids:
            with self._lock:
                existing = self._providers.get(provider_id)
            if existing is not None and existing.status is ProviderStatus.CONNECTED:
                results.append(existing)
                continue

            definition = self._definitions.get(provider_id)
            if definition is None:
                logger.warning("Provider not found: %s", provider_id, extra=tagged("providers"))
                continue

            try:
                results.append(self.connect(definition))
            except ProviderConnectionError as e:
                logger.error("Failed to connect %s: %s", provider_id, e, extra=tagged("providers"))
        return results

    def disconnect(self, provider_id: str) -> None:
        with self._lock:
            connected = self._providers.pop(provider_id, None)
            if connected is None:
                return
            self._status[provider_id] = ProviderStatus.DISCONNECTED
        logger.info("Disconnecting from provider: %s...", connected.name, extra=tagged("providers"))
        connected.status = ProviderStatus.DISCONNECTED
        self._close_session(connected)

    def disconnect_all(self) -> None:
        logger.info("Disconnecting from all providers...", extra=tagged("providers"))
        with self._lock:
            ids = list(self._providers)
        for provider_id in ids:
            self.disconnect(provider_id)

    def restart(self, provider_id: str) -> ConnectedProvider:
        """Disconnect then reconnect *provider_id* with its stored definition.

        Raises:
            ProviderConnectionError: unknown id or reconnection failure.
        """
        logger.info("Restarting provider: %s...", provider_id, extra=tagged("providers"))
        with self._lock:
            self.disconnect(provider_id)
            definition = self._definitions.get(provider_id)
            if definition is None:
                raise ProviderConnectionError(f"Cannot restart - provider not found: {provider_id}")
            return self.connect(definition)

    # -- Tool discovery ------------------------------------------------------

    def list_tools(self, provider_ids: Optional[Iterable[str]] = None) -> list[ToolDescriptor]:
        """Tools of the given (default: all) connected providers, in provider order."""
        with self._lock:
            ids = list(self._providers) if provider_ids is None else list(provider_ids)
            tools: list[ToolDescriptor] = []
            for provider_id in ids:
                connected = self._providers.get(provider_id)
                if connected is not None:
                    tools.extend(connected.tools)
            return tools

    def find_owner(self, tool_name: str) -> Optional[ConnectedProvider]:
        with self._lock:
            for connected in self._providers.values():
                if connected.has_tool(tool_name):
                    return connected
        return None

    # -- Health checks -------------------------------------------------------

    def health_check_all(self) -> None:
        """Probe every connected provider with ``tools/list``; restart failures."""
        logger.debug("Running health checks...", extra=tagged("health"))
        with self._lock:
            snapshot = list(self._providers.items())
        for provider_id, connected in snapshot:
            try:
                connected.session.list_tools()
            except Exception as e:
                logger.error(
                    "Health check failed for %s: %s", connected.name, e, extra=tagged("health")
                )
                with self._lock:
                    # Disconnected or replaced while probing: leave it alone.
                    if self._providers.get(provider_id) is not connected:
                        logger.debug(
                            "Skipping restart of %s: no longer connected", provider_id,
                            extra=tagged("health"),
                        )
                        continue
                    connected.status = ProviderStatus.ERROR
                    self._status[provider_id] = ProviderStatus.ERROR
                    try:
                        self.restart(provider_id)
                    except ProviderConnectionError as restart_error:
                        logger.error(
                            "Failed to restart %s: %s", provider_id, restart_error,
                            extra=tagged("health"),
                        )
                continue
            with self._lock:
                if self._providers.get(provider_id) is not connected:
                    continue
                connected.status = ProviderStatus.CONNECTED
                connected.last_health_check = utc_now()
                self._status[provider_id] = ProviderStatus.CONNECTED

    def start_health_checks(self, interval_s: float = DEFAULT_HEALTH_CHECK_INTERVAL_S) -> None:
        self.stop_health_checks()
        self._health_stop = threading.Event()
        stop = self._health_stop

        def _loop() -> None:
            while not stop.wait(interval_s):
                try:
                    self.health_check_all()
                except Exception:
                    logger.exception("Health check sweep crashed", extra=tagged("health"))

        self._health_thread = threading.Thread(target=_loop, name="health-checks", daemon=True)
        self._health_thread.start()
        logger.info(
            "Health checks started (interval: %dms)", int(interval_s * 1000),
            extra=tagged("health"),
        )

    def stop_health_checks(self) -> None:
        if self._health_thread is None:
            return
        self._health_stop.set()
        self._health_thread.join(timeout=5)
        self._health_thread = None
        logger.info("Health checks stopped", extra=tagged("health"))

    @property
    def health_checks_running(self) -> bool:
        return self._health_thread is not None and self._health_thread.is_alive()

    # -- Queries -------------------------------------------------------------

    def get(self, provider_id: str) -> Optional[ConnectedProvider]:
        with self._lock:
            return self._providers.get(provider_id)

    def is_connected(self, provider_id: str) -> bool:
        with self._lock:
            connected = self._providers.get(provider_id)
            return connected is not None and connected.status is ProviderStatus.CONNECTED

    def connected_ids(self) -> list[str]:
        with self._lock:
            return list(self._providers)

    def status(self, provider_id: str) -> ProviderStatus:
        with self._lock:
            return self._status.get(provider_id, ProviderStatus.DISCONNECTED)

    def statuses(self) -> dict[str, ProviderStatus]:
        """Status of every known definition (disconnected when never connected)."""
        with self._lock:
            return {pid: self.status(pid) for pid in self._definitions}

    def definitions(self) -> list[ProviderDefinition]:
        return list(self._definitions.values())

    def definition(self, provider_id: str) -> Optional[ProviderDefinition]:
        return self._definitions.get(provider_id)

    # -- Internals -----------------------------------------------------------

    def _set_status(self, provider_id: str, status: ProviderStatus) -> None:
        with self._lock:
            self._status[provider_id] = status

    def _abandon(self, definition: ProviderDefinition, session: Session) -> None:
        self._set_status(definition.id, ProviderStatus.ERROR)
        try:
            session.close()
        except Exception as e:
            logger.debug("Closing failed session for %s: %s", definition.id, e)

    def _close_session(self, connected: ConnectedProvider) -> None:
        try:
            connected.session.close()
        except Exception as e:
            logger.error("Error disconnecting %s: %s", connected.name, e, extra=tagged("providers"))
