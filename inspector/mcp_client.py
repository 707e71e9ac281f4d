"""
Synchronous MCP session over a stdio subprocess.

Each ``MCPSession`` spawns one provider process and runs its async MCP
client on a background daemon thread with a private event loop. Callers
stay synchronous: coroutines are submitted with
``asyncio.run_coroutine_threadsafe`` and awaited with a timeout.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from .errors import ProviderConnectionError, ToolTimeout

logger = logging.getLogger("mcp_inspector")

CLIENT_NAME = "mcp-inspector"
CLIENT_VERSION = "1.0.0"

# Added to the SDK read timeout so the caller's deadline always expires first
READ_TIMEOUT_GRACE_S = 5.0


@dataclass
class ToolOutput:
    """Raw outcome of one ``tools/call``: content blocks as dicts plus the error flag."""
    content: list[dict] = field(default_factory=list)
    is_error: bool = False


class MCPSession:
    """Persistent MCP connection to one stdio provider.

    Lifecycle: ``start()`` -> ``list_tools()`` / ``call_tool()`` -> ``close()``.
    """

    def __init__(self, definition, *, connect_timeout_s: float = 30.0):
        self.definition = definition
        self._connect_timeout_s = connect_timeout_s
        self._session = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._error: Optional[str] = None
        self._closed = False
        self._stdio_cm = None
        self._session_cm = None
        self._tools: list[dict] = []

    # -- Lifecycle ---------------------------------------------------------------

    def start(self) -> None:
        """Spawn the subprocess and complete the MCP handshake.

        Raises:
            ProviderConnectionError: if the process cannot be launched or the
                handshake does not finish within the connect timeout.
        """
        name = self.definition.name
        self._thread = threading.Thread(
            target=self._run_loop, name=f"mcp-{self.definition.id}", daemon=True
        )
        self._thread.start()
        if not self._ready.wait(timeout=self._connect_timeout_s):
            self.close()
            raise ProviderConnectionError(
                f"Failed to connect to {name}: handshake timed out after "
                f"{int(self._connect_timeout_s * 1000)}ms"
            )
        if self._error:
            raise ProviderConnectionError(f"Failed to connect to {name}: {self._error}")

    def _run_loop(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._async_connect())
            # Serve call_tool/list_tools requests until close()
            loop.run_forever()
        except Exception as e:
            self._error = str(e) or type(e).__name__
            self._ready.set()
        finally:
            try:
                loop.run_until_complete(self._async_cleanup())
            except Exception as e:
                logger.debug("MCP cleanup for %s failed: %s", self.definition.id, e)
            loop.close()

    async def _async_connect(self) -> None:
        from mcp.client.session import ClientSession
        from mcp.client.stdio import StdioServerParameters, stdio_client
        from mcp.types import Implementation

        env = {**os.environ, **dict(self.definition.env)}
        server_params = StdioServerParameters(
            command=self.definition.command,
            args=list(self.definition.args),
            env=env,
        )

        self._stdio_cm = stdio_client(server_params)
        read_stream, write_stream = await self._stdio_cm.__aenter__()

        self._session_cm = ClientSession(
            read_stream,
            write_stream,
            client_info=Implementation(name=CLIENT_NAME, version=CLIENT_VERSION),
        )
        self._session = await self._session_cm.__aenter__()
        await self._session.initialize()

        self._tools = await self._async_list_tools()
        self._ready.set()

    async def _async_list_tools(self) -> list[dict]:
        result = await self._session.list_tools()
        return [
            {
                "name": t.name,
                "description": t.description,
                "inputSchema": getattr(t, "inputSchema", None),
            }
            for t in result.tools
        ]

    async def _async_cleanup(self) -> None:
        # Exit in reverse order of entry
        for cm in (self._session_cm, self._stdio_cm):
            if cm is None:
                continue
            try:
                await cm.__aexit__(None, None, None)
            except Exception as e:
                logger.debug("MCP context exit for %s failed: %s", self.definition.id, e)

    def close(self) -> None:
        """Shut down the session, the subprocess and the background thread."""
        if self._closed:
            return
        self._closed = True
        if self._loop and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=5)

    def is_connected(self) -> bool:
        return (
            self._session is not None
            and self._loop is not None
            and self._loop.is_running()
            and not self._closed
        )

    # -- Requests ------------------------------------------------------------------

    def _submit(self, coro, timeout: float) -> Any:
        if self._closed:
            coro.close()
            raise RuntimeError(f"MCP session for {self.definition.name} has been closed")
        if self._session is None or self._loop is None:
            coro.close()
            raise RuntimeError(f"MCP session for {self.definition.name} not connected")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def list_tools(self, timeout: float = 30.0) -> list[dict]:
        """Issue ``tools/list``. Also used as the health-check probe."""
        self._tools = self._submit(self._async_list_tools(), timeout)
        return list(self._tools)

    def call_tool(self, name: str, args: dict, timeout: float = 30.0) -> ToolOutput:
        """Call an MCP tool synchronously.

        Raises:
            ToolTimeout: if no response arrives within *timeout* seconds.
            RuntimeError: if the session is closed or not connected.
        """

        async def _call():
            return await self._session.call_tool(
                name=name,
                arguments=args,
                read_timeout_seconds=timedelta(seconds=timeout + READ_TIMEOUT_GRACE_S),
            )

        try:
            result = self._submit(_call(), timeout)
        except concurrent.futures.TimeoutError:
            raise ToolTimeout(
                f"Tool execution timed out after {int(timeout * 1000)}ms"
            ) from None

        content = [
            block.model_dump(mode="json", exclude_none=True)
            if hasattr(block, "model_dump") else dict(block)
            for block in (result.content or [])
        ]
        return ToolOutput(content=content, is_error=bool(result.isError))


def create_session(definition, *, connect_timeout_s: float = 30.0) -> MCPSession:
    """Default session factory used by the connection manager."""
    return MCPSession(definition, connect_timeout_s=connect_timeout_s)
