"""NDJSON bridge: sync orchestrator thread → async HTTP stream."""

import asyncio
from typing import AsyncIterator

from inspector.events import Event, to_ndjson


class NDJSONBridge:
    """Bridge between the orchestrator's event channel and an async response body.

    Usage:
        bridge = NDJSONBridge(loop)
        channel.subscribe(bridge.callback)
        # worker thread runs the task, then calls bridge.finish()
        async for line in bridge.lines():
            yield line
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()

    def callback(self, event: Event) -> None:
        """Thread-safe listener invoked from the orchestrator thread."""
        self._loop.call_soon_threadsafe(self._queue.put_nowait, to_ndjson(event))

    def finish(self) -> None:
        """Signal the stream is complete."""
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def lines(self) -> AsyncIterator[str]:
        """Async generator yielding NDJSON lines until the stream ends."""
        while True:
            line = await self._queue.get()
            if line is None:
                break
            yield line

