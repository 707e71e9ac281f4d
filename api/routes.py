"""REST + NDJSON endpoints for the FastAPI backend."""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict

import config
from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from inspector.events import ErrorEvent, EventChannel
from inspector.logging import tagged
from inspector.orchestrator import Orchestrator
from inspector.providers import ConnectionManager
from inspector.trace import TraceStore

from .models import ProviderInfo, RunRequest, ServerStatus
from .streaming import NDJSONBridge

logger = logging.getLogger("mcp_inspector")

router = APIRouter(prefix="/api")

# These are injected by app.py lifespan
orchestrator: Orchestrator = None  # type: ignore[assignment]
manager: ConnectionManager = None  # type: ignore[assignment]
store: TraceStore = None  # type: ignore[assignment]
_start_time: float = 0.0
_thread_pool: ThreadPoolExecutor = None  # type: ignore[assignment]

# One task at a time
_run_lock = threading.Lock()


# ---- Health / providers ----

@router.get("/health")
async def health():
    return ServerStatus(
        status="ok",
        connected_providers=len(manager.connected_ids()),
        known_providers=len(manager.definitions()),
        busy=_run_lock.locked(),
        health_checks=manager.health_checks_running,
        uptime_seconds=round(time.time() - _start_time, 1),
        api_key_configured=bool(config.get_api_key()),
    )


@router.get("/providers")
async def list_providers():
    statuses = manager.statuses()
    result = []
    for definition in manager.definitions():
        connected = manager.get(definition.id)
        result.append(ProviderInfo(
            id=definition.id,
            name=definition.name,
            command=definition.command,
            args=list(definition.args),
            transport=definition.transport,
            status=statuses[definition.id].value,
            tools=[t.name for t in connected.tools] if connected else [],
            last_health_check=(
                connected.last_health_check.isoformat()
                if connected and connected.last_health_check else None
            ),
        ))
    return result


# ---- Tasks / traces ----

@router.get("/tasks")
async def list_tasks():
    return [task.to_dict() for task in store.list_tasks()]


@router.get("/tasks/{task_id}")
async def get_task(task_id: str):
    snapshot = store.snapshot(task_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Task '{task_id}' not found")
    return snapshot


@router.delete("/tasks", status_code=204)
async def clear_tasks():
    if _run_lock.locked():
        raise HTTPException(status_code=409, detail="A task is running")
    store.clear()


# ---- Config ----

@router.get("/config/schema")
async def get_config_schema():
    """Return setting descriptions."""
    return {"descriptions": config.CONFIG_DESCRIPTIONS}


@router.post("/config/reload")
async def reload_settings():
    """Re-read .env and config.json. Limits apply from the next task."""
    if _run_lock.locked():
        raise HTTPException(status_code=409, detail="A task is running")
    config.reload_config()
    orchestrator.config = config.load_app_config()
    logger.info("Config reloaded", extra=tagged("api"))
    return {"status": "reloaded", "limits": asdict(orchestrator.config)}


# ---- Run ----

@router.post("/run")
async def run_task(req: RunRequest):
    """Run one task and stream its events as NDJSON."""
    if not _run_lock.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="A task is already running")

    loop = asyncio.get_running_loop()
    bridge = NDJSONBridge(loop)
    channel = EventChannel()
    channel.subscribe(bridge.callback)
    cancel_event = threading.Event()

    def _work():
        try:
            orchestrator.run(
                req.prompt, req.server_ids,
                model=req.model, channel=channel, cancel_event=cancel_event,
            )
        except Exception as e:
            logger.exception("Stream error", extra=tagged("api"))
            channel.emit(ErrorEvent(message=str(e)))
        finally:
            channel.close()
            _run_lock.release()
            bridge.finish()

    try:
        _thread_pool.submit(_work)
    except RuntimeError:
        _run_lock.release()
        raise

    async def body():
        try:
            async for line in bridge.lines():
                yield line
        finally:
            # Client went away mid-stream (no-op once the task has ended)
            cancel_event.set()

    return StreamingResponse(
        body(),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache, no-transform"},
    )
