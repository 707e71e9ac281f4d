"""FastAPI app factory + lifespan (startup/shutdown)."""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from inspector.gateway import ToolGateway
from inspector.logging import tagged
from inspector.orchestrator import Orchestrator
from inspector.providers import ConnectionManager
from inspector.trace import TraceStore

from . import routes

logger = logging.getLogger("mcp_inspector")


def build_orchestrator(
    manager: Optional[ConnectionManager] = None,
    store: Optional[TraceStore] = None,
) -> Orchestrator:
    """Wire the production orchestrator: MCP sessions, Anthropic client, fresh store."""
    from inspector.llm import AnthropicModelClient

    manager = manager or ConnectionManager(config.load_provider_definitions())
    app_config = config.load_app_config()
    return Orchestrator(
        manager=manager,
        gateway=ToolGateway(manager),
        model_client=AnthropicModelClient(config.get_api_key()),
        store=store or TraceStore(),
        app_config=app_config,
        log_files=True,
    )


def create_app(
    orchestrator: Optional[Orchestrator] = None,
    manager: Optional[ConnectionManager] = None,
    store: Optional[TraceStore] = None,
) -> FastAPI:
    """Build and return the configured FastAPI application.

    Collaborators default to the production wiring, built at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        orch = orchestrator or build_orchestrator(manager, store)
        routes.orchestrator = orch
        routes.manager = orch.manager
        routes.store = orch.store
        routes._start_time = time.time()
        routes._thread_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="task")
        orch.manager.start_health_checks(orch.config.health_check_interval_s)
        logger.info("API ready", extra=tagged("api"))

        yield

        # Shutdown
        orch.manager.stop_health_checks()
        orch.manager.disconnect_all()
        orch.gateway.shutdown()
        routes._thread_pool.shutdown(wait=False)

    app = FastAPI(
        title="MCP Inspector API",
        description="Run tool-using agent tasks against MCP servers and stream every call",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS - restrict origins in production, allow all in development
    cors_origins = os.getenv("CORS_ORIGINS", "").strip()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins.split(",") if cors_origins else ["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.router)
    return app
