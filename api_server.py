#!/usr/bin/env python
"""Entry point for the MCP Inspector HTTP server.

Usage:
    python api_server.py [--port 8000] [--host 127.0.0.1] [--verbose]

Host and port default to the ``server.host`` / ``server.port`` config keys.
"""

import argparse
import logging

import uvicorn

import config
from api.app import create_app
from inspector.logging import setup_logging, tagged

logger = logging.getLogger("mcp_inspector")

app = create_app()


def _announce() -> None:
    if not config.get_api_key():
        logger.warning(
            "ANTHROPIC_API_KEY is not set; POST /api/run will fail until it is",
            extra=tagged("server"),
        )
    ids = [d.id for d in config.load_provider_definitions()]
    logger.info("Configured providers: %s", ", ".join(ids) or "(none)", extra=tagged("server"))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="MCP Inspector HTTP server")
    parser.add_argument("--port", type=int, default=int(config.get("server.port", 8000)))
    parser.add_argument("--host", type=str, default=config.get("server.host", "127.0.0.1"))
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logs")
    args = parser.parse_args()

    setup_logging(verbose=args.verbose)
    _announce()
    uvicorn.run(
        "api_server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if args.verbose else "info",
    )
