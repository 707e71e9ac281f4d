#!/usr/bin/env python3
"""MCP Inspector - command-line entry point.

Runs one task in-process and prints every event as a line of JSON on
stdout, followed by a summary on stderr.

Usage:
    python main.py "List the files in /tmp"                  # default providers
    python main.py "..." --servers filesystem,brave-search   # pick providers
    python main.py "..." --model claude-3-5-haiku-20241022
    python main.py "..." --max-iterations 5 --verbose
    python main.py --list-servers
"""

import argparse
import sys
import threading

import config

# ---- ANSI colors ----

_USE_COLOR = True


def _c(code: str, text: str) -> str:
    if not _USE_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def dim(text: str) -> str:
    return _c("2", text)


def green(text: str) -> str:
    return _c("32", text)


def red(text: str) -> str:
    return _c("31", text)


def bold(text: str) -> str:
    return _c("1", text)


# ---- Output ----

def _print_servers(definitions) -> None:
    print(bold("Available MCP servers:"))
    for d in definitions:
        print(f"  - {d.name} ({d.id}): {d.command} {' '.join(d.args)}")


def _print_summary(task, tool_calls) -> None:
    err = sys.stderr
    print("-" * 60, file=err)
    status = task.status.value
    print(f"  Status:        {green(status) if status == 'succeeded' else red(status)}", file=err)
    print(f"  Task:          {task.id}", file=err)
    print(f"  Iterations:    {task.iteration_count}", file=err)
    print(f"  Tool calls:    {len(tool_calls)}", file=err)
    print(f"  Input tokens:  {task.total_input_tokens:,}", file=err)
    print(f"  Output tokens: {task.total_output_tokens:,}", file=err)
    print(f"  Cost:          ${task.total_cost:.4f}", file=err)
    if task.duration_ms is not None:
        print(f"  Duration:      {task.duration_ms / 1000:.1f}s", file=err)
    if task.error_message:
        print(f"  Error:         {red(task.error_message)}", file=err)
    if task.final_answer:
        print(file=err)
        print(bold("Final answer:"), file=err)
        print(task.final_answer, file=err)
    print("-" * 60, file=err)


# ---- Task runner ----

def run_interruptibly(orchestrator, prompt, server_ids, *, model, channel, cancel_event,
                      poll_s=0.2):
    """Run one task on a worker thread so Ctrl-C can cancel it cleanly.

    The first Ctrl-C sets *cancel_event* and waits for the task to reach
    ``cancelled``; a second one propagates.

    Returns:
        (task, interrupted). *task* is None only if the worker crashed.
    """
    result = {}

    def _worker():
        result["task"] = orchestrator.run(
            prompt, server_ids, model=model, channel=channel, cancel_event=cancel_event,
        )

    worker = threading.Thread(target=_worker, name="orchestrator", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(poll_s)
    except KeyboardInterrupt:
        cancel_event.set()
        print(red("\nInterrupted, cancelling task (Ctrl-C again to abort)..."), file=sys.stderr)
        worker.join()
        return result.get("task"), True
    return result.get("task"), False


# ---- Main ----

def main():
    global _USE_COLOR

    parser = argparse.ArgumentParser(
        description="Run a tool-using agent task against MCP servers and trace every call"
    )
    parser.add_argument(
        "prompt", nargs="?", default=None,
        help="Task for the agent",
    )
    parser.add_argument(
        "--servers", default=None,
        help="Comma-separated provider ids (default: all configured providers)",
    )
    parser.add_argument(
        "--model", default=None,
        help=f"Model id (default: {config.DEFAULT_MODEL})",
    )
    parser.add_argument(
        "--max-iterations", type=int, default=None,
        help="Model calls allowed before the task ends with status 'timeout'",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Show debug logs (iterations, tool previews) on stderr",
    )
    parser.add_argument(
        "--no-color", action="store_true",
        help="Disable ANSI color output",
    )
    parser.add_argument(
        "--list-servers", action="store_true",
        help="List configured MCP servers and exit",
    )
    args = parser.parse_args()

    if args.no_color or not sys.stderr.isatty():
        _USE_COLOR = False

    from inspector.logging import setup_logging
    from inspector.providers import ConnectionManager

    setup_logging(verbose=args.verbose)
    definitions = config.load_provider_definitions()

    if args.list_servers:
        _print_servers(definitions)
        return 0

    if not args.prompt:
        parser.error("a prompt is required (or use --list-servers)")

    api_key = config.get_api_key()
    if not api_key:
        print(red("Error: ANTHROPIC_API_KEY environment variable is required"), file=sys.stderr)
        print("  Set it in .env or export it in your shell", file=sys.stderr)
        return 1

    from inspector.events import EventChannel, to_ndjson
    from inspector.gateway import ToolGateway
    from inspector.llm import AnthropicModelClient
    from inspector.orchestrator import Orchestrator
    from inspector.trace import TraceStore

    server_ids = (
        [s.strip() for s in args.servers.split(",") if s.strip()]
        if args.servers else [d.id for d in definitions]
    )

    manager = ConnectionManager(definitions)
    gateway = ToolGateway(manager)
    orchestrator = Orchestrator(
        manager=manager,
        gateway=gateway,
        model_client=AnthropicModelClient(api_key),
        store=TraceStore(),
        app_config=config.load_app_config(max_iterations=args.max_iterations),
        log_files=True,
    )

    print(dim(f"Servers: {', '.join(server_ids)}"), file=sys.stderr)

    channel = EventChannel()
    channel.subscribe(lambda event: print(to_ndjson(event), end="", flush=True))
    try:
        task, interrupted = run_interruptibly(
            orchestrator, args.prompt, server_ids,
            model=args.model, channel=channel, cancel_event=threading.Event(),
        )
    except KeyboardInterrupt:
        print(red("\nAborted."), file=sys.stderr)
        return 130
    finally:
        channel.close()
        manager.disconnect_all()
        gateway.shutdown()

    if task is None:
        return 1
    _print_summary(task, orchestrator.store.get_tool_calls(task.id))
    if interrupted:
        return 130
    return 0 if task.status.value == "succeeded" else 1


if __name__ == "__main__":
    sys.exit(main())
