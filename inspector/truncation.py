"""inspector/truncation.py - Central truncation registry.

Every truncation limit lives here as a named constant. Console preview
limits can be overridden from config.json via ``"truncation"`` (``0``
disables truncation for that key). Trace limits bound what the trace store
keeps in memory and are fixed.

Public API:
    trunc(text, limit_name) - truncate text, append "..." if cut
    get_limit(name)         - raw lookup (int)
    reload()                - re-read config overrides
"""

from __future__ import annotations

ELLIPSIS = "..."

# Trace store fields. Not overridable.
FIXED: dict[str, int] = {
    "trace.arguments": 1000,
    "trace.result":    1000,
}

# Console previews (log lines only)
DEFAULTS: dict[str, int] = {
    "console.text":    200,
    "console.args":    200,
    "console.result":  200,
    "console.error":   500,
}

_overrides: dict[str, int] = {}


def reload() -> None:
    """Re-read config.json overrides for console limits.

    Called by ``config.reload_config()`` and at import time.
    """
    global _overrides
    import config
    _overrides = config.get("truncation", {})


def get_limit(name: str) -> int:
    """Return the effective character limit for *name*.

    Raises ``KeyError`` for unknown names (catches typos).
    """
    if name in FIXED:
        return FIXED[name]
    if name not in DEFAULTS:
        raise KeyError(f"Unknown truncation limit: {name!r}")
    override = _overrides.get(name)
    if override is not None:
        return int(override)
    return DEFAULTS[name]


def trunc(text: str, limit_name: str) -> str:
    """Truncate *text* to the named limit, appending ``"..."`` if cut.

    The result is never longer than the limit. A limit of ``0`` disables
    truncation.
    """
    n = get_limit(limit_name)
    if n == 0 or len(text) <= n:
        return text
    return text[: n - len(ELLIPSIS)] + ELLIPSIS


try:
    reload()
except Exception:
    pass  # config may not be loadable yet (e.g., during testing)
