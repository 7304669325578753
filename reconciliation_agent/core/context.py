"""
Run context management for log correlation.

Each reconciliation run gets a run_id that is attached to every log line,
error capture, audit row and metrics row produced during that run.
Uses contextvars so the value follows the asyncio task that owns the run.

Usage:
    run_id = generate_run_id()
    bind_run_context(run_id, trigger="scheduled")
    ...
    clear_context()
"""

import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

__all__ = [
    "generate_run_id",
    "bind_run_context",
    "get_run_id",
    "get_trigger",
    "clear_context",
    "get_context_dict",
]

_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_trigger: ContextVar[Optional[str]] = ContextVar("trigger", default=None)


def generate_run_id() -> str:
    """
    Generate a new run ID.

    Format: run_{16 hex chars}
    """
    return f"run_{uuid.uuid4().hex[:16]}"


def bind_run_context(run_id: str, trigger: Optional[str] = None) -> None:
    """Set the run context and bind it into structlog for the current task."""
    _run_id.set(run_id)
    _trigger.set(trigger)
    structlog.contextvars.bind_contextvars(run_id=run_id, trigger=trigger)


def get_run_id() -> Optional[str]:
    return _run_id.get()


def get_trigger() -> Optional[str]:
    return _trigger.get()


def clear_context() -> None:
    _run_id.set(None)
    _trigger.set(None)
    structlog.contextvars.clear_contextvars()


def get_context_dict() -> Dict[str, Any]:
    """Current context as a dict, skipping unset values."""
    context = {"run_id": _run_id.get(), "trigger": _trigger.get()}
    return {k: v for k, v in context.items() if v is not None}
