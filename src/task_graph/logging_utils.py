"""Configure loguru and render engine events for logs."""

from __future__ import annotations

import json
import sys
from typing import Any, Callable

from loguru import logger

from .task_engine.events import Event, EventBus, EventType


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_event(event: Event | None) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of an engine event.

    Args:
        event: Event instance (or None).

    Returns:
        A dictionary suitable for logging or serialization.
    """
    if event is None:
        return {"event": None}

    d: dict[str, Any] = {"event": event.type.value, "ts": event.ts}
    if event.task is not None:
        d["task_id"] = event.task.id
        d["status"] = event.task.status.value
    if event.task_id is not None:
        d["task_id"] = event.task_id
    if event.previous_status is not None and event.new_status is not None:
        d["transition"] = f"{event.previous_status.value} -> {event.new_status.value}"
    if event.depends_on_id is not None:
        d["depends_on"] = event.depends_on_id
    if event.path is not None:
        d["path"] = event.path
    if event.error is not None:
        d["error"] = str(event.error)
        code = getattr(event.error, "code", None)
        if code:
            d["code"] = code
    if event.details:
        d["details"] = event.details
    return d


def pretty(obj: Any) -> str:
    """Return a stable, human-readable JSON string for logging."""
    return json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False, default=str)


def attach_event_logger(bus: EventBus) -> Callable[[], None]:
    """Log every event on *bus*; returns the unsubscribe callable."""

    def _log_event(event: Event) -> None:
        summary = summarize_event(event)
        if event.type == EventType.ERROR:
            logger.warning("Engine error:\n{}", pretty(summary))
        else:
            logger.debug("Engine event:\n{}", pretty(summary))

    return bus.subscribe_all(_log_event)
