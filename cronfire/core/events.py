"""
cronfire event types.

The scheduler reports what it does as events handed to an optional
async `emit` callback. EventLogger in cronfire.core.logging is the
stock consumer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
import time
import uuid


class EventType:
    """
    Event type constants.

    Hierarchical naming: "category:action"
    """

    # Scheduler lifecycle
    SCHEDULER_START = "scheduler:start"
    SCHEDULER_STOP = "scheduler:stop"
    SCHEDULER_TICK = "scheduler:tick"
    SCHEDULER_SKIPPED = "scheduler:skipped"
    SCHEDULER_FETCH_ERROR = "scheduler:fetch_error"

    # Per-trigger outcomes
    TRIGGER_FIRED = "trigger:fired"
    TRIGGER_FAILED = "trigger:failed"


@dataclass(slots=True)
class Event:
    """A single scheduler event."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    source: str = "scheduler"
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    timestamp: float = field(default_factory=time.time)


EmitFn = Callable[[Event], Awaitable[Any]]
