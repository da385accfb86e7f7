"""
cronfire — CRON trigger scheduler that turns agent triggers into work items.

Public API:
    from cronfire import TriggerScheduler, SQLiteTriggerStore, Trigger
"""

__version__ = "0.1.0"

# Core
from cronfire.core.config import CronfireConfig
from cronfire.core.events import Event, EventType

# Scheduler
from cronfire.scheduler.cron import cron_matches_date, is_trigger_due, matches_field
from cronfire.scheduler.engine import TriggerScheduler
from cronfire.scheduler.models import FiringLogEntry, FiringStatus, Trigger, TriggerType, WorkItem
from cronfire.scheduler.templates import render_template

# Stores
from cronfire.store.base import TriggerStore
from cronfire.store.memory import InMemoryTriggerStore
from cronfire.store.sqlite import SQLiteTriggerStore

__all__ = [
    # Core
    "CronfireConfig",
    "Event",
    "EventType",
    # Scheduler
    "TriggerScheduler",
    "Trigger",
    "TriggerType",
    "WorkItem",
    "FiringLogEntry",
    "FiringStatus",
    "matches_field",
    "cron_matches_date",
    "is_trigger_due",
    "render_template",
    # Stores
    "TriggerStore",
    "InMemoryTriggerStore",
    "SQLiteTriggerStore",
]
