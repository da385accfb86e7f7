"""
TriggerStore interface.

The scheduler itself only needs the four operations in the first
block. The management block backs the CLI and manual firing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from cronfire.scheduler.models import FiringLogEntry, Trigger, WorkItem


class TriggerStore(ABC):
    """
    Abstract base class for trigger persistence.

    Implementations:
        SQLiteTriggerStore — file-based, default
        InMemoryTriggerStore — for testing and embedding

    Work items carrying an idempotency_key are unique on it: inserting a
    second item with the same key returns the id of the existing one.
    """

    async def initialize(self) -> None:
        """Prepare the backend. No-op by default."""

    @abstractmethod
    async def close(self) -> None:
        """Close the backend."""
        ...

    # ── Scheduler operations ────────────────────────────────────────────────

    @abstractmethod
    async def list_due_candidate_triggers(self) -> list[Trigger]:
        """Enabled cron triggers that have an expression."""
        ...

    @abstractmethod
    async def insert_work_item(self, work_item: WorkItem) -> str:
        """Persist a work item and return its id. Raises StorageError."""
        ...

    @abstractmethod
    async def update_trigger_last_fired(self, trigger_id: str, timestamp: datetime) -> None:
        """Advance last_fired_at. Never moves it backwards."""
        ...

    @abstractmethod
    async def append_firing_log(
        self,
        trigger_id: str,
        work_item_id: str | None,
        status: str,
        error: str | None = None,
    ) -> None:
        """Append one firing-log entry."""
        ...

    # ── Management operations ───────────────────────────────────────────────

    @abstractmethod
    async def save_trigger(self, trigger: Trigger) -> None:
        """Insert or update a trigger."""
        ...

    @abstractmethod
    async def get_trigger(self, trigger_id: str) -> Trigger | None:
        ...

    @abstractmethod
    async def get_trigger_by_token(self, webhook_token: str) -> Trigger | None:
        """The webhook trigger holding `webhook_token`; other trigger types never match."""
        ...

    @abstractmethod
    async def list_triggers(self, agent_id: str | None = None) -> list[Trigger]:
        """All triggers, newest first, optionally for one agent."""
        ...

    @abstractmethod
    async def set_trigger_enabled(self, trigger_id: str, enabled: bool) -> bool:
        """Returns True if the trigger existed."""
        ...

    @abstractmethod
    async def delete_trigger(self, trigger_id: str) -> bool:
        """Returns True if the trigger existed."""
        ...

    @abstractmethod
    async def list_firing_log(self, trigger_id: str, limit: int = 20) -> list[FiringLogEntry]:
        """Most recent entries first."""
        ...

    @abstractmethod
    async def list_work_items(self, workspace_id: str | None = None) -> list[WorkItem]:
        """Work items in creation order, optionally for one workspace."""
        ...
