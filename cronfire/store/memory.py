"""
In-memory trigger store — for testing and embedding.

Data lost when process exits.
"""

from __future__ import annotations

import copy
from datetime import datetime

from cronfire.scheduler.models import FiringLogEntry, Trigger, TriggerType, WorkItem
from cronfire.store.base import TriggerStore


class InMemoryTriggerStore(TriggerStore):
    """
    Dict-backed TriggerStore.

    Returned triggers are copies, so callers cannot mutate stored state
    behind the store's back.

    Usage:
        store = InMemoryTriggerStore()
        await store.save_trigger(Trigger(agent_id="a1", workspace_id="w1",
                                         task_title_template="Daily report",
                                         cron_expression="0 9 * * *"))
    """

    def __init__(self) -> None:
        self._triggers: dict[str, Trigger] = {}
        self._work_items: dict[str, WorkItem] = {}
        self._keys: dict[str, str] = {}  # idempotency_key -> work item id
        self._log: list[FiringLogEntry] = []

    @property
    def firing_log(self) -> list[FiringLogEntry]:
        return list(self._log)

    async def close(self) -> None:
        self._triggers.clear()
        self._work_items.clear()
        self._keys.clear()
        self._log.clear()

    # ── Scheduler operations ────────────────────────────────────────────────

    async def list_due_candidate_triggers(self) -> list[Trigger]:
        return [
            copy.deepcopy(t)
            for t in sorted(self._triggers.values(), key=lambda t: t.created_at)
            if t.is_due_candidate
        ]

    async def insert_work_item(self, work_item: WorkItem) -> str:
        key = work_item.idempotency_key
        if key is not None and key in self._keys:
            return self._keys[key]
        self._work_items[work_item.id] = copy.deepcopy(work_item)
        if key is not None:
            self._keys[key] = work_item.id
        return work_item.id

    async def update_trigger_last_fired(self, trigger_id: str, timestamp: datetime) -> None:
        trigger = self._triggers.get(trigger_id)
        if trigger is None:
            return
        if trigger.last_fired_at is None or trigger.last_fired_at < timestamp:
            trigger.last_fired_at = timestamp

    async def append_firing_log(
        self,
        trigger_id: str,
        work_item_id: str | None,
        status: str,
        error: str | None = None,
    ) -> None:
        self._log.append(
            FiringLogEntry(
                trigger_id=trigger_id,
                work_item_id=work_item_id,
                status=status,
                error=error,
            )
        )

    # ── Management operations ───────────────────────────────────────────────

    async def save_trigger(self, trigger: Trigger) -> None:
        saved = copy.deepcopy(trigger)
        existing = self._triggers.get(trigger.id)
        if existing is not None:
            # last_fired_at belongs to the scheduler, edits never touch it
            saved.last_fired_at = existing.last_fired_at
        self._triggers[trigger.id] = saved

    async def get_trigger(self, trigger_id: str) -> Trigger | None:
        trigger = self._triggers.get(trigger_id)
        return copy.deepcopy(trigger) if trigger else None

    async def get_trigger_by_token(self, webhook_token: str) -> Trigger | None:
        for trigger in self._triggers.values():
            if trigger.trigger_type == TriggerType.WEBHOOK and trigger.webhook_token == webhook_token:
                return copy.deepcopy(trigger)
        return None

    async def list_triggers(self, agent_id: str | None = None) -> list[Trigger]:
        triggers = sorted(self._triggers.values(), key=lambda t: t.created_at, reverse=True)
        return [
            copy.deepcopy(t) for t in triggers
            if agent_id is None or t.agent_id == agent_id
        ]

    async def set_trigger_enabled(self, trigger_id: str, enabled: bool) -> bool:
        trigger = self._triggers.get(trigger_id)
        if trigger is None:
            return False
        trigger.enabled = enabled
        return True

    async def delete_trigger(self, trigger_id: str) -> bool:
        return self._triggers.pop(trigger_id, None) is not None

    async def list_firing_log(self, trigger_id: str, limit: int = 20) -> list[FiringLogEntry]:
        entries = [e for e in reversed(self._log) if e.trigger_id == trigger_id]
        return entries[:limit]

    async def list_work_items(self, workspace_id: str | None = None) -> list[WorkItem]:
        return [
            copy.deepcopy(w) for w in self._work_items.values()
            if workspace_id is None or w.workspace_id == workspace_id
        ]
