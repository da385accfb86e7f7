"""Tests for the TriggerStore backends."""
from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from cronfire.core.errors import StorageError
from cronfire.scheduler.models import FiringStatus, Trigger, TriggerType, WorkItem
from cronfire.store.memory import InMemoryTriggerStore
from cronfire.store.sqlite import SQLiteTriggerStore

T0 = datetime(2026, 10, 19, 9, 0, 0)


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryTriggerStore()
    else:
        backend = SQLiteTriggerStore(tmp_path / "triggers.db")
    await backend.initialize()
    yield backend
    await backend.close()


def _work_item(key: str | None = None, **overrides) -> WorkItem:
    fields = {
        "workspace_id": "ws-1",
        "title": "Daily report",
        "description": "",
        "assigned_agent_id": "agent-1",
        "created_by": "agent-1",
        "scheduled_for": T0,
        "idempotency_key": key,
    }
    fields.update(overrides)
    return WorkItem(**fields)


@pytest.mark.asyncio
class TestTriggerStore:
    async def test_save_and_get(self, store, make_trigger):
        trigger = make_trigger(cron_expression="0 9 * * 1-5")
        await store.save_trigger(trigger)
        found = await store.get_trigger(trigger.id)
        assert found is not None
        assert found.cron_expression == "0 9 * * 1-5"
        assert found.task_title_template == "Report for {{date}}"
        assert found.enabled is True
        assert found.last_fired_at is None

    async def test_get_missing_returns_none(self, store):
        assert await store.get_trigger("ghost") is None

    async def test_upsert_updates_existing(self, store, make_trigger):
        trigger = make_trigger()
        await store.save_trigger(trigger)
        trigger.task_title_template = "Weekly digest"
        await store.save_trigger(trigger)
        triggers = await store.list_triggers()
        assert len(triggers) == 1
        assert triggers[0].task_title_template == "Weekly digest"

    async def test_due_candidates_filter(self, store, make_trigger):
        wanted = make_trigger()
        await store.save_trigger(wanted)
        await store.save_trigger(make_trigger(enabled=False))
        await store.save_trigger(make_trigger(cron_expression=None))
        await store.save_trigger(make_trigger(trigger_type=TriggerType.WEBHOOK))

        candidates = await store.list_due_candidate_triggers()
        assert [t.id for t in candidates] == [wanted.id]

    async def test_list_triggers_by_agent_newest_first(self, store, make_trigger):
        older = make_trigger(created_at=T0)
        newer = make_trigger(created_at=T0 + timedelta(hours=1))
        other = make_trigger(agent_id="agent-2")
        for t in (older, newer, other):
            await store.save_trigger(t)

        mine = await store.list_triggers(agent_id="agent-1")
        assert [t.id for t in mine] == [newer.id, older.id]
        assert len(await store.list_triggers()) == 3

    async def test_last_fired_round_trip(self, store, make_trigger):
        trigger = make_trigger()
        await store.save_trigger(trigger)
        stamp = T0.replace(second=12, microsecond=345678)
        await store.update_trigger_last_fired(trigger.id, stamp)
        assert (await store.get_trigger(trigger.id)).last_fired_at == stamp

    async def test_last_fired_never_moves_backwards(self, store, make_trigger):
        trigger = make_trigger()
        await store.save_trigger(trigger)
        await store.update_trigger_last_fired(trigger.id, T0 + timedelta(minutes=5))
        await store.update_trigger_last_fired(trigger.id, T0)
        assert (await store.get_trigger(trigger.id)).last_fired_at == T0 + timedelta(minutes=5)

    async def test_save_does_not_clobber_last_fired(self, store, make_trigger):
        trigger = make_trigger()
        await store.save_trigger(trigger)
        await store.update_trigger_last_fired(trigger.id, T0)
        trigger.task_title_template = "Edited"
        await store.save_trigger(trigger)
        stored = await store.get_trigger(trigger.id)
        assert stored.task_title_template == "Edited"
        assert stored.last_fired_at == T0

    async def test_set_enabled(self, store, make_trigger):
        trigger = make_trigger()
        await store.save_trigger(trigger)
        assert await store.set_trigger_enabled(trigger.id, False) is True
        assert (await store.get_trigger(trigger.id)).enabled is False
        assert await store.list_due_candidate_triggers() == []

    async def test_set_enabled_missing(self, store):
        assert await store.set_trigger_enabled("ghost", True) is False

    async def test_delete(self, store, make_trigger):
        trigger = make_trigger()
        await store.save_trigger(trigger)
        assert await store.delete_trigger(trigger.id) is True
        assert await store.get_trigger(trigger.id) is None
        assert await store.delete_trigger(trigger.id) is False

    async def test_insert_and_list_work_items(self, store):
        first = _work_item(metadata={"source": "cron_trigger", "trigger_id": "t1"})
        second = _work_item(workspace_id="ws-2")
        assert await store.insert_work_item(first) == first.id
        assert await store.insert_work_item(second) == second.id

        items = await store.list_work_items()
        assert [i.id for i in items] == [first.id, second.id]
        assert items[0].metadata == {"source": "cron_trigger", "trigger_id": "t1"}
        assert items[0].scheduled_for == T0
        assert [i.id for i in await store.list_work_items(workspace_id="ws-2")] == [second.id]

    async def test_idempotency_key_returns_existing(self, store):
        original = _work_item(key="t1:2026-10-19T09:00")
        duplicate = _work_item(key="t1:2026-10-19T09:00", title="Again")
        first_id = await store.insert_work_item(original)
        second_id = await store.insert_work_item(duplicate)
        assert second_id == first_id
        [item] = await store.list_work_items()
        assert item.title == "Daily report"

    async def test_items_without_key_are_never_deduplicated(self, store):
        await store.insert_work_item(_work_item())
        await store.insert_work_item(_work_item())
        assert len(await store.list_work_items()) == 2

    async def test_firing_log_newest_first_with_limit(self, store):
        await store.append_firing_log("t1", "w1", FiringStatus.FIRED)
        await store.append_firing_log("t1", None, FiringStatus.FAILED, "boom")
        await store.append_firing_log("t2", "w2", FiringStatus.FIRED)

        entries = await store.list_firing_log("t1")
        assert [e.status for e in entries] == [FiringStatus.FAILED, FiringStatus.FIRED]
        assert entries[0].error == "boom"
        assert entries[0].work_item_id is None
        assert entries[1].work_item_id == "w1"

        assert len(await store.list_firing_log("t1", limit=1)) == 1
        assert await store.list_firing_log("nobody") == []

    async def test_webhook_token_lookup(self, store, make_trigger):
        hook = make_trigger(trigger_type=TriggerType.WEBHOOK, cron_expression=None)
        other = make_trigger(trigger_type=TriggerType.WEBHOOK, cron_expression=None)
        await store.save_trigger(hook)
        await store.save_trigger(other)

        found = await store.get_trigger_by_token(hook.webhook_token)
        assert found.id == hook.id
        assert found.webhook_token == hook.webhook_token
        assert (await store.get_trigger(hook.id)).webhook_token == hook.webhook_token
        assert await store.get_trigger_by_token("unknown") is None

    async def test_webhook_token_survives_edits(self, store, make_trigger):
        hook = make_trigger(trigger_type=TriggerType.WEBHOOK, cron_expression=None)
        await store.save_trigger(hook)
        edited = await store.get_trigger(hook.id)
        edited.task_title_template = "Edited"
        await store.save_trigger(edited)
        assert (await store.get_trigger_by_token(hook.webhook_token)).task_title_template == "Edited"

    async def test_token_lookup_ignores_other_trigger_types(self, store, make_trigger):
        hook = make_trigger(trigger_type=TriggerType.WEBHOOK, cron_expression=None)
        await store.save_trigger(hook)
        retyped = await store.get_trigger(hook.id)
        token = retyped.webhook_token
        retyped.trigger_type = TriggerType.MANUAL
        await store.save_trigger(retyped)
        assert await store.get_trigger_by_token(token) is None


# ━━━ SQLite specifics ━━━


@pytest.mark.asyncio
async def test_sqlite_creates_directory(tmp_path: Path):
    store = SQLiteTriggerStore(tmp_path / "deep" / "nested" / "cronfire.db")
    await store.initialize()
    assert await store.list_triggers() == []
    await store.close()


@pytest.mark.asyncio
async def test_sqlite_persistence(tmp_path: Path):
    db_path = tmp_path / "persist.db"
    trigger = Trigger(
        agent_id="agent-1",
        workspace_id="ws-1",
        task_title_template="Persisted",
        cron_expression="* * * * *",
    )

    store1 = SQLiteTriggerStore(db_path)
    await store1.initialize()
    await store1.save_trigger(trigger)
    await store1.append_firing_log(trigger.id, None, FiringStatus.FAILED, "x")
    await store1.close()

    store2 = SQLiteTriggerStore(db_path)
    await store2.initialize()
    assert (await store2.get_trigger(trigger.id)).task_title_template == "Persisted"
    assert len(await store2.list_firing_log(trigger.id)) == 1
    await store2.close()


@pytest.mark.asyncio
async def test_sqlite_lazy_initialize(tmp_path: Path):
    store = SQLiteTriggerStore(tmp_path / "lazy.db")
    assert await store.list_due_candidate_triggers() == []
    await store.close()


@pytest.mark.asyncio
async def test_sqlite_duplicate_id_is_storage_error(tmp_path: Path):
    store = SQLiteTriggerStore(tmp_path / "dup.db")
    await store.initialize()
    item = _work_item()
    await store.insert_work_item(item)
    with pytest.raises(StorageError):
        await store.insert_work_item(item)
    await store.close()


@pytest.mark.asyncio
async def test_sqlite_bad_path_is_storage_error(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    store = SQLiteTriggerStore(blocker / "cronfire.db")
    with pytest.raises((StorageError, OSError)):
        await store.initialize()
