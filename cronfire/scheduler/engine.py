"""
TriggerScheduler — evaluates CRON triggers and creates work items.

Design:
- evaluate_triggers() is one tick. The built-in loop calls it every
  `interval` seconds (60 by default); a host may drive it from its own
  timer instead.
- At most one evaluation runs at a time per scheduler instance. A tick
  that lands while another is in flight is dropped, not queued.
- A fetch failure aborts the tick. Every other failure is confined to
  the trigger that caused it and recorded in the firing log.
- No missed-tick replay: only the current wall-clock minute is checked.
- Every store call is bounded by `operation_timeout`.
- Cron work items carry an idempotency key (trigger id + matched
  minute) so a bookkeeping failure after creation cannot duplicate
  output on a retry within the same minute.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from cronfire.core.errors import (
    TriggerDisabledError,
    TriggerNotFoundError,
    WorkItemCreationError,
)
from cronfire.core.events import EmitFn, Event, EventType
from cronfire.scheduler.cron import is_trigger_due
from cronfire.scheduler.models import FiringStatus, Trigger, TriggerType, WorkItem
from cronfire.scheduler.templates import append_payload, render_template
from cronfire.store.base import TriggerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVAL_INTERVAL = 60           # seconds between ticks
OPERATION_TIMEOUT = 30.0     # seconds per store call


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


def idempotency_key(trigger_id: str, minute: datetime) -> str:
    return f"{trigger_id}:{minute.strftime('%Y-%m-%dT%H:%M')}"


class TriggerScheduler:
    """
    Periodic trigger evaluator.

    Usage:
        scheduler = TriggerScheduler(store)
        await scheduler.evaluate_triggers()      # one tick

        await scheduler.start()                  # or: background loop
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        store: TriggerStore,
        emit: EmitFn | None = None,
        interval: int = EVAL_INTERVAL,
        operation_timeout: float | None = OPERATION_TIMEOUT,
        idempotency_keys: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._emit_fn = emit
        self._interval = interval
        self._operation_timeout = operation_timeout
        self._idempotency_keys = idempotency_keys
        self._clock = clock
        self._guard = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def evaluating(self) -> bool:
        return self._guard.locked()

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="trigger-scheduler")
        logger.info(f"TriggerScheduler started (interval={self._interval}s)")
        await self._emit(EventType.SCHEDULER_START, interval=self._interval)

    async def stop(self) -> None:
        """Stop the loop. An in-flight evaluation is cancelled."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("TriggerScheduler stopped")
        await self._emit(EventType.SCHEDULER_STOP)

    async def _loop(self) -> None:
        while self._running:
            await self.evaluate_triggers()
            await asyncio.sleep(self._interval)

    # ── Tick ──────────────────────────────────────────────────────────────────

    async def evaluate_triggers(self) -> None:
        """
        Run one evaluation pass. Never raises; failures surface only in
        the process log and the firing log.
        """
        if self._guard.locked():
            logger.debug("Trigger evaluation already in progress, dropping tick")
            await self._emit(EventType.SCHEDULER_SKIPPED)
            return

        async with self._guard:
            try:
                await self._evaluate()
            except Exception as e:
                logger.error(f"Unexpected error during trigger evaluation: {_describe(e)}")

    async def _evaluate(self) -> None:
        try:
            triggers = await self._call(self._store.list_due_candidate_triggers())
        except Exception as e:
            logger.error(f"Error fetching triggers: {_describe(e)}")
            await self._emit(EventType.SCHEDULER_FETCH_ERROR, error=_describe(e))
            return

        fired = failed = 0
        for trigger in triggers:
            outcome = await self._process_trigger(trigger)
            if outcome == FiringStatus.FIRED:
                fired += 1
            elif outcome == FiringStatus.FAILED:
                failed += 1

        logger.debug(
            f"Evaluated {len(triggers)} trigger(s): {fired} fired, {failed} failed"
        )
        await self._emit(
            EventType.SCHEDULER_TICK,
            candidates=len(triggers),
            fired=fired,
            failed=failed,
        )

    async def _process_trigger(self, trigger: Trigger) -> str | None:
        """Fire one trigger if due. Returns the logged status, or None if not due."""
        now = self._clock()
        try:
            due = is_trigger_due(trigger.cron_expression or "", trigger.last_fired_at, now)
        except Exception as e:
            logger.error(f"Error checking trigger {trigger.id}: {_describe(e)}")
            return None
        if not due:
            return None

        logger.info(f"Firing trigger {trigger.id} for agent {trigger.agent_id}")

        work_item_id: str | None = None
        try:
            work_item = self._build_work_item(trigger, now, source="cron_trigger")
            if self._idempotency_keys:
                work_item.idempotency_key = idempotency_key(trigger.id, now)

            try:
                work_item_id = await self._call(self._store.insert_work_item(work_item))
            except Exception as e:
                logger.error(
                    f"Failed to create work item for trigger {trigger.id}: {_describe(e)}"
                )
                await self._record_failure(trigger, _describe(e))
                return FiringStatus.FAILED

            await self._call(self._store.update_trigger_last_fired(trigger.id, now))
            await self._call(
                self._store.append_firing_log(trigger.id, work_item_id, FiringStatus.FIRED)
            )
        except Exception as e:
            logger.error(f"Error processing trigger {trigger.id}: {_describe(e)}")
            await self._record_failure(trigger, _describe(e), work_item_id)
            return FiringStatus.FAILED

        logger.info(f"Created work item {work_item_id} from trigger {trigger.id}")
        await self._emit(
            EventType.TRIGGER_FIRED,
            trigger_id=trigger.id,
            work_item_id=work_item_id,
            agent_id=trigger.agent_id,
        )
        return FiringStatus.FIRED

    # ── Manual / webhook firing ───────────────────────────────────────────────

    async def fire_trigger(
        self,
        trigger_id: str,
        payload: dict[str, Any] | None = None,
    ) -> WorkItem:
        """
        Fire a trigger immediately, bypassing its schedule.

        A non-empty `payload` is appended to the description. Raises
        TriggerNotFoundError, TriggerDisabledError or WorkItemCreationError.
        """
        trigger = await self._call(self._store.get_trigger(trigger_id))
        if trigger is None:
            raise TriggerNotFoundError(f"Trigger {trigger_id} not found", trigger_id=trigger_id)
        return await self._fire(trigger, payload)

    async def fire_webhook(
        self,
        webhook_token: str,
        payload: dict[str, Any] | None = None,
    ) -> WorkItem:
        """
        Fire the webhook trigger that owns `webhook_token`.

        The token is the webhook's only credential, so it never resolves
        to a cron or manual trigger.
        """
        trigger = await self._call(self._store.get_trigger_by_token(webhook_token))
        if trigger is None:
            raise TriggerNotFoundError("No webhook trigger for this token")
        return await self._fire(trigger, payload)

    async def _fire(self, trigger: Trigger, payload: dict[str, Any] | None) -> WorkItem:
        if not trigger.enabled:
            raise TriggerDisabledError(
                f"Trigger {trigger.id} is currently disabled", trigger_id=trigger.id
            )

        now = self._clock()
        source = (
            "webhook_trigger"
            if trigger.trigger_type == TriggerType.WEBHOOK
            else "manual_trigger"
        )
        work_item = self._build_work_item(trigger, now, source=source, payload=payload)

        try:
            work_item.id = await self._call(self._store.insert_work_item(work_item))
        except Exception as e:
            await self._record_failure(trigger, _describe(e))
            raise WorkItemCreationError(
                f"Failed to create work item: {_describe(e)}", trigger_id=trigger.id
            ) from e

        try:
            await self._call(self._store.update_trigger_last_fired(trigger.id, now))
            await self._call(
                self._store.append_firing_log(trigger.id, work_item.id, FiringStatus.FIRED)
            )
        except Exception as e:
            logger.error(f"Error recording firing of trigger {trigger.id}: {_describe(e)}")
            await self._record_failure(trigger, _describe(e), work_item.id)
            raise WorkItemCreationError(
                f"Work item {work_item.id} was created but the firing was not recorded: "
                f"{_describe(e)}",
                trigger_id=trigger.id,
                details={"work_item_id": work_item.id},
            ) from e

        logger.info(f"Created work item {work_item.id} from trigger {trigger.id} ({source})")
        await self._emit(
            EventType.TRIGGER_FIRED,
            trigger_id=trigger.id,
            work_item_id=work_item.id,
            agent_id=trigger.agent_id,
            source=source,
        )
        return work_item

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _build_work_item(
        self,
        trigger: Trigger,
        now: datetime,
        source: str,
        payload: dict[str, Any] | None = None,
    ) -> WorkItem:
        title = render_template(trigger.task_title_template, self._clock())
        description = render_template(trigger.task_description_template, self._clock())
        metadata: dict[str, Any] = {"source": source, "trigger_id": trigger.id}
        if payload:
            description = append_payload(description, payload)
            metadata["payload"] = payload

        return WorkItem(
            workspace_id=trigger.workspace_id,
            title=title,
            description=description,
            assigned_agent_id=trigger.agent_id,
            created_by=trigger.agent_id,  # agent self-creates
            scheduled_for=now,
            metadata=metadata,
        )

    async def _record_failure(
        self,
        trigger: Trigger,
        error: str,
        work_item_id: str | None = None,
    ) -> None:
        # failed entries never reference a work item; one created before
        # the failure is named in the error text instead
        logged = f"{error} (work item {work_item_id})" if work_item_id else error
        try:
            await self._call(
                self._store.append_firing_log(trigger.id, None, FiringStatus.FAILED, logged)
            )
        except Exception as e:
            logger.error(f"Could not record failure for trigger {trigger.id}: {_describe(e)}")
        await self._emit(
            EventType.TRIGGER_FAILED,
            trigger_id=trigger.id,
            work_item_id=work_item_id,
            error=error,
        )

    async def _call(self, operation: Awaitable[T]) -> T:
        if self._operation_timeout is None:
            return await operation
        return await asyncio.wait_for(operation, timeout=self._operation_timeout)

    async def _emit(self, event_type: str, **data: Any) -> None:
        if self._emit_fn is None:
            return
        try:
            await self._emit_fn(Event(type=event_type, data=data))
        except Exception as e:
            logger.warning(f"Event handler failed for {event_type}: {e}")
