"""
Scheduler data model — triggers, the work items they produce, and the
firing log.

Timestamps are naive local datetimes; CRON matching happens in local
time. Stores serialise them with TIMESTAMP_FORMAT so string order equals
chronological order.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


class TriggerType:
    CRON = "cron"
    WEBHOOK = "webhook"
    MANUAL = "manual"

    ALL = (CRON, WEBHOOK, MANUAL)


class FiringStatus:
    FIRED = "fired"
    FAILED = "failed"


def _new_id() -> str:
    return str(uuid.uuid4())


def format_timestamp(value: datetime | None) -> str | None:
    return value.strftime(TIMESTAMP_FORMAT) if value is not None else None


def parse_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Trigger:
    """A persisted CRON schedule (or webhook/manual hook) plus task templates."""

    agent_id: str            # work items are assigned to, and created by, this agent
    workspace_id: str        # tenant scope of produced work items
    task_title_template: str
    task_description_template: str = ""
    trigger_type: str = TriggerType.CRON
    cron_expression: str | None = None

    id: str = field(default_factory=_new_id)
    enabled: bool = True
    last_fired_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)
    webhook_token: str | None = None  # the webhook's credential; webhook triggers only

    def __post_init__(self) -> None:
        if self.trigger_type != TriggerType.WEBHOOK:
            self.webhook_token = None
        elif self.webhook_token is None:
            self.webhook_token = _new_id()

    @property
    def is_due_candidate(self) -> bool:
        return (
            self.trigger_type == TriggerType.CRON
            and self.enabled
            and self.cron_expression is not None
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "workspace_id": self.workspace_id,
            "trigger_type": self.trigger_type,
            "cron_expression": self.cron_expression,
            "task_title_template": self.task_title_template,
            "task_description_template": self.task_description_template,
            "enabled": self.enabled,
            "last_fired_at": format_timestamp(self.last_fired_at),
            "created_at": format_timestamp(self.created_at),
            "webhook_token": self.webhook_token,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Trigger":
        return cls(
            id=d["id"],
            agent_id=d["agent_id"],
            workspace_id=d["workspace_id"],
            trigger_type=d.get("trigger_type", TriggerType.CRON),
            cron_expression=d.get("cron_expression"),
            task_title_template=d["task_title_template"],
            task_description_template=d.get("task_description_template") or "",
            enabled=bool(d.get("enabled", True)),
            last_fired_at=parse_timestamp(d.get("last_fired_at")),
            created_at=parse_timestamp(d.get("created_at")) or datetime.now(),
            webhook_token=d.get("webhook_token"),
        )


@dataclass
class WorkItem:
    """A unit of work handed to the execution engine (a "task")."""

    workspace_id: str
    title: str
    description: str
    assigned_agent_id: str
    created_by: str
    scheduled_for: datetime
    status: str = "pending"
    priority: str = "medium"
    metadata: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None  # "<trigger_id>:<matched minute>"

    id: str = field(default_factory=_new_id)


@dataclass
class FiringLogEntry:
    """One due-evaluation outcome for a trigger. Append-only."""

    trigger_id: str
    status: str
    work_item_id: str | None = None
    error: str | None = None
    fired_at: datetime = field(default_factory=datetime.now)

    id: str = field(default_factory=_new_id)
