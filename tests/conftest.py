"""Shared test fixtures for cronfire."""

from datetime import datetime

import pytest

from cronfire.core.config import CronfireConfig
from cronfire.scheduler.models import Trigger


class FixedClock:
    """Callable clock for the scheduler; advance it by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return CronfireConfig()


@pytest.fixture
def clock():
    # Monday 2026-10-19 09:00:00
    return FixedClock(datetime(2026, 10, 19, 9, 0, 0))


@pytest.fixture
def make_trigger():
    """Factory for cron triggers with sensible defaults."""

    def _make(**overrides) -> Trigger:
        fields = {
            "agent_id": "agent-1",
            "workspace_id": "ws-1",
            "task_title_template": "Report for {{date}}",
            "task_description_template": "Generated at {{time}}",
            "cron_expression": "*/5 * * * *",
        }
        fields.update(overrides)
        return Trigger(**fields)

    return _make
