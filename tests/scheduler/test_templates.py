"""Tests for cronfire/scheduler/templates.py"""
from __future__ import annotations

import json
from datetime import datetime, timezone

from cronfire.scheduler.templates import append_payload, render_template

FIXED = datetime(2026, 10, 19, 9, 5, 7, 123456)


class TestRenderTemplate:
    def test_date(self):
        rendered = render_template("Report for {{date}}", now=FIXED)
        assert rendered == "Report for 2026-10-19"
        assert "{{date}}" not in rendered

    def test_time(self):
        assert render_template("at {{time}}", now=FIXED) == "at 09:05:07"

    def test_datetime_is_iso_with_offset(self):
        parsed = datetime.fromisoformat(render_template("{{datetime}}", now=FIXED))
        assert parsed.tzinfo is not None
        assert parsed.replace(tzinfo=None) == FIXED

    def test_datetime_keeps_aware_zone(self):
        aware = FIXED.replace(tzinfo=timezone.utc)
        assert render_template("{{datetime}}", now=aware) == "2026-10-19T09:05:07.123456+00:00"

    def test_repeated_tokens_all_replaced(self):
        assert render_template("{{date}}/{{date}}", now=FIXED) == "2026-10-19/2026-10-19"

    def test_unknown_token_left_verbatim(self):
        assert render_template("Hello {{foo}}", now=FIXED) == "Hello {{foo}}"

    def test_no_tokens(self):
        assert render_template("plain text", now=FIXED) == "plain text"

    def test_uses_current_time_by_default(self):
        before = datetime.now().strftime("%Y-%m-%d")
        rendered = render_template("{{date}}")
        after = datetime.now().strftime("%Y-%m-%d")
        assert rendered in (before, after)


class TestAppendPayload:
    def test_empty_payload_leaves_description(self):
        assert append_payload("desc", None) == "desc"
        assert append_payload("desc", {}) == "desc"

    def test_payload_appended_after_separator(self):
        result = append_payload("desc", {"order": 42})
        head, _, tail = result.partition("\n\n---\n\n")
        assert head == "desc"
        assert tail.startswith("**Webhook Payload:**")
        body = tail.split("```json\n", 1)[1].rsplit("\n```", 1)[0]
        assert json.loads(body) == {"order": 42}

    def test_payload_without_description(self):
        result = append_payload("", {"a": 1})
        assert result.startswith("**Webhook Payload:**")
        assert "---" not in result
