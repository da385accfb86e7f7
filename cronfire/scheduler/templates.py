"""
Task template rendering.

Recognised tokens:
    {{date}}      2026-10-18
    {{time}}      14:05:09          (local time)
    {{datetime}}  2026-10-18T14:05:09.123456+02:00   (with UTC offset)

Anything else, including unknown {{tokens}}, is left untouched.
"""

from __future__ import annotations

import json
from datetime import datetime


def render_template(template: str, now: datetime | None = None) -> str:
    now = now or datetime.now()
    stamp = now if now.tzinfo is not None else now.astimezone()
    return (
        template
        .replace("{{date}}", now.strftime("%Y-%m-%d"))
        .replace("{{time}}", now.strftime("%H:%M:%S"))
        .replace("{{datetime}}", stamp.isoformat())
    )


def append_payload(description: str, payload: dict | None) -> str:
    """Append an inbound webhook payload to a rendered description."""
    if not payload:
        return description

    block = f"**Webhook Payload:**\n```json\n{json.dumps(payload, indent=2, default=str)}\n```"
    if description:
        return f"{description}\n\n---\n\n{block}"
    return block
