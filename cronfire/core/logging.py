"""
Logging setup and the JSON-lines event log.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from cronfire.core.events import Event


def setup_logging(
    log_dir: Path | None = None,
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Setup cronfire logging.

    Args:
        log_dir: Directory for log files (default: ~/.cronfire/logs)
        console_level: Minimum level for console output
        file_level: Minimum level for file output

    Returns:
        The configured logger
    """
    log_dir = (log_dir or (Path.home() / ".cronfire" / "logs")).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("cronfire")
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    logger.handlers = []

    # Console handler (minimal output)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    # File handler (detailed output)
    log_file = log_dir / f"cronfire_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(file_handler)

    logger.info(f"Logging initialized. File: {log_file}")

    return logger


class EventLogger:
    """
    Writes scheduler events to a dated JSON-lines file.

    Usage:
        event_logger = EventLogger(log_dir=Path("~/.cronfire/logs"))
        scheduler = TriggerScheduler(store, emit=event_logger)
    """

    def __init__(self, log_dir: Path | None = None) -> None:
        self._log_dir = (log_dir or Path.home() / ".cronfire" / "logs").expanduser()
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._logger = logging.getLogger("cronfire.events")

    @property
    def events_file(self) -> Path:
        return self._log_dir / f"events_{datetime.now().strftime('%Y%m%d')}.jsonl"

    async def __call__(self, event: Event) -> None:
        self._logger.debug(
            f"[{event.type}] source={event.source} "
            f"data_keys={list(event.data.keys()) if event.data else []}"
        )
        self._write_event(event)

    def _write_event(self, event: Event) -> None:
        """Write event to JSON lines file."""
        try:
            record = {
                "timestamp": datetime.fromtimestamp(event.timestamp).isoformat(),
                "id": event.id,
                "type": event.type,
                "source": event.source,
                "data": self._safe_serialize(event.data),
            }
            with open(self.events_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            self._logger.warning(f"Failed to write event log: {e}")

    @staticmethod
    def _safe_serialize(data: dict) -> dict:
        """Safely serialize data for JSON."""
        result = {}
        for key, value in data.items():
            try:
                json.dumps(value)
                result[key] = value
            except (TypeError, ValueError):
                result[key] = str(value)
        return result
