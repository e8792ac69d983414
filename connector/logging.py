"""
LOR Ledger — Structured Logging

JSON log lines for connection attempts and ledger calls. Every event
emitted by an EventLogger carries the attempt_id of the connection
attempt (or ledger call) it belongs to, so one attempt can be followed
end to end across phase transitions.

Usage:
    from connector.logging import EventLogger, configure_logging

    configure_logging(level="INFO")
    events = EventLogger(component="orchestrator")
    events.attempt_start(attempt_id)
    events.phase_transition(attempt_id, "connecting", "accounts_requested")
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "lor_ledger"


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """Formats log records as JSON lines."""

    def __init__(self, service_name: str = ROOT_LOGGER):
        super().__init__()
        self.service_name = service_name
        self.service_version = os.environ.get("LOR_VERSION", "0.1.0")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
            "service.version": self.service_version,
        }

        if hasattr(record, "structured"):
            entry.update(record.structured)

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception.type"] = record.exc_info[0].__name__
            entry["exception.message"] = str(record.exc_info[1])

        return json.dumps(entry, default=str)


# ═══════════════════════════════════════════════════════════════════
# Log Configuration
# ═══════════════════════════════════════════════════════════════════

def configure_logging(
    level: str = "INFO",
    stream: Any = None,
    service_name: str = ROOT_LOGGER,
) -> logging.Logger:
    """
    Configure the lor_ledger logger with JSON output.

    Args:
        level: DEBUG, INFO, WARNING, ERROR
        stream: Output stream (default: sys.stderr)
        service_name: Service name in log entries

    Returns:
        The configured root logger for lor_ledger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid duplicate handlers on reconfigure
    logger.handlers.clear()
    for name in list(logging.Logger.manager.loggerDict.keys()):
        if name.startswith(ROOT_LOGGER + "."):
            child = logging.getLogger(name)
            child.handlers.clear()
            child.setLevel(logging.NOTSET)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str = "") -> logging.Logger:
    """Get a child logger under the lor_ledger namespace."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return logging.getLogger(ROOT_LOGGER)


def generate_attempt_id() -> str:
    return uuid.uuid4().hex[:16]


# ═══════════════════════════════════════════════════════════════════
# Event Logger
# ═══════════════════════════════════════════════════════════════════

class EventLogger:
    """
    Emits structured events for one component.

    Every entry has component, action and attempt_id fields.
    """

    def __init__(self, component: str):
        self.component = component
        self._logger = get_logger(f"events.{component}")

    def _emit(self, level: int, action: str, attempt_id: str, **fields):
        if not self._logger.isEnabledFor(level):
            return
        structured = {
            "component": self.component,
            "action": action,
            "attempt_id": attempt_id,
            **fields,
        }
        record = self._logger.makeRecord(
            name=self._logger.name,
            level=level,
            fn="", lno=0, msg=action,
            args=(), exc_info=None,
        )
        record.structured = structured
        self._logger.handle(record)

    # ── Connection attempts ─────────────────────────────────────

    def attempt_start(self, attempt_id: str, ledger_address: str | None) -> None:
        self._emit(logging.INFO, "attempt_start", attempt_id,
                   ledger_address=ledger_address)

    def phase_transition(self, attempt_id: str, from_phase: str, to_phase: str) -> None:
        self._emit(logging.DEBUG, "phase_transition", attempt_id,
                   from_phase=from_phase, to_phase=to_phase)

    def attempt_end(self, attempt_id: str, status: str, elapsed_s: float,
                    error_kind: str | None = None) -> None:
        level = logging.INFO if error_kind is None else logging.WARNING
        self._emit(level, "attempt_end", attempt_id,
                   status=status, elapsed_s=round(elapsed_s, 3),
                   error_kind=error_kind)

    def attempt_discarded(self, attempt_id: str, at_phase: str) -> None:
        self._emit(logging.INFO, "attempt_discarded", attempt_id, at_phase=at_phase)

    # ── Ledger calls ────────────────────────────────────────────

    def ledger_call(self, attempt_id: str, operation: str, mutating: bool,
                    account: str | None = None) -> None:
        self._emit(logging.DEBUG, "ledger_call", attempt_id,
                   operation=operation, mutating=mutating, account=account)

    def ledger_confirmed(self, attempt_id: str, operation: str, tx_hash: str,
                         block_number: int, elapsed_s: float) -> None:
        self._emit(logging.INFO, "ledger_confirmed", attempt_id,
                   operation=operation, tx_hash=tx_hash,
                   block_number=block_number, elapsed_s=round(elapsed_s, 3))

    def ledger_failed(self, attempt_id: str, operation: str, error_kind: str,
                      reason: str | None = None) -> None:
        self._emit(logging.WARNING, "ledger_failed", attempt_id,
                   operation=operation, error_kind=error_kind, reason=reason)
