"""Audit logging helpers.

Every login, placement, fallback and robot state change is recorded as an
audit event (`event_type` + payload + run/cycle ids). Events are mirrored to
the stdlib logger and kept in a bounded in-memory buffer so the shell can show
the recent ones (including fatal cycle errors).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger("option_robot.audit")


def utc_now() -> datetime:
    """UTC timestamp helper."""
    return datetime.now(timezone.utc)


def jsonify(value: Any) -> Any:
    """Best-effort conversion to JSON-safe types."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.isoformat()
    if isinstance(value, (list, tuple)):
        return [jsonify(v) for v in value]
    if isinstance(value, dict):
        return {str(k): jsonify(v) for k, v in value.items()}
    if hasattr(value, "model_dump"):
        return jsonify(value.model_dump(mode="json"))
    return str(value)


@dataclass(frozen=True)
class AuditContext:
    run_id: Optional[str] = None
    cycle: Optional[int] = None


@dataclass(frozen=True)
class AuditEvent:
    timestamp: datetime
    event_type: str
    level: int
    payload: Dict[str, Any]
    run_id: Optional[str] = None
    cycle: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "level": logging.getLevelName(self.level),
            "payload": self.payload,
            "run_id": self.run_id,
            "cycle": self.cycle,
        }


class AuditManager:
    """Bounded audit buffer mirrored to `logging`."""

    def __init__(self, *, max_events: int = 500):
        self._events: Deque[AuditEvent] = deque(maxlen=max(1, int(max_events)))

    def log(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        ctx: Optional[AuditContext] = None,
        level: int = logging.INFO,
    ) -> AuditEvent:
        c = ctx or AuditContext()
        event = AuditEvent(
            timestamp=utc_now(),
            event_type=event_type,
            level=level,
            payload=jsonify(payload or {}),
            run_id=c.run_id,
            cycle=c.cycle,
        )
        self._events.append(event)
        logger.log(level, "%s run_id=%s cycle=%s %s", event_type, c.run_id, c.cycle, event.payload)
        return event

    def recent(self, limit: int = 50, *, event_type: Optional[str] = None) -> List[AuditEvent]:
        """Newest-first slice of the buffer."""
        items = [e for e in reversed(self._events) if event_type is None or e.event_type == event_type]
        return items[: max(0, int(limit))]

    def clear(self) -> None:
        self._events.clear()


__all__ = ["AuditContext", "AuditEvent", "AuditManager", "jsonify", "utc_now"]
