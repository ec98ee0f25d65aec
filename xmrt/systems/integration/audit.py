"""
XMRT Core — Audit Log

Ordered, append-only trail of audit events: one entry per coordination
attempt plus one per service lifecycle transition.

Recording is synchronous so it cannot be skipped by a cancelled await.
The trail is a bounded ring buffer; the oldest entries fall off once
``maxlen`` is reached.
"""

from __future__ import annotations

from collections import deque
from typing import Any

import structlog

from xmrt.systems.integration.types import (
    AuditEvent,
    AuditEventType,
    AuditKind,
    CoordinationOutcome,
)

logger = structlog.get_logger("xmrt.systems.integration.audit")

_DEFAULT_MAXLEN: int = 10_000


class AuditLog:
    """Append-only audit sink that tests and the API can read back in order."""

    def __init__(self, maxlen: int = _DEFAULT_MAXLEN) -> None:
        self._events: deque[AuditEvent] = deque(maxlen=maxlen)
        self._logger = logger.bind(component="audit_log")
        self._total_recorded: int = 0
        self._by_outcome: dict[CoordinationOutcome, int] = {o: 0 for o in CoordinationOutcome}

    # ─── Recording ───────────────────────────────────────────────────

    def record(self, event: AuditEvent) -> AuditEvent:
        self._events.append(event)
        self._total_recorded += 1
        if event.outcome is not None:
            self._by_outcome[event.outcome] += 1

        self._logger.debug(
            "audit_event",
            kind=event.kind.value,
            event_type=event.event_type.value,
            source=event.source,
            target=event.target,
            outcome=event.outcome.value if event.outcome else None,
        )
        return event

    def lifecycle(
        self,
        event_type: AuditEventType,
        target: str = "",
        **data: Any,
    ) -> AuditEvent:
        """Shorthand for recording a lifecycle event."""
        return self.record(AuditEvent(
            kind=AuditKind.LIFECYCLE,
            event_type=event_type,
            source="core",
            target=target,
            data=data,
        ))

    # ─── Query ───────────────────────────────────────────────────────

    @property
    def events(self) -> list[AuditEvent]:
        """Every retained event, oldest first."""
        return list(self._events)

    def coordination_events(self) -> list[AuditEvent]:
        return [e for e in self._events if e.kind == AuditKind.COORDINATION]

    def lifecycle_events(self) -> list[AuditEvent]:
        return [e for e in self._events if e.kind == AuditKind.LIFECYCLE]

    def recent(self, limit: int = 50) -> list[AuditEvent]:
        """Most recent events, most recent first."""
        items = list(self._events)
        items.reverse()
        return items[:limit]

    def __len__(self) -> int:
        return len(self._events)

    # ─── Stats ───────────────────────────────────────────────────────

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_recorded": self._total_recorded,
            "retained": len(self._events),
            "outcomes": {o.value: n for o, n in self._by_outcome.items()},
        }
