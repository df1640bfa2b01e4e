"""Audit events.

Small opt-in event channel for navigation and write telemetry (guard
denials, redirects, failed mutations). Applications can register a sink to
forward events to logs, metrics, or an analytics backend.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from time import time
from typing import Any, TypeAlias


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """A structured audit event."""

    name: str
    timestamp: float = field(default_factory=time)
    route_id: str | None = None
    mutation: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


AuditEventSink: TypeAlias = Callable[[AuditEvent], None]


_sink_lock = threading.Lock()
_sink: AuditEventSink | None = None


def set_event_sink(sink: AuditEventSink | None) -> None:
    """Set a process-wide sink for audit events.

    Pass ``None`` to disable event delivery.
    """
    global _sink
    with _sink_lock:
        _sink = sink


def emit_event(
    name: str,
    *,
    route_id: str | None = None,
    mutation: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit an audit event to the configured sink, if any."""
    with _sink_lock:
        sink = _sink
    if sink is None:
        return

    sink(
        AuditEvent(
            name=name,
            route_id=route_id,
            mutation=mutation,
            details=details or {},
        )
    )
