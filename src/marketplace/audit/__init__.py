"""Audit sink wiring.

``audit(order, action, actor, **details)`` is what command handlers call.
"""

import os

from marketplace.audit.port import AuditEntry, AuditSink
from marketplace.audit.sinks import InMemoryAuditSink, StructlogAuditSink

_audit_sink: AuditSink | None = None


def get_audit_sink() -> AuditSink:
    global _audit_sink
    if _audit_sink is None:
        if os.environ.get("AUDIT_SINK", "structlog") == "memory":
            _audit_sink = InMemoryAuditSink()
        else:
            _audit_sink = StructlogAuditSink()
    return _audit_sink


def set_audit_sink(sink: AuditSink) -> None:
    global _audit_sink
    _audit_sink = sink


def reset_audit_sink() -> None:
    global _audit_sink
    _audit_sink = None


def audit(order, action: str, actor: str, **details) -> None:
    get_audit_sink().record(
        AuditEntry(
            action=action,
            order_id=str(order.id),
            order_number=order.order_number,
            actor=actor,
            details=details,
        )
    )
