"""Audit sink implementations."""

import structlog

from marketplace.audit.port import AuditEntry, AuditSink


class StructlogAuditSink(AuditSink):
    """Writes audit entries to a dedicated structlog logger."""

    def __init__(self, logger_name: str = "marketplace.audit") -> None:
        self._logger = structlog.get_logger(logger_name)

    def record(self, entry: AuditEntry) -> None:
        self._logger.info(
            entry.action,
            order_id=entry.order_id,
            order_number=entry.order_number,
            actor=entry.actor,
            recorded_at=entry.recorded_at.isoformat(),
            **entry.details,
        )


class InMemoryAuditSink(AuditSink):
    """Keeps entries in a list; used by tests to assert on the trail."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions_for(self, order_id: str) -> list[str]:
        return [e.action for e in self.entries if e.order_id == order_id]
