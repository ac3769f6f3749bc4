"""Audit sink port.

Every order mutation writes one entry. Entries are append-only and carry the
actor, the action, the order reference and free-form details.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass(frozen=True)
class AuditEntry:
    action: str
    order_id: str
    order_number: str
    actor: str
    details: dict = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class AuditSink(ABC):
    @abstractmethod
    def record(self, entry: AuditEntry) -> None: ...
