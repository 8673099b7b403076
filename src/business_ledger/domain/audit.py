"""Audit trail domain models for tracking ledger state changes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    POST = "post"
    REVERSE = "reverse"
    CLOSE = "close"
    YEAR_END = "year_end"
    APPLY = "apply"
    VOID = "void"
    REVALUE = "revalue"


class AuditEntityType(str, Enum):
    ACCOUNT = "account"
    JOURNAL_ENTRY = "journal_entry"
    FISCAL_PERIOD = "fiscal_period"
    FISCAL_YEAR = "fiscal_year"
    TAX_RATE = "tax_rate"
    EXCHANGE_RATE = "exchange_rate"
    CURRENCY = "currency"
    INVOICE = "invoice"
    PAYMENT = "payment"


@dataclass
class AuditEntry:
    """One committed state change.

    Amounts in ``old_values``/``new_values`` are stored as fixed-point
    strings so that the record round-trips without precision loss.
    """

    entity_type: AuditEntityType
    entity_id: UUID
    action: AuditAction
    id: UUID = field(default_factory=uuid4)
    actor: str | None = None
    tenant_id: str = "default"
    timestamp: datetime = field(default_factory=_utc_now)
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    change_summary: str = ""

    @property
    def has_changes(self) -> bool:
        return self.old_values is not None or self.new_values is not None

    @property
    def changed_fields(self) -> list[str]:
        if self.old_values is None or self.new_values is None:
            return []
        all_keys = set(self.old_values) | set(self.new_values)
        return sorted(
            key for key in all_keys if self.old_values.get(key) != self.new_values.get(key)
        )


@dataclass
class AuditLogSummary:
    total_entries: int
    entries_by_action: dict[AuditAction, int]
    entries_by_entity_type: dict[AuditEntityType, int]
    oldest_entry: datetime | None
    newest_entry: datetime | None
