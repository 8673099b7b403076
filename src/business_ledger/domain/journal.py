from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from business_ledger.domain.value_objects import (
    EntryStatus,
    EntryType,
    Money,
    ReconciliationStatus,
)
from business_ledger.exceptions import (
    CurrencyMismatchError,
    EmptyEntryError,
    InvalidEntryTransitionError,
    InvalidJournalLineError,
    JournalEntryImmutableError,
    UnbalancedEntryError,
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class Dimensions:
    """Reporting tags on a journal line; never part of the balance invariant."""

    department: str | None = None
    project: str | None = None
    location: str | None = None
    customer_id: str | None = None
    supplier_id: str | None = None

    def to_dict(self) -> dict[str, str]:
        return {
            key: value
            for key, value in (
                ("department", self.department),
                ("project", self.project),
                ("location", self.location),
                ("customer_id", self.customer_id),
                ("supplier_id", self.supplier_id),
            )
            if value is not None
        }


@dataclass
class JournalEntryLine:
    account_id: UUID
    debit_amount: Money = field(default_factory=lambda: Money.zero())
    credit_amount: Money = field(default_factory=lambda: Money.zero())
    id: UUID = field(default_factory=uuid4)
    description: str = ""
    line_number: int = 0
    dimensions: Dimensions = field(default_factory=Dimensions)
    reconciliation_status: ReconciliationStatus | None = None
    foreign_amount: Money | None = None
    exchange_rate: Decimal | None = None

    def __post_init__(self) -> None:
        # An omitted side takes the currency of the side that was supplied.
        if self.debit_amount.is_zero and not self.credit_amount.is_zero:
            self.debit_amount = Money.zero(
                self.credit_amount.currency, self.credit_amount.scale
            )
        elif self.credit_amount.is_zero and not self.debit_amount.is_zero:
            self.credit_amount = Money.zero(
                self.debit_amount.currency, self.debit_amount.scale
            )

        if self.debit_amount.currency != self.credit_amount.currency:
            raise InvalidJournalLineError(
                "debit and credit must share a currency", line_id=self.id
            )
        if self.debit_amount.is_negative or self.credit_amount.is_negative:
            raise InvalidJournalLineError("amounts must not be negative", line_id=self.id)
        if self.debit_amount.is_zero == self.credit_amount.is_zero:
            raise InvalidJournalLineError(
                "exactly one of debit or credit must be non-zero", line_id=self.id
            )

    @classmethod
    def debit(cls, account_id: UUID, amount: Money, **kwargs) -> "JournalEntryLine":
        return cls(account_id=account_id, debit_amount=amount, **kwargs)

    @classmethod
    def credit(cls, account_id: UUID, amount: Money, **kwargs) -> "JournalEntryLine":
        return cls(account_id=account_id, credit_amount=amount, **kwargs)

    @property
    def currency(self) -> str:
        return self.debit_amount.currency

    @property
    def is_debit(self) -> bool:
        return self.debit_amount.is_positive

    @property
    def is_credit(self) -> bool:
        return self.credit_amount.is_positive

    @property
    def amount(self) -> Money:
        return self.debit_amount if self.is_debit else self.credit_amount

    @property
    def net_amount(self) -> Money:
        return self.debit_amount - self.credit_amount

    def swapped(self) -> "JournalEntryLine":
        """Mirror image of this line for a reversing entry."""
        return replace(
            self,
            id=uuid4(),
            debit_amount=self.credit_amount,
            credit_amount=self.debit_amount,
            reconciliation_status=None,
            foreign_amount=-self.foreign_amount if self.foreign_amount is not None else None,
        )


@dataclass
class JournalEntry:
    entry_date: date
    description: str = ""
    lines: list[JournalEntryLine] = field(default_factory=list)
    id: UUID = field(default_factory=uuid4)
    reference: str = ""
    entry_type: EntryType = EntryType.STANDARD
    status: EntryStatus = EntryStatus.DRAFT
    currency: str = "USD"
    tenant_id: str = "default"
    sequence_number: int | None = None
    posted_date: date | None = None
    posted_by: str | None = None
    reversal_of_entry_id: UUID | None = None
    reversed_by_entry_id: UUID | None = None
    reversal_reason: str = ""
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    version: int = 0

    def __post_init__(self) -> None:
        self.currency = self.currency.upper()
        for number, line in enumerate(self.lines, start=1):
            if not line.line_number:
                line.line_number = number

    @property
    def total_debits(self) -> Money:
        return Money.total((line.debit_amount for line in self.lines), self.currency, self._scale)

    @property
    def total_credits(self) -> Money:
        return Money.total((line.credit_amount for line in self.lines), self.currency, self._scale)

    @property
    def _scale(self) -> int | None:
        return self.lines[0].debit_amount.scale if self.lines else None

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    @property
    def is_posted(self) -> bool:
        return self.status == EntryStatus.POSTED

    @property
    def account_ids(self) -> set[UUID]:
        return {line.account_id for line in self.lines}

    def _ensure_editable(self) -> None:
        if not self.status.is_editable:
            raise JournalEntryImmutableError(self.id, self.status.value)

    def add_line(self, line: JournalEntryLine) -> None:
        self._ensure_editable()
        line.line_number = len(self.lines) + 1
        self.lines.append(line)
        self.updated_at = _utc_now()

    def remove_line(self, line_id: UUID) -> JournalEntryLine:
        self._ensure_editable()
        for index, line in enumerate(self.lines):
            if line.id == line_id:
                removed = self.lines.pop(index)
                for number, remaining in enumerate(self.lines, start=1):
                    remaining.line_number = number
                self.updated_at = _utc_now()
                return removed
        raise InvalidJournalLineError("line not found on entry", line_id=line_id)

    def validate(self) -> None:
        if len(self.lines) < 2:
            raise EmptyEntryError(self.id, len(self.lines))
        for line in self.lines:
            if line.currency != self.currency:
                raise CurrencyMismatchError("post", self.currency, line.currency)
        if not self.is_balanced:
            raise UnbalancedEntryError(
                self.id, str(self.total_debits), str(self.total_credits)
            )

    def submit_for_approval(self, actor: str | None = None) -> None:
        if self.status != EntryStatus.DRAFT:
            raise InvalidEntryTransitionError(
                self.id, self.status.value, EntryStatus.PENDING_APPROVAL.value
            )
        self.status = EntryStatus.PENDING_APPROVAL
        self.updated_by = actor
        self.updated_at = _utc_now()

    def mark_posted(self, sequence_number: int, posted_date: date, actor: str | None) -> None:
        if not self.status.is_editable:
            raise InvalidEntryTransitionError(
                self.id, self.status.value, EntryStatus.POSTED.value
            )
        self.status = EntryStatus.POSTED
        self.sequence_number = sequence_number
        self.posted_date = posted_date
        self.posted_by = actor
        self.updated_by = actor
        self.updated_at = _utc_now()

    def mark_reversed(self, reversal_id: UUID, actor: str | None) -> None:
        if self.status != EntryStatus.POSTED:
            raise InvalidEntryTransitionError(
                self.id, self.status.value, EntryStatus.REVERSED.value
            )
        self.status = EntryStatus.REVERSED
        self.reversed_by_entry_id = reversal_id
        self.updated_by = actor
        self.updated_at = _utc_now()

    def build_reversal(
        self, reversal_date: date, reason: str, actor: str | None = None
    ) -> "JournalEntry":
        """Draft entry whose lines are the exact debit/credit swap of this one."""
        return JournalEntry(
            entry_date=reversal_date,
            description=f"Reversal of {self.reference or self.id}: {reason}",
            lines=[line.swapped() for line in self.lines],
            reference=self.reference,
            entry_type=EntryType.REVERSAL,
            currency=self.currency,
            tenant_id=self.tenant_id,
            reversal_of_entry_id=self.id,
            reversal_reason=reason,
            created_by=actor,
        )
