"""Accounts receivable / payable domain models."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from business_ledger.domain.value_objects import (
    InvoiceStatus,
    InvoiceType,
    Money,
    PaymentMethod,
    PaymentType,
)
from business_ledger.exceptions import (
    CounterpartyError,
    InvalidAmountError,
    InvoiceVoidedError,
    ValidationError,
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _check_counterparty(customer_id: str | None, supplier_id: str | None) -> None:
    if (customer_id is None) == (supplier_id is None):
        raise CounterpartyError(
            "Exactly one of customer_id or supplier_id is required",
            customer_id=customer_id,
            supplier_id=supplier_id,
        )


@dataclass
class InvoiceLine:
    description: str
    quantity: Decimal
    unit_price: Money
    tax_code: str | None = None
    id: UUID = field(default_factory=uuid4)
    line_number: int = 0
    tax_amount: Money | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.quantity, Decimal):
            self.quantity = Decimal(str(self.quantity))
        if self.quantity <= 0:
            raise InvalidAmountError(str(self.quantity), "quantity must be positive")
        if self.unit_price.is_negative:
            raise InvalidAmountError(str(self.unit_price), "unit price must not be negative")
        if self.tax_amount is None:
            self.tax_amount = Money.zero(self.unit_price.currency, self.unit_price.scale)

    @property
    def line_total(self) -> Money:
        return self.unit_price.multiply(self.quantity)

    @property
    def is_taxable(self) -> bool:
        return self.tax_code is not None


@dataclass
class ARAPInvoice:
    invoice_date: date
    due_date: date
    currency: str = "USD"
    customer_id: str | None = None
    supplier_id: str | None = None
    lines: list[InvoiceLine] = field(default_factory=list)
    jurisdiction_codes: list[str] = field(default_factory=list)
    id: UUID = field(default_factory=uuid4)
    invoice_number: str = ""
    description: str = ""
    subtotal: Money | None = None
    tax_amount: Money | None = None
    total_amount: Money | None = None
    paid_amount: Money | None = None
    status: InvoiceStatus = InvoiceStatus.OPEN
    journal_entry_id: UUID | None = None
    void_reason: str = ""
    tenant_id: str = "default"
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    version: int = 0

    def __post_init__(self) -> None:
        _check_counterparty(self.customer_id, self.supplier_id)
        self.currency = self.currency.upper()
        if self.due_date < self.invoice_date:
            raise ValidationError(
                f"Due date {self.due_date} is before invoice date {self.invoice_date}",
                context={"invoice_date": str(self.invoice_date), "due_date": str(self.due_date)},
            )
        for number, line in enumerate(self.lines, start=1):
            if not line.line_number:
                line.line_number = number
        zero = Money.zero(self.currency, self._scale)
        if self.paid_amount is None:
            self.paid_amount = zero
        if self.subtotal is None or self.tax_amount is None or self.total_amount is None:
            self.recompute_totals()

    @property
    def _scale(self) -> int | None:
        return self.lines[0].unit_price.scale if self.lines else None

    @property
    def invoice_type(self) -> InvoiceType:
        if self.customer_id is not None:
            return InvoiceType.RECEIVABLE
        return InvoiceType.PAYABLE

    @property
    def counterparty_id(self) -> str:
        return self.customer_id if self.customer_id is not None else self.supplier_id

    @property
    def balance_amount(self) -> Money:
        return self.total_amount - self.paid_amount

    @property
    def is_outstanding(self) -> bool:
        return self.status.is_outstanding

    def recompute_totals(self) -> None:
        self.subtotal = Money.total(
            (line.line_total for line in self.lines), self.currency, self._scale
        )
        self.tax_amount = Money.total(
            (line.tax_amount for line in self.lines), self.currency, self._scale
        )
        self.total_amount = self.subtotal + self.tax_amount

    def days_overdue(self, as_of_date: date) -> int:
        return (as_of_date - self.due_date).days

    def is_overdue(self, as_of_date: date) -> bool:
        return self.is_outstanding and self.due_date < as_of_date

    def record_payment(self, amount: Money, actor: str | None = None) -> None:
        """Increase paid_amount; callers check the balance first."""
        if self.status == InvoiceStatus.VOID:
            raise InvoiceVoidedError(self.id)
        if amount > self.balance_amount:
            raise InvalidAmountError(str(amount), f"exceeds balance {self.balance_amount}")
        self.paid_amount = self.paid_amount + amount
        if self.paid_amount == self.total_amount:
            self.status = InvoiceStatus.PAID
        elif self.paid_amount.is_positive:
            self.status = InvoiceStatus.PARTIALLY_PAID
        else:
            self.status = InvoiceStatus.OPEN
        self.updated_by = actor
        self.updated_at = _utc_now()

    def void(self, reason: str, actor: str | None = None) -> None:
        if self.status == InvoiceStatus.VOID:
            raise InvoiceVoidedError(self.id)
        self.status = InvoiceStatus.VOID
        self.void_reason = reason
        self.updated_by = actor
        self.updated_at = _utc_now()


def validate_payment_method(method: PaymentMethod, reference: str | None) -> None:
    """Check the reference that goes with each payment method."""
    if method == PaymentMethod.CASH:
        return
    if method == PaymentMethod.CHECK:
        if not reference or not reference.strip().isdigit():
            raise ValidationError(
                "Check payments need a numeric check number",
                context={"method": method.value, "reference": reference},
            )
    elif method == PaymentMethod.BANK_TRANSFER:
        if not reference or not reference.strip():
            raise ValidationError(
                "Bank transfers need a transfer reference",
                context={"method": method.value},
            )
    elif method == PaymentMethod.CARD:
        if not reference or len(reference) != 4 or not reference.isdigit():
            raise ValidationError(
                "Card payments need the last four digits of the card",
                context={"method": method.value, "reference": reference},
            )


@dataclass
class PaymentApplication:
    payment_id: UUID
    invoice_id: UUID
    amount: Money
    applied_date: date
    id: UUID = field(default_factory=uuid4)
    applied_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)


@dataclass
class ARAPPayment:
    payment_date: date
    amount: Money
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    method_reference: str | None = None
    customer_id: str | None = None
    supplier_id: str | None = None
    applications: list[PaymentApplication] = field(default_factory=list)
    id: UUID = field(default_factory=uuid4)
    payment_number: str = ""
    description: str = ""
    journal_entry_id: UUID | None = None
    tenant_id: str = "default"
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    version: int = 0

    def __post_init__(self) -> None:
        _check_counterparty(self.customer_id, self.supplier_id)
        if not self.amount.is_positive:
            raise InvalidAmountError(str(self.amount), "payment amount must be positive")
        validate_payment_method(self.method, self.method_reference)

    @property
    def payment_type(self) -> PaymentType:
        if self.customer_id is not None:
            return PaymentType.RECEIPT
        return PaymentType.DISBURSEMENT

    @property
    def currency(self) -> str:
        return self.amount.currency

    @property
    def counterparty_id(self) -> str:
        return self.customer_id if self.customer_id is not None else self.supplier_id

    @property
    def applied_amount(self) -> Money:
        return Money.total(
            (application.amount for application in self.applications),
            self.amount.currency,
            self.amount.scale,
        )

    @property
    def unapplied_amount(self) -> Money:
        return self.amount - self.applied_amount

    def add_application(self, application: PaymentApplication, actor: str | None = None) -> None:
        if application.amount > self.unapplied_amount:
            raise InvalidAmountError(
                str(application.amount), f"exceeds unapplied {self.unapplied_amount}"
            )
        self.applications.append(application)
        self.updated_by = actor
        self.updated_at = _utc_now()


@dataclass(frozen=True, slots=True)
class AgingBucket:
    """Half-open day range ``[days_from, days_to)``; ``days_to=None`` is unbounded."""

    label: str
    days_from: int
    days_to: int | None = None

    def contains(self, days: int) -> bool:
        if days < self.days_from:
            return False
        return self.days_to is None or days < self.days_to


@dataclass
class AgingBucketSummary:
    bucket: AgingBucket
    invoice_count: int
    total_balance: Money
    invoice_ids: list[UUID] = field(default_factory=list)


@dataclass
class AgingReport:
    as_of_date: date
    currency: str
    invoice_type: InvoiceType | None
    buckets: list[AgingBucketSummary]

    @property
    def total_balance(self) -> Money:
        return Money.total(
            (summary.total_balance for summary in self.buckets),
            self.currency,
            self.buckets[0].total_balance.scale if self.buckets else None,
        )

    @property
    def invoice_count(self) -> int:
        return sum(summary.invoice_count for summary in self.buckets)

    def bucket(self, label: str) -> AgingBucketSummary:
        for summary in self.buckets:
            if summary.bucket.label == label:
                return summary
        raise KeyError(label)


@dataclass
class OutstandingSummary:
    invoice_type: InvoiceType
    as_of_date: date
    total_outstanding: Money
    total_overdue: Money
    invoice_count: int
    overdue_count: int


@dataclass(frozen=True, slots=True)
class PostingAccounts:
    """General-ledger accounts used when invoices and payments are journalized."""

    receivable_account_id: UUID | None = None
    payable_account_id: UUID | None = None
    revenue_account_id: UUID | None = None
    expense_account_id: UUID | None = None
    tax_payable_account_id: UUID | None = None
    tax_receivable_account_id: UUID | None = None
    cash_account_id: UUID | None = None
