from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType

from business_ledger.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidCurrencyError,
)

DEFAULT_SCALE = 2

# ISO 4217 minor units for currencies that do not use two decimal places.
ISO_MINOR_UNITS = MappingProxyType(
    {
        "BIF": 0,
        "CLP": 0,
        "ISK": 0,
        "JPY": 0,
        "KRW": 0,
        "PYG": 0,
        "UGX": 0,
        "VND": 0,
        "XAF": 0,
        "XOF": 0,
        "BHD": 3,
        "IQD": 3,
        "JOD": 3,
        "KWD": 3,
        "LYD": 3,
        "OMR": 3,
        "TND": 3,
    }
)


class AccountType(str, Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def normal_balance(self) -> NormalBalance:
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT

    @property
    def is_temporary(self) -> bool:
        """Revenue and expense accounts are zeroed at year end."""
        return self in (AccountType.REVENUE, AccountType.EXPENSE)


class NormalBalance(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class EntryStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    POSTED = "posted"
    REVERSED = "reversed"

    @property
    def is_editable(self) -> bool:
        return self in (EntryStatus.DRAFT, EntryStatus.PENDING_APPROVAL)


class EntryType(str, Enum):
    STANDARD = "standard"
    ADJUSTMENT = "adjustment"
    REVERSAL = "reversal"
    CLOSING = "closing"
    REVALUATION = "revaluation"


class ReconciliationStatus(str, Enum):
    UNRECONCILED = "unreconciled"
    CLEARED = "cleared"
    RECONCILED = "reconciled"


class PeriodStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class PeriodType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class TaxType(str, Enum):
    SALES = "sales"
    VAT = "vat"
    GST = "gst"
    INCOME = "income"
    PROPERTY = "property"
    EXCISE = "excise"


class JurisdictionType(str, Enum):
    FEDERAL = "federal"
    STATE = "state"
    COUNTY = "county"
    CITY = "city"
    CUSTOM = "custom"


class CalculationMethod(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"
    TIERED = "tiered"


class InvoiceType(str, Enum):
    RECEIVABLE = "receivable"
    PAYABLE = "payable"


class InvoiceStatus(str, Enum):
    OPEN = "open"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOID = "void"

    @property
    def is_outstanding(self) -> bool:
        return self in (InvoiceStatus.OPEN, InvoiceStatus.PARTIALLY_PAID)


class PaymentType(str, Enum):
    RECEIPT = "receipt"
    DISBURSEMENT = "disbursement"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"


def default_scale(currency: str) -> int:
    """Number of fractional digits used by a currency unless configured otherwise."""
    return ISO_MINOR_UNITS.get(currency.upper(), DEFAULT_SCALE)


def quantize(value: Decimal, scale: int, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round ``value`` to ``scale`` fractional digits.

    This is the single rounding primitive of the ledger; every other rounding
    goes through Money.to_fixed, Money.multiply or Money.from_decimal, which
    delegate here.
    """
    try:
        return value.quantize(Decimal(1).scaleb(-scale), rounding=rounding)
    except InvalidOperation as exc:
        raise InvalidAmountError(str(value), f"cannot be represented at scale {scale}") from exc


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmountError(str(value), "booleans are not amounts")
    if isinstance(value, float):
        raise InvalidAmountError(
            repr(value), "binary floating-point values are not accepted; pass a str or Decimal"
        )
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip().replace(",", ""))
        except InvalidOperation as exc:
            raise InvalidAmountError(value, "not a number") from exc
    else:
        raise InvalidAmountError(str(value), f"unsupported type {type(value).__name__}")
    if not result.is_finite():
        raise InvalidAmountError(str(value), "must be finite")
    return result


@dataclass(frozen=True, slots=True)
class Money:
    """Exact decimal amount in a currency at a fixed number of fractional digits.

    The amount is held as a ``Decimal`` already quantized to ``scale``; an input
    with more significant fractional digits than the scale allows is rejected
    instead of being rounded silently. Use ``Money.from_decimal`` when rounding
    a computed value is intended.
    """

    amount: Decimal
    currency: str = "USD"
    scale: int = field(default=-1)

    def __post_init__(self) -> None:
        if not isinstance(self.currency, str) or len(self.currency) != 3 or not self.currency.isalpha():
            raise InvalidCurrencyError(str(self.currency))
        object.__setattr__(self, "currency", self.currency.upper())

        if self.scale == -1:
            object.__setattr__(self, "scale", default_scale(self.currency))
        elif not isinstance(self.scale, int) or self.scale < 0:
            raise InvalidAmountError(str(self.amount), f"invalid scale {self.scale!r}")

        value = _to_decimal(self.amount)
        fixed = quantize(value, self.scale)
        if fixed != value:
            raise InvalidAmountError(
                str(self.amount),
                f"more than {self.scale} fractional digits for {self.currency}",
            )
        if fixed.is_zero():
            fixed = fixed.copy_abs()
        object.__setattr__(self, "amount", fixed)

    def _check_compatible(self, other: Money, operation: str) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot {operation} Money and {type(other).__name__}")
        if self.currency != other.currency or self.scale != other.scale:
            raise CurrencyMismatchError(
                operation,
                f"{self.currency}/{self.scale}",
                f"{other.currency}/{other.scale}",
            )

    def __add__(self, other: Money) -> Money:
        self._check_compatible(other, "add")
        return Money(self.amount + other.amount, self.currency, self.scale)

    def __sub__(self, other: Money) -> Money:
        self._check_compatible(other, "subtract")
        return Money(self.amount - other.amount, self.currency, self.scale)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency, self.scale)

    def __abs__(self) -> Money:
        return Money(abs(self.amount), self.currency, self.scale)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        return self.multiply(factor)

    __rmul__ = __mul__

    def __lt__(self, other: Money) -> bool:
        self._check_compatible(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        self._check_compatible(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        self._check_compatible(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        self._check_compatible(other, "compare")
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount:.{self.scale}f}"

    def multiply(self, factor: Decimal | int | str, rounding: str = ROUND_HALF_UP) -> Money:
        """Multiply by a rate or ratio, rounding once to this money's scale."""
        return Money.from_decimal(
            self.amount * _to_decimal(factor), self.currency, self.scale, rounding
        )

    def divide(self, divisor: Decimal | int | str, rounding: str = ROUND_HALF_UP) -> Money:
        value = _to_decimal(divisor)
        if value.is_zero():
            raise InvalidAmountError(str(divisor), "division by zero")
        return Money.from_decimal(self.amount / value, self.currency, self.scale, rounding)

    def to_fixed(self, scale: int | None = None, rounding: str = ROUND_HALF_UP) -> Money:
        """Re-quantize to ``scale`` digits (defaults to the current scale)."""
        target = self.scale if scale is None else scale
        return Money(quantize(self.amount, target, rounding), self.currency, target)

    @property
    def minor_units(self) -> int:
        return int(self.amount.scaleb(self.scale))

    @property
    def is_zero(self) -> bool:
        return self.amount.is_zero()

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def format(self, symbol: str = "") -> str:
        """Display form with thousands separators, e.g. ``-$1,234.50``."""
        body = f"{abs(self.amount):,.{self.scale}f}"
        prefix = symbol if symbol else ""
        suffix = "" if symbol else f" {self.currency}"
        sign = "-" if self.is_negative else ""
        return f"{sign}{prefix}{body}{suffix}"

    def to_dict(self) -> dict[str, str]:
        return {"amount": str(self), "currency": self.currency}

    @classmethod
    def zero(cls, currency: str = "USD", scale: int | None = None) -> Money:
        return cls(Decimal("0"), currency, default_scale(currency) if scale is None else scale)

    @classmethod
    def parse(cls, text: str, currency: str = "USD", scale: int | None = None) -> Money:
        """Parse a decimal string strictly; excess fractional digits are an error."""
        return cls(_to_decimal(text), currency, default_scale(currency) if scale is None else scale)

    @classmethod
    def from_decimal(
        cls,
        value: Decimal | int | str,
        currency: str = "USD",
        scale: int | None = None,
        rounding: str = ROUND_HALF_UP,
    ) -> Money:
        """Round an exact computed value to the currency's scale."""
        target = default_scale(currency) if scale is None else scale
        return cls(quantize(_to_decimal(value), target, rounding), currency, target)

    @classmethod
    def from_minor_units(cls, units: int, currency: str = "USD", scale: int | None = None) -> Money:
        target = default_scale(currency) if scale is None else scale
        return cls(Decimal(units).scaleb(-target), currency, target)

    @classmethod
    def total(
        cls, amounts: Iterable[Money], currency: str = "USD", scale: int | None = None
    ) -> Money:
        result = cls.zero(currency, scale)
        for amount in amounts:
            result = result + amount
        return result


@dataclass(frozen=True, slots=True)
class CommandContext:
    """Opaque caller identity threaded through commands for attribution only."""

    tenant_id: str = "default"
    actor: str = "system"


SYSTEM_CONTEXT = CommandContext()


__all__ = [
    "AccountType",
    "CalculationMethod",
    "CommandContext",
    "DEFAULT_SCALE",
    "EntryStatus",
    "EntryType",
    "InvoiceStatus",
    "InvoiceType",
    "JurisdictionType",
    "Money",
    "NormalBalance",
    "PaymentMethod",
    "PaymentType",
    "PeriodStatus",
    "PeriodType",
    "ReconciliationStatus",
    "SYSTEM_CONTEXT",
    "TaxType",
    "default_scale",
    "quantize",
]
