"""Currency and exchange rate domain models for conversion and revaluation."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from business_ledger.domain.value_objects import Money


class ExchangeRateSource(str, Enum):
    """Source of exchange rate data."""

    MANUAL = "manual"
    ECB = "ecb"
    FED = "fed"
    BANK = "bank"
    API = "api"


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


@dataclass
class Currency:
    """A registered currency and the number of fractional digits it carries."""

    code: str
    name: str
    decimal_places: int = 2
    symbol: str = ""
    is_base_currency: bool = False
    is_active: bool = True
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        self.code = self.code.upper()
        if len(self.code) != 3 or not self.code.isalpha():
            raise ValueError(f"Invalid currency code: {self.code}")
        if not 0 <= self.decimal_places <= 8:
            raise ValueError(f"decimal_places must be between 0 and 8, got {self.decimal_places}")

    def money(self, amount: Decimal | int | str) -> Money:
        """Strictly build an amount at this currency's scale."""
        return Money(amount, self.code, self.decimal_places)

    def zero(self) -> Money:
        return Money.zero(self.code, self.decimal_places)


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """Immutable, directed exchange rate.

    One unit of ``from_currency`` buys ``rate`` units of ``to_currency``
    between ``effective_date`` (inclusive) and ``expiration_date``
    (exclusive, ``None`` for open-ended).
    """

    from_currency: str
    to_currency: str
    rate: Decimal
    effective_date: date
    expiration_date: date | None = None
    id: UUID = field(default_factory=uuid4)
    source: ExchangeRateSource = ExchangeRateSource.MANUAL
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        """Validate and coerce rate to Decimal."""
        if isinstance(self.rate, float):
            raise ValueError("Exchange rates must be given as str or Decimal, not float")
        if not isinstance(self.rate, Decimal):
            object.__setattr__(self, "rate", Decimal(str(self.rate)))
        if self.rate <= 0:
            raise ValueError(f"Exchange rate must be positive, got {self.rate}")
        object.__setattr__(self, "from_currency", self.from_currency.upper())
        object.__setattr__(self, "to_currency", self.to_currency.upper())
        if self.from_currency == self.to_currency:
            raise ValueError(f"Exchange rate needs two different currencies, got {self.pair}")
        if self.expiration_date is not None and self.expiration_date <= self.effective_date:
            raise ValueError("Exchange rate expiration must be after its effective date")

    def is_effective_on(self, day: date) -> bool:
        if day < self.effective_date:
            return False
        return self.expiration_date is None or day < self.expiration_date

    @property
    def pair(self) -> str:
        """Return currency pair string like 'USD/EUR'."""
        return f"{self.from_currency}/{self.to_currency}"


@dataclass
class ConversionResult:
    original: Money
    converted: Money
    rate: Decimal
    rate_id: UUID | None
    used_inverse: bool
    as_of_date: date


@dataclass
class RevaluationResult:
    """Change in an account's base-currency carrying value.

    ``adjustment`` is signed on the account's normal side, so a positive
    adjustment is a gain for an asset and a loss for a liability.
    """

    account_id: UUID
    foreign_balance: Money
    old_rate: Decimal
    new_rate: Decimal
    adjustment: Money
    revaluation_date: date
    is_debit_normal: bool = True
    journal_entry_id: UUID | None = None

    @property
    def is_gain(self) -> bool:
        if self.adjustment.is_zero:
            return False
        return self.adjustment.is_positive == self.is_debit_normal
