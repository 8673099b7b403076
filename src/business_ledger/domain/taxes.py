"""Tax jurisdiction and rate domain models."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from business_ledger.domain.value_objects import (
    CalculationMethod,
    JurisdictionType,
    Money,
    TaxType,
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _as_decimal(value: Decimal | int | str | None) -> Decimal | None:
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class TaxJurisdiction:
    code: str
    name: str
    jurisdiction_type: JurisdictionType
    country: str
    id: UUID = field(default_factory=uuid4)
    state_province: str | None = None
    county: str | None = None
    city: str | None = None
    postal_code: str | None = None
    tax_authority_name: str | None = None
    is_active: bool = True
    created_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True, slots=True)
class TaxBracket:
    """Portion of the base between ``lower`` and ``upper`` taxed at ``rate`` percent."""

    lower: Decimal
    rate: Decimal
    upper: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "lower", _as_decimal(self.lower))
        object.__setattr__(self, "rate", _as_decimal(self.rate))
        object.__setattr__(self, "upper", _as_decimal(self.upper))
        if self.lower < 0 or self.rate < 0:
            raise ValueError("Tax bracket bounds and rates must be non-negative")
        if self.upper is not None and self.upper <= self.lower:
            raise ValueError(f"Tax bracket upper {self.upper} must exceed lower {self.lower}")

    def portion_of(self, base: Decimal) -> Decimal:
        if base <= self.lower:
            return Decimal("0")
        top = base if self.upper is None else min(base, self.upper)
        return top - self.lower


@dataclass
class TaxRate:
    """A time-bounded rate for one tax type in one jurisdiction.

    The effective window is half-open: ``effective_date`` inclusive,
    ``expiration_date`` exclusive (``None`` means open-ended). Which fields
    apply depends on ``method``: ``rate`` for percentage, ``flat_amount``
    for flat, ``brackets`` for tiered.
    """

    jurisdiction_code: str
    tax_type: TaxType
    effective_date: date
    method: CalculationMethod = CalculationMethod.PERCENTAGE
    rate: Decimal = Decimal("0")
    flat_amount: Decimal | None = None
    brackets: tuple[TaxBracket, ...] = ()
    rate_name: str = ""
    id: UUID = field(default_factory=uuid4)
    expiration_date: date | None = None
    minimum_amount: Decimal | None = None
    maximum_amount: Decimal | None = None
    product_category: str | None = None
    gl_account_id: UUID | None = None
    is_active: bool = True
    created_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        self.rate = _as_decimal(self.rate)
        self.flat_amount = _as_decimal(self.flat_amount)
        self.minimum_amount = _as_decimal(self.minimum_amount)
        self.maximum_amount = _as_decimal(self.maximum_amount)
        self.brackets = tuple(sorted(self.brackets, key=lambda b: b.lower))
        if not self.rate_name:
            self.rate_name = f"{self.jurisdiction_code} {self.tax_type.value}"

        if self.expiration_date is not None and self.expiration_date <= self.effective_date:
            raise ValueError("Tax rate expiration must be after its effective date")
        if (
            self.minimum_amount is not None
            and self.maximum_amount is not None
            and self.maximum_amount < self.minimum_amount
        ):
            raise ValueError("Tax rate maximum_amount is below minimum_amount")

        if self.method == CalculationMethod.PERCENTAGE:
            if self.rate < 0:
                raise ValueError(f"Tax rate must be non-negative, got {self.rate}")
        elif self.method == CalculationMethod.FLAT:
            if self.flat_amount is None or self.flat_amount < 0:
                raise ValueError("Flat tax rates need a non-negative flat_amount")
        elif self.method == CalculationMethod.TIERED:
            if not self.brackets:
                raise ValueError("Tiered tax rates need at least one bracket")
            for earlier, later in zip(self.brackets, self.brackets[1:]):
                if earlier.upper is None or earlier.upper > later.lower:
                    raise ValueError("Tax brackets overlap")

    def is_effective_on(self, day: date) -> bool:
        if not self.is_active or day < self.effective_date:
            return False
        return self.expiration_date is None or day < self.expiration_date

    def overlaps(self, other: "TaxRate") -> bool:
        """Same lookup key and intersecting effective windows."""
        if (
            self.jurisdiction_code != other.jurisdiction_code
            or self.tax_type != other.tax_type
            or self.product_category != other.product_category
            or not self.is_active
            or not other.is_active
        ):
            return False
        self_end = self.expiration_date or date.max
        other_end = other.expiration_date or date.max
        return self.effective_date < other_end and other.effective_date < self_end


@dataclass
class TaxCalculationDetail:
    jurisdiction_code: str
    tax_rate_id: UUID
    rate_name: str
    tax_type: TaxType
    method: CalculationMethod
    taxable_amount: Money
    tax_amount: Money
    effective_rate: Decimal


@dataclass
class TaxCalculationResult:
    taxable_amount: Money
    total_tax: Money
    details: list[TaxCalculationDetail]
    calculation_date: date
    product_type: str | None = None

    @property
    def jurisdiction_codes(self) -> list[str]:
        return [detail.jurisdiction_code for detail in self.details]
