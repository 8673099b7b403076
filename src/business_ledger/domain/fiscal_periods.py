"""Fiscal period domain models."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from uuid import UUID, uuid4

from business_ledger.domain.value_objects import Money, PeriodStatus
from business_ledger.exceptions import PeriodAlreadyClosedError


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class FiscalPeriod:
    fiscal_year: int
    period_number: int
    start_date: date
    end_date: date
    id: UUID = field(default_factory=uuid4)
    name: str = ""
    status: PeriodStatus = PeriodStatus.OPEN
    closed_at: datetime | None = None
    closed_by: str | None = None
    total_revenue: Money | None = None
    total_expenses: Money | None = None
    net_income: Money | None = None
    closing_entry_id: UUID | None = None
    notes: str = ""
    created_by: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    version: int = 0

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise ValueError(
                f"Period end {self.end_date} is before its start {self.start_date}"
            )
        if self.period_number < 1:
            raise ValueError(f"Period number must be positive, got {self.period_number}")
        if not self.name:
            self.name = f"FY{self.fiscal_year}-P{self.period_number:02d}"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def overlaps(self, other: "FiscalPeriod") -> bool:
        return self.start_date <= other.end_date and other.start_date <= self.end_date

    def close(
        self,
        actor: str | None,
        total_revenue: Money,
        total_expenses: Money,
    ) -> None:
        if self.is_closed:
            raise PeriodAlreadyClosedError(self.name)
        self.status = PeriodStatus.CLOSED
        self.closed_at = _utc_now()
        self.closed_by = actor
        self.total_revenue = total_revenue
        self.total_expenses = total_expenses
        self.net_income = total_revenue - total_expenses
        self.updated_at = self.closed_at


@dataclass
class AccountYearEndBalance:
    account_id: UUID
    account_code: str
    account_name: str
    balance: Money


@dataclass
class YearEndSummary:
    fiscal_year: int
    total_revenue: Money
    total_expenses: Money
    net_income: Money
    retained_earnings_account_id: UUID
    closing_entry_id: UUID | None
    final_period_id: UUID
    account_balances: list[AccountYearEndBalance] = field(default_factory=list)
    processed_at: datetime = field(default_factory=_utc_now)
    processed_by: str | None = None


@dataclass
class FiscalYear:
    year: int
    periods: list[FiscalPeriod]

    @property
    def start_date(self) -> date:
        return self.periods[0].start_date

    @property
    def end_date(self) -> date:
        return self.periods[-1].end_date

    @property
    def final_period(self) -> FiscalPeriod:
        return self.periods[-1]

    @property
    def is_closed(self) -> bool:
        return all(period.is_closed for period in self.periods)

    @property
    def open_periods(self) -> list[FiscalPeriod]:
        return [period for period in self.periods if period.is_open]


@dataclass
class IntegrityIssue:
    kind: str
    message: str
    period_ids: list[UUID] = field(default_factory=list)
