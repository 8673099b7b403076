"""Fiscal period lifecycle: creation, the posting gate, period close and year-end."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from dateutil.relativedelta import relativedelta

from business_ledger.domain.accounts import Account
from business_ledger.domain.audit import AuditAction, AuditEntityType
from business_ledger.domain.fiscal_periods import (
    AccountYearEndBalance,
    FiscalPeriod,
    FiscalYear,
    IntegrityIssue,
    YearEndSummary,
)
from business_ledger.domain.journal import JournalEntry, JournalEntryLine
from business_ledger.domain.value_objects import (
    SYSTEM_CONTEXT,
    AccountType,
    CommandContext,
    EntryStatus,
    EntryType,
    Money,
    PeriodType,
)
from business_ledger.exceptions import (
    AccountNotFoundError,
    PeriodAlreadyClosedError,
    PeriodClosedError,
    PeriodCloseHaltedError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PriorPeriodOpenError,
    UnbalancedPeriodError,
    ValidationError,
    YearEndAlreadyProcessedError,
    YearEndInconsistencyError,
    YearEndRequiredError,
)
from business_ledger.logging_config import get_logger
from business_ledger.repositories.interfaces import (
    AccountRepository,
    FiscalPeriodRepository,
    JournalEntryRepository,
    UnitOfWork,
)
from business_ledger.services.audit import (
    EventSink,
    NullEventSink,
    build_event,
    publish_after_commit,
)
from business_ledger.services.interfaces import FiscalPeriodService, LedgerService

logger = get_logger(__name__)


@dataclass
class _Activity:
    """Posted activity in a date window, summed per account."""

    debits: Decimal = Decimal("0")
    credits: Decimal = Decimal("0")
    revenue: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")
    temporary: list[tuple[Account, Decimal, Decimal]] = field(default_factory=list)

    @property
    def is_balanced(self) -> bool:
        return self.debits == self.credits


class FiscalPeriodServiceImpl(FiscalPeriodService):
    """Owns the open/closed state of fiscal periods.

    Each period has a re-entrant lock. Postings hold it (through
    ``hold_open_period``) for the whole posting transaction and period close
    holds it while closing, so a close waits for in-flight postings and
    postings queued behind a close see the period as closed. The lock is
    always taken before the database transaction is opened.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        period_repo: FiscalPeriodRepository,
        account_repo: AccountRepository,
        journal_repo: JournalEntryRepository,
        event_sink: EventSink | None = None,
        retained_earnings_account_code: str = "3200",
        base_currency: str = "USD",
    ) -> None:
        self._uow = uow
        self._period_repo = period_repo
        self._account_repo = account_repo
        self._journal_repo = journal_repo
        self._events = event_sink or NullEventSink()
        self._retained_earnings_code = retained_earnings_account_code
        self._base_currency = base_currency.upper()
        self._ledger: LedgerService | None = None
        self._locks: dict[UUID, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._halt_reason: str | None = None

    def bind_ledger(self, ledger: LedgerService) -> None:
        """Year-end posts its closing entry through the ledger."""
        self._ledger = ledger

    @property
    def halt_reason(self) -> str | None:
        return self._halt_reason

    def _lock_for(self, period_id: UUID) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(period_id)
            if lock is None:
                lock = self._locks[period_id] = threading.RLock()
            return lock

    # Creation

    def create_period(
        self,
        fiscal_year: int,
        period_number: int,
        start_date: date,
        end_date: date,
        name: str = "",
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> FiscalPeriod:
        try:
            period = FiscalPeriod(
                fiscal_year=fiscal_year,
                period_number=period_number,
                start_date=start_date,
                end_date=end_date,
                name=name,
                created_by=context.actor,
            )
        except ValueError as exc:
            raise ValidationError(
                str(exc),
                context={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            ) from exc

        with self._uow.transaction():
            siblings = []
            for existing in self._period_repo.list_all():
                if existing.overlaps(period):
                    raise PeriodOverlapError(
                        f"{period.name} overlaps {existing.name}",
                        period=period.name,
                        existing=existing.name,
                    )
                if existing.fiscal_year == fiscal_year:
                    if existing.period_number == period_number:
                        raise PeriodOverlapError(
                            f"Fiscal year {fiscal_year} already has period {period_number}",
                            period=period.name,
                            existing=existing.name,
                        )
                    siblings.append(existing)

            before = [p for p in siblings if p.period_number < period_number]
            after = [p for p in siblings if p.period_number > period_number]
            if before:
                previous = max(before, key=lambda p: p.period_number)
                if previous.end_date + timedelta(days=1) != start_date:
                    raise PeriodOverlapError(
                        f"{period.name} must start the day after {previous.name} ends",
                        period=period.name,
                        previous=previous.name,
                        previous_end=previous.end_date,
                    )
            if after:
                following = min(after, key=lambda p: p.period_number)
                if end_date + timedelta(days=1) != following.start_date:
                    raise PeriodOverlapError(
                        f"{period.name} must end the day before {following.name} starts",
                        period=period.name,
                        following=following.name,
                        following_start=following.start_date,
                    )
            self._period_repo.add(period)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.FISCAL_PERIOD,
                    period.id,
                    AuditAction.CREATE,
                    context,
                    new_values={
                        "name": period.name,
                        "start_date": start_date.isoformat(),
                        "end_date": end_date.isoformat(),
                    },
                ),
            )

        logger.info(
            "fiscal_period_created",
            period_id=str(period.id),
            period_name=period.name,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )
        return period

    def create_standard_fiscal_year(
        self,
        fiscal_year: int,
        start_date: date,
        period_type: PeriodType = PeriodType.MONTHLY,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> list[FiscalPeriod]:
        if period_type == PeriodType.MONTHLY:
            months, count, label = 1, 12, "M"
        else:
            months, count, label = 3, 4, "Q"

        periods = []
        with self._uow.transaction():
            for index in range(count):
                period_start = start_date + relativedelta(months=index * months)
                period_end = start_date + relativedelta(months=(index + 1) * months) - timedelta(days=1)
                number = index + 1
                periods.append(
                    self.create_period(
                        fiscal_year,
                        number,
                        period_start,
                        period_end,
                        name=f"FY{fiscal_year}-{label}{number:02d}",
                        context=context,
                    )
                )
        return periods

    # Queries

    def get_period(self, period_id: UUID) -> FiscalPeriod:
        period = self._period_repo.get(period_id)
        if period is None:
            raise PeriodNotFoundError(period_id)
        return period

    def get_period_for_date(self, day: date) -> FiscalPeriod:
        period = self._period_repo.get_for_date(day)
        if period is None:
            raise PeriodNotFoundError(day.isoformat())
        return period

    def get_current_period(self, as_of_date: date | None = None) -> FiscalPeriod:
        return self.get_period_for_date(as_of_date or date.today())

    def list_open_periods(self) -> list[FiscalPeriod]:
        return [period for period in self._period_repo.list_all() if period.is_open]

    def get_fiscal_year(self, fiscal_year: int) -> FiscalYear:
        periods = list(self._period_repo.list_by_year(fiscal_year))
        if not periods:
            raise PeriodNotFoundError(f"FY{fiscal_year}")
        return FiscalYear(year=fiscal_year, periods=periods)

    def validate_integrity(self) -> list[IntegrityIssue]:
        """Report overlaps, gaps inside a year and broken period numbering."""
        issues: list[IntegrityIssue] = []
        periods = sorted(self._period_repo.list_all(), key=lambda p: p.start_date)
        for earlier, later in zip(periods, periods[1:]):
            if earlier.overlaps(later):
                issues.append(
                    IntegrityIssue(
                        kind="overlap",
                        message=f"{earlier.name} overlaps {later.name}",
                        period_ids=[earlier.id, later.id],
                    )
                )
            elif (
                earlier.fiscal_year == later.fiscal_year
                and earlier.end_date + timedelta(days=1) != later.start_date
            ):
                issues.append(
                    IntegrityIssue(
                        kind="gap",
                        message=f"Gap between {earlier.name} and {later.name}",
                        period_ids=[earlier.id, later.id],
                    )
                )

        years: dict[int, list[FiscalPeriod]] = {}
        for period in periods:
            years.setdefault(period.fiscal_year, []).append(period)
        for year, year_periods in sorted(years.items()):
            numbers = [p.period_number for p in year_periods]
            if numbers != list(range(1, len(numbers) + 1)):
                issues.append(
                    IntegrityIssue(
                        kind="numbering",
                        message=f"Fiscal year {year} periods are numbered {numbers}",
                        period_ids=[p.id for p in year_periods],
                    )
                )

        if issues:
            logger.warning("fiscal_period_integrity_issues", issue_count=len(issues))
        return issues

    # Posting gate

    @contextmanager
    def hold_open_period(self, day: date) -> Iterator[FiscalPeriod]:
        period = self._period_repo.get_for_date(day)
        if period is None:
            logger.warning("posting_rejected_no_period", entry_date=day.isoformat())
            raise PeriodNotFoundError(day.isoformat())
        with self._lock_for(period.id):
            current = self.get_period(period.id)
            if current.is_closed:
                logger.warning(
                    "posting_rejected_period_closed",
                    period_id=str(current.id),
                    period_name=current.name,
                    entry_date=day.isoformat(),
                )
                raise PeriodClosedError(current.name, day.isoformat())
            yield current

    def ensure_open(self, day: date) -> FiscalPeriod:
        with self.hold_open_period(day) as period:
            return period

    # Close

    def _summarize(self, start_date: date, end_date: date) -> _Activity:
        activity = _Activity()
        sums = self._journal_repo.sum_posted_by_account(end_date=end_date, start_date=start_date)
        for account_id, (debits, credits) in sums.items():
            activity.debits += debits
            activity.credits += credits
            account = self._account_repo.get(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            if account.account_type == AccountType.REVENUE:
                activity.revenue += account.signed_balance(debits, credits)
            elif account.account_type == AccountType.EXPENSE:
                activity.expenses += account.signed_balance(debits, credits)
            if account.account_type.is_temporary:
                activity.temporary.append((account, debits, credits))
        return activity

    def _check_balanced(self, period: FiscalPeriod, activity: _Activity) -> None:
        if not activity.is_balanced:
            logger.error(
                "fiscal_period_unbalanced",
                period_id=str(period.id),
                period_name=period.name,
                debits=str(activity.debits),
                credits=str(activity.credits),
            )
            raise UnbalancedPeriodError(period.name, str(activity.debits), str(activity.credits))

    def _money(self, value: Decimal) -> Money:
        return Money.from_decimal(value, self._base_currency)

    def _check_not_halted(self) -> None:
        if self._halt_reason is not None:
            logger.error("period_close_refused_halted", reason=self._halt_reason)
            raise PeriodCloseHaltedError(self._halt_reason)

    def close_period(
        self, period_id: UUID, context: CommandContext = SYSTEM_CONTEXT
    ) -> FiscalPeriod:
        """Close a period that is not the last of its fiscal year.

        The final period closes only through ``process_year_end``.
        """
        self._check_not_halted()
        self.get_period(period_id)

        with self._lock_for(period_id):
            with self._uow.transaction():
                period = self.get_period(period_id)
                if period.is_closed:
                    raise PeriodAlreadyClosedError(period.name)

                year_periods = list(self._period_repo.list_by_year(period.fiscal_year))
                final = max(year_periods, key=lambda p: p.period_number)
                if final.id == period.id:
                    raise YearEndRequiredError(period.name, period.fiscal_year)

                still_open = [
                    p.name
                    for p in year_periods
                    if p.period_number < period.period_number and p.is_open
                ]
                if still_open:
                    logger.warning(
                        "period_close_rejected_prior_open",
                        period_name=period.name,
                        open_periods=",".join(still_open),
                    )
                    raise PriorPeriodOpenError(period.name, still_open)

                activity = self._summarize(period.start_date, period.end_date)
                self._check_balanced(period, activity)

                period.close(
                    context.actor,
                    self._money(activity.revenue),
                    self._money(activity.expenses),
                )
                self._period_repo.update(period)
                publish_after_commit(
                    self._uow,
                    self._events,
                    build_event(
                        AuditEntityType.FISCAL_PERIOD,
                        period.id,
                        AuditAction.CLOSE,
                        context,
                        old_values={"status": "open"},
                        new_values={
                            "status": period.status.value,
                            "total_revenue": str(period.total_revenue),
                            "total_expenses": str(period.total_expenses),
                            "net_income": str(period.net_income),
                        },
                    ),
                )

        logger.info(
            "fiscal_period_closed",
            period_id=str(period.id),
            period_name=period.name,
            net_income=str(period.net_income),
            closed_by=context.actor,
        )
        return period

    # Year end

    def _halt(self, fiscal_year: int, reason: str) -> None:
        self._halt_reason = reason
        logger.critical("year_end_inconsistency_detected", fiscal_year=fiscal_year, reason=reason)
        raise YearEndInconsistencyError(fiscal_year, reason)

    def _check_prior_run(self, fiscal_year: int, periods: list[FiscalPeriod]) -> None:
        final = periods[-1]
        closing_entries = [
            entry
            for entry in self._journal_repo.list(
                status=EntryStatus.POSTED,
                start_date=periods[0].start_date,
                end_date=final.end_date,
                entry_type=EntryType.CLOSING,
            )
        ]
        if final.is_open:
            if closing_entries:
                self._halt(
                    fiscal_year,
                    f"closing entry {closing_entries[0].id} is posted but {final.name} is open",
                )
            return

        if final.closing_entry_id is not None:
            if self._journal_repo.get(final.closing_entry_id) is None:
                self._halt(
                    fiscal_year,
                    f"{final.name} is closed but its closing entry "
                    f"{final.closing_entry_id} does not exist",
                )
            raise YearEndAlreadyProcessedError(fiscal_year)

        activity = self._summarize(periods[0].start_date, final.end_date)
        if any(debits != credits for _, debits, credits in activity.temporary):
            self._halt(
                fiscal_year,
                f"{final.name} is closed without a closing entry while revenue "
                "and expense balances remain",
            )
        raise YearEndAlreadyProcessedError(fiscal_year)

    def _resolve_retained_earnings(self, account_id: UUID | None) -> Account:
        if account_id is not None:
            account = self._account_repo.get(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            return account
        account = self._account_repo.get_by_code(self._retained_earnings_code)
        if account is None:
            raise AccountNotFoundError(self._retained_earnings_code)
        return account

    def process_year_end(
        self,
        fiscal_year: int,
        retained_earnings_account_id: UUID | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> YearEndSummary:
        """Zero revenue and expense accounts into retained earnings and close the year.

        The closing entry and the final period's close commit in one
        transaction. A state where only one of them is present is reported
        as ``YearEndInconsistencyError`` and halts further closes until
        ``acknowledge_repair`` is called.
        """
        self._check_not_halted()
        if self._ledger is None:
            raise RuntimeError("FiscalPeriodServiceImpl has no ledger bound; call bind_ledger()")

        final_id = self.get_fiscal_year(fiscal_year).final_period.id
        with self._lock_for(final_id):
            periods = list(self._period_repo.list_by_year(fiscal_year))
            final = periods[-1]
            self._check_prior_run(fiscal_year, periods)

            still_open = [p.name for p in periods[:-1] if p.is_open]
            if still_open:
                logger.warning(
                    "year_end_rejected_prior_open",
                    fiscal_year=fiscal_year,
                    open_periods=",".join(still_open),
                )
                raise PriorPeriodOpenError(final.name, still_open)

            retained = self._resolve_retained_earnings(retained_earnings_account_id)
            final_activity = self._summarize(final.start_date, final.end_date)
            self._check_balanced(final, final_activity)
            year_activity = self._summarize(periods[0].start_date, final.end_date)

            currency = retained.currency
            lines: list[JournalEntryLine] = []
            balances: list[AccountYearEndBalance] = []
            for account, debits, credits in sorted(
                year_activity.temporary, key=lambda item: item[0].code
            ):
                net = debits - credits
                balances.append(
                    AccountYearEndBalance(
                        account_id=account.id,
                        account_code=account.code,
                        account_name=account.name,
                        balance=Money.from_decimal(
                            account.signed_balance(debits, credits), account.currency
                        ),
                    )
                )
                if net > 0:
                    lines.append(
                        JournalEntryLine.credit(
                            account.id,
                            Money.from_decimal(net, account.currency),
                            description="Year-end close",
                        )
                    )
                elif net < 0:
                    lines.append(
                        JournalEntryLine.debit(
                            account.id,
                            Money.from_decimal(-net, account.currency),
                            description="Year-end close",
                        )
                    )

            net_income = year_activity.revenue - year_activity.expenses
            if net_income > 0:
                lines.append(
                    JournalEntryLine.credit(
                        retained.id,
                        Money.from_decimal(net_income, currency),
                        description="Net income to retained earnings",
                    )
                )
            elif net_income < 0:
                lines.append(
                    JournalEntryLine.debit(
                        retained.id,
                        Money.from_decimal(-net_income, currency),
                        description="Net loss to retained earnings",
                    )
                )

            with self._uow.transaction():
                closing_entry_id = None
                if lines:
                    closing = JournalEntry(
                        entry_date=final.end_date,
                        description=f"Year-end close FY{fiscal_year}",
                        lines=lines,
                        reference=f"YE-{fiscal_year}",
                        entry_type=EntryType.CLOSING,
                        currency=currency,
                        tenant_id=context.tenant_id,
                        created_by=context.actor,
                    )
                    closing_entry_id = self._ledger.record_entry(closing, context).id
                final.closing_entry_id = closing_entry_id
                final.close(
                    context.actor,
                    self._money(final_activity.revenue),
                    self._money(final_activity.expenses),
                )
                self._period_repo.update(final)
                publish_after_commit(
                    self._uow,
                    self._events,
                    build_event(
                        AuditEntityType.FISCAL_YEAR,
                        final.id,
                        AuditAction.YEAR_END,
                        context,
                        new_values={
                            "fiscal_year": fiscal_year,
                            "net_income": str(self._money(net_income)),
                            "closing_entry_id": str(closing_entry_id) if closing_entry_id else None,
                        },
                    ),
                )

        summary = YearEndSummary(
            fiscal_year=fiscal_year,
            total_revenue=self._money(year_activity.revenue),
            total_expenses=self._money(year_activity.expenses),
            net_income=self._money(net_income),
            retained_earnings_account_id=retained.id,
            closing_entry_id=closing_entry_id,
            final_period_id=final.id,
            account_balances=balances,
            processed_by=context.actor,
        )
        logger.info(
            "year_end_processed",
            fiscal_year=fiscal_year,
            net_income=str(summary.net_income),
            closing_entry_id=str(closing_entry_id) if closing_entry_id else None,
        )
        return summary

    def acknowledge_repair(self, context: CommandContext = SYSTEM_CONTEXT) -> None:
        """Clear the halt raised by a detected year-end inconsistency."""
        if self._halt_reason is None:
            return
        logger.warning(
            "period_close_halt_cleared", reason=self._halt_reason, actor=context.actor
        )
        self._halt_reason = None
