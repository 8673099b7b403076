"""Tests for fiscal period creation, close and year-end processing."""

import threading
from datetime import date
from decimal import Decimal

import pytest

from business_ledger.domain.accounts import Account
from business_ledger.domain.audit import AuditAction
from business_ledger.domain.fiscal_periods import FiscalPeriod
from business_ledger.domain.journal import JournalEntry, JournalEntryLine
from business_ledger.domain.value_objects import (
    EntryStatus,
    EntryType,
    Money,
    PeriodStatus,
    PeriodType,
)
from business_ledger.exceptions import (
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
from business_ledger.repositories.sqlite import (
    SQLiteFiscalPeriodRepository,
    SQLiteJournalEntryRepository,
)
from business_ledger.services.audit import RecordingEventSink
from business_ledger.services.fiscal_periods import FiscalPeriodServiceImpl
from business_ledger.services.ledger import LedgerServiceImpl


def usd(value: str) -> Money:
    return Money(Decimal(value), "USD")


def close_through(period_service: FiscalPeriodServiceImpl, periods: list[FiscalPeriod], count: int):
    for period in periods[:count]:
        period_service.close_period(period.id)


class TestCreatePeriods:
    def test_standard_monthly_year(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        assert len(fiscal_2024) == 12
        assert fiscal_2024[0].name == "FY2024-M01"
        assert fiscal_2024[1].start_date == date(2024, 2, 1)
        assert fiscal_2024[1].end_date == date(2024, 2, 29)
        assert fiscal_2024[-1].end_date == date(2024, 12, 31)
        assert all(period.status == PeriodStatus.OPEN for period in fiscal_2024)

    def test_quarterly_year_with_offset_start(self, period_service: FiscalPeriodServiceImpl):
        periods = period_service.create_standard_fiscal_year(
            2025, date(2024, 7, 1), PeriodType.QUARTERLY
        )

        assert [p.name for p in periods] == ["FY2025-Q01", "FY2025-Q02", "FY2025-Q03", "FY2025-Q04"]
        assert [p.end_date for p in periods] == [
            date(2024, 9, 30),
            date(2024, 12, 31),
            date(2025, 3, 31),
            date(2025, 6, 30),
        ]

    def test_overlapping_period_rejected(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        with pytest.raises(PeriodOverlapError):
            period_service.create_period(2025, 1, date(2024, 12, 15), date(2025, 1, 14))

    def test_gap_inside_year_rejected(self, period_service: FiscalPeriodServiceImpl):
        period_service.create_period(2025, 1, date(2025, 1, 1), date(2025, 1, 31))
        with pytest.raises(PeriodOverlapError):
            period_service.create_period(2025, 2, date(2025, 2, 5), date(2025, 2, 28))

    def test_duplicate_period_number_rejected(self, period_service: FiscalPeriodServiceImpl):
        period_service.create_period(2025, 1, date(2025, 1, 1), date(2025, 1, 31))
        with pytest.raises(PeriodOverlapError):
            period_service.create_period(2025, 1, date(2025, 2, 1), date(2025, 2, 28))

    def test_end_before_start_rejected(self, period_service: FiscalPeriodServiceImpl):
        with pytest.raises(ValidationError):
            period_service.create_period(2025, 1, date(2025, 1, 31), date(2025, 1, 1))

    def test_failed_year_creates_nothing(
        self, period_service: FiscalPeriodServiceImpl, period_repo: SQLiteFiscalPeriodRepository
    ):
        period_service.create_period(2025, 5, date(2025, 5, 1), date(2025, 5, 31))

        with pytest.raises(PeriodOverlapError):
            period_service.create_standard_fiscal_year(2025, date(2025, 1, 1))
        assert len(list(period_repo.list_all())) == 1


class TestQueries:
    def test_period_for_date(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        assert period_service.get_period_for_date(date(2024, 3, 31)).name == "FY2024-M03"
        with pytest.raises(PeriodNotFoundError):
            period_service.get_period_for_date(date(2023, 12, 31))

    def test_current_period(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        current = period_service.get_current_period(date(2024, 7, 4))
        assert current.id == fiscal_2024[6].id

    def test_fiscal_year_view(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        year = period_service.get_fiscal_year(2024)
        assert year.start_date == date(2024, 1, 1)
        assert year.final_period.name == "FY2024-M12"
        assert len(year.open_periods) == 12

    def test_integrity_of_standard_year(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        assert period_service.validate_integrity() == []

    def test_integrity_reports_gap_and_numbering(
        self, period_service: FiscalPeriodServiceImpl, period_repo: SQLiteFiscalPeriodRepository
    ):
        period_repo.add(FiscalPeriod(2025, 1, date(2025, 1, 1), date(2025, 1, 31)))
        period_repo.add(FiscalPeriod(2025, 3, date(2025, 2, 10), date(2025, 3, 31)))

        kinds = sorted(issue.kind for issue in period_service.validate_integrity())
        assert kinds == ["gap", "numbering"]


class TestClosePeriod:
    def test_close_records_summary(
        self,
        period_service: FiscalPeriodServiceImpl,
        chart: dict[str, Account],
        post,
        fiscal_2024: list[FiscalPeriod],
        events: RecordingEventSink,
    ):
        post(date(2024, 1, 5), chart["cash"], chart["revenue"], "1000.00")
        post(date(2024, 1, 20), chart["expense"], chart["cash"], "400.00")

        closed = period_service.close_period(fiscal_2024[0].id)

        assert closed.is_closed
        assert closed.total_revenue == usd("1000.00")
        assert closed.total_expenses == usd("400.00")
        assert closed.net_income == usd("600.00")
        assert period_service.get_period(closed.id).net_income == usd("600.00")
        assert [e.entity_id for e in events.of_action(AuditAction.CLOSE)] == [closed.id]

    def test_periods_close_in_order(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        with pytest.raises(PriorPeriodOpenError):
            period_service.close_period(fiscal_2024[1].id)

        period_service.close_period(fiscal_2024[0].id)
        period_service.close_period(fiscal_2024[1].id)
        assert [p.name for p in period_service.list_open_periods()][0] == "FY2024-M03"

    def test_close_twice_rejected(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        period_service.close_period(fiscal_2024[0].id)
        with pytest.raises(PeriodAlreadyClosedError):
            period_service.close_period(fiscal_2024[0].id)

    def test_final_period_requires_year_end(
        self, period_service: FiscalPeriodServiceImpl, fiscal_2024: list[FiscalPeriod]
    ):
        close_through(period_service, fiscal_2024, 11)
        with pytest.raises(YearEndRequiredError, match=r"process_year_end\(2024\)"):
            period_service.close_period(fiscal_2024[-1].id)

    def test_unbalanced_period_blocks_close(
        self,
        period_service: FiscalPeriodServiceImpl,
        journal_repo: SQLiteJournalEntryRepository,
        chart: dict[str, Account],
        fiscal_2024: list[FiscalPeriod],
    ):
        # Written straight to the store, as a damaged import would.
        journal_repo.add(
            JournalEntry(
                entry_date=date(2024, 1, 15),
                lines=[
                    JournalEntryLine.debit(chart["cash"].id, usd("100.00")),
                    JournalEntryLine.credit(chart["revenue"].id, usd("90.00")),
                ],
                status=EntryStatus.POSTED,
                sequence_number=1,
            )
        )

        with pytest.raises(UnbalancedPeriodError):
            period_service.close_period(fiscal_2024[0].id)
        assert period_service.get_period(fiscal_2024[0].id).is_open

    def test_close_waits_for_in_flight_posting(
        self,
        period_service: FiscalPeriodServiceImpl,
        chart: dict[str, Account],
        post,
        fiscal_2024: list[FiscalPeriod],
    ):
        january = fiscal_2024[0]
        closer = threading.Thread(target=period_service.close_period, args=(january.id,))

        with period_service.hold_open_period(date(2024, 1, 15)):
            closer.start()
            closer.join(timeout=0.2)
            assert closer.is_alive()
            assert period_service.get_period(january.id).is_open

        closer.join(timeout=5)
        assert not closer.is_alive()
        assert period_service.get_period(january.id).is_closed
        with pytest.raises(PeriodClosedError):
            post(date(2024, 1, 16), chart["cash"], chart["revenue"], "10.00")


@pytest.fixture
def profitable_year(chart: dict[str, Account], post, fiscal_2024: list[FiscalPeriod]):
    post(date(2024, 1, 10), chart["cash"], chart["capital"], "5000.00")
    post(date(2024, 2, 14), chart["receivable"], chart["revenue"], "30000.00")
    post(date(2024, 6, 30), chart["expense"], chart["cash"], "10000.00")
    return fiscal_2024


class TestYearEnd:
    def test_year_end_moves_net_income_to_retained_earnings(
        self,
        period_service: FiscalPeriodServiceImpl,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        profitable_year: list[FiscalPeriod],
        events: RecordingEventSink,
    ):
        close_through(period_service, profitable_year, 11)

        summary = period_service.process_year_end(2024)

        assert summary.net_income == usd("20000.00")
        assert summary.total_revenue == usd("30000.00")
        assert summary.total_expenses == usd("10000.00")
        assert ledger.get_account_balance(chart["revenue"].id) == usd("0.00")
        assert ledger.get_account_balance(chart["expense"].id) == usd("0.00")
        assert ledger.get_account_balance(chart["retained"].id) == usd("20000.00")
        assert ledger.get_trial_balance().is_balanced

        final = period_service.get_period(profitable_year[-1].id)
        assert final.is_closed
        assert final.closing_entry_id == summary.closing_entry_id
        closing = ledger.get_entry(summary.closing_entry_id)
        assert closing.entry_type == EntryType.CLOSING
        assert closing.entry_date == date(2024, 12, 31)
        assert len(events.of_action(AuditAction.YEAR_END)) == 1

    def test_net_loss_debits_retained_earnings(
        self,
        period_service: FiscalPeriodServiceImpl,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        post,
        fiscal_2024: list[FiscalPeriod],
    ):
        post(date(2024, 3, 1), chart["expense"], chart["cash"], "750.00")
        close_through(period_service, fiscal_2024, 11)

        summary = period_service.process_year_end(2024)

        assert summary.net_income == usd("-750.00")
        assert ledger.get_account_balance(chart["retained"].id) == usd("-750.00")

    def test_prior_periods_must_be_closed(
        self,
        period_service: FiscalPeriodServiceImpl,
        chart: dict[str, Account],
        profitable_year: list[FiscalPeriod],
    ):
        with pytest.raises(PriorPeriodOpenError):
            period_service.process_year_end(2024)

    def test_year_end_runs_once(
        self,
        period_service: FiscalPeriodServiceImpl,
        chart: dict[str, Account],
        profitable_year: list[FiscalPeriod],
    ):
        close_through(period_service, profitable_year, 11)
        period_service.process_year_end(2024)

        with pytest.raises(YearEndAlreadyProcessedError):
            period_service.process_year_end(2024)

    def test_failure_rolls_back_closing_entry(
        self,
        monkeypatch: pytest.MonkeyPatch,
        period_service: FiscalPeriodServiceImpl,
        period_repo: SQLiteFiscalPeriodRepository,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        profitable_year: list[FiscalPeriod],
    ):
        close_through(period_service, profitable_year, 11)

        def fail_update(period: FiscalPeriod) -> None:
            raise RuntimeError("disk full")

        with monkeypatch.context() as patched:
            patched.setattr(period_repo, "update", fail_update)
            with pytest.raises(RuntimeError):
                period_service.process_year_end(2024)

        assert ledger.list_entries(entry_type=EntryType.CLOSING) == []
        assert ledger.get_account_balance(chart["revenue"].id) == usd("30000.00")
        assert period_service.get_period(profitable_year[-1].id).is_open

        summary = period_service.process_year_end(2024)
        assert summary.net_income == usd("20000.00")

    def test_partial_year_end_halts_closing(
        self,
        period_service: FiscalPeriodServiceImpl,
        chart: dict[str, Account],
        post,
        profitable_year: list[FiscalPeriod],
    ):
        post(
            date(2024, 12, 31),
            chart["revenue"],
            chart["retained"],
            "30000.00",
            entry_type=EntryType.CLOSING,
        )

        with pytest.raises(YearEndInconsistencyError):
            period_service.process_year_end(2024)
        assert period_service.halt_reason is not None

        with pytest.raises(PeriodCloseHaltedError):
            period_service.close_period(profitable_year[0].id)

        period_service.acknowledge_repair()
        assert period_service.close_period(profitable_year[0].id).is_closed

    def test_requires_bound_ledger(
        self, db, period_repo, account_repo, journal_repo, fiscal_2024: list[FiscalPeriod]
    ):
        unbound = FiscalPeriodServiceImpl(db, period_repo, account_repo, journal_repo)
        with pytest.raises(RuntimeError):
            unbound.process_year_end(2024)
