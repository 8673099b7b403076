from collections.abc import Iterator
from datetime import date
from decimal import Decimal

import pytest

from business_ledger.domain.accounts import Account
from business_ledger.domain.invoices import PostingAccounts
from business_ledger.domain.journal import JournalEntry, JournalEntryLine
from business_ledger.domain.taxes import TaxJurisdiction, TaxRate
from business_ledger.domain.value_objects import (
    AccountType,
    JurisdictionType,
    Money,
    TaxType,
)
from business_ledger.repositories.sqlite import (
    SQLiteAccountRepository,
    SQLiteAuditLogRepository,
    SQLiteCurrencyRepository,
    SQLiteDatabase,
    SQLiteExchangeRateRepository,
    SQLiteFiscalPeriodRepository,
    SQLiteInvoiceRepository,
    SQLiteJournalEntryRepository,
    SQLitePaymentRepository,
    SQLiteTaxRepository,
)
from business_ledger.services.arap import ReceivablesServiceImpl
from business_ledger.services.audit import RecordingEventSink
from business_ledger.services.currency import (
    CurrencyRevaluationService,
    CurrencyServiceImpl,
)
from business_ledger.services.fiscal_periods import FiscalPeriodServiceImpl
from business_ledger.services.ledger import LedgerServiceImpl
from business_ledger.services.tax import TaxServiceImpl


@pytest.fixture
def db() -> Iterator[SQLiteDatabase]:
    """Create an in-memory SQLite database for testing."""
    database = SQLiteDatabase(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def account_repo(db: SQLiteDatabase) -> SQLiteAccountRepository:
    return SQLiteAccountRepository(db)


@pytest.fixture
def journal_repo(db: SQLiteDatabase) -> SQLiteJournalEntryRepository:
    return SQLiteJournalEntryRepository(db)


@pytest.fixture
def period_repo(db: SQLiteDatabase) -> SQLiteFiscalPeriodRepository:
    return SQLiteFiscalPeriodRepository(db)


@pytest.fixture
def tax_repo(db: SQLiteDatabase) -> SQLiteTaxRepository:
    return SQLiteTaxRepository(db)


@pytest.fixture
def currency_repo(db: SQLiteDatabase) -> SQLiteCurrencyRepository:
    return SQLiteCurrencyRepository(db)


@pytest.fixture
def rate_repo(db: SQLiteDatabase) -> SQLiteExchangeRateRepository:
    return SQLiteExchangeRateRepository(db)


@pytest.fixture
def invoice_repo(db: SQLiteDatabase) -> SQLiteInvoiceRepository:
    return SQLiteInvoiceRepository(db)


@pytest.fixture
def payment_repo(db: SQLiteDatabase) -> SQLitePaymentRepository:
    return SQLitePaymentRepository(db)


@pytest.fixture
def audit_repo(db: SQLiteDatabase) -> SQLiteAuditLogRepository:
    return SQLiteAuditLogRepository(db)


@pytest.fixture
def period_service(
    db: SQLiteDatabase,
    period_repo: SQLiteFiscalPeriodRepository,
    account_repo: SQLiteAccountRepository,
    journal_repo: SQLiteJournalEntryRepository,
    events: RecordingEventSink,
) -> FiscalPeriodServiceImpl:
    return FiscalPeriodServiceImpl(db, period_repo, account_repo, journal_repo, event_sink=events)


@pytest.fixture
def ledger(
    db: SQLiteDatabase,
    account_repo: SQLiteAccountRepository,
    journal_repo: SQLiteJournalEntryRepository,
    period_service: FiscalPeriodServiceImpl,
    events: RecordingEventSink,
) -> LedgerServiceImpl:
    service = LedgerServiceImpl(db, account_repo, journal_repo, period_service, event_sink=events)
    period_service.bind_ledger(service)
    return service


@pytest.fixture
def tax_service(
    db: SQLiteDatabase, tax_repo: SQLiteTaxRepository, events: RecordingEventSink
) -> TaxServiceImpl:
    return TaxServiceImpl(db, tax_repo, event_sink=events)


@pytest.fixture
def currency_service(
    db: SQLiteDatabase,
    currency_repo: SQLiteCurrencyRepository,
    rate_repo: SQLiteExchangeRateRepository,
    events: RecordingEventSink,
) -> CurrencyServiceImpl:
    return CurrencyServiceImpl(db, currency_repo, rate_repo, event_sink=events)


@pytest.fixture
def revaluation_service(
    db: SQLiteDatabase,
    ledger: LedgerServiceImpl,
    currency_service: CurrencyServiceImpl,
    events: RecordingEventSink,
) -> CurrencyRevaluationService:
    return CurrencyRevaluationService(db, ledger, currency_service, event_sink=events)


@pytest.fixture
def fiscal_2024(period_service: FiscalPeriodServiceImpl):
    """Twelve open monthly periods for calendar 2024."""
    return period_service.create_standard_fiscal_year(2024, date(2024, 1, 1))


@pytest.fixture
def chart(ledger: LedgerServiceImpl) -> dict[str, Account]:
    """A small chart of accounts keyed by short name."""
    specs = {
        "cash": ("1000", "Cash", AccountType.ASSET),
        "receivable": ("1100", "Accounts Receivable", AccountType.ASSET),
        "tax_receivable": ("1300", "Input Tax Receivable", AccountType.ASSET),
        "payable": ("2000", "Accounts Payable", AccountType.LIABILITY),
        "tax_payable": ("2100", "Sales Tax Payable", AccountType.LIABILITY),
        "capital": ("3000", "Owner Capital", AccountType.EQUITY),
        "retained": ("3200", "Retained Earnings", AccountType.EQUITY),
        "revenue": ("4000", "Sales Revenue", AccountType.REVENUE),
        "fx_gain": ("4900", "Unrealized FX Gain", AccountType.REVENUE),
        "expense": ("5000", "Operating Expenses", AccountType.EXPENSE),
        "fx_loss": ("5900", "Unrealized FX Loss", AccountType.EXPENSE),
    }
    return {
        key: ledger.create_account(code, name, account_type)
        for key, (code, name, account_type) in specs.items()
    }


@pytest.fixture
def post(ledger: LedgerServiceImpl):
    """Record and post a two-line USD entry: ``post(day, debit, credit, "100.00")``."""

    def _post(entry_date: date, debit: Account, credit: Account, amount: str, **kwargs):
        value = Money(Decimal(amount), "USD")
        entry = JournalEntry(
            entry_date=entry_date,
            description=kwargs.pop("description", "Test entry"),
            lines=[
                JournalEntryLine.debit(debit.id, value),
                JournalEntryLine.credit(credit.id, value),
            ],
            **kwargs,
        )
        return ledger.record_entry(entry)

    return _post


@pytest.fixture
def sales_tax(tax_service: TaxServiceImpl) -> list[str]:
    """California state 7.25% plus San Francisco city 1% sales tax."""
    tax_service.create_jurisdiction(
        TaxJurisdiction(
            code="US-CA",
            name="California",
            jurisdiction_type=JurisdictionType.STATE,
            country="US",
            state_province="CA",
        )
    )
    tax_service.create_jurisdiction(
        TaxJurisdiction(
            code="US-CA-SF",
            name="San Francisco",
            jurisdiction_type=JurisdictionType.CITY,
            country="US",
            state_province="CA",
            city="San Francisco",
        )
    )
    tax_service.add_rate(
        TaxRate(
            jurisdiction_code="US-CA",
            tax_type=TaxType.SALES,
            effective_date=date(2024, 1, 1),
            rate=Decimal("7.25"),
        )
    )
    tax_service.add_rate(
        TaxRate(
            jurisdiction_code="US-CA-SF",
            tax_type=TaxType.SALES,
            effective_date=date(2024, 1, 1),
            rate=Decimal("1.00"),
        )
    )
    return ["US-CA", "US-CA-SF"]


@pytest.fixture
def posting_accounts(chart: dict[str, Account]) -> PostingAccounts:
    return PostingAccounts(
        receivable_account_id=chart["receivable"].id,
        payable_account_id=chart["payable"].id,
        revenue_account_id=chart["revenue"].id,
        expense_account_id=chart["expense"].id,
        tax_payable_account_id=chart["tax_payable"].id,
        tax_receivable_account_id=chart["tax_receivable"].id,
        cash_account_id=chart["cash"].id,
    )


@pytest.fixture
def receivables(
    db: SQLiteDatabase,
    invoice_repo: SQLiteInvoiceRepository,
    payment_repo: SQLitePaymentRepository,
    tax_service: TaxServiceImpl,
    ledger: LedgerServiceImpl,
    period_service: FiscalPeriodServiceImpl,
    events: RecordingEventSink,
) -> ReceivablesServiceImpl:
    """AR/AP service without general-ledger posting."""
    return ReceivablesServiceImpl(
        db,
        invoice_repo,
        payment_repo,
        tax_service,
        ledger,
        period_service,
        event_sink=events,
    )


@pytest.fixture
def posting_receivables(
    db: SQLiteDatabase,
    invoice_repo: SQLiteInvoiceRepository,
    payment_repo: SQLitePaymentRepository,
    tax_service: TaxServiceImpl,
    ledger: LedgerServiceImpl,
    period_service: FiscalPeriodServiceImpl,
    events: RecordingEventSink,
    posting_accounts: PostingAccounts,
    fiscal_2024,
) -> ReceivablesServiceImpl:
    """AR/AP service that journalizes invoices and payments."""
    return ReceivablesServiceImpl(
        db,
        invoice_repo,
        payment_repo,
        tax_service,
        ledger,
        period_service,
        event_sink=events,
        posting_accounts=posting_accounts,
    )
