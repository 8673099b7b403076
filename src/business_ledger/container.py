"""Dependency injection container for the business ledger.

Wires the SQLite unit of work, the repositories, the audit event sink and
every service from one ``Settings`` object. Everything is created on first
access and reused afterwards.

Usage:
    from business_ledger.container import Container, get_container

    container = get_container()
    ledger = container.ledger_service
    periods = container.fiscal_period_service
"""

from functools import cached_property, lru_cache
from typing import TYPE_CHECKING

from business_ledger.config import Settings, get_settings
from business_ledger.domain.invoices import PostingAccounts
from business_ledger.logging_config import get_logger

if TYPE_CHECKING:
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
    from business_ledger.services.audit import AuditService, EventSink
    from business_ledger.services.currency import (
        CurrencyRevaluationService,
        CurrencyServiceImpl,
    )
    from business_ledger.services.fiscal_periods import FiscalPeriodServiceImpl
    from business_ledger.services.ledger import LedgerServiceImpl
    from business_ledger.services.tax import TaxServiceImpl

logger = get_logger(__name__)


class Container:
    """Dependency injection container.

    The container can be configured with custom settings for testing:

        test_settings = Settings(sqlite_path=":memory:", enable_audit_log=False)
        container = Container(settings=test_settings)

    AR/AP invoices and payments are journalized only when ``posting_accounts``
    names the general-ledger accounts to use.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        posting_accounts: PostingAccounts | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._posting_accounts = posting_accounts
        logger.debug(
            "container_created",
            sqlite_path=str(self._settings.sqlite_path),
            environment=self._settings.environment.value,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @cached_property
    def database(self) -> "SQLiteDatabase":
        """The shared SQLite unit of work, initialized on first access."""
        from business_ledger.repositories.sqlite import SQLiteDatabase

        db_path = str(self._settings.sqlite_path)
        logger.info("initializing_sqlite_database", path=db_path)

        db = SQLiteDatabase(db_path, busy_timeout=self._settings.sqlite_busy_timeout)
        db.initialize()
        return db

    # Repositories

    @cached_property
    def account_repository(self) -> "SQLiteAccountRepository":
        from business_ledger.repositories.sqlite import SQLiteAccountRepository

        return SQLiteAccountRepository(self.database)

    @cached_property
    def journal_repository(self) -> "SQLiteJournalEntryRepository":
        from business_ledger.repositories.sqlite import SQLiteJournalEntryRepository

        return SQLiteJournalEntryRepository(self.database)

    @cached_property
    def period_repository(self) -> "SQLiteFiscalPeriodRepository":
        from business_ledger.repositories.sqlite import SQLiteFiscalPeriodRepository

        return SQLiteFiscalPeriodRepository(self.database)

    @cached_property
    def tax_repository(self) -> "SQLiteTaxRepository":
        from business_ledger.repositories.sqlite import SQLiteTaxRepository

        return SQLiteTaxRepository(self.database)

    @cached_property
    def currency_repository(self) -> "SQLiteCurrencyRepository":
        from business_ledger.repositories.sqlite import SQLiteCurrencyRepository

        return SQLiteCurrencyRepository(self.database)

    @cached_property
    def exchange_rate_repository(self) -> "SQLiteExchangeRateRepository":
        from business_ledger.repositories.sqlite import SQLiteExchangeRateRepository

        return SQLiteExchangeRateRepository(self.database)

    @cached_property
    def invoice_repository(self) -> "SQLiteInvoiceRepository":
        from business_ledger.repositories.sqlite import SQLiteInvoiceRepository

        return SQLiteInvoiceRepository(self.database)

    @cached_property
    def payment_repository(self) -> "SQLitePaymentRepository":
        from business_ledger.repositories.sqlite import SQLitePaymentRepository

        return SQLitePaymentRepository(self.database)

    @cached_property
    def audit_log_repository(self) -> "SQLiteAuditLogRepository":
        from business_ledger.repositories.sqlite import SQLiteAuditLogRepository

        return SQLiteAuditLogRepository(self.database)

    # Audit

    @cached_property
    def event_sink(self) -> "EventSink":
        """Queued sink persisting to the audit log, or a no-op when disabled."""
        from business_ledger.services.audit import (
            AuditLogHandler,
            NullEventSink,
            QueuedEventSink,
        )

        if not self._settings.enable_audit_log:
            return NullEventSink()
        return QueuedEventSink(
            [AuditLogHandler(self.audit_log_repository)],
            maxsize=self._settings.audit_queue_size,
        )

    @cached_property
    def audit_service(self) -> "AuditService":
        from business_ledger.services.audit import AuditService

        return AuditService(self.audit_log_repository)

    # Services

    @cached_property
    def _core_services(self) -> tuple["FiscalPeriodServiceImpl", "LedgerServiceImpl"]:
        # Built together: year-end posts through the ledger, and the ledger
        # checks periods before posting.
        from business_ledger.services.fiscal_periods import FiscalPeriodServiceImpl
        from business_ledger.services.ledger import LedgerServiceImpl

        periods = FiscalPeriodServiceImpl(
            self.database,
            self.period_repository,
            self.account_repository,
            self.journal_repository,
            event_sink=self.event_sink,
            retained_earnings_account_code=self._settings.retained_earnings_account_code,
            base_currency=self._settings.base_currency,
        )
        ledger = LedgerServiceImpl(
            self.database,
            self.account_repository,
            self.journal_repository,
            periods,
            event_sink=self.event_sink,
            base_currency=self._settings.base_currency,
        )
        periods.bind_ledger(ledger)
        return periods, ledger

    @property
    def fiscal_period_service(self) -> "FiscalPeriodServiceImpl":
        return self._core_services[0]

    @property
    def ledger_service(self) -> "LedgerServiceImpl":
        return self._core_services[1]

    @cached_property
    def tax_service(self) -> "TaxServiceImpl":
        from business_ledger.services.tax import TaxServiceImpl

        return TaxServiceImpl(
            self.database,
            self.tax_repository,
            event_sink=self.event_sink,
            rounding=self._settings.rounding,
        )

    @cached_property
    def currency_service(self) -> "CurrencyServiceImpl":
        from business_ledger.services.currency import CurrencyServiceImpl

        return CurrencyServiceImpl(
            self.database,
            self.currency_repository,
            self.exchange_rate_repository,
            event_sink=self.event_sink,
            base_currency=self._settings.base_currency,
            rounding=self._settings.rounding,
        )

    @cached_property
    def revaluation_service(self) -> "CurrencyRevaluationService":
        from business_ledger.services.currency import CurrencyRevaluationService

        return CurrencyRevaluationService(
            self.database,
            self.ledger_service,
            self.currency_service,
            event_sink=self.event_sink,
        )

    @cached_property
    def receivables_service(self) -> "ReceivablesServiceImpl":
        from business_ledger.services.arap import ReceivablesServiceImpl

        return ReceivablesServiceImpl(
            self.database,
            self.invoice_repository,
            self.payment_repository,
            self.tax_service,
            self.ledger_service,
            self.fiscal_period_service,
            event_sink=self.event_sink,
            posting_accounts=self._posting_accounts,
            base_currency=self._settings.base_currency,
            aging_boundaries=self._settings.aging_bucket_boundaries,
        )

    def close(self) -> None:
        """Drain the audit queue and close the database.

        Should be called during application shutdown.
        """
        sink = self.__dict__.get("event_sink")
        if sink is not None and hasattr(sink, "close"):
            sink.flush()
            sink.close()
        database = self.__dict__.get("database")
        if database is not None:
            logger.info("closing_database_connection")
            database.close()

    def __enter__(self) -> "Container":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


@lru_cache
def get_container() -> Container:
    """Get the global container singleton.

    For testing, create a Container directly with custom settings instead
    of using this function.
    """
    return Container()


def reset_container() -> None:
    """Close and forget the global container."""
    if get_container.cache_info().currsize:
        get_container().close()
    get_container.cache_clear()
