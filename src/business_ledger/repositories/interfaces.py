from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from contextlib import AbstractContextManager
from datetime import date
from decimal import Decimal
from uuid import UUID

from business_ledger.domain.accounts import Account
from business_ledger.domain.audit import AuditEntityType, AuditEntry
from business_ledger.domain.exchange_rates import Currency, ExchangeRate
from business_ledger.domain.fiscal_periods import FiscalPeriod
from business_ledger.domain.invoices import ARAPInvoice, ARAPPayment, PaymentApplication
from business_ledger.domain.journal import JournalEntry
from business_ledger.domain.taxes import TaxJurisdiction, TaxRate
from business_ledger.domain.value_objects import (
    AccountType,
    EntryStatus,
    EntryType,
    InvoiceStatus,
    InvoiceType,
    TaxType,
)


class UnitOfWork(ABC):
    """Transactional boundary shared by every repository of one database."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Commit on normal exit, roll back on exception; nests as savepoints."""

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        """Atomically increment and return the named counter."""

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        pass

    @abstractmethod
    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the outermost transaction commits.

        Outside a transaction the callback runs immediately; on rollback it
        is discarded.
        """


class AccountRepository(ABC):
    @abstractmethod
    def add(self, account: Account) -> None:
        pass

    @abstractmethod
    def get(self, account_id: UUID) -> Account | None:
        pass

    @abstractmethod
    def get_by_code(self, code: str) -> Account | None:
        pass

    @abstractmethod
    def list_all(self, active_only: bool = False) -> Iterable[Account]:
        pass

    @abstractmethod
    def list_by_type(self, account_type: AccountType) -> Iterable[Account]:
        pass

    @abstractmethod
    def update(self, account: Account) -> None:
        pass


class JournalEntryRepository(ABC):
    @abstractmethod
    def add(self, entry: JournalEntry) -> None:
        pass

    @abstractmethod
    def get(self, entry_id: UUID) -> JournalEntry | None:
        pass

    @abstractmethod
    def update(self, entry: JournalEntry) -> None:
        """Persist header and lines; raises ConcurrentModificationError on a stale version."""

    @abstractmethod
    def list(
        self,
        status: EntryStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        entry_type: EntryType | None = None,
    ) -> Iterable[JournalEntry]:
        pass

    @abstractmethod
    def list_posted_for_account(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> Iterable[JournalEntry]:
        """Posted or reversed entries touching the account, in posting order."""

    @abstractmethod
    def get_reversal_of(self, entry_id: UUID) -> JournalEntry | None:
        pass

    @abstractmethod
    def sum_posted(
        self,
        account_id: UUID,
        end_date: date | None = None,
        start_date: date | None = None,
    ) -> tuple[Decimal, Decimal]:
        """(debits, credits) of every posted line on the account in the window."""

    @abstractmethod
    def sum_posted_by_account(
        self,
        end_date: date | None = None,
        start_date: date | None = None,
    ) -> dict[UUID, tuple[Decimal, Decimal]]:
        pass

    @abstractmethod
    def sum_foreign_posted(self, account_id: UUID, end_date: date | None = None) -> Decimal:
        """Signed (debit-positive) sum of foreign amounts on posted lines."""

    @abstractmethod
    def account_has_posted_lines(self, account_id: UUID) -> bool:
        pass


class FiscalPeriodRepository(ABC):
    @abstractmethod
    def add(self, period: FiscalPeriod) -> None:
        pass

    @abstractmethod
    def get(self, period_id: UUID) -> FiscalPeriod | None:
        pass

    @abstractmethod
    def get_for_date(self, day: date) -> FiscalPeriod | None:
        pass

    @abstractmethod
    def list_by_year(self, fiscal_year: int) -> Iterable[FiscalPeriod]:
        pass

    @abstractmethod
    def list_all(self) -> Iterable[FiscalPeriod]:
        pass

    @abstractmethod
    def update(self, period: FiscalPeriod) -> None:
        pass


class TaxRepository(ABC):
    @abstractmethod
    def add_jurisdiction(self, jurisdiction: TaxJurisdiction) -> None:
        pass

    @abstractmethod
    def get_jurisdiction(self, code: str) -> TaxJurisdiction | None:
        pass

    @abstractmethod
    def list_jurisdictions(self, active_only: bool = False) -> Iterable[TaxJurisdiction]:
        pass

    @abstractmethod
    def add_rate(self, rate: TaxRate) -> None:
        pass

    @abstractmethod
    def get_rate(self, rate_id: UUID) -> TaxRate | None:
        pass

    @abstractmethod
    def list_rates(
        self, jurisdiction_code: str, tax_type: TaxType | None = None
    ) -> Iterable[TaxRate]:
        pass

    @abstractmethod
    def update_rate(self, rate: TaxRate) -> None:
        pass


class CurrencyRepository(ABC):
    @abstractmethod
    def add(self, currency: Currency) -> None:
        pass

    @abstractmethod
    def get(self, code: str) -> Currency | None:
        pass

    @abstractmethod
    def get_base(self) -> Currency | None:
        pass

    @abstractmethod
    def list_all(self) -> Iterable[Currency]:
        pass

    @abstractmethod
    def update(self, currency: Currency) -> None:
        pass


class ExchangeRateRepository(ABC):
    @abstractmethod
    def add(self, rate: ExchangeRate) -> None:
        pass

    @abstractmethod
    def get(self, rate_id: UUID) -> ExchangeRate | None:
        pass

    @abstractmethod
    def list_by_currency_pair(
        self, from_currency: str, to_currency: str
    ) -> Iterable[ExchangeRate]:
        """Rates for the directed pair, most recent effective date first."""

    @abstractmethod
    def update(self, rate: ExchangeRate) -> None:
        pass


class InvoiceRepository(ABC):
    @abstractmethod
    def add(self, invoice: ARAPInvoice) -> None:
        pass

    @abstractmethod
    def get(self, invoice_id: UUID) -> ARAPInvoice | None:
        pass

    @abstractmethod
    def update(self, invoice: ARAPInvoice) -> None:
        pass

    @abstractmethod
    def list(
        self,
        invoice_type: InvoiceType | None = None,
        status: InvoiceStatus | None = None,
        currency: str | None = None,
        counterparty_id: str | None = None,
    ) -> Iterable[ARAPInvoice]:
        pass


class PaymentRepository(ABC):
    @abstractmethod
    def add(self, payment: ARAPPayment) -> None:
        pass

    @abstractmethod
    def get(self, payment_id: UUID) -> ARAPPayment | None:
        pass

    @abstractmethod
    def update(self, payment: ARAPPayment) -> None:
        """Persist header changes and any applications not yet stored."""

    @abstractmethod
    def list_applications_for_invoice(self, invoice_id: UUID) -> Iterable[PaymentApplication]:
        pass


class AuditLogRepository(ABC):
    @abstractmethod
    def add(self, entry: AuditEntry) -> None:
        pass

    @abstractmethod
    def list_for_entity(
        self, entity_type: AuditEntityType, entity_id: UUID, limit: int = 100
    ) -> Iterable[AuditEntry]:
        pass

    @abstractmethod
    def list_recent(self, limit: int = 100) -> Iterable[AuditEntry]:
        pass

    @abstractmethod
    def iter_all(self) -> Iterator[AuditEntry]:
        pass
