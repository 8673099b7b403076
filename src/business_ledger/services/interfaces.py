from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from business_ledger.domain.accounts import Account
from business_ledger.domain.exchange_rates import (
    ConversionResult,
    Currency,
    ExchangeRate,
)
from business_ledger.domain.fiscal_periods import (
    FiscalPeriod,
    FiscalYear,
    IntegrityIssue,
    YearEndSummary,
)
from business_ledger.domain.invoices import (
    AgingBucket,
    AgingReport,
    ARAPInvoice,
    ARAPPayment,
    InvoiceLine,
    OutstandingSummary,
    PaymentApplication,
)
from business_ledger.domain.journal import JournalEntry, JournalEntryLine
from business_ledger.domain.taxes import TaxCalculationResult, TaxJurisdiction, TaxRate
from business_ledger.domain.value_objects import (
    SYSTEM_CONTEXT,
    AccountType,
    CommandContext,
    EntryStatus,
    EntryType,
    InvoiceStatus,
    InvoiceType,
    Money,
    PaymentMethod,
    PeriodType,
    ReconciliationStatus,
    TaxType,
)


@dataclass
class TrialBalanceLine:
    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    debit_balance: Money
    credit_balance: Money


@dataclass
class TrialBalance:
    as_of_date: date | None
    start_date: date | None
    lines: list[TrialBalanceLine] = field(default_factory=list)

    def totals(self) -> dict[str, tuple[Money, Money]]:
        """(debits, credits) per currency."""
        result: dict[str, tuple[Money, Money]] = {}
        for line in self.lines:
            currency = line.debit_balance.currency
            if currency not in result:
                zero = Money.zero(currency, line.debit_balance.scale)
                result[currency] = (zero, zero)
            debits, credits = result[currency]
            result[currency] = (debits + line.debit_balance, credits + line.credit_balance)
        return result

    @property
    def is_balanced(self) -> bool:
        return all(debits == credits for debits, credits in self.totals().values())


@dataclass
class GeneralLedgerLine:
    entry_id: UUID
    entry_date: date
    sequence_number: int | None
    reference: str
    description: str
    debit_amount: Money
    credit_amount: Money
    running_balance: Money


@dataclass
class GeneralLedger:
    account: Account
    start_date: date | None
    end_date: date | None
    opening_balance: Money
    lines: list[GeneralLedgerLine] = field(default_factory=list)

    @property
    def closing_balance(self) -> Money:
        return self.lines[-1].running_balance if self.lines else self.opening_balance


class LedgerService(ABC):
    @abstractmethod
    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType,
        currency: str | None = None,
        foreign_currency: str | None = None,
        parent_id: UUID | None = None,
        description: str = "",
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> Account:
        pass

    @abstractmethod
    def get_account(self, account_id: UUID) -> Account:
        pass

    @abstractmethod
    def get_account_by_code(self, code: str) -> Account:
        pass

    @abstractmethod
    def list_accounts(self, active_only: bool = False) -> list[Account]:
        pass

    @abstractmethod
    def update_account(
        self, account: Account, context: CommandContext = SYSTEM_CONTEXT
    ) -> Account:
        pass

    @abstractmethod
    def deactivate_account(
        self, account_id: UUID, context: CommandContext = SYSTEM_CONTEXT
    ) -> Account:
        pass

    @abstractmethod
    def create_entry(
        self, entry: JournalEntry, context: CommandContext = SYSTEM_CONTEXT
    ) -> JournalEntry:
        pass

    @abstractmethod
    def add_line(
        self,
        entry_id: UUID,
        line: JournalEntryLine,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> JournalEntry:
        pass

    @abstractmethod
    def remove_line(
        self, entry_id: UUID, line_id: UUID, context: CommandContext = SYSTEM_CONTEXT
    ) -> JournalEntry:
        pass

    @abstractmethod
    def submit_for_approval(
        self, entry_id: UUID, context: CommandContext = SYSTEM_CONTEXT
    ) -> JournalEntry:
        pass

    @abstractmethod
    def validate_entry(self, entry: JournalEntry) -> None:
        pass

    @abstractmethod
    def post_entry(
        self,
        entry_id: UUID,
        context: CommandContext = SYSTEM_CONTEXT,
        posted_date: date | None = None,
    ) -> JournalEntry:
        pass

    @abstractmethod
    def record_entry(
        self, entry: JournalEntry, context: CommandContext = SYSTEM_CONTEXT
    ) -> JournalEntry:
        """Create and post a new entry as one unit."""

    @abstractmethod
    def reverse_entry(
        self,
        entry_id: UUID,
        reason: str,
        reversal_date: date | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> JournalEntry:
        pass

    @abstractmethod
    def get_entry(self, entry_id: UUID) -> JournalEntry:
        pass

    @abstractmethod
    def list_entries(
        self,
        status: EntryStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        entry_type: EntryType | None = None,
    ) -> list[JournalEntry]:
        pass

    @abstractmethod
    def set_reconciliation_status(
        self,
        entry_id: UUID,
        line_id: UUID,
        status: ReconciliationStatus,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> JournalEntry:
        pass

    @abstractmethod
    def get_account_balance(self, account_id: UUID, as_of_date: date | None = None) -> Money:
        pass

    @abstractmethod
    def get_foreign_balance(self, account_id: UUID, as_of_date: date | None = None) -> Money:
        pass

    @abstractmethod
    def get_trial_balance(
        self, as_of_date: date | None = None, start_date: date | None = None
    ) -> TrialBalance:
        pass

    @abstractmethod
    def get_general_ledger(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> GeneralLedger:
        pass


class FiscalPeriodService(ABC):
    @abstractmethod
    def create_period(
        self,
        fiscal_year: int,
        period_number: int,
        start_date: date,
        end_date: date,
        name: str = "",
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> FiscalPeriod:
        pass

    @abstractmethod
    def create_standard_fiscal_year(
        self,
        fiscal_year: int,
        start_date: date,
        period_type: PeriodType = PeriodType.MONTHLY,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> list[FiscalPeriod]:
        pass

    @abstractmethod
    def get_period(self, period_id: UUID) -> FiscalPeriod:
        pass

    @abstractmethod
    def get_period_for_date(self, day: date) -> FiscalPeriod:
        pass

    @abstractmethod
    def get_current_period(self, as_of_date: date | None = None) -> FiscalPeriod:
        pass

    @abstractmethod
    def list_open_periods(self) -> list[FiscalPeriod]:
        pass

    @abstractmethod
    def get_fiscal_year(self, fiscal_year: int) -> FiscalYear:
        pass

    @abstractmethod
    def validate_integrity(self) -> list[IntegrityIssue]:
        pass

    @abstractmethod
    def ensure_open(self, day: date) -> FiscalPeriod:
        pass

    @abstractmethod
    def hold_open_period(self, day: date) -> AbstractContextManager[FiscalPeriod]:
        """Lock the period covering ``day`` against close while the block runs."""

    @abstractmethod
    def close_period(
        self, period_id: UUID, context: CommandContext = SYSTEM_CONTEXT
    ) -> FiscalPeriod:
        pass

    @abstractmethod
    def process_year_end(
        self,
        fiscal_year: int,
        retained_earnings_account_id: UUID | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> YearEndSummary:
        pass

    @abstractmethod
    def acknowledge_repair(self, context: CommandContext = SYSTEM_CONTEXT) -> None:
        pass


class TaxService(ABC):
    @abstractmethod
    def create_jurisdiction(
        self, jurisdiction: TaxJurisdiction, context: CommandContext = SYSTEM_CONTEXT
    ) -> TaxJurisdiction:
        pass

    @abstractmethod
    def get_jurisdiction(self, code: str) -> TaxJurisdiction:
        pass

    @abstractmethod
    def list_jurisdictions(self, active_only: bool = True) -> list[TaxJurisdiction]:
        pass

    @abstractmethod
    def add_rate(self, rate: TaxRate, context: CommandContext = SYSTEM_CONTEXT) -> TaxRate:
        pass

    @abstractmethod
    def expire_rate(
        self,
        rate_id: UUID,
        expiration_date: date,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> TaxRate:
        pass

    @abstractmethod
    def get_rates(self, jurisdiction_code: str, as_of_date: date) -> list[TaxRate]:
        pass

    @abstractmethod
    def get_effective_rate(
        self,
        jurisdiction_code: str,
        as_of_date: date,
        product_type: str | None = None,
        tax_type: TaxType | None = None,
    ) -> TaxRate:
        pass

    @abstractmethod
    def calculate_tax(
        self,
        taxable_amount: Money,
        jurisdiction_codes: Sequence[str],
        product_type: str | None = None,
        as_of_date: date | None = None,
        tax_type: TaxType | None = None,
    ) -> TaxCalculationResult:
        pass


class CurrencyService(ABC):
    @abstractmethod
    def add_currency(
        self, currency: Currency, context: CommandContext = SYSTEM_CONTEXT
    ) -> Currency:
        pass

    @abstractmethod
    def get_currency(self, code: str) -> Currency:
        pass

    @abstractmethod
    def list_currencies(self) -> list[Currency]:
        pass

    @abstractmethod
    def get_base_currency(self) -> str:
        pass

    @abstractmethod
    def set_base_currency(
        self, code: str, context: CommandContext = SYSTEM_CONTEXT
    ) -> Currency:
        pass

    @abstractmethod
    def scale_for(self, currency: str) -> int:
        pass

    @abstractmethod
    def add_rate(
        self, rate: ExchangeRate, context: CommandContext = SYSTEM_CONTEXT
    ) -> ExchangeRate:
        pass

    @abstractmethod
    def get_rate(
        self, from_currency: str, to_currency: str, as_of_date: date
    ) -> ExchangeRate | None:
        pass

    @abstractmethod
    def list_rates(self, from_currency: str, to_currency: str) -> list[ExchangeRate]:
        pass

    @abstractmethod
    def expire_rate(
        self,
        rate_id: UUID,
        expiration_date: date,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> ExchangeRate:
        pass

    @abstractmethod
    def resolve_rate(
        self, from_currency: str, to_currency: str, as_of_date: date
    ) -> tuple[Decimal, ExchangeRate, bool]:
        """(factor, rate used, used_inverse); raises NoExchangeRateError."""

    @abstractmethod
    def convert(self, amount: Money, to_currency: str, as_of_date: date) -> Money:
        pass

    @abstractmethod
    def convert_with_details(
        self, amount: Money, to_currency: str, as_of_date: date
    ) -> ConversionResult:
        pass

    @abstractmethod
    def convert_to_base(self, amount: Money, as_of_date: date) -> Money:
        pass

    @abstractmethod
    def revalue(
        self,
        balance: Money,
        base_currency: str,
        old_rate: Decimal,
        new_rate: Decimal,
    ) -> Money:
        pass


class ReceivablesService(ABC):
    @abstractmethod
    def create_invoice(
        self,
        invoice_date: date,
        due_date: date,
        lines: Sequence[InvoiceLine],
        customer_id: str | None = None,
        supplier_id: str | None = None,
        jurisdiction_codes: Sequence[str] = (),
        currency: str | None = None,
        description: str = "",
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> ARAPInvoice:
        pass

    @abstractmethod
    def get_invoice(self, invoice_id: UUID) -> ARAPInvoice:
        pass

    @abstractmethod
    def list_invoices(
        self,
        invoice_type: InvoiceType | None = None,
        status: InvoiceStatus | None = None,
        currency: str | None = None,
        counterparty_id: str | None = None,
    ) -> list[ARAPInvoice]:
        pass

    @abstractmethod
    def void_invoice(
        self,
        invoice_id: UUID,
        reason: str,
        void_date: date | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> ARAPInvoice:
        pass

    @abstractmethod
    def record_payment(
        self,
        payment_date: date,
        amount: Money,
        method: PaymentMethod,
        method_reference: str | None = None,
        customer_id: str | None = None,
        supplier_id: str | None = None,
        description: str = "",
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> ARAPPayment:
        pass

    @abstractmethod
    def get_payment(self, payment_id: UUID) -> ARAPPayment:
        pass

    @abstractmethod
    def apply_payment(
        self,
        payment_id: UUID,
        invoice_id: UUID,
        amount: Money,
        applied_date: date | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> PaymentApplication:
        pass

    @abstractmethod
    def generate_aging_report(
        self,
        as_of_date: date,
        bucket_boundaries: Sequence[int] | None = None,
        invoice_type: InvoiceType | None = None,
        currency: str | None = None,
        buckets: Sequence[AgingBucket] | None = None,
    ) -> AgingReport:
        pass

    @abstractmethod
    def get_outstanding_summary(
        self,
        invoice_type: InvoiceType,
        as_of_date: date,
        currency: str | None = None,
    ) -> OutstandingSummary:
        pass
