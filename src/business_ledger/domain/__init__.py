from business_ledger.domain.accounts import Account
from business_ledger.domain.audit import (
    AuditAction,
    AuditEntityType,
    AuditEntry,
    AuditLogSummary,
)
from business_ledger.domain.exchange_rates import (
    ConversionResult,
    Currency,
    ExchangeRate,
    ExchangeRateSource,
    RevaluationResult,
)
from business_ledger.domain.fiscal_periods import (
    AccountYearEndBalance,
    FiscalPeriod,
    FiscalYear,
    IntegrityIssue,
    YearEndSummary,
)
from business_ledger.domain.invoices import (
    AgingBucket,
    AgingBucketSummary,
    AgingReport,
    ARAPInvoice,
    ARAPPayment,
    InvoiceLine,
    OutstandingSummary,
    PaymentApplication,
    PostingAccounts,
)
from business_ledger.domain.journal import Dimensions, JournalEntry, JournalEntryLine
from business_ledger.domain.taxes import (
    TaxBracket,
    TaxCalculationDetail,
    TaxCalculationResult,
    TaxJurisdiction,
    TaxRate,
)
from business_ledger.domain.value_objects import (
    AccountType,
    CalculationMethod,
    CommandContext,
    EntryStatus,
    EntryType,
    InvoiceStatus,
    InvoiceType,
    JurisdictionType,
    Money,
    NormalBalance,
    PaymentMethod,
    PaymentType,
    PeriodStatus,
    PeriodType,
    ReconciliationStatus,
    TaxType,
)

__all__ = [
    "ARAPInvoice",
    "ARAPPayment",
    "Account",
    "AccountType",
    "AccountYearEndBalance",
    "AgingBucket",
    "AgingBucketSummary",
    "AgingReport",
    "AuditAction",
    "AuditEntityType",
    "AuditEntry",
    "AuditLogSummary",
    "CalculationMethod",
    "CommandContext",
    "ConversionResult",
    "Currency",
    "Dimensions",
    "EntryStatus",
    "EntryType",
    "ExchangeRate",
    "ExchangeRateSource",
    "FiscalPeriod",
    "FiscalYear",
    "IntegrityIssue",
    "InvoiceLine",
    "InvoiceStatus",
    "InvoiceType",
    "JournalEntry",
    "JournalEntryLine",
    "JurisdictionType",
    "Money",
    "NormalBalance",
    "OutstandingSummary",
    "PaymentApplication",
    "PaymentMethod",
    "PaymentType",
    "PeriodStatus",
    "PeriodType",
    "PostingAccounts",
    "ReconciliationStatus",
    "RevaluationResult",
    "TaxBracket",
    "TaxCalculationDetail",
    "TaxCalculationResult",
    "TaxJurisdiction",
    "TaxRate",
    "TaxType",
    "YearEndSummary",
]
