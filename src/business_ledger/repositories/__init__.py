from business_ledger.repositories.interfaces import (
    AccountRepository,
    AuditLogRepository,
    CurrencyRepository,
    ExchangeRateRepository,
    FiscalPeriodRepository,
    InvoiceRepository,
    JournalEntryRepository,
    PaymentRepository,
    TaxRepository,
    UnitOfWork,
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

__all__ = [
    "AccountRepository",
    "AuditLogRepository",
    "CurrencyRepository",
    "ExchangeRateRepository",
    "FiscalPeriodRepository",
    "InvoiceRepository",
    "JournalEntryRepository",
    "PaymentRepository",
    "TaxRepository",
    "UnitOfWork",
    "SQLiteAccountRepository",
    "SQLiteAuditLogRepository",
    "SQLiteCurrencyRepository",
    "SQLiteDatabase",
    "SQLiteExchangeRateRepository",
    "SQLiteFiscalPeriodRepository",
    "SQLiteInvoiceRepository",
    "SQLiteJournalEntryRepository",
    "SQLitePaymentRepository",
    "SQLiteTaxRepository",
]
