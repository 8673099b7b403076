from business_ledger.domain.accounts import Account
from business_ledger.domain.fiscal_periods import FiscalPeriod
from business_ledger.domain.invoices import ARAPInvoice, ARAPPayment, InvoiceLine
from business_ledger.domain.journal import JournalEntry, JournalEntryLine
from business_ledger.domain.value_objects import (
    AccountType,
    CommandContext,
    Money,
)

__all__ = [
    "ARAPInvoice",
    "ARAPPayment",
    "Account",
    "AccountType",
    "CommandContext",
    "FiscalPeriod",
    "InvoiceLine",
    "JournalEntry",
    "JournalEntryLine",
    "Money",
]

__version__ = "0.1.0"
