from business_ledger.services.arap import (
    ReceivablesServiceImpl,
    build_aging_buckets,
    validate_aging_buckets,
)
from business_ledger.services.audit import (
    AuditLogHandler,
    AuditService,
    EventSink,
    NullEventSink,
    QueuedEventSink,
    RecordingEventSink,
)
from business_ledger.services.currency import (
    CurrencyRevaluationService,
    CurrencyServiceImpl,
)
from business_ledger.services.fiscal_periods import FiscalPeriodServiceImpl
from business_ledger.services.interfaces import (
    CurrencyService,
    FiscalPeriodService,
    GeneralLedger,
    GeneralLedgerLine,
    LedgerService,
    ReceivablesService,
    TaxService,
    TrialBalance,
    TrialBalanceLine,
)
from business_ledger.services.ledger import BalanceCache, LedgerServiceImpl
from business_ledger.services.tax import TaxServiceImpl, compute_tax, taxable_base

__all__ = [
    # Audit
    "AuditLogHandler",
    "AuditService",
    "EventSink",
    "NullEventSink",
    "QueuedEventSink",
    "RecordingEventSink",
    # Ledger
    "BalanceCache",
    "GeneralLedger",
    "GeneralLedgerLine",
    "LedgerService",
    "LedgerServiceImpl",
    "TrialBalance",
    "TrialBalanceLine",
    # Fiscal periods
    "FiscalPeriodService",
    "FiscalPeriodServiceImpl",
    # Tax
    "TaxService",
    "TaxServiceImpl",
    "compute_tax",
    "taxable_base",
    # Currency
    "CurrencyRevaluationService",
    "CurrencyService",
    "CurrencyServiceImpl",
    # AR/AP
    "ReceivablesService",
    "ReceivablesServiceImpl",
    "build_aging_buckets",
    "validate_aging_buckets",
]
