"""Domain exception hierarchy for the ledger core.

All ledger exceptions inherit from LedgerError. Recoverable validation
failures and fatal inconsistencies live in separate branches so callers can
tell "fix the input" apart from "stop and repair the books".
"""

from typing import Any
from uuid import UUID


class LedgerError(Exception):
    """Base exception for all ledger errors.

    Includes an error_code for API responses, a status_code hint for the
    transport layer and extra context describing the offending entity.
    """

    error_code: str = "LEDGER_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(LedgerError):
    """Base exception for validation errors."""

    error_code = "VALIDATION_ERROR"
    status_code = 422


class InvalidAmountError(ValidationError):
    """Raised when an invalid monetary amount is provided."""

    error_code = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str) -> None:
        super().__init__(
            f"Invalid amount '{amount}': {reason}",
            context={"amount": amount, "reason": reason},
        )


class CurrencyMismatchError(ValidationError):
    """Raised when amounts in different currencies (or scales) are combined."""

    error_code = "CURRENCY_MISMATCH"

    def __init__(self, operation: str, left: str, right: str) -> None:
        super().__init__(
            f"Cannot {operation} {left} and {right}",
            context={"operation": operation, "left": left, "right": right},
        )


class InvalidJournalLineError(ValidationError):
    """Raised when a journal line is not a single positive debit or credit."""

    error_code = "INVALID_JOURNAL_LINE"

    def __init__(self, reason: str, line_id: UUID | str | None = None) -> None:
        context: dict[str, Any] = {"reason": reason}
        if line_id is not None:
            context["line_id"] = str(line_id)
        super().__init__(f"Invalid journal line: {reason}", context=context)


class InvalidAgingBucketsError(ValidationError):
    """Raised when aging buckets are unordered, overlapping or gapped."""

    error_code = "INVALID_AGING_BUCKETS"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid aging buckets: {reason}", context={"reason": reason})


class CounterpartyError(ValidationError):
    """Raised when an invoice or payment has an invalid counterparty."""

    error_code = "INVALID_COUNTERPARTY"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, context={k: str(v) for k, v in context.items()})


# =============================================================================
# Account Errors
# =============================================================================


class AccountError(LedgerError):
    """Base exception for chart-of-accounts errors."""

    error_code = "ACCOUNT_ERROR"
    status_code = 400


class AccountNotFoundError(AccountError):
    """Raised when an account cannot be found."""

    error_code = "ACCOUNT_NOT_FOUND"
    status_code = 404

    def __init__(self, account_id: UUID | str) -> None:
        super().__init__(
            f"Account not found: {account_id}",
            context={"account_id": str(account_id)},
        )


class DuplicateAccountError(AccountError):
    """Raised when an account code is already in use."""

    error_code = "DUPLICATE_ACCOUNT"
    status_code = 409

    def __init__(self, code: str) -> None:
        super().__init__(
            f"Account code already exists: {code}", context={"code": code}
        )


class AccountLockedError(AccountError):
    """Raised when changing the identity of an account with posted lines."""

    error_code = "ACCOUNT_LOCKED"
    status_code = 409

    def __init__(self, account_id: UUID | str, fields: list[str]) -> None:
        super().__init__(
            f"Account {account_id} is referenced by posted lines; "
            f"cannot change {', '.join(fields)}",
            context={"account_id": str(account_id), "fields": fields},
        )


class InactiveAccountError(AccountError):
    """Raised when posting to a deactivated account."""

    error_code = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: UUID | str) -> None:
        super().__init__(
            f"Account is inactive: {account_id}",
            context={"account_id": str(account_id)},
        )


# =============================================================================
# Journal Errors
# =============================================================================


class JournalError(LedgerError):
    """Base exception for journal entry errors."""

    error_code = "JOURNAL_ERROR"
    status_code = 400


class JournalEntryNotFoundError(JournalError):
    """Raised when a journal entry cannot be found."""

    error_code = "JOURNAL_ENTRY_NOT_FOUND"
    status_code = 404

    def __init__(self, entry_id: UUID | str) -> None:
        super().__init__(
            f"Journal entry not found: {entry_id}",
            context={"entry_id": str(entry_id)},
        )


class UnbalancedEntryError(JournalError):
    """Raised when a journal entry's debits don't equal its credits."""

    error_code = "UNBALANCED_ENTRY"

    def __init__(self, entry_id: UUID | str, debit_total: str, credit_total: str) -> None:
        super().__init__(
            f"Journal entry {entry_id} is unbalanced: "
            f"debits={debit_total}, credits={credit_total}",
            context={
                "entry_id": str(entry_id),
                "debit_total": debit_total,
                "credit_total": credit_total,
            },
        )


class EmptyEntryError(JournalError):
    """Raised when a journal entry has fewer than two lines."""

    error_code = "EMPTY_ENTRY"

    def __init__(self, entry_id: UUID | str, line_count: int) -> None:
        super().__init__(
            f"Journal entry {entry_id} needs at least two lines, has {line_count}",
            context={"entry_id": str(entry_id), "line_count": line_count},
        )


class JournalEntryImmutableError(JournalError):
    """Raised when modifying the lines of a posted or reversed entry."""

    error_code = "JOURNAL_ENTRY_IMMUTABLE"
    status_code = 409

    def __init__(self, entry_id: UUID | str, status: str) -> None:
        super().__init__(
            f"Journal entry {entry_id} is {status}; its lines cannot change",
            context={"entry_id": str(entry_id), "status": status},
        )


class InvalidEntryTransitionError(JournalError):
    """Raised when an entry status transition is not allowed."""

    error_code = "INVALID_ENTRY_TRANSITION"
    status_code = 409

    def __init__(self, entry_id: UUID | str, current: str, requested: str) -> None:
        super().__init__(
            f"Journal entry {entry_id} cannot move from {current} to {requested}",
            context={
                "entry_id": str(entry_id),
                "current_status": current,
                "requested_status": requested,
            },
        )


class EntryAlreadyReversedError(JournalError):
    """Raised when reversing an entry that already has a reversal."""

    error_code = "ENTRY_ALREADY_REVERSED"
    status_code = 409

    def __init__(self, entry_id: UUID | str, reversed_by: UUID | str) -> None:
        super().__init__(
            f"Journal entry {entry_id} was already reversed by {reversed_by}",
            context={"entry_id": str(entry_id), "reversed_by_entry_id": str(reversed_by)},
        )


# =============================================================================
# Fiscal Period Errors
# =============================================================================


class FiscalPeriodError(LedgerError):
    """Base exception for fiscal period errors."""

    error_code = "FISCAL_PERIOD_ERROR"
    status_code = 400


class PeriodNotFoundError(FiscalPeriodError):
    """Raised when no fiscal period matches an id or covers a date."""

    error_code = "PERIOD_NOT_FOUND"
    status_code = 404

    def __init__(self, reference: UUID | str) -> None:
        super().__init__(
            f"Fiscal period not found: {reference}",
            context={"reference": str(reference)},
        )


class PeriodClosedError(FiscalPeriodError):
    """Raised when posting into a closed fiscal period."""

    error_code = "PERIOD_CLOSED"
    status_code = 409

    def __init__(self, period_name: str, entry_date: str) -> None:
        super().__init__(
            f"Fiscal period {period_name} is closed; cannot post on {entry_date}",
            context={"period": period_name, "entry_date": entry_date},
        )


class PeriodAlreadyClosedError(FiscalPeriodError):
    """Raised when closing a period that is already closed."""

    error_code = "PERIOD_ALREADY_CLOSED"
    status_code = 409

    def __init__(self, period_name: str) -> None:
        super().__init__(
            f"Fiscal period {period_name} is already closed",
            context={"period": period_name},
        )


class PriorPeriodOpenError(FiscalPeriodError):
    """Raised when closing a period while an earlier one is still open."""

    error_code = "PRIOR_PERIOD_OPEN"
    status_code = 409

    def __init__(self, period_name: str, open_periods: list[str]) -> None:
        super().__init__(
            f"Cannot close {period_name}: earlier periods still open "
            f"({', '.join(open_periods)})",
            context={"period": period_name, "open_periods": open_periods},
        )


class UnbalancedPeriodError(FiscalPeriodError):
    """Raised when a period's posted entries do not net to zero."""

    error_code = "UNBALANCED_PERIOD"
    status_code = 409

    def __init__(self, period_name: str, debit_total: str, credit_total: str) -> None:
        super().__init__(
            f"Fiscal period {period_name} trial balance is out of balance: "
            f"debits={debit_total}, credits={credit_total}",
            context={
                "period": period_name,
                "debit_total": debit_total,
                "credit_total": credit_total,
            },
        )


class PeriodOverlapError(FiscalPeriodError):
    """Raised when a new period overlaps or leaves a gap with its neighbours."""

    error_code = "PERIOD_OVERLAP"
    status_code = 409

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, context={k: str(v) for k, v in context.items()})


class YearEndAlreadyProcessedError(FiscalPeriodError):
    """Raised when year-end close runs twice for the same fiscal year."""

    error_code = "YEAR_END_ALREADY_PROCESSED"
    status_code = 409

    def __init__(self, fiscal_year: int) -> None:
        super().__init__(
            f"Year-end close already processed for fiscal year {fiscal_year}",
            context={"fiscal_year": fiscal_year},
        )


# =============================================================================
# Tax Errors
# =============================================================================


class TaxError(LedgerError):
    """Base exception for tax engine errors."""

    error_code = "TAX_ERROR"
    status_code = 400


class JurisdictionNotFoundError(TaxError):
    """Raised when a tax jurisdiction code is unknown."""

    error_code = "JURISDICTION_NOT_FOUND"
    status_code = 404

    def __init__(self, jurisdiction_code: str) -> None:
        super().__init__(
            f"Tax jurisdiction not found: {jurisdiction_code}",
            context={"jurisdiction_code": jurisdiction_code},
        )


class NoEffectiveRateError(TaxError):
    """Raised when a jurisdiction has no rate in force on a date."""

    error_code = "NO_EFFECTIVE_RATE"
    status_code = 422

    def __init__(self, jurisdiction_code: str, tax_type: str, as_of_date: str) -> None:
        super().__init__(
            f"No {tax_type} rate effective for {jurisdiction_code} on {as_of_date}",
            context={
                "jurisdiction_code": jurisdiction_code,
                "tax_type": tax_type,
                "as_of_date": as_of_date,
            },
        )


class AmbiguousTaxRateError(TaxError):
    """Raised when more than one rate is effective for the same lookup."""

    error_code = "AMBIGUOUS_TAX_RATE"
    status_code = 500

    def __init__(self, jurisdiction_code: str, as_of_date: str, rate_ids: list[str]) -> None:
        super().__init__(
            f"{len(rate_ids)} rates effective for {jurisdiction_code} on {as_of_date}",
            context={
                "jurisdiction_code": jurisdiction_code,
                "as_of_date": as_of_date,
                "rate_ids": rate_ids,
            },
        )


class TaxRateOverlapError(TaxError):
    """Raised when a new rate's window overlaps an existing one."""

    error_code = "TAX_RATE_OVERLAP"
    status_code = 409

    def __init__(self, jurisdiction_code: str, tax_type: str, existing_rate_id: str) -> None:
        super().__init__(
            f"{tax_type} rate for {jurisdiction_code} overlaps rate {existing_rate_id}",
            context={
                "jurisdiction_code": jurisdiction_code,
                "tax_type": tax_type,
                "existing_rate_id": existing_rate_id,
            },
        )


# =============================================================================
# Currency Errors
# =============================================================================


class CurrencyError(LedgerError):
    """Base exception for currency engine errors."""

    error_code = "CURRENCY_ERROR"
    status_code = 400


class CurrencyNotFoundError(CurrencyError):
    """Raised when a currency code is not registered."""

    error_code = "CURRENCY_NOT_FOUND"
    status_code = 404

    def __init__(self, currency_code: str) -> None:
        super().__init__(
            f"Currency not found: {currency_code}",
            context={"currency_code": currency_code},
        )


class NoExchangeRateError(CurrencyError):
    """Raised when neither a direct nor an inverse rate exists."""

    error_code = "NO_EXCHANGE_RATE"
    status_code = 422

    def __init__(self, from_currency: str, to_currency: str, as_of_date: str) -> None:
        super().__init__(
            f"No exchange rate found for {from_currency}/{to_currency} on {as_of_date}",
            context={
                "from_currency": from_currency,
                "to_currency": to_currency,
                "as_of_date": as_of_date,
            },
        )


class BaseCurrencyConflictError(CurrencyError):
    """Raised when a second base currency would be registered."""

    error_code = "BASE_CURRENCY_CONFLICT"
    status_code = 409

    def __init__(self, existing: str, requested: str) -> None:
        super().__init__(
            f"Base currency is already {existing}; cannot also mark {requested}",
            context={"existing": existing, "requested": requested},
        )


# =============================================================================
# Receivables / Payables Errors
# =============================================================================


class ReceivablesError(LedgerError):
    """Base exception for AR/AP errors."""

    error_code = "ARAP_ERROR"
    status_code = 400


class InvoiceNotFoundError(ReceivablesError):
    """Raised when an invoice cannot be found."""

    error_code = "INVOICE_NOT_FOUND"
    status_code = 404

    def __init__(self, invoice_id: UUID | str) -> None:
        super().__init__(
            f"Invoice not found: {invoice_id}", context={"invoice_id": str(invoice_id)}
        )


class PaymentNotFoundError(ReceivablesError):
    """Raised when a payment cannot be found."""

    error_code = "PAYMENT_NOT_FOUND"
    status_code = 404

    def __init__(self, payment_id: UUID | str) -> None:
        super().__init__(
            f"Payment not found: {payment_id}", context={"payment_id": str(payment_id)}
        )


class OverApplicationError(ReceivablesError):
    """Raised when applying more than a payment or invoice can absorb."""

    error_code = "OVER_APPLICATION"
    status_code = 409

    def __init__(
        self,
        payment_id: UUID | str,
        invoice_id: UUID | str,
        requested: str,
        available: str,
        limited_by: str,
    ) -> None:
        super().__init__(
            f"Cannot apply {requested} from payment {payment_id} to invoice "
            f"{invoice_id}: only {available} available on the {limited_by}",
            context={
                "payment_id": str(payment_id),
                "invoice_id": str(invoice_id),
                "requested": requested,
                "available": available,
                "limited_by": limited_by,
            },
        )


class InvoiceVoidedError(ReceivablesError):
    """Raised when operating on a voided invoice."""

    error_code = "INVOICE_VOIDED"
    status_code = 409

    def __init__(self, invoice_id: UUID | str) -> None:
        super().__init__(
            f"Invoice {invoice_id} is void", context={"invoice_id": str(invoice_id)}
        )


class InvoiceHasPaymentsError(ReceivablesError):
    """Raised when voiding an invoice that already has payment applications."""

    error_code = "INVOICE_HAS_PAYMENTS"
    status_code = 409

    def __init__(self, invoice_id: UUID | str, paid_amount: str) -> None:
        super().__init__(
            f"Invoice {invoice_id} has {paid_amount} applied; unapply before voiding",
            context={"invoice_id": str(invoice_id), "paid_amount": paid_amount},
        )


# =============================================================================
# Persistence Errors
# =============================================================================


class PersistenceError(LedgerError):
    """Base exception for persistence collaborator errors."""

    error_code = "PERSISTENCE_ERROR"
    status_code = 500


class ConcurrentModificationError(PersistenceError):
    """Raised when an optimistic version check fails.

    The only error the caller may retry: re-run the whole command.
    """

    error_code = "CONCURRENT_MODIFICATION"
    status_code = 409
    retryable = True

    def __init__(self, entity_type: str, entity_id: UUID | str, expected_version: int) -> None:
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version})",
            context={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "expected_version": expected_version,
            },
        )


# =============================================================================
# Fatal Inconsistencies
# =============================================================================


class FatalInconsistencyError(LedgerError):
    """Base exception for states that need manual repair of the books."""

    error_code = "FATAL_INCONSISTENCY"
    status_code = 500


class YearEndInconsistencyError(FatalInconsistencyError):
    """Raised when a year-end close was only partially applied."""

    error_code = "YEAR_END_INCONSISTENT"

    def __init__(self, fiscal_year: int, reason: str) -> None:
        super().__init__(
            f"Year-end state for fiscal year {fiscal_year} is inconsistent: {reason}",
            context={"fiscal_year": fiscal_year, "reason": reason},
        )


class PeriodCloseHaltedError(FatalInconsistencyError):
    """Raised when period close is refused until a fatal issue is repaired."""

    error_code = "PERIOD_CLOSE_HALTED"
    status_code = 423

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"Period close is halted pending manual repair: {reason}",
            context={"reason": reason},
        )


class InvalidCurrencyError(ValidationError):
    """Raised when an invalid currency code is provided."""

    error_code = "INVALID_CURRENCY"

    def __init__(self, currency_code: str) -> None:
        super().__init__(
            f"Invalid currency code: {currency_code}",
            context={"currency_code": currency_code},
        )


class YearEndRequiredError(FiscalPeriodError):
    """Raised when closing a year's final period outside year-end processing."""

    error_code = "YEAR_END_REQUIRED"
    status_code = 409

    def __init__(self, period_name: str, fiscal_year: int) -> None:
        super().__init__(
            f"{period_name} is the final period of fiscal year {fiscal_year}; "
            f"call process_year_end({fiscal_year}) to close it",
            context={"period": period_name, "fiscal_year": fiscal_year},
        )
