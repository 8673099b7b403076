"""Currency registry, exchange-rate lookup, conversion and revaluation."""

from dataclasses import replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from business_ledger.domain.audit import AuditAction, AuditEntityType
from business_ledger.domain.exchange_rates import (
    ConversionResult,
    Currency,
    ExchangeRate,
    RevaluationResult,
)
from business_ledger.domain.journal import JournalEntry, JournalEntryLine
from business_ledger.domain.value_objects import (
    SYSTEM_CONTEXT,
    CommandContext,
    EntryType,
    Money,
    default_scale,
)
from business_ledger.exceptions import (
    BaseCurrencyConflictError,
    CurrencyError,
    CurrencyNotFoundError,
    NoExchangeRateError,
    ValidationError,
)
from business_ledger.logging_config import get_logger
from business_ledger.repositories.interfaces import (
    CurrencyRepository,
    ExchangeRateRepository,
    UnitOfWork,
)
from business_ledger.services.audit import (
    EventSink,
    NullEventSink,
    build_event,
    publish_after_commit,
)
from business_ledger.services.interfaces import CurrencyService, LedgerService

logger = get_logger(__name__)


class CurrencyServiceImpl(CurrencyService):
    def __init__(
        self,
        uow: UnitOfWork,
        currency_repo: CurrencyRepository,
        exchange_rate_repo: ExchangeRateRepository,
        event_sink: EventSink | None = None,
        base_currency: str = "USD",
        rounding: str = ROUND_HALF_UP,
    ) -> None:
        self._uow = uow
        self._currency_repo = currency_repo
        self._rate_repo = exchange_rate_repo
        self._events = event_sink or NullEventSink()
        self._base_currency = base_currency.upper()
        self._rounding = rounding

    # Registry

    def add_currency(
        self, currency: Currency, context: CommandContext = SYSTEM_CONTEXT
    ) -> Currency:
        with self._uow.transaction():
            if self._currency_repo.get(currency.code) is not None:
                raise ValidationError(
                    f"Currency already registered: {currency.code}",
                    context={"currency_code": currency.code},
                )
            if currency.is_base_currency:
                existing = self._currency_repo.get_base()
                if existing is not None:
                    raise BaseCurrencyConflictError(existing.code, currency.code)
            self._currency_repo.add(currency)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.CURRENCY,
                    currency.id,
                    AuditAction.CREATE,
                    context,
                    new_values={
                        "code": currency.code,
                        "decimal_places": currency.decimal_places,
                        "is_base_currency": currency.is_base_currency,
                    },
                ),
            )
        logger.info(
            "currency_added",
            currency_code=currency.code,
            decimal_places=currency.decimal_places,
            is_base_currency=currency.is_base_currency,
        )
        return currency

    def get_currency(self, code: str) -> Currency:
        currency = self._currency_repo.get(code)
        if currency is None:
            raise CurrencyNotFoundError(code.upper())
        return currency

    def list_currencies(self) -> list[Currency]:
        return list(self._currency_repo.list_all())

    def get_base_currency(self) -> str:
        base = self._currency_repo.get_base()
        return base.code if base is not None else self._base_currency

    def set_base_currency(
        self, code: str, context: CommandContext = SYSTEM_CONTEXT
    ) -> Currency:
        with self._uow.transaction():
            target = self.get_currency(code)
            current = self._currency_repo.get_base()
            if current is not None and current.code == target.code:
                return target
            if current is not None:
                current.is_base_currency = False
                self._currency_repo.update(current)
            target.is_base_currency = True
            self._currency_repo.update(target)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.CURRENCY,
                    target.id,
                    AuditAction.UPDATE,
                    context,
                    old_values={"base_currency": current.code if current else None},
                    new_values={"base_currency": target.code},
                    change_summary="set base currency",
                ),
            )
        logger.info(
            "base_currency_changed",
            previous=current.code if current else None,
            base_currency=target.code,
        )
        return target

    def scale_for(self, currency: str) -> int:
        registered = self._currency_repo.get(currency)
        if registered is not None:
            return registered.decimal_places
        return default_scale(currency)

    # Exchange rates

    def add_rate(
        self, rate: ExchangeRate, context: CommandContext = SYSTEM_CONTEXT
    ) -> ExchangeRate:
        with self._uow.transaction():
            self._rate_repo.add(rate)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.EXCHANGE_RATE,
                    rate.id,
                    AuditAction.CREATE,
                    context,
                    new_values={
                        "pair": rate.pair,
                        "rate": str(rate.rate),
                        "effective_date": rate.effective_date.isoformat(),
                    },
                ),
            )
        logger.info(
            "exchange_rate_added",
            pair=rate.pair,
            rate=str(rate.rate),
            effective_date=rate.effective_date.isoformat(),
            source=rate.source.value,
        )
        return rate

    def get_rate(
        self, from_currency: str, to_currency: str, as_of_date: date
    ) -> ExchangeRate | None:
        """Most recent rate for the directed pair whose window contains the date."""
        for rate in self._rate_repo.list_by_currency_pair(from_currency, to_currency):
            if rate.is_effective_on(as_of_date):
                return rate
        return None

    def list_rates(self, from_currency: str, to_currency: str) -> list[ExchangeRate]:
        return list(self._rate_repo.list_by_currency_pair(from_currency, to_currency))

    def expire_rate(
        self,
        rate_id: UUID,
        expiration_date: date,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> ExchangeRate:
        with self._uow.transaction():
            rate = self._rate_repo.get(rate_id)
            if rate is None:
                raise CurrencyError(
                    f"Exchange rate not found: {rate_id}",
                    error_code="EXCHANGE_RATE_NOT_FOUND",
                    status_code=404,
                    context={"rate_id": str(rate_id)},
                )
            try:
                expired = replace(rate, expiration_date=expiration_date)
            except ValueError as exc:
                raise ValidationError(
                    str(exc),
                    context={"rate_id": str(rate_id), "expiration_date": expiration_date.isoformat()},
                ) from exc
            self._rate_repo.update(expired)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.EXCHANGE_RATE,
                    rate.id,
                    AuditAction.UPDATE,
                    context,
                    new_values={"expiration_date": expiration_date.isoformat()},
                    change_summary="expire exchange_rate",
                ),
            )
        logger.info(
            "exchange_rate_expired",
            rate_id=str(rate_id),
            pair=rate.pair,
            expiration_date=expiration_date.isoformat(),
        )
        return expired

    def resolve_rate(
        self, from_currency: str, to_currency: str, as_of_date: date
    ) -> tuple[Decimal, ExchangeRate, bool]:
        direct = self.get_rate(from_currency, to_currency, as_of_date)
        if direct is not None:
            return direct.rate, direct, False
        inverse = self.get_rate(to_currency, from_currency, as_of_date)
        if inverse is not None:
            return Decimal("1") / inverse.rate, inverse, True
        logger.warning(
            "exchange_rate_missing",
            from_currency=from_currency,
            to_currency=to_currency,
            as_of_date=as_of_date.isoformat(),
        )
        raise NoExchangeRateError(from_currency, to_currency, as_of_date.isoformat())

    # Conversion

    def convert(self, amount: Money, to_currency: str, as_of_date: date) -> Money:
        return self.convert_with_details(amount, to_currency, as_of_date).converted

    def convert_with_details(
        self, amount: Money, to_currency: str, as_of_date: date
    ) -> ConversionResult:
        target = to_currency.upper()
        if amount.currency == target:
            return ConversionResult(
                original=amount,
                converted=amount,
                rate=Decimal("1"),
                rate_id=None,
                used_inverse=False,
                as_of_date=as_of_date,
            )

        factor, rate, used_inverse = self.resolve_rate(amount.currency, target, as_of_date)
        # Dividing by the stored rate avoids compounding the reciprocal's rounding.
        exact = amount.amount / rate.rate if used_inverse else amount.amount * rate.rate
        converted = Money.from_decimal(exact, target, self.scale_for(target), self._rounding)
        return ConversionResult(
            original=amount,
            converted=converted,
            rate=factor,
            rate_id=rate.id,
            used_inverse=used_inverse,
            as_of_date=as_of_date,
        )

    def convert_to_base(self, amount: Money, as_of_date: date) -> Money:
        return self.convert(amount, self.get_base_currency(), as_of_date)

    def revalue(
        self,
        balance: Money,
        base_currency: str,
        old_rate: Decimal,
        new_rate: Decimal,
    ) -> Money:
        """``balance × (new_rate − old_rate)`` in the base currency."""
        return Money.from_decimal(
            balance.amount * (Decimal(new_rate) - Decimal(old_rate)),
            base_currency.upper(),
            self.scale_for(base_currency),
            self._rounding,
        )


class CurrencyRevaluationService:
    """Posts unrealized exchange gains and losses on foreign-currency accounts."""

    def __init__(
        self,
        uow: UnitOfWork,
        ledger: LedgerService,
        currency_service: CurrencyService,
        event_sink: EventSink | None = None,
    ) -> None:
        self._uow = uow
        self._ledger = ledger
        self._currencies = currency_service
        self._events = event_sink or NullEventSink()

    def revalue_account(
        self,
        account_id: UUID,
        revaluation_date: date,
        gain_account_id: UUID,
        loss_account_id: UUID,
        new_rate: Decimal | None = None,
        old_rate: Decimal | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> RevaluationResult:
        """Bring the account's book value in line with the rate on ``revaluation_date``.

        ``old_rate`` defaults to the account's current carrying rate (book
        balance over foreign balance) and ``new_rate`` to the effective
        exchange rate on the revaluation date. A zero adjustment posts nothing.
        """
        account = self._ledger.get_account(account_id)
        if not account.is_foreign_currency:
            raise ValidationError(
                f"Account {account.code} does not carry a foreign currency",
                context={"account_id": str(account_id)},
            )
        foreign = self._ledger.get_foreign_balance(account_id, revaluation_date)
        book = self._ledger.get_account_balance(account_id, revaluation_date)

        if new_rate is None:
            new_rate, _, _ = self._currencies.resolve_rate(
                account.foreign_currency, account.currency, revaluation_date
            )

        if old_rate is None:
            target = Money.from_decimal(foreign.amount * new_rate, book.currency, book.scale)
            adjustment = target - book
            old_rate = book.amount / foreign.amount if not foreign.is_zero else new_rate
        else:
            adjustment = self._currencies.revalue(
                foreign, account.currency, old_rate, new_rate
            ).to_fixed(book.scale)

        result = RevaluationResult(
            account_id=account_id,
            foreign_balance=foreign,
            old_rate=Decimal(old_rate),
            new_rate=Decimal(new_rate),
            adjustment=adjustment,
            revaluation_date=revaluation_date,
            is_debit_normal=account.is_debit_normal,
        )
        if adjustment.is_zero:
            logger.info(
                "revaluation_skipped_no_change",
                account_id=str(account_id),
                revaluation_date=revaluation_date.isoformat(),
            )
            return result

        amount = abs(adjustment)
        if account.is_debit_normal == adjustment.is_positive:
            lines = [
                JournalEntryLine.debit(account_id, amount, description="Unrealized FX gain"),
                JournalEntryLine.credit(gain_account_id, amount, description="Unrealized FX gain"),
            ]
        else:
            lines = [
                JournalEntryLine.debit(loss_account_id, amount, description="Unrealized FX loss"),
                JournalEntryLine.credit(account_id, amount, description="Unrealized FX loss"),
            ]
        entry = JournalEntry(
            entry_date=revaluation_date,
            description=(
                f"Revaluation of {account.code} "
                f"{account.foreign_currency}/{account.currency} at {new_rate}"
            ),
            lines=lines,
            reference=f"REVAL-{account.code}-{revaluation_date.isoformat()}",
            entry_type=EntryType.REVALUATION,
            currency=account.currency,
            tenant_id=context.tenant_id,
            created_by=context.actor,
        )
        posted = self._ledger.record_entry(entry, context)
        result.journal_entry_id = posted.id

        publish_after_commit(
            self._uow,
            self._events,
            build_event(
                AuditEntityType.ACCOUNT,
                account_id,
                AuditAction.REVALUE,
                context,
                old_values={"book_balance": str(book), "rate": str(old_rate)},
                new_values={
                    "book_balance": str(book + adjustment),
                    "rate": str(new_rate),
                    "journal_entry_id": str(posted.id),
                },
            ),
        )
        logger.info(
            "account_revalued",
            account_id=str(account_id),
            foreign_balance=str(foreign),
            adjustment=str(adjustment),
            is_gain=result.is_gain,
            journal_entry_id=str(posted.id),
        )
        return result
