"""Tests for the currency registry, conversion and revaluation."""

from datetime import date
from decimal import Decimal

import pytest

from business_ledger.domain.accounts import Account
from business_ledger.domain.audit import AuditAction
from business_ledger.domain.exchange_rates import Currency, ExchangeRate
from business_ledger.domain.journal import JournalEntry, JournalEntryLine
from business_ledger.domain.value_objects import AccountType, EntryType, Money
from business_ledger.exceptions import (
    BaseCurrencyConflictError,
    CurrencyNotFoundError,
    NoExchangeRateError,
    ValidationError,
)
from business_ledger.services.audit import RecordingEventSink
from business_ledger.services.currency import (
    CurrencyRevaluationService,
    CurrencyServiceImpl,
)
from business_ledger.services.ledger import LedgerServiceImpl


def usd(value: str) -> Money:
    return Money(Decimal(value), "USD")


def eur(value: str) -> Money:
    return Money(Decimal(value), "EUR")


@pytest.fixture
def usd_eur(currency_service: CurrencyServiceImpl) -> ExchangeRate:
    return currency_service.add_rate(
        ExchangeRate(
            from_currency="USD",
            to_currency="EUR",
            rate=Decimal("0.92"),
            effective_date=date(2024, 1, 1),
        )
    )


class TestCurrencyRegistry:
    def test_base_currency_defaults_to_configured(self, currency_service: CurrencyServiceImpl):
        assert currency_service.get_base_currency() == "USD"

    def test_registered_base_currency_wins(self, currency_service: CurrencyServiceImpl):
        currency_service.add_currency(Currency(code="EUR", name="Euro", is_base_currency=True))
        assert currency_service.get_base_currency() == "EUR"

    def test_second_base_currency_rejected(self, currency_service: CurrencyServiceImpl):
        currency_service.add_currency(Currency(code="USD", name="US Dollar", is_base_currency=True))
        with pytest.raises(BaseCurrencyConflictError):
            currency_service.add_currency(Currency(code="EUR", name="Euro", is_base_currency=True))

    def test_duplicate_currency_rejected(self, currency_service: CurrencyServiceImpl):
        currency_service.add_currency(Currency(code="EUR", name="Euro"))
        with pytest.raises(ValidationError):
            currency_service.add_currency(Currency(code="eur", name="Euro again"))

    def test_set_base_currency_moves_the_flag(self, currency_service: CurrencyServiceImpl):
        currency_service.add_currency(Currency(code="USD", name="US Dollar", is_base_currency=True))
        currency_service.add_currency(Currency(code="EUR", name="Euro"))

        currency_service.set_base_currency("EUR")

        assert currency_service.get_base_currency() == "EUR"
        assert not currency_service.get_currency("USD").is_base_currency

    def test_unknown_currency(self, currency_service: CurrencyServiceImpl):
        with pytest.raises(CurrencyNotFoundError):
            currency_service.get_currency("XYZ")

    def test_scale_for_uses_registry_then_iso_default(self, currency_service: CurrencyServiceImpl):
        currency_service.add_currency(Currency(code="BTC", name="Bitcoin", decimal_places=8))
        assert currency_service.scale_for("BTC") == 8
        assert currency_service.scale_for("JPY") == 0
        assert currency_service.scale_for("GBP") == 2

    def test_list_currencies_sorted_by_code(self, currency_service: CurrencyServiceImpl):
        currency_service.add_currency(Currency(code="GBP", name="Pound"))
        currency_service.add_currency(Currency(code="EUR", name="Euro"))
        assert [c.code for c in currency_service.list_currencies()] == ["EUR", "GBP"]


class TestExchangeRates:
    def test_most_recent_effective_rate_used(
        self, currency_service: CurrencyServiceImpl, usd_eur: ExchangeRate
    ):
        later = currency_service.add_rate(
            ExchangeRate(
                from_currency="USD",
                to_currency="EUR",
                rate=Decimal("0.95"),
                effective_date=date(2024, 3, 1),
            )
        )

        assert currency_service.get_rate("USD", "EUR", date(2024, 2, 15)).id == usd_eur.id
        assert currency_service.get_rate("USD", "EUR", date(2024, 3, 1)).id == later.id

    def test_no_rate_before_effective_date(
        self, currency_service: CurrencyServiceImpl, usd_eur: ExchangeRate
    ):
        assert currency_service.get_rate("USD", "EUR", date(2023, 12, 31)) is None

    def test_expired_rate_is_not_effective_on_expiration_date(
        self, currency_service: CurrencyServiceImpl, usd_eur: ExchangeRate
    ):
        currency_service.expire_rate(usd_eur.id, date(2024, 2, 1))

        assert currency_service.get_rate("USD", "EUR", date(2024, 1, 31)) is not None
        assert currency_service.get_rate("USD", "EUR", date(2024, 2, 1)) is None

    def test_list_rates_newest_first(
        self, currency_service: CurrencyServiceImpl, usd_eur: ExchangeRate
    ):
        later = currency_service.add_rate(
            ExchangeRate(
                from_currency="USD",
                to_currency="EUR",
                rate=Decimal("0.95"),
                effective_date=date(2024, 3, 1),
            )
        )
        assert [r.id for r in currency_service.list_rates("usd", "eur")] == [later.id, usd_eur.id]

    def test_float_rate_rejected(self):
        with pytest.raises(ValueError):
            ExchangeRate(
                from_currency="USD",
                to_currency="EUR",
                rate=0.92,  # type: ignore[arg-type]
                effective_date=date(2024, 1, 1),
            )

    def test_rate_creation_is_audited(
        self,
        currency_service: CurrencyServiceImpl,
        usd_eur: ExchangeRate,
        events: RecordingEventSink,
    ):
        created = events.of_action(AuditAction.CREATE)
        assert created[-1].entity_id == usd_eur.id
        assert created[-1].new_values["pair"] == "USD/EUR"


class TestConvert:
    def test_direct_rate(self, currency_service: CurrencyServiceImpl, usd_eur: ExchangeRate):
        assert currency_service.convert(usd("100.00"), "EUR", date(2024, 6, 1)) == eur("92.00")

    def test_inverse_rate(self, currency_service: CurrencyServiceImpl, usd_eur: ExchangeRate):
        result = currency_service.convert_with_details(eur("92.00"), "USD", date(2024, 6, 1))

        assert result.converted == usd("100.00")
        assert result.used_inverse
        assert result.rate_id == usd_eur.id

    def test_same_currency_is_identity(self, currency_service: CurrencyServiceImpl):
        result = currency_service.convert_with_details(usd("12.34"), "USD", date(2024, 6, 1))
        assert result.converted == usd("12.34")
        assert result.rate == Decimal("1")
        assert result.rate_id is None

    def test_result_uses_target_scale(self, currency_service: CurrencyServiceImpl):
        currency_service.add_rate(
            ExchangeRate(
                from_currency="USD",
                to_currency="JPY",
                rate=Decimal("151.234"),
                effective_date=date(2024, 1, 1),
            )
        )
        converted = currency_service.convert(usd("100.00"), "JPY", date(2024, 6, 1))
        assert converted == Money(Decimal("15123"), "JPY")

    def test_missing_rate_raises(self, currency_service: CurrencyServiceImpl):
        with pytest.raises(NoExchangeRateError):
            currency_service.convert(usd("100.00"), "GBP", date(2024, 6, 1))

    def test_convert_to_base(self, currency_service: CurrencyServiceImpl, usd_eur: ExchangeRate):
        assert currency_service.convert_to_base(eur("46.00"), date(2024, 6, 1)) == usd("50.00")


class TestRevalue:
    def test_gain_on_rising_rate(self, currency_service: CurrencyServiceImpl):
        adjustment = currency_service.revalue(
            eur("1000.00"), "USD", Decimal("1.10"), Decimal("1.15")
        )
        assert adjustment == usd("50.00")

    def test_loss_on_falling_rate(self, currency_service: CurrencyServiceImpl):
        adjustment = currency_service.revalue(
            eur("1000.00"), "USD", Decimal("1.10"), Decimal("1.05")
        )
        assert adjustment == usd("-50.00")


@pytest.fixture
def eur_bank(
    ledger: LedgerServiceImpl, chart: dict[str, Account], fiscal_2024
) -> Account:
    """EUR bank account carried in USD, funded with EUR 1,000 at 1.10."""
    account = ledger.create_account(
        "1200", "EUR Bank", AccountType.ASSET, currency="USD", foreign_currency="EUR"
    )
    ledger.record_entry(
        JournalEntry(
            entry_date=date(2024, 1, 10),
            description="Fund EUR account",
            lines=[
                JournalEntryLine.debit(
                    account.id,
                    usd("1100.00"),
                    foreign_amount=eur("1000.00"),
                    exchange_rate=Decimal("1.10"),
                ),
                JournalEntryLine.credit(chart["capital"].id, usd("1100.00")),
            ],
        )
    )
    return account


class TestRevaluationService:
    def test_gain_posts_debit_to_account(
        self,
        revaluation_service: CurrencyRevaluationService,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        eur_bank: Account,
    ):
        result = revaluation_service.revalue_account(
            eur_bank.id,
            date(2024, 3, 31),
            gain_account_id=chart["fx_gain"].id,
            loss_account_id=chart["fx_loss"].id,
            new_rate=Decimal("1.15"),
        )

        assert result.adjustment == usd("50.00")
        assert result.is_gain
        assert result.old_rate == Decimal("1.1")
        assert ledger.get_account_balance(eur_bank.id) == usd("1150.00")
        assert ledger.get_account_balance(chart["fx_gain"].id) == usd("50.00")
        entry = ledger.get_entry(result.journal_entry_id)
        assert entry.entry_type == EntryType.REVALUATION

    def test_loss_posts_credit_to_account(
        self,
        revaluation_service: CurrencyRevaluationService,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        eur_bank: Account,
    ):
        result = revaluation_service.revalue_account(
            eur_bank.id,
            date(2024, 3, 31),
            gain_account_id=chart["fx_gain"].id,
            loss_account_id=chart["fx_loss"].id,
            new_rate=Decimal("1.05"),
        )

        assert result.adjustment == usd("-50.00")
        assert not result.is_gain
        assert ledger.get_account_balance(eur_bank.id) == usd("1050.00")
        assert ledger.get_account_balance(chart["fx_loss"].id) == usd("50.00")

    def test_rate_from_registry(
        self,
        revaluation_service: CurrencyRevaluationService,
        currency_service: CurrencyServiceImpl,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        eur_bank: Account,
        events: RecordingEventSink,
    ):
        currency_service.add_rate(
            ExchangeRate(
                from_currency="EUR",
                to_currency="USD",
                rate=Decimal("1.12"),
                effective_date=date(2024, 3, 1),
            )
        )

        result = revaluation_service.revalue_account(
            eur_bank.id,
            date(2024, 3, 31),
            gain_account_id=chart["fx_gain"].id,
            loss_account_id=chart["fx_loss"].id,
        )

        assert result.new_rate == Decimal("1.12")
        assert result.adjustment == usd("20.00")
        assert len(events.of_action(AuditAction.REVALUE)) == 1

    def test_unchanged_rate_posts_nothing(
        self,
        revaluation_service: CurrencyRevaluationService,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        eur_bank: Account,
    ):
        result = revaluation_service.revalue_account(
            eur_bank.id,
            date(2024, 3, 31),
            gain_account_id=chart["fx_gain"].id,
            loss_account_id=chart["fx_loss"].id,
            new_rate=Decimal("1.10"),
        )

        assert result.adjustment.is_zero
        assert result.journal_entry_id is None
        assert ledger.list_entries(entry_type=EntryType.REVALUATION) == []

    def test_domestic_account_rejected(
        self,
        revaluation_service: CurrencyRevaluationService,
        chart: dict[str, Account],
        fiscal_2024,
    ):
        with pytest.raises(ValidationError):
            revaluation_service.revalue_account(
                chart["cash"].id,
                date(2024, 3, 31),
                gain_account_id=chart["fx_gain"].id,
                loss_account_id=chart["fx_loss"].id,
                new_rate=Decimal("1.15"),
            )

    def test_foreign_balance(self, ledger: LedgerServiceImpl, eur_bank: Account):
        assert ledger.get_foreign_balance(eur_bank.id) == eur("1000.00")
