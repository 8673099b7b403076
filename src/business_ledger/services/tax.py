"""Tax rate resolution and tax calculation."""

from collections.abc import Sequence
from dataclasses import replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from business_ledger.domain.audit import AuditAction, AuditEntityType
from business_ledger.domain.taxes import (
    TaxCalculationDetail,
    TaxCalculationResult,
    TaxJurisdiction,
    TaxRate,
)
from business_ledger.domain.value_objects import (
    SYSTEM_CONTEXT,
    CalculationMethod,
    CommandContext,
    Money,
    TaxType,
)
from business_ledger.exceptions import (
    AmbiguousTaxRateError,
    InvalidAmountError,
    JurisdictionNotFoundError,
    NoEffectiveRateError,
    TaxError,
    TaxRateOverlapError,
    ValidationError,
)
from business_ledger.logging_config import get_logger
from business_ledger.repositories.interfaces import TaxRepository, UnitOfWork
from business_ledger.services.audit import (
    EventSink,
    NullEventSink,
    build_event,
    publish_after_commit,
)
from business_ledger.services.interfaces import TaxService

logger = get_logger(__name__)

_HUNDRED = Decimal("100")
_RATE_PLACES = Decimal("0.0001")


def taxable_base(rate: TaxRate, amount: Money) -> Money:
    """Clip the base to the rate's taxable window.

    A base below ``minimum_amount`` is not taxed at all; the part of a base
    above ``maximum_amount`` is not taxed.
    """
    if rate.minimum_amount is not None and amount.amount < rate.minimum_amount:
        return Money.zero(amount.currency, amount.scale)
    if rate.maximum_amount is not None and amount.amount > rate.maximum_amount:
        return Money.from_decimal(rate.maximum_amount, amount.currency, amount.scale)
    return amount


def compute_tax(rate: TaxRate, amount: Money, rounding: str = ROUND_HALF_UP) -> Money:
    """Tax due on ``amount`` under one rate, rounded once to the amount's scale."""
    base = taxable_base(rate, amount)
    if base.is_zero:
        return base
    if rate.method == CalculationMethod.PERCENTAGE:
        return base.multiply(rate.rate / _HUNDRED, rounding)
    if rate.method == CalculationMethod.FLAT:
        return Money.from_decimal(rate.flat_amount, base.currency, base.scale, rounding)
    if rate.method == CalculationMethod.TIERED:
        exact = sum(
            (bracket.portion_of(base.amount) * bracket.rate / _HUNDRED for bracket in rate.brackets),
            Decimal("0"),
        )
        return Money.from_decimal(exact, base.currency, base.scale, rounding)
    raise TaxError(
        f"Unsupported calculation method {rate.method!r}",
        context={"tax_rate_id": str(rate.id)},
    )


def effective_rate(taxable: Money, tax: Money) -> Decimal:
    if taxable.is_zero:
        return Decimal("0.0000")
    return (tax.amount / taxable.amount * _HUNDRED).quantize(_RATE_PLACES, rounding=ROUND_HALF_UP)


class TaxServiceImpl(TaxService):
    def __init__(
        self,
        uow: UnitOfWork,
        tax_repo: TaxRepository,
        event_sink: EventSink | None = None,
        rounding: str = ROUND_HALF_UP,
    ) -> None:
        self._uow = uow
        self._repo = tax_repo
        self._events = event_sink or NullEventSink()
        self._rounding = rounding

    def create_jurisdiction(
        self, jurisdiction: TaxJurisdiction, context: CommandContext = SYSTEM_CONTEXT
    ) -> TaxJurisdiction:
        with self._uow.transaction():
            if self._repo.get_jurisdiction(jurisdiction.code) is not None:
                raise ValidationError(
                    f"Tax jurisdiction already exists: {jurisdiction.code}",
                    context={"jurisdiction_code": jurisdiction.code},
                )
            jurisdiction.created_by = jurisdiction.created_by or context.actor
            self._repo.add_jurisdiction(jurisdiction)
        logger.info(
            "tax_jurisdiction_created",
            jurisdiction_code=jurisdiction.code,
            jurisdiction_type=jurisdiction.jurisdiction_type.value,
        )
        return jurisdiction

    def get_jurisdiction(self, code: str) -> TaxJurisdiction:
        jurisdiction = self._repo.get_jurisdiction(code)
        if jurisdiction is None:
            raise JurisdictionNotFoundError(code)
        return jurisdiction

    def list_jurisdictions(self, active_only: bool = True) -> list[TaxJurisdiction]:
        return list(self._repo.list_jurisdictions(active_only=active_only))

    def add_rate(self, rate: TaxRate, context: CommandContext = SYSTEM_CONTEXT) -> TaxRate:
        with self._uow.transaction():
            self.get_jurisdiction(rate.jurisdiction_code)
            for existing in self._repo.list_rates(rate.jurisdiction_code, rate.tax_type):
                if existing.overlaps(rate):
                    logger.warning(
                        "tax_rate_overlap_rejected",
                        jurisdiction_code=rate.jurisdiction_code,
                        tax_type=rate.tax_type.value,
                        existing_rate_id=str(existing.id),
                    )
                    raise TaxRateOverlapError(
                        rate.jurisdiction_code, rate.tax_type.value, str(existing.id)
                    )
            rate.created_by = rate.created_by or context.actor
            self._repo.add_rate(rate)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.TAX_RATE,
                    rate.id,
                    AuditAction.CREATE,
                    context,
                    new_values={
                        "jurisdiction_code": rate.jurisdiction_code,
                        "tax_type": rate.tax_type.value,
                        "method": rate.method.value,
                        "rate": str(rate.rate),
                        "effective_date": rate.effective_date.isoformat(),
                    },
                ),
            )
        logger.info(
            "tax_rate_added",
            tax_rate_id=str(rate.id),
            jurisdiction_code=rate.jurisdiction_code,
            tax_type=rate.tax_type.value,
            method=rate.method.value,
            effective_date=rate.effective_date.isoformat(),
        )
        return rate

    def expire_rate(
        self,
        rate_id: UUID,
        expiration_date: date,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> TaxRate:
        with self._uow.transaction():
            rate = self._repo.get_rate(rate_id)
            if rate is None:
                raise TaxError(
                    f"Tax rate not found: {rate_id}",
                    error_code="TAX_RATE_NOT_FOUND",
                    status_code=404,
                    context={"tax_rate_id": str(rate_id)},
                )
            try:
                expired = replace(rate, expiration_date=expiration_date)
            except ValueError as exc:
                raise ValidationError(
                    str(exc),
                    context={
                        "tax_rate_id": str(rate_id),
                        "expiration_date": expiration_date.isoformat(),
                    },
                ) from exc
            self._repo.update_rate(expired)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.TAX_RATE,
                    rate.id,
                    AuditAction.UPDATE,
                    context,
                    old_values={"expiration_date": _iso(rate.expiration_date)},
                    new_values={"expiration_date": expiration_date.isoformat()},
                    change_summary="expire tax_rate",
                ),
            )
        logger.info(
            "tax_rate_expired",
            tax_rate_id=str(rate_id),
            expiration_date=expiration_date.isoformat(),
        )
        return expired

    def get_rates(self, jurisdiction_code: str, as_of_date: date) -> list[TaxRate]:
        return [
            rate
            for rate in self._repo.list_rates(jurisdiction_code)
            if rate.is_effective_on(as_of_date)
        ]

    def get_effective_rate(
        self,
        jurisdiction_code: str,
        as_of_date: date,
        product_type: str | None = None,
        tax_type: TaxType | None = None,
    ) -> TaxRate:
        candidates = [
            rate
            for rate in self._repo.list_rates(jurisdiction_code, tax_type)
            if rate.is_effective_on(as_of_date)
        ]
        specific = [rate for rate in candidates if product_type and rate.product_category == product_type]
        chosen = specific or [rate for rate in candidates if rate.product_category is None]

        if not chosen:
            logger.warning(
                "tax_rate_missing",
                jurisdiction_code=jurisdiction_code,
                as_of_date=as_of_date.isoformat(),
                product_type=product_type,
            )
            raise NoEffectiveRateError(
                jurisdiction_code,
                tax_type.value if tax_type else "any",
                as_of_date.isoformat(),
            )
        if len(chosen) > 1:
            raise AmbiguousTaxRateError(
                jurisdiction_code,
                as_of_date.isoformat(),
                [str(rate.id) for rate in chosen],
            )
        return chosen[0]

    def calculate_tax(
        self,
        taxable_amount: Money,
        jurisdiction_codes: Sequence[str],
        product_type: str | None = None,
        as_of_date: date | None = None,
        tax_type: TaxType | None = None,
    ) -> TaxCalculationResult:
        if taxable_amount.is_negative:
            raise InvalidAmountError(str(taxable_amount), "taxable amount must not be negative")
        as_of = as_of_date or date.today()

        details: list[TaxCalculationDetail] = []
        total = Money.zero(taxable_amount.currency, taxable_amount.scale)
        for code in dict.fromkeys(jurisdiction_codes):
            self.get_jurisdiction(code)
            rate = self.get_effective_rate(code, as_of, product_type, tax_type)
            tax = compute_tax(rate, taxable_amount, self._rounding)
            total = total + tax
            details.append(
                TaxCalculationDetail(
                    jurisdiction_code=code,
                    tax_rate_id=rate.id,
                    rate_name=rate.rate_name,
                    tax_type=rate.tax_type,
                    method=rate.method,
                    taxable_amount=taxable_amount,
                    tax_amount=tax,
                    effective_rate=effective_rate(taxable_amount, tax),
                )
            )

        logger.debug(
            "tax_calculated",
            taxable_amount=str(taxable_amount),
            total_tax=str(total),
            jurisdictions=",".join(detail.jurisdiction_code for detail in details),
            as_of_date=as_of.isoformat(),
        )
        return TaxCalculationResult(
            taxable_amount=taxable_amount,
            total_tax=total,
            details=details,
            calculation_date=as_of,
            product_type=product_type,
        )


def _iso(day: date | None) -> str | None:
    return day.isoformat() if day else None
