"""Accounts receivable and payable: invoices, payments, applications and aging."""

from collections.abc import Sequence
from contextlib import AbstractContextManager, nullcontext
from datetime import date
from decimal import Decimal
from uuid import UUID

from business_ledger.domain.audit import AuditAction, AuditEntityType
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
from business_ledger.domain.value_objects import (
    SYSTEM_CONTEXT,
    CommandContext,
    InvoiceStatus,
    InvoiceType,
    Money,
    PaymentMethod,
    PaymentType,
)
from business_ledger.exceptions import (
    CounterpartyError,
    CurrencyMismatchError,
    InvalidAgingBucketsError,
    InvalidAmountError,
    InvoiceHasPaymentsError,
    InvoiceNotFoundError,
    InvoiceVoidedError,
    OverApplicationError,
    PaymentNotFoundError,
    ValidationError,
)
from business_ledger.logging_config import get_logger
from business_ledger.repositories.interfaces import (
    InvoiceRepository,
    PaymentRepository,
    UnitOfWork,
)
from business_ledger.services.audit import (
    EventSink,
    NullEventSink,
    build_event,
    publish_after_commit,
)
from business_ledger.services.interfaces import (
    FiscalPeriodService,
    LedgerService,
    ReceivablesService,
    TaxService,
)
from business_ledger.services.ledger import to_money

logger = get_logger(__name__)

DEFAULT_AGING_BOUNDARIES = (0, 1, 31, 61, 91)


def build_aging_buckets(boundaries: Sequence[int]) -> list[AgingBucket]:
    """Turn ascending lower bounds into contiguous buckets.

    ``[0, 1, 31, 61, 91]`` gives Current, 1-30, 31-60, 61-90 and 91+.
    """
    if not boundaries:
        raise InvalidAgingBucketsError("at least one boundary is required")
    buckets = []
    for index, lower in enumerate(boundaries):
        upper = boundaries[index + 1] if index + 1 < len(boundaries) else None
        if upper is None:
            label = f"{lower}+"
        elif lower == 0 and upper == 1:
            label = "Current"
        else:
            label = f"{lower}-{upper - 1}"
        buckets.append(AgingBucket(label=label, days_from=lower, days_to=upper))
    validate_aging_buckets(buckets)
    return buckets


def validate_aging_buckets(buckets: Sequence[AgingBucket]) -> None:
    """Buckets must start at day 0, be contiguous and end unbounded."""
    if not buckets:
        raise InvalidAgingBucketsError("at least one bucket is required")
    if buckets[0].days_from != 0:
        raise InvalidAgingBucketsError(f"first bucket starts at {buckets[0].days_from}, not 0")
    for bucket in buckets:
        if bucket.days_to is not None and bucket.days_to <= bucket.days_from:
            raise InvalidAgingBucketsError(f"bucket {bucket.label!r} is empty or inverted")
    for earlier, later in zip(buckets, buckets[1:]):
        if earlier.days_to is None:
            raise InvalidAgingBucketsError(f"unbounded bucket {earlier.label!r} is not last")
        if earlier.days_to != later.days_from:
            raise InvalidAgingBucketsError(
                f"bucket {later.label!r} starts at {later.days_from}, "
                f"expected {earlier.days_to}"
            )
    if buckets[-1].days_to is not None:
        raise InvalidAgingBucketsError("last bucket must have no upper bound")


class ReceivablesServiceImpl(ReceivablesService):
    def __init__(
        self,
        uow: UnitOfWork,
        invoice_repo: InvoiceRepository,
        payment_repo: PaymentRepository,
        tax_service: TaxService,
        ledger: LedgerService,
        period_service: FiscalPeriodService,
        event_sink: EventSink | None = None,
        posting_accounts: PostingAccounts | None = None,
        base_currency: str = "USD",
        aging_boundaries: Sequence[int] = DEFAULT_AGING_BOUNDARIES,
    ) -> None:
        self._uow = uow
        self._invoice_repo = invoice_repo
        self._payment_repo = payment_repo
        self._tax = tax_service
        self._ledger = ledger
        self._periods = period_service
        self._events = event_sink or NullEventSink()
        self._accounts = posting_accounts or PostingAccounts()
        self._base_currency = base_currency.upper()
        self._aging_boundaries = tuple(aging_boundaries)

    # General-ledger integration

    def _posts_invoice(self, invoice_type: InvoiceType) -> bool:
        if invoice_type == InvoiceType.RECEIVABLE:
            return (
                self._accounts.receivable_account_id is not None
                and self._accounts.revenue_account_id is not None
            )
        return (
            self._accounts.payable_account_id is not None
            and self._accounts.expense_account_id is not None
        )

    def _posts_payment(self, payment_type: PaymentType) -> bool:
        if self._accounts.cash_account_id is None:
            return False
        if payment_type == PaymentType.RECEIPT:
            return self._accounts.receivable_account_id is not None
        return self._accounts.payable_account_id is not None

    def _period_hold(self, posts: bool, day: date) -> AbstractContextManager:
        # The period lock is taken before the transaction opens.
        return self._periods.hold_open_period(day) if posts else nullcontext()

    def _invoice_entry(self, invoice: ARAPInvoice, context: CommandContext) -> JournalEntry | None:
        if invoice.total_amount.is_zero:
            return None
        dimensions = Dimensions(customer_id=invoice.customer_id, supplier_id=invoice.supplier_id)
        has_tax = invoice.tax_amount.is_positive
        lines: list[JournalEntryLine] = []
        if invoice.invoice_type == InvoiceType.RECEIVABLE:
            if has_tax and self._accounts.tax_payable_account_id is None:
                raise ValidationError("No tax payable account configured for taxed invoices")
            lines.append(
                JournalEntryLine.debit(
                    self._accounts.receivable_account_id, invoice.total_amount, dimensions=dimensions
                )
            )
            if invoice.subtotal.is_positive:
                lines.append(
                    JournalEntryLine.credit(
                        self._accounts.revenue_account_id, invoice.subtotal, dimensions=dimensions
                    )
                )
            if has_tax:
                lines.append(
                    JournalEntryLine.credit(
                        self._accounts.tax_payable_account_id,
                        invoice.tax_amount,
                        dimensions=dimensions,
                    )
                )
        else:
            if has_tax and self._accounts.tax_receivable_account_id is None:
                raise ValidationError("No tax receivable account configured for taxed bills")
            if invoice.subtotal.is_positive:
                lines.append(
                    JournalEntryLine.debit(
                        self._accounts.expense_account_id, invoice.subtotal, dimensions=dimensions
                    )
                )
            if has_tax:
                lines.append(
                    JournalEntryLine.debit(
                        self._accounts.tax_receivable_account_id,
                        invoice.tax_amount,
                        dimensions=dimensions,
                    )
                )
            lines.append(
                JournalEntryLine.credit(
                    self._accounts.payable_account_id, invoice.total_amount, dimensions=dimensions
                )
            )
        return JournalEntry(
            entry_date=invoice.invoice_date,
            description=invoice.description or f"Invoice {invoice.invoice_number}",
            lines=lines,
            reference=invoice.invoice_number,
            currency=invoice.currency,
            tenant_id=context.tenant_id,
            created_by=context.actor,
        )

    def _payment_entry(self, payment: ARAPPayment, context: CommandContext) -> JournalEntry:
        dimensions = Dimensions(customer_id=payment.customer_id, supplier_id=payment.supplier_id)
        if payment.payment_type == PaymentType.RECEIPT:
            debit_account = self._accounts.cash_account_id
            credit_account = self._accounts.receivable_account_id
        else:
            debit_account = self._accounts.payable_account_id
            credit_account = self._accounts.cash_account_id
        return JournalEntry(
            entry_date=payment.payment_date,
            description=payment.description or f"Payment {payment.payment_number}",
            lines=[
                JournalEntryLine.debit(debit_account, payment.amount, dimensions=dimensions),
                JournalEntryLine.credit(credit_account, payment.amount, dimensions=dimensions),
            ],
            reference=payment.payment_number,
            currency=payment.currency,
            tenant_id=context.tenant_id,
            created_by=context.actor,
        )

    # Invoices

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
        """Price the lines, compute tax per taxable line and store the invoice.

        Taxable lines are taxed in every jurisdiction in ``jurisdiction_codes``
        with the line's ``tax_code`` as the product type. When posting
        accounts are configured the invoice is journalized in the same
        transaction.
        """
        invoice_currency = (currency or self._base_currency).upper()
        codes = list(dict.fromkeys(jurisdiction_codes))
        for line in lines:
            if line.unit_price.currency != invoice_currency:
                raise CurrencyMismatchError("invoice", invoice_currency, line.unit_price.currency)
            if line.is_taxable:
                if not codes:
                    raise ValidationError(
                        f"Line {line.description!r} is tax coded but no jurisdiction was given",
                        context={"tax_code": line.tax_code},
                    )
                result = self._tax.calculate_tax(
                    line.line_total, codes, product_type=line.tax_code, as_of_date=invoice_date
                )
                line.tax_amount = result.total_tax

        invoice = ARAPInvoice(
            invoice_date=invoice_date,
            due_date=due_date,
            currency=invoice_currency,
            customer_id=customer_id,
            supplier_id=supplier_id,
            lines=list(lines),
            jurisdiction_codes=codes,
            description=description,
            tenant_id=context.tenant_id,
            created_by=context.actor,
            updated_by=context.actor,
        )
        posts = self._posts_invoice(invoice.invoice_type)

        with self._period_hold(posts, invoice_date):
            with self._uow.transaction():
                invoice.invoice_number = f"INV-{self._uow.next_sequence('invoice'):06d}"
                if posts:
                    entry = self._invoice_entry(invoice, context)
                    if entry is not None:
                        invoice.journal_entry_id = self._ledger.record_entry(entry, context).id
                self._invoice_repo.add(invoice)
                publish_after_commit(
                    self._uow,
                    self._events,
                    build_event(
                        AuditEntityType.INVOICE,
                        invoice.id,
                        AuditAction.CREATE,
                        context,
                        new_values={
                            "invoice_number": invoice.invoice_number,
                            "invoice_type": invoice.invoice_type.value,
                            "total_amount": str(invoice.total_amount),
                        },
                    ),
                )

        logger.info(
            "invoice_created",
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            invoice_type=invoice.invoice_type.value,
            counterparty_id=invoice.counterparty_id,
            total_amount=str(invoice.total_amount),
            tax_amount=str(invoice.tax_amount),
        )
        return invoice

    def get_invoice(self, invoice_id: UUID) -> ARAPInvoice:
        invoice = self._invoice_repo.get(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def list_invoices(
        self,
        invoice_type: InvoiceType | None = None,
        status: InvoiceStatus | None = None,
        currency: str | None = None,
        counterparty_id: str | None = None,
    ) -> list[ARAPInvoice]:
        return list(self._invoice_repo.list(invoice_type, status, currency, counterparty_id))

    def void_invoice(
        self,
        invoice_id: UUID,
        reason: str,
        void_date: date | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> ARAPInvoice:
        """Void an invoice with nothing applied; its journal entry is reversed."""
        invoice = self.get_invoice(invoice_id)
        when = void_date or invoice.invoice_date

        with self._period_hold(invoice.journal_entry_id is not None, when):
            with self._uow.transaction():
                invoice = self.get_invoice(invoice_id)
                if invoice.status == InvoiceStatus.VOID:
                    raise InvoiceVoidedError(invoice_id)
                if invoice.paid_amount.is_positive:
                    raise InvoiceHasPaymentsError(invoice_id, str(invoice.paid_amount))
                if invoice.journal_entry_id is not None:
                    self._ledger.reverse_entry(
                        invoice.journal_entry_id,
                        f"Void {invoice.invoice_number}: {reason}",
                        when,
                        context,
                    )
                previous_status = invoice.status
                invoice.void(reason, context.actor)
                self._invoice_repo.update(invoice)
                publish_after_commit(
                    self._uow,
                    self._events,
                    build_event(
                        AuditEntityType.INVOICE,
                        invoice.id,
                        AuditAction.VOID,
                        context,
                        old_values={"status": previous_status.value},
                        new_values={"status": invoice.status.value, "reason": reason},
                    ),
                )

        logger.info(
            "invoice_voided",
            invoice_id=str(invoice_id),
            invoice_number=invoice.invoice_number,
            reason=reason,
        )
        return invoice

    # Payments

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
        payment = ARAPPayment(
            payment_date=payment_date,
            amount=amount,
            method=method,
            method_reference=method_reference,
            customer_id=customer_id,
            supplier_id=supplier_id,
            description=description,
            tenant_id=context.tenant_id,
            created_by=context.actor,
            updated_by=context.actor,
        )
        posts = self._posts_payment(payment.payment_type)

        with self._period_hold(posts, payment_date):
            with self._uow.transaction():
                payment.payment_number = f"PAY-{self._uow.next_sequence('payment'):06d}"
                if posts:
                    entry = self._payment_entry(payment, context)
                    payment.journal_entry_id = self._ledger.record_entry(entry, context).id
                self._payment_repo.add(payment)
                publish_after_commit(
                    self._uow,
                    self._events,
                    build_event(
                        AuditEntityType.PAYMENT,
                        payment.id,
                        AuditAction.CREATE,
                        context,
                        new_values={
                            "payment_number": payment.payment_number,
                            "payment_type": payment.payment_type.value,
                            "amount": str(payment.amount),
                            "method": payment.method.value,
                        },
                    ),
                )

        logger.info(
            "payment_recorded",
            payment_id=str(payment.id),
            payment_number=payment.payment_number,
            payment_type=payment.payment_type.value,
            amount=str(payment.amount),
            method=payment.method.value,
        )
        return payment

    def get_payment(self, payment_id: UUID) -> ARAPPayment:
        payment = self._payment_repo.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment

    def apply_payment(
        self,
        payment_id: UUID,
        invoice_id: UUID,
        amount: Money,
        applied_date: date | None = None,
        context: CommandContext = SYSTEM_CONTEXT,
    ) -> PaymentApplication:
        """Apply part of a payment to an invoice.

        The payment's unapplied amount and the invoice's balance are read
        and updated in one transaction; both rows are version checked.
        """
        with self._uow.transaction():
            payment = self.get_payment(payment_id)
            invoice = self.get_invoice(invoice_id)

            if invoice.status == InvoiceStatus.VOID:
                logger.warning("payment_rejected_invoice_void", invoice_id=str(invoice_id))
                raise InvoiceVoidedError(invoice_id)
            if amount.currency != invoice.currency or payment.currency != invoice.currency:
                raise CurrencyMismatchError("apply", payment.currency, invoice.currency)
            expected_type = (
                PaymentType.RECEIPT
                if invoice.invoice_type == InvoiceType.RECEIVABLE
                else PaymentType.DISBURSEMENT
            )
            if (
                payment.payment_type != expected_type
                or payment.counterparty_id != invoice.counterparty_id
            ):
                raise CounterpartyError(
                    "Payment and invoice belong to different counterparties",
                    payment_id=payment_id,
                    invoice_id=invoice_id,
                    payment_counterparty=payment.counterparty_id,
                    invoice_counterparty=invoice.counterparty_id,
                )
            if not amount.is_positive:
                raise InvalidAmountError(str(amount), "applied amount must be positive")

            unapplied = payment.unapplied_amount
            if amount > unapplied:
                logger.warning(
                    "payment_over_application",
                    payment_id=str(payment_id),
                    invoice_id=str(invoice_id),
                    requested=str(amount),
                    available=str(unapplied),
                    limited_by="payment",
                )
                raise OverApplicationError(
                    payment_id, invoice_id, str(amount), str(unapplied), "payment"
                )
            balance = invoice.balance_amount
            if amount > balance:
                logger.warning(
                    "payment_over_application",
                    payment_id=str(payment_id),
                    invoice_id=str(invoice_id),
                    requested=str(amount),
                    available=str(balance),
                    limited_by="invoice",
                )
                raise OverApplicationError(
                    payment_id, invoice_id, str(amount), str(balance), "invoice"
                )

            application = PaymentApplication(
                payment_id=payment.id,
                invoice_id=invoice.id,
                amount=amount,
                applied_date=applied_date or date.today(),
                applied_by=context.actor,
            )
            previous_status = invoice.status
            payment.add_application(application, context.actor)
            invoice.record_payment(amount, context.actor)
            self._invoice_repo.update(invoice)
            self._payment_repo.update(payment)
            publish_after_commit(
                self._uow,
                self._events,
                build_event(
                    AuditEntityType.INVOICE,
                    invoice.id,
                    AuditAction.APPLY,
                    context,
                    old_values={
                        "status": previous_status.value,
                        "balance_amount": str(balance),
                    },
                    new_values={
                        "status": invoice.status.value,
                        "paid_amount": str(invoice.paid_amount),
                        "balance_amount": str(invoice.balance_amount),
                        "payment_id": str(payment.id),
                        "applied_amount": str(amount),
                    },
                ),
            )

        logger.info(
            "payment_applied",
            payment_id=str(payment_id),
            invoice_id=str(invoice_id),
            amount=str(amount),
            invoice_status=invoice.status.value,
            balance_amount=str(invoice.balance_amount),
        )
        return application

    # Reports

    def _outstanding_as_of(
        self, as_of_date: date, invoice_type: InvoiceType | None, currency: str
    ) -> list[tuple[ARAPInvoice, Decimal]]:
        """Invoices with a balance on ``as_of_date`` and that balance.

        Only applications dated on or before ``as_of_date`` reduce the
        balance, so later payments do not rewrite a historical report.
        """
        outstanding = []
        for invoice in self._invoice_repo.list(invoice_type=invoice_type, currency=currency):
            if invoice.status == InvoiceStatus.VOID or invoice.invoice_date > as_of_date:
                continue
            paid = sum(
                (
                    application.amount.amount
                    for application in self._payment_repo.list_applications_for_invoice(invoice.id)
                    if application.applied_date <= as_of_date
                ),
                Decimal("0"),
            )
            balance = invoice.total_amount.amount - paid
            if balance > 0:
                outstanding.append((invoice, balance))
        outstanding.sort(key=lambda item: (item[0].due_date, item[0].invoice_number))
        return outstanding

    def generate_aging_report(
        self,
        as_of_date: date,
        bucket_boundaries: Sequence[int] | None = None,
        invoice_type: InvoiceType | None = None,
        currency: str | None = None,
        buckets: Sequence[AgingBucket] | None = None,
    ) -> AgingReport:
        """Group outstanding balances by days past due.

        Invoices not yet due count as 0 days overdue. Only invoices in
        ``currency`` (the base currency by default) are included.
        """
        if buckets is not None:
            bucket_list = list(buckets)
            validate_aging_buckets(bucket_list)
        else:
            bucket_list = build_aging_buckets(bucket_boundaries or self._aging_boundaries)
        report_currency = (currency or self._base_currency).upper()

        totals = [Decimal("0") for _ in bucket_list]
        members: list[list[UUID]] = [[] for _ in bucket_list]
        for invoice, balance in self._outstanding_as_of(as_of_date, invoice_type, report_currency):
            days = max(0, invoice.days_overdue(as_of_date))
            for index, bucket in enumerate(bucket_list):
                if bucket.contains(days):
                    totals[index] += balance
                    members[index].append(invoice.id)
                    break

        scale = max(to_money(total, report_currency).scale for total in totals)
        report = AgingReport(
            as_of_date=as_of_date,
            currency=report_currency,
            invoice_type=invoice_type,
            buckets=[
                AgingBucketSummary(
                    bucket=bucket,
                    invoice_count=len(ids),
                    total_balance=Money(total, report_currency, scale),
                    invoice_ids=ids,
                )
                for bucket, total, ids in zip(bucket_list, totals, members)
            ],
        )
        logger.info(
            "aging_report_generated",
            as_of_date=as_of_date.isoformat(),
            currency=report_currency,
            invoice_count=report.invoice_count,
            total_balance=str(report.total_balance),
        )
        return report

    def get_outstanding_summary(
        self,
        invoice_type: InvoiceType,
        as_of_date: date,
        currency: str | None = None,
    ) -> OutstandingSummary:
        summary_currency = (currency or self._base_currency).upper()
        invoices = self._outstanding_as_of(as_of_date, invoice_type, summary_currency)
        overdue = [(invoice, balance) for invoice, balance in invoices if invoice.due_date < as_of_date]
        outstanding_total = sum((balance for _, balance in invoices), Decimal("0"))
        overdue_total = sum((balance for _, balance in overdue), Decimal("0"))
        scale = max(
            to_money(outstanding_total, summary_currency).scale,
            to_money(overdue_total, summary_currency).scale,
        )
        return OutstandingSummary(
            invoice_type=invoice_type,
            as_of_date=as_of_date,
            total_outstanding=Money(outstanding_total, summary_currency, scale),
            total_overdue=Money(overdue_total, summary_currency, scale),
            invoice_count=len(invoices),
            overdue_count=len(overdue),
        )
