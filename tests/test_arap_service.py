"""Tests for invoices, payments, payment application and aging."""

import threading
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from business_ledger.domain.accounts import Account
from business_ledger.domain.audit import AuditAction
from business_ledger.domain.invoices import AgingBucket, ARAPInvoice, InvoiceLine
from business_ledger.domain.value_objects import (
    EntryStatus,
    InvoiceStatus,
    InvoiceType,
    Money,
    PaymentMethod,
    PaymentType,
)
from business_ledger.exceptions import (
    ConcurrentModificationError,
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
from business_ledger.repositories.sqlite import SQLiteInvoiceRepository
from business_ledger.services.arap import (
    ReceivablesServiceImpl,
    build_aging_buckets,
    validate_aging_buckets,
)
from business_ledger.services.audit import RecordingEventSink
from business_ledger.services.ledger import LedgerServiceImpl


def usd(value: str) -> Money:
    return Money(Decimal(value), "USD")


def line(amount: str, quantity: str = "1", tax_code: str | None = None) -> InvoiceLine:
    return InvoiceLine(
        description="Consulting",
        quantity=Decimal(quantity),
        unit_price=usd(amount),
        tax_code=tax_code,
    )


def simple_invoice(
    service: ReceivablesServiceImpl,
    amount: str,
    customer_id: str | None = "CUST-1",
    supplier_id: str | None = None,
    invoice_date: date = date(2024, 3, 1),
    due_date: date = date(2024, 3, 31),
) -> ARAPInvoice:
    return service.create_invoice(
        invoice_date,
        due_date,
        [line(amount)],
        customer_id=customer_id if supplier_id is None else None,
        supplier_id=supplier_id,
    )


def receipt(service: ReceivablesServiceImpl, amount: str, customer_id: str = "CUST-1"):
    return service.record_payment(
        date(2024, 3, 15), usd(amount), PaymentMethod.CASH, customer_id=customer_id
    )


class TestCreateInvoice:
    def test_totals_include_tax_per_line(
        self, receivables: ReceivablesServiceImpl, sales_tax: list[str]
    ):
        invoice = receivables.create_invoice(
            date(2024, 3, 1),
            date(2024, 3, 31),
            [line("100.00", quantity="10", tax_code="STANDARD"), line("50.00")],
            customer_id="CUST-1",
            jurisdiction_codes=sales_tax,
        )

        assert invoice.subtotal == usd("1050.00")
        assert invoice.tax_amount == usd("82.50")
        assert invoice.total_amount == usd("1132.50")
        assert invoice.lines[0].tax_amount == usd("82.50")
        assert invoice.lines[1].tax_amount == usd("0.00")
        assert invoice.invoice_type == InvoiceType.RECEIVABLE
        assert invoice.status == InvoiceStatus.OPEN

        stored = receivables.get_invoice(invoice.id)
        assert stored.total_amount == usd("1132.50")
        assert stored.jurisdiction_codes == sales_tax

    def test_invoice_numbers_are_sequential(self, receivables: ReceivablesServiceImpl):
        first = simple_invoice(receivables, "10.00")
        second = simple_invoice(receivables, "20.00")
        assert (first.invoice_number, second.invoice_number) == ("INV-000001", "INV-000002")

    def test_tax_coded_line_needs_jurisdiction(self, receivables: ReceivablesServiceImpl):
        with pytest.raises(ValidationError):
            receivables.create_invoice(
                date(2024, 3, 1),
                date(2024, 3, 31),
                [line("100.00", tax_code="STANDARD")],
                customer_id="CUST-1",
            )

    def test_line_currency_must_match(self, receivables: ReceivablesServiceImpl):
        with pytest.raises(CurrencyMismatchError):
            receivables.create_invoice(
                date(2024, 3, 1),
                date(2024, 3, 31),
                [line("100.00")],
                customer_id="CUST-1",
                currency="EUR",
            )

    def test_exactly_one_counterparty(self, receivables: ReceivablesServiceImpl):
        with pytest.raises(CounterpartyError):
            receivables.create_invoice(
                date(2024, 3, 1),
                date(2024, 3, 31),
                [line("100.00")],
                customer_id="CUST-1",
                supplier_id="SUP-1",
            )
        with pytest.raises(CounterpartyError):
            receivables.create_invoice(date(2024, 3, 1), date(2024, 3, 31), [line("100.00")])

    def test_due_date_before_invoice_date_rejected(self, receivables: ReceivablesServiceImpl):
        with pytest.raises(ValidationError):
            simple_invoice(receivables, "10.00", due_date=date(2024, 2, 1))

    def test_unknown_invoice(self, receivables: ReceivablesServiceImpl):
        with pytest.raises(InvoiceNotFoundError):
            receivables.get_invoice(uuid4())

    def test_list_by_type(self, receivables: ReceivablesServiceImpl):
        simple_invoice(receivables, "10.00")
        bill = simple_invoice(receivables, "20.00", supplier_id="SUP-1")

        payables = receivables.list_invoices(invoice_type=InvoiceType.PAYABLE)
        assert [invoice.id for invoice in payables] == [bill.id]

    def test_creation_is_audited(
        self, receivables: ReceivablesServiceImpl, events: RecordingEventSink
    ):
        invoice = simple_invoice(receivables, "10.00")
        created = events.of_action(AuditAction.CREATE)
        assert created[-1].entity_id == invoice.id
        assert created[-1].new_values["total_amount"] == "10.00"


class TestGeneralLedgerPosting:
    def test_receivable_invoice_journalized(
        self,
        posting_receivables: ReceivablesServiceImpl,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        sales_tax: list[str],
    ):
        invoice = posting_receivables.create_invoice(
            date(2024, 3, 1),
            date(2024, 3, 31),
            [line("1000.00", tax_code="STANDARD")],
            customer_id="CUST-1",
            jurisdiction_codes=sales_tax,
        )

        entry = ledger.get_entry(invoice.journal_entry_id)
        assert entry.status == EntryStatus.POSTED
        assert entry.reference == invoice.invoice_number
        assert entry.lines[0].dimensions.customer_id == "CUST-1"
        assert ledger.get_account_balance(chart["receivable"].id) == usd("1082.50")
        assert ledger.get_account_balance(chart["revenue"].id) == usd("1000.00")
        assert ledger.get_account_balance(chart["tax_payable"].id) == usd("82.50")
        assert ledger.get_trial_balance().is_balanced

    def test_payable_bill_journalized(
        self,
        posting_receivables: ReceivablesServiceImpl,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
        sales_tax: list[str],
    ):
        posting_receivables.create_invoice(
            date(2024, 3, 1),
            date(2024, 3, 31),
            [line("1000.00", tax_code="STANDARD")],
            supplier_id="SUP-1",
            jurisdiction_codes=sales_tax,
        )

        assert ledger.get_account_balance(chart["expense"].id) == usd("1000.00")
        assert ledger.get_account_balance(chart["tax_receivable"].id) == usd("82.50")
        assert ledger.get_account_balance(chart["payable"].id) == usd("1082.50")

    def test_payments_journalized(
        self,
        posting_receivables: ReceivablesServiceImpl,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
    ):
        simple_invoice(posting_receivables, "800.00")
        simple_invoice(posting_receivables, "300.00", supplier_id="SUP-1")

        receipt(posting_receivables, "500.00")
        posting_receivables.record_payment(
            date(2024, 3, 20),
            usd("300.00"),
            PaymentMethod.CHECK,
            method_reference="1042",
            supplier_id="SUP-1",
        )

        assert ledger.get_account_balance(chart["cash"].id) == usd("200.00")
        assert ledger.get_account_balance(chart["receivable"].id) == usd("300.00")
        assert ledger.get_account_balance(chart["payable"].id) == usd("0.00")

    def test_void_reverses_journal_entry(
        self,
        posting_receivables: ReceivablesServiceImpl,
        ledger: LedgerServiceImpl,
        chart: dict[str, Account],
    ):
        invoice = simple_invoice(posting_receivables, "800.00")

        posting_receivables.void_invoice(invoice.id, "Issued in error")

        assert ledger.get_entry(invoice.journal_entry_id).status == EntryStatus.REVERSED
        assert ledger.get_account_balance(chart["receivable"].id) == usd("0.00")
        assert ledger.get_account_balance(chart["revenue"].id) == usd("0.00")

    def test_no_posting_without_accounts(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "10.00")
        assert invoice.journal_entry_id is None


class TestVoid:
    def test_void_invoice(self, receivables: ReceivablesServiceImpl, events: RecordingEventSink):
        invoice = simple_invoice(receivables, "10.00")

        voided = receivables.void_invoice(invoice.id, "Duplicate")

        assert voided.status == InvoiceStatus.VOID
        assert receivables.get_invoice(invoice.id).void_reason == "Duplicate"
        assert [e.entity_id for e in events.of_action(AuditAction.VOID)] == [invoice.id]

    def test_void_twice_rejected(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "10.00")
        receivables.void_invoice(invoice.id, "Duplicate")
        with pytest.raises(InvoiceVoidedError):
            receivables.void_invoice(invoice.id, "Again")

    def test_void_with_payments_rejected(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "100.00")
        payment = receipt(receivables, "40.00")
        receivables.apply_payment(payment.id, invoice.id, usd("40.00"))

        with pytest.raises(InvoiceHasPaymentsError):
            receivables.void_invoice(invoice.id, "Too late")
        assert receivables.get_invoice(invoice.id).status == InvoiceStatus.PARTIALLY_PAID


class TestPayments:
    def test_payment_numbers_and_type(self, receivables: ReceivablesServiceImpl):
        payment = receipt(receivables, "10.00")
        assert payment.payment_number == "PAY-000001"
        assert payment.payment_type == PaymentType.RECEIPT
        assert receivables.get_payment(payment.id).amount == usd("10.00")

    def test_unknown_payment(self, receivables: ReceivablesServiceImpl):
        with pytest.raises(PaymentNotFoundError):
            receivables.get_payment(uuid4())

    def test_payment_amount_must_be_positive(self, receivables: ReceivablesServiceImpl):
        with pytest.raises(InvalidAmountError):
            receipt(receivables, "0.00")

    @pytest.mark.parametrize(
        ("method", "reference"),
        [
            (PaymentMethod.CHECK, "abc"),
            (PaymentMethod.CHECK, None),
            (PaymentMethod.BANK_TRANSFER, " "),
            (PaymentMethod.CARD, "12345"),
        ],
    )
    def test_method_reference_validated(
        self, receivables: ReceivablesServiceImpl, method: PaymentMethod, reference: str | None
    ):
        with pytest.raises(ValidationError):
            receivables.record_payment(
                date(2024, 3, 15),
                usd("10.00"),
                method,
                method_reference=reference,
                customer_id="CUST-1",
            )

    def test_card_payment_with_last_four(self, receivables: ReceivablesServiceImpl):
        payment = receivables.record_payment(
            date(2024, 3, 15),
            usd("10.00"),
            PaymentMethod.CARD,
            method_reference="4242",
            customer_id="CUST-1",
        )
        assert payment.method_reference == "4242"


class TestApplyPayment:
    def test_partial_then_full_application(
        self, receivables: ReceivablesServiceImpl, events: RecordingEventSink
    ):
        invoice = simple_invoice(receivables, "100.00")
        payment = receipt(receivables, "100.00")

        receivables.apply_payment(payment.id, invoice.id, usd("60.00"), date(2024, 3, 16))
        partly = receivables.get_invoice(invoice.id)
        assert partly.status == InvoiceStatus.PARTIALLY_PAID
        assert partly.balance_amount == usd("40.00")

        receivables.apply_payment(payment.id, invoice.id, usd("40.00"), date(2024, 3, 17))
        paid = receivables.get_invoice(invoice.id)
        assert paid.status == InvoiceStatus.PAID
        assert paid.balance_amount == usd("0.00")

        stored_payment = receivables.get_payment(payment.id)
        assert stored_payment.unapplied_amount == usd("0.00")
        assert [a.amount for a in stored_payment.applications] == [usd("60.00"), usd("40.00")]
        assert len(events.of_action(AuditAction.APPLY)) == 2

    def test_one_payment_across_invoices(self, receivables: ReceivablesServiceImpl):
        first = simple_invoice(receivables, "70.00")
        second = simple_invoice(receivables, "50.00")
        payment = receipt(receivables, "100.00")

        receivables.apply_payment(payment.id, first.id, usd("70.00"))
        receivables.apply_payment(payment.id, second.id, usd("30.00"))

        assert receivables.get_invoice(first.id).status == InvoiceStatus.PAID
        assert receivables.get_invoice(second.id).balance_amount == usd("20.00")

    def test_over_application_of_payment(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "1000.00")
        payment = receipt(receivables, "100.00")

        with pytest.raises(OverApplicationError) as exc_info:
            receivables.apply_payment(payment.id, invoice.id, usd("150.00"))

        assert exc_info.value.context["limited_by"] == "payment"
        assert exc_info.value.context["available"] == "100.00"
        assert receivables.get_invoice(invoice.id).paid_amount == usd("0.00")

    def test_over_application_of_invoice(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "100.00")
        payment = receipt(receivables, "500.00")

        with pytest.raises(OverApplicationError) as exc_info:
            receivables.apply_payment(payment.id, invoice.id, usd("100.01"))

        assert exc_info.value.context["limited_by"] == "invoice"
        assert receivables.get_payment(payment.id).unapplied_amount == usd("500.00")

    def test_other_customer_rejected(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "100.00")
        payment = receipt(receivables, "100.00", customer_id="CUST-2")
        with pytest.raises(CounterpartyError):
            receivables.apply_payment(payment.id, invoice.id, usd("10.00"))

    def test_disbursement_cannot_settle_receivable(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "100.00")
        payment = receivables.record_payment(
            date(2024, 3, 15), usd("100.00"), PaymentMethod.CASH, supplier_id="CUST-1"
        )
        with pytest.raises(CounterpartyError):
            receivables.apply_payment(payment.id, invoice.id, usd("10.00"))

    def test_currency_mismatch_rejected(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "100.00")
        payment = receivables.record_payment(
            date(2024, 3, 15),
            Money(Decimal("100.00"), "EUR"),
            PaymentMethod.CASH,
            customer_id="CUST-1",
        )
        with pytest.raises(CurrencyMismatchError):
            receivables.apply_payment(payment.id, invoice.id, Money(Decimal("10.00"), "EUR"))

    def test_void_invoice_rejects_payment(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "100.00")
        receivables.void_invoice(invoice.id, "Cancelled")
        payment = receipt(receivables, "100.00")
        with pytest.raises(InvoiceVoidedError):
            receivables.apply_payment(payment.id, invoice.id, usd("10.00"))

    def test_zero_application_rejected(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "100.00")
        payment = receipt(receivables, "100.00")
        with pytest.raises(InvalidAmountError):
            receivables.apply_payment(payment.id, invoice.id, usd("0.00"))

    def test_concurrent_applications_never_over_apply(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(receivables, "100.00")
        payment = receipt(receivables, "1000.00")
        barrier = threading.Barrier(10)
        applied: list[Money] = []
        rejected: list[Exception] = []
        results_lock = threading.Lock()

        def apply() -> None:
            barrier.wait()
            try:
                receivables.apply_payment(payment.id, invoice.id, usd("30.00"))
            except (OverApplicationError, ConcurrentModificationError) as exc:
                with results_lock:
                    rejected.append(exc)
            else:
                with results_lock:
                    applied.append(usd("30.00"))

        threads = [threading.Thread(target=apply) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        stored = receivables.get_invoice(invoice.id)
        assert len(applied) == 3
        assert len(rejected) == 7
        assert stored.paid_amount == usd("90.00")
        assert stored.paid_amount <= stored.total_amount
        assert receivables.get_payment(payment.id).applied_amount == usd("90.00")

    def test_stale_invoice_update_rejected(
        self, receivables: ReceivablesServiceImpl, invoice_repo: SQLiteInvoiceRepository
    ):
        invoice = simple_invoice(receivables, "100.00")
        first = invoice_repo.get(invoice.id)
        second = invoice_repo.get(invoice.id)

        first.record_payment(usd("10.00"))
        invoice_repo.update(first)
        second.record_payment(usd("20.00"))

        with pytest.raises(ConcurrentModificationError):
            invoice_repo.update(second)
        assert invoice_repo.get(invoice.id).paid_amount == usd("10.00")


class TestAgingBuckets:
    def test_default_labels(self):
        labels = [bucket.label for bucket in build_aging_buckets([0, 1, 31, 61, 91])]
        assert labels == ["Current", "1-30", "31-60", "61-90", "91+"]

    @pytest.mark.parametrize("boundaries", [[], [5, 10], [0, 30, 20], [0, 30, 30]])
    def test_invalid_boundaries(self, boundaries: list[int]):
        with pytest.raises(InvalidAgingBucketsError):
            build_aging_buckets(boundaries)

    def test_non_contiguous_buckets(self):
        with pytest.raises(InvalidAgingBucketsError):
            validate_aging_buckets(
                [AgingBucket("0-29", 0, 30), AgingBucket("45+", 45, None)]
            )

    def test_unbounded_bucket_must_be_last(self):
        with pytest.raises(InvalidAgingBucketsError):
            validate_aging_buckets([AgingBucket("0+", 0, None), AgingBucket("30+", 30, None)])


class TestAgingReport:
    def test_buckets_by_days_past_due(self, receivables: ReceivablesServiceImpl):
        as_of = date(2024, 3, 31)
        not_due = simple_invoice(receivables, "10.00", due_date=date(2024, 4, 30))
        one_day = simple_invoice(receivables, "20.00", due_date=date(2024, 3, 30))
        forty_five = simple_invoice(
            receivables, "30.00", invoice_date=date(2024, 1, 1), due_date=date(2024, 2, 15)
        )
        old = simple_invoice(
            receivables, "40.00", invoice_date=date(2023, 11, 1), due_date=date(2023, 12, 1)
        )

        report = receivables.generate_aging_report(as_of)

        assert report.bucket("Current").invoice_ids == [not_due.id]
        assert report.bucket("1-30").invoice_ids == [one_day.id]
        assert report.bucket("31-60").invoice_ids == [forty_five.id]
        assert report.bucket("91+").invoice_ids == [old.id]
        assert report.bucket("61-90").invoice_count == 0
        assert report.total_balance == usd("100.00")
        assert report.currency == "USD"

    def test_custom_boundaries(self, receivables: ReceivablesServiceImpl):
        invoice = simple_invoice(
            receivables, "30.00", invoice_date=date(2024, 1, 1), due_date=date(2024, 2, 15)
        )

        report = receivables.generate_aging_report(date(2024, 3, 31), bucket_boundaries=[0, 30, 60])

        assert [summary.bucket.label for summary in report.buckets] == ["0-29", "30-59", "60+"]
        assert report.buckets[1].invoice_ids == [invoice.id]

    def test_invalid_custom_buckets_rejected(self, receivables: ReceivablesServiceImpl):
        with pytest.raises(InvalidAgingBucketsError):
            receivables.generate_aging_report(date(2024, 3, 31), bucket_boundaries=[10, 20])

    def test_uses_remaining_balance_and_skips_settled(self, receivables: ReceivablesServiceImpl):
        partly = simple_invoice(receivables, "100.00")
        settled = simple_invoice(receivables, "50.00")
        voided = simple_invoice(receivables, "70.00")
        payment = receipt(receivables, "90.00")
        receivables.apply_payment(payment.id, partly.id, usd("40.00"), date(2024, 3, 15))
        receivables.apply_payment(payment.id, settled.id, usd("50.00"), date(2024, 3, 15))
        receivables.void_invoice(voided.id, "Cancelled")

        report = receivables.generate_aging_report(date(2024, 3, 31))

        assert report.invoice_count == 1
        assert report.total_balance == usd("60.00")

    def test_later_payment_does_not_change_earlier_report(
        self, receivables: ReceivablesServiceImpl
    ):
        invoice = simple_invoice(
            receivables, "100.00", invoice_date=date(2024, 1, 16), due_date=date(2024, 2, 15)
        )
        payment = receivables.record_payment(
            date(2024, 4, 15), usd("100.00"), PaymentMethod.CASH, customer_id="CUST-1"
        )
        receivables.apply_payment(payment.id, invoice.id, usd("100.00"), date(2024, 4, 15))

        before = receivables.generate_aging_report(date(2024, 3, 31))
        after = receivables.generate_aging_report(date(2024, 4, 30))

        assert before.invoice_count == 1
        assert before.total_balance == usd("100.00")
        assert before.buckets[2].invoice_ids == [invoice.id]
        assert after.invoice_count == 0

    def test_partial_payment_after_report_date_is_ignored(
        self, receivables: ReceivablesServiceImpl
    ):
        invoice = simple_invoice(receivables, "100.00")
        payment = receipt(receivables, "100.00")
        receivables.apply_payment(payment.id, invoice.id, usd("30.00"), date(2024, 3, 20))
        receivables.apply_payment(payment.id, invoice.id, usd("50.00"), date(2024, 4, 10))

        summary = receivables.get_outstanding_summary(InvoiceType.RECEIVABLE, date(2024, 3, 31))

        assert summary.total_outstanding == usd("70.00")
        assert receivables.generate_aging_report(date(2024, 4, 30)).total_balance == usd("20.00")

    def test_filters_type_currency_and_future_invoices(self, receivables: ReceivablesServiceImpl):
        simple_invoice(receivables, "10.00")
        simple_invoice(receivables, "20.00", supplier_id="SUP-1")
        simple_invoice(receivables, "40.00", invoice_date=date(2024, 4, 2), due_date=date(2024, 5, 1))
        receivables.create_invoice(
            date(2024, 3, 1),
            date(2024, 3, 31),
            [InvoiceLine("Licence", Decimal("1"), Money(Decimal("99.00"), "EUR"))],
            customer_id="CUST-1",
            currency="EUR",
        )

        usd_receivables = receivables.generate_aging_report(
            date(2024, 3, 31), invoice_type=InvoiceType.RECEIVABLE
        )
        eur_report = receivables.generate_aging_report(date(2024, 3, 31), currency="EUR")

        assert usd_receivables.total_balance == usd("10.00")
        assert eur_report.total_balance == Money(Decimal("99.00"), "EUR")

    def test_outstanding_summary(self, receivables: ReceivablesServiceImpl):
        simple_invoice(receivables, "100.00", due_date=date(2024, 3, 10))
        simple_invoice(receivables, "50.00", due_date=date(2024, 4, 30))

        summary = receivables.get_outstanding_summary(InvoiceType.RECEIVABLE, date(2024, 3, 31))

        assert summary.total_outstanding == usd("150.00")
        assert summary.total_overdue == usd("100.00")
        assert (summary.invoice_count, summary.overdue_count) == (2, 1)
