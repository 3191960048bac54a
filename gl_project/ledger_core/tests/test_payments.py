from decimal import Decimal

from ledger_core.exceptions import (InvalidTransitionError,
                                    LedgerValidationError, OverAllocationError)
from ledger_core.models import Invoice, PaymentAllocation
from ledger_core.services import (allocate_payment, approve_payment,
                                  cancel_payment, create_invoice,
                                  create_payment, delete_payment, post_invoice,
                                  post_payment, remove_allocation,
                                  submit_payment, update_allocation)

from .base import LedgerTestCase


class PaymentTestCase(LedgerTestCase):

    def make_invoice(self, total, invoice_type="sales", post=True, party_ref="CUST-1"):
        account = self.revenue if invoice_type.startswith("sales") else self.expense
        invoice = create_invoice(
            invoice_type=invoice_type,
            party_ref=party_ref,
            date=self.day(2),
            lines=[{"account": account, "unit_price": Decimal(total)}],
        )
        if post:
            invoice = post_invoice(invoice.pk)
        return invoice

    def make_payment(self, amount, payment_type="receipt"):
        return create_payment(
            payment_type=payment_type,
            party_ref="CUST-1",
            date=self.day(2, 20),
            amount=Decimal(amount),
        )

    def assertBalanceInvariant(self, invoice):
        invoice.refresh_from_db()
        self.assertEqual(invoice.balance, invoice.total - invoice.paid_amount)


class AllocationTests(PaymentTestCase):

    def test_two_allocations_settle_invoice(self):
        invoice = self.make_invoice("1000.00")
        first = self.make_payment("400.00")
        second = self.make_payment("600.00")

        allocate_payment(first.pk, [{"invoice": invoice.pk, "amount": "400.00"}])
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "partially_paid")
        self.assertEqual(invoice.paid_amount, Decimal("400.00"))
        self.assertBalanceInvariant(invoice)

        allocate_payment(second.pk, [{"invoice": invoice.pk, "amount": "600.00"}])
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal("1000.00"))
        self.assertEqual(invoice.balance, Decimal("0.00"))
        self.assertEqual(invoice.status, "paid")

    def test_allocation_above_invoice_balance_fails(self):
        invoice = self.make_invoice("500.00")
        payment = self.make_payment("1000.00")

        with self.assertRaises(OverAllocationError):
            allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "700.00"}])

        self.assertFalse(PaymentAllocation.objects.exists())
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(invoice.status, "posted")

    def test_allocation_above_payment_amount_fails(self):
        a = self.make_invoice("500.00")
        b = self.make_invoice("500.00")
        payment = self.make_payment("300.00")

        with self.assertRaises(OverAllocationError):
            allocate_payment(payment.pk, [
                {"invoice": a.pk, "amount": "200.00"},
                {"invoice": b.pk, "amount": "200.00"},
            ])
        self.assertEqual(payment.allocations.count(), 0)

    def test_one_payment_over_several_invoices(self):
        a = self.make_invoice("300.00")
        b = self.make_invoice("500.00")
        payment = self.make_payment("600.00")

        allocate_payment(payment.pk, [
            {"invoice": a.pk, "amount": "300.00"},
            {"invoice": b.pk, "amount": "300.00"},
        ])

        a.refresh_from_db()
        b.refresh_from_db()
        self.assertEqual(a.status, "paid")
        self.assertEqual(b.status, "partially_paid")
        self.assertEqual(b.balance, Decimal("200.00"))
        self.assertEqual(payment.allocated_amount, Decimal("600.00"))
        self.assertEqual(payment.unallocated_amount, Decimal("0.00"))

    def test_repeated_allocation_merges_into_one_row(self):
        invoice = self.make_invoice("1000.00")
        payment = self.make_payment("1000.00")

        allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "100.00"}])
        allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "150.00"}])

        allocation = payment.allocations.get()
        self.assertEqual(allocation.amount, Decimal("250.00"))

    def test_update_allocation_recomputes(self):
        invoice = self.make_invoice("1000.00")
        payment = self.make_payment("1000.00")
        allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "400.00"}])
        allocation = payment.allocations.get()

        update_allocation(allocation.pk, "1000.00")
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "paid")

        with self.assertRaises(OverAllocationError):
            update_allocation(allocation.pk, "1000.01")
        self.assertBalanceInvariant(invoice)

    def test_removing_every_allocation_returns_invoice_to_posted(self):
        invoice = self.make_invoice("1000.00")
        payment = self.make_payment("1000.00")
        allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "1000.00"}])
        allocation = payment.allocations.get()

        remove_allocation(allocation.pk)

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "posted")
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(invoice.balance, invoice.total)

    def test_receipt_cannot_settle_purchase_invoice(self):
        bill = self.make_invoice("100.00", invoice_type="purchase")
        receipt = self.make_payment("100.00")
        with self.assertRaises(LedgerValidationError):
            allocate_payment(receipt.pk, [{"invoice": bill.pk, "amount": "100.00"}])

    def test_receipt_cannot_settle_another_customers_invoice(self):
        invoice = self.make_invoice("100.00", party_ref="CUST-2")
        receipt = self.make_payment("100.00")

        with self.assertRaises(LedgerValidationError):
            allocate_payment(receipt.pk, [{"invoice": invoice.pk, "amount": "100.00"}])

        self.assertFalse(PaymentAllocation.objects.exists())
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(invoice.status, "posted")

    def test_returns_take_no_allocations(self):
        credit_note = self.make_invoice("100.00", invoice_type="sales_return")
        refund = self.make_payment("100.00", payment_type="payment")
        with self.assertRaises(LedgerValidationError):
            allocate_payment(refund.pk, [{"invoice": credit_note.pk, "amount": "100.00"}])

    def test_draft_invoice_cannot_take_payments(self):
        invoice = self.make_invoice("100.00", post=False)
        payment = self.make_payment("100.00")
        with self.assertRaises(InvalidTransitionError):
            allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "50.00"}])

    def test_non_positive_amount_is_rejected(self):
        invoice = self.make_invoice("100.00")
        payment = self.make_payment("100.00")
        with self.assertRaises(LedgerValidationError):
            allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "0"}])


class PaymentLifecycleTests(PaymentTestCase):

    def approve(self, payment):
        submit_payment(payment.pk)
        return approve_payment(payment.pk)

    def test_receipt_posts_bank_against_receivable(self):
        payment = self.make_payment("250.00")
        self.assertEqual(payment.payment_number, "RCT00001")
        self.approve(payment)

        payment = post_payment(payment.pk)

        self.assertEqual(payment.status, "posted")
        self.assertEqual(payment.journal.journal_type, "receipt")
        lines = {line.account_id: (line.debit, line.credit) for line in payment.journal.lines.all()}
        self.assertEqual(lines[self.cash.pk], (Decimal("250.00"), Decimal("0.00")))
        self.assertEqual(lines[self.receivable.pk], (Decimal("0.00"), Decimal("250.00")))

    def test_vendor_payment_posts_payable_against_bank(self):
        payment = self.make_payment("80.00", payment_type="payment")
        self.assertEqual(payment.payment_number, "PAY00001")
        self.approve(payment)

        payment = post_payment(payment.pk)

        lines = {line.account_id: (line.debit, line.credit) for line in payment.journal.lines.all()}
        self.assertEqual(lines[self.payable.pk], (Decimal("80.00"), Decimal("0.00")))
        self.assertEqual(lines[self.cash.pk], (Decimal("0.00"), Decimal("80.00")))

    def test_post_requires_approval(self):
        payment = self.make_payment("80.00")
        submit_payment(payment.pk)
        with self.assertRaises(InvalidTransitionError):
            post_payment(payment.pk)

    def test_check_needs_reference(self):
        with self.assertRaises(LedgerValidationError):
            create_payment(
                payment_type="receipt", party_ref="CUST-1", date=self.day(2),
                amount=Decimal("10.00"), method="check",
            )

    def test_cancel_posted_payment_reverses_and_releases_invoices(self):
        invoice = self.make_invoice("1000.00")
        payment = self.make_payment("1000.00")
        allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "1000.00"}])
        self.approve(payment)
        post_payment(payment.pk)

        payment = cancel_payment(payment.pk, reason="bounced")

        self.assertEqual(payment.status, "cancelled")
        self.assertIsNotNone(payment.reversal_journal)
        self.assertEqual(payment.reversal_journal.reversal_of_id, payment.journal_id)
        self.assertFalse(payment.allocations.exists())
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "posted")
        self.assertEqual(invoice.balance, Decimal("1000.00"))

        with self.assertRaises(InvalidTransitionError):
            cancel_payment(payment.pk)

    def test_delete_draft_payment_releases_invoices(self):
        invoice = self.make_invoice("500.00")
        payment = self.make_payment("200.00")
        allocate_payment(payment.pk, [{"invoice": invoice.pk, "amount": "200.00"}])

        delete_payment(payment.pk)

        invoice = Invoice.objects.get(pk=invoice.pk)
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(invoice.status, "posted")

    def test_only_draft_payments_can_be_deleted(self):
        payment = self.make_payment("200.00")
        submit_payment(payment.pk)
        with self.assertRaises(InvalidTransitionError):
            delete_payment(payment.pk)
