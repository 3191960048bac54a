import logging
from typing import Dict, List

from django.db import models, transaction
from django.utils import timezone

from ..exceptions import (InvalidTransitionError, LedgerValidationError,
                          NotFoundError, OverAllocationError)
from ..models import Invoice, Payment, PaymentAllocation
from ..models.payment import ALLOWED_TRANSITIONS, PAYMENT_PREFIXES
from ..utils import ZERO, to_money
from .accounts import get_default_account
from .audit import log_action
from .journals import create_and_post_journal, reverse_journal
from .sequences import allocate_code
from .validation import get_scoped, resolve_posting_account

logger = logging.getLogger(__name__)

# Invoice types each payment type may settle. Returns are not settled by
# payments; they net against the party balance instead.
ALLOCATABLE_TYPES = {"receipt": ("sales",), "payment": ("purchase",)}
ALLOCATABLE_STATUSES = ("posted", "partially_paid", "paid")


# ----------------------------
# Payment lifecycle
# ----------------------------
def create_payment(*, payment_type, party_ref, date, amount, method="bank_transfer",
                   reference="", bank_account=None):
    if payment_type not in PAYMENT_PREFIXES:
        raise LedgerValidationError(f"Unknown payment type: {payment_type}")
    if method == "check" and not reference:
        raise LedgerValidationError("Check payments need the check number as reference.")
    if bank_account is not None:
        bank_account = resolve_posting_account(bank_account)
    with transaction.atomic():
        payment = Payment.objects.create(
            payment_number=allocate_code(
                PAYMENT_PREFIXES[payment_type],
                existing=(Payment.objects, "payment_number"),
            ),
            payment_type=payment_type,
            party_ref=party_ref,
            date=date,
            amount=to_money(amount),
            method=method,
            reference=reference,
            bank_account=bank_account,
        )
    logger.info(
        "Payment %s created for %s", payment.payment_number, payment.amount,
        extra={"company_id": payment.company_id, "payment_id": payment.pk},
    )
    return payment


def _transition(payment, new_status, stamp_field, extra_fields=()):
    if new_status not in ALLOWED_TRANSITIONS[payment.status]:
        raise InvalidTransitionError(
            f"Cannot go from {payment.status} to {new_status}")
    payment.status = new_status
    setattr(payment, stamp_field, timezone.now())
    payment.save(update_fields=["status", stamp_field, *extra_fields])
    return payment


def submit_payment(payment_id):
    with transaction.atomic():
        payment = get_scoped(Payment, payment_id, for_update=True)
        return _transition(payment, "submitted", "submitted_at")


def approve_payment(payment_id):
    with transaction.atomic():
        payment = get_scoped(Payment, payment_id, for_update=True)
        return _transition(payment, "approved", "approved_at")


def post_payment(payment_id):
    """
    Book an approved payment.
    receipt: Dr bank / Cr receivable
    payment: Dr payable / Cr bank
    """
    with transaction.atomic():
        payment = get_scoped(Payment, payment_id, for_update=True)
        if "posted" not in ALLOWED_TRANSITIONS[payment.status]:
            raise InvalidTransitionError(f"Cannot post a {payment.status} payment.")

        bank = payment.bank_account or get_default_account("bank")
        memo = f"{payment.get_payment_type_display()} {payment.payment_number}"
        if payment.payment_type == "receipt":
            debit_account, credit_account = bank, get_default_account("receivable")
        else:
            debit_account, credit_account = get_default_account("payable"), bank

        je = create_and_post_journal(
            date=payment.date,
            journal_type=payment.payment_type,
            description=memo,
            reference=payment.reference or payment.payment_number,
            source=payment,
            lines=[
                {"account": debit_account, "debit": payment.amount, "description": memo},
                {"account": credit_account, "credit": payment.amount, "description": memo},
            ],
        )
        payment.journal = je
        _transition(payment, "posted", "posted_at", extra_fields=("journal",))

    logger.info(
        "Payment %s posted as %s", payment.payment_number, je.journal_number,
        extra={"company_id": payment.company_id, "payment_id": payment.pk},
    )
    return payment


def cancel_payment(payment_id, reason=""):
    """
    Cancel a payment at any stage. A posted payment is reversed by a new
    journal; every allocation is dropped and the invoices recomputed.
    """
    with transaction.atomic():
        payment = get_scoped(Payment, payment_id, for_update=True)
        if "cancelled" not in ALLOWED_TRANSITIONS[payment.status]:
            raise InvalidTransitionError(f"Cannot cancel a {payment.status} payment.")
        if payment.status == "posted":
            payment.reversal_journal = reverse_journal(
                payment.journal_id,
                reason=reason or f"Cancellation of {payment.payment_number}",
            )
        invoice_ids = _drop_allocations(payment)
        payment.cancel_reason = reason or ""
        _transition(payment, "cancelled", "cancelled_at",
                    extra_fields=("reversal_journal", "cancel_reason"))
        _recompute_invoices(invoice_ids)
        log_action(action="cancel", instance=payment, changes={"reason": reason})
    return payment


def delete_payment(payment_id):
    with transaction.atomic():
        payment = get_scoped(Payment, payment_id, for_update=True)
        if payment.status != "draft":
            raise InvalidTransitionError(f"Only draft payments can be deleted ({payment.status}).")
        invoice_ids = _drop_allocations(payment)
        payment.delete()
        _recompute_invoices(invoice_ids)


# ----------------------------
# Allocation engine
# ----------------------------
def recompute_invoice_payment_state(invoice):
    """
    Rebuild paid_amount / balance / status of one invoice from the full set
    of its allocations (cancelled payments excluded), never incrementally.
    """
    paid = PaymentAllocation.objects.filter(invoice=invoice).exclude(
        payment__status="cancelled"
    ).aggregate(total=models.Sum("amount"))["total"] or ZERO

    invoice.paid_amount = to_money(paid)
    if invoice.status in ALLOCATABLE_STATUSES:
        if invoice.paid_amount > ZERO and invoice.total - invoice.paid_amount <= ZERO:
            invoice.status = "paid"
        elif invoice.paid_amount > ZERO:
            invoice.status = "partially_paid"
        else:
            invoice.status = "posted"
    # save() derives balance = total - paid_amount
    invoice.save(update_fields=["paid_amount", "status"])
    return invoice


def _recompute_invoices(invoice_ids):
    for invoice in Invoice.objects.select_for_update().filter(pk__in=invoice_ids).order_by("pk"):
        recompute_invoice_payment_state(invoice)


def _drop_allocations(payment):
    invoice_ids = set()
    for allocation in payment.allocations.all():
        invoice_ids.add(allocation.invoice_id)
        allocation.delete()
    return invoice_ids


def _check_invoice(payment, invoice):
    if invoice.party_ref != payment.party_ref:
        raise LedgerValidationError(
            f"Payment {payment.payment_number} is from {payment.party_ref}; "
            f"invoice {invoice.invoice_number} belongs to {invoice.party_ref}."
        )
    if invoice.invoice_type not in ALLOCATABLE_TYPES[payment.payment_type]:
        raise LedgerValidationError(
            f"A {payment.payment_type} cannot settle {invoice.invoice_type} invoice "
            f"{invoice.invoice_number}."
        )
    if invoice.status not in ALLOCATABLE_STATUSES:
        raise InvalidTransitionError(
            f"Invoice {invoice.invoice_number} is {invoice.status}; only posted invoices take payments."
        )


def allocate_payment(payment_id: int, allocations: List[Dict]):
    """
    Spread part (or all) of a payment over invoices.

    ``allocations`` is a list of {"invoice": id, "amount": Decimal}.
    Fails with OverAllocationError if the payment would be over-allocated
    or any invoice would receive more than its outstanding balance.
    Nothing is written unless every allocation fits.
    """
    requested = {}
    for item in allocations:
        invoice = item["invoice"]
        invoice_id = invoice.pk if isinstance(invoice, Invoice) else invoice
        amount = to_money(item["amount"])
        if amount <= ZERO:
            raise LedgerValidationError("Allocation amount must be > 0")
        requested[invoice_id] = requested.get(invoice_id, ZERO) + amount
    if not requested:
        raise LedgerValidationError("Nothing to allocate.")

    with transaction.atomic():
        payment = get_scoped(Payment, payment_id, for_update=True)
        if payment.status == "cancelled":
            raise InvalidTransitionError(f"Payment {payment.payment_number} is cancelled.")

        # Validation: the payment total caps everything allocated from it
        request_total = sum(requested.values(), ZERO)
        if payment.allocated_amount + request_total > payment.amount:
            raise OverAllocationError(
                f"Allocations ({payment.allocated_amount + request_total}) exceed "
                f"payment {payment.payment_number} amount ({payment.amount})."
            )

        # lock invoices in pk order so concurrent allocations can't deadlock
        invoices = list(
            Invoice.objects.select_for_update().filter(pk__in=list(requested)).order_by("pk")
        )
        missing = set(requested) - {inv.pk for inv in invoices}
        if missing:
            raise NotFoundError(f"Invoice {sorted(missing)[0]} not found.")

        for invoice in invoices:
            _check_invoice(payment, invoice)
            amount = requested[invoice.pk]
            if amount > invoice.balance:
                raise OverAllocationError(
                    f"Allocation {amount} exceeds invoice {invoice.invoice_number} "
                    f"outstanding balance {invoice.balance}."
                )

            existing = PaymentAllocation.objects.filter(payment=payment, invoice=invoice).first()
            if existing:
                existing.amount += amount
                existing.save(update_fields=["amount"])
            else:
                PaymentAllocation.objects.create(payment=payment, invoice=invoice, amount=amount)
            recompute_invoice_payment_state(invoice)

        log_action(
            action="allocate",
            instance=payment,
            changes={str(pk): str(amount) for pk, amount in requested.items()},
        )

    logger.info(
        "Payment %s allocated %s over %s invoice(s)",
        payment.payment_number, request_total, len(requested),
        extra={"company_id": payment.company_id, "payment_id": payment.pk},
    )
    return payment


def update_allocation(allocation_id, amount):
    amount = to_money(amount)
    if amount <= ZERO:
        raise LedgerValidationError("Allocation amount must be > 0; remove it instead.")
    with transaction.atomic():
        allocation = get_scoped(PaymentAllocation, allocation_id, for_update=True)
        payment = Payment.objects.select_for_update().get(pk=allocation.payment_id)
        invoice = Invoice.objects.select_for_update().get(pk=allocation.invoice_id)
        if payment.status == "cancelled":
            raise InvalidTransitionError(f"Payment {payment.payment_number} is cancelled.")

        others = payment.allocated_amount - allocation.amount
        if others + amount > payment.amount:
            raise OverAllocationError(
                f"Allocations ({others + amount}) exceed payment "
                f"{payment.payment_number} amount ({payment.amount})."
            )
        if amount > invoice.balance + allocation.amount:
            raise OverAllocationError(
                f"Allocation {amount} exceeds invoice {invoice.invoice_number} "
                f"outstanding balance {invoice.balance + allocation.amount}."
            )
        allocation.amount = amount
        allocation.save(update_fields=["amount"])
        recompute_invoice_payment_state(invoice)
    return allocation


def remove_allocation(allocation_id):
    with transaction.atomic():
        allocation = get_scoped(PaymentAllocation, allocation_id, for_update=True)
        invoice = Invoice.objects.select_for_update().get(pk=allocation.invoice_id)
        allocation.delete()
        recompute_invoice_payment_state(invoice)
    return invoice


def payment_summary(payment_id):
    payment = get_scoped(Payment, payment_id)
    allocated = payment.allocated_amount
    return {
        "payment_number": payment.payment_number,
        "amount": payment.amount,
        "allocated": allocated,
        "unallocated": payment.amount - allocated,
        "allocations": [
            {"invoice_id": a.invoice_id, "invoice_number": a.invoice.invoice_number,
             "amount": a.amount}
            for a in payment.allocations.select_related("invoice")
        ],
    }
