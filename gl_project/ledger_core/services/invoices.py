import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from ..conf import ledger_setting
from ..exceptions import (AlreadyPostedError, ConflictError,
                          InvalidTransitionError, LedgerError,
                          LedgerValidationError)
from ..models import Invoice, InvoiceLine, InvoiceTax, TaxCode
from ..models.invoice import INVOICE_PREFIXES
from ..utils import ZERO, to_money
from .accounts import get_default_account
from .audit import log_action
from .journals import create_and_post_journal, reverse_journal
from .sequences import allocate_code
from .tax import derive_tax_transactions
from .validation import get_scoped, resolve_posting_account

logger = logging.getLogger(__name__)

POSTED_STATUSES = ("posted", "partially_paid", "paid")


def _write_lines(invoice, lines):
    lines = list(lines or [])
    if not lines:
        raise LedgerValidationError("An invoice needs at least one line.")
    for no, line in enumerate(lines, start=1):
        InvoiceLine.objects.create(
            invoice=invoice,
            line_number=no,
            account=resolve_posting_account(line.get("account"), no),
            description=line.get("description") or "",
            quantity=Decimal(str(line.get("quantity", 1))),
            unit_price=to_money(line.get("unit_price")),
            discount=to_money(line.get("discount")),
        )


def _write_taxes(invoice, taxes):
    """
    Each tax item names a ``tax_code`` (TaxCode or pk); taxable_amount
    defaults to the invoice subtotal, tax_amount to taxable × rate / 100.
    """
    subtotal = sum((line.amount for line in invoice.lines.all()), ZERO)
    for item in taxes or ():
        code = item["tax_code"]
        pk = code.pk if isinstance(code, TaxCode) else code
        tax_code = TaxCode.objects.filter(pk=pk, is_active=True).first()
        if tax_code is None:
            raise LedgerValidationError(f"Tax code {pk} does not exist or is inactive.")
        taxable = to_money(item.get("taxable_amount", subtotal))
        tax_amount = item.get("tax_amount")
        if tax_amount is None:
            tax_amount = taxable * tax_code.rate / Decimal("100")
        InvoiceTax.objects.create(
            invoice=invoice,
            tax_code=tax_code,
            rate=tax_code.rate,
            taxable_amount=taxable,
            tax_amount=to_money(tax_amount),
        )


def _refresh_totals(invoice):
    invoice.recalc_totals()
    invoice.save(update_fields=["subtotal", "tax_amount", "total"])


# ----------------------------
# Invoice workflows
# ----------------------------
def create_invoice(*, invoice_type, party_ref, date, lines, taxes=(),
                   due_date=None, description=""):
    """
    Create a draft invoice with its lines and tax lines.

    ``lines`` are dicts with account, unit_price and optional quantity,
    discount, description. Totals are computed, never passed in.
    """
    if invoice_type not in INVOICE_PREFIXES:
        raise LedgerValidationError(f"Unknown invoice type: {invoice_type}")
    with transaction.atomic():
        invoice = Invoice.objects.create(
            invoice_number=allocate_code(
                INVOICE_PREFIXES[invoice_type],
                existing=(Invoice.objects, "invoice_number"),
            ),
            invoice_type=invoice_type,
            party_ref=party_ref,
            date=date,
            due_date=due_date,
            description=description,
        )
        _write_lines(invoice, lines)
        _write_taxes(invoice, taxes)
        _refresh_totals(invoice)
    logger.info(
        "Invoice %s created, total %s", invoice.invoice_number, invoice.total,
        extra={"company_id": invoice.company_id, "invoice_id": invoice.pk},
    )
    return invoice


def update_invoice(invoice_id, *, lines=None, taxes=None, **fields):
    """Edit a draft invoice. Passing ``lines`` or ``taxes`` replaces them."""
    allowed = {"party_ref", "date", "due_date", "description"}
    unknown = set(fields) - allowed
    if unknown:
        raise LedgerValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    with transaction.atomic():
        invoice = get_scoped(Invoice, invoice_id, for_update=True)
        if invoice.status != "draft":
            raise InvalidTransitionError(f"Only draft invoices can be edited ({invoice.status}).")
        for field, value in fields.items():
            setattr(invoice, field, value)
        if fields:
            invoice.save()
        if lines is not None:
            for line in invoice.lines.all():
                line.delete()
            _write_lines(invoice, lines)
        if lines is not None or taxes is not None:
            existing_taxes = list(invoice.taxes.all())
            if taxes is None:
                # keep codes, re-derive amounts from the new subtotal
                taxes = [{"tax_code": t.tax_code_id} for t in existing_taxes]
            for tax in existing_taxes:
                tax.delete()
            _write_taxes(invoice, taxes)
        _refresh_totals(invoice)
    return invoice


def submit_invoice(invoice_id):
    with transaction.atomic():
        invoice = get_scoped(Invoice, invoice_id, for_update=True)
        if invoice.status != "draft":
            raise InvalidTransitionError(f"Cannot submit a {invoice.status} invoice.")
        if invoice.total <= ZERO:
            raise LedgerValidationError("Invoice total must be > 0")
        invoice.status = "submitted"
        invoice.save(update_fields=["status"])
    return invoice


def build_invoice_journal_lines(invoice):
    """
    Journal lines for an invoice, one per account.

    sales:    Dr receivable          / Cr revenue lines, Cr tax payable
    purchase: Dr expense lines, Dr tax recoverable / Cr payable
    Returns swap every side of their base type.
    """
    is_return = invoice.invoice_type.endswith("_return")
    if invoice.is_sales_side:
        control = get_default_account("receivable")
        tax_role = "tax_payable"
    else:
        control = get_default_account("payable")
        tax_role = "tax_recoverable"
    # sales debit the control account, purchases credit it
    control_side = "debit" if invoice.is_sales_side != is_return else "credit"
    other_side = "credit" if control_side == "debit" else "debit"

    grouped = {}
    for line in invoice.lines.select_related("account").order_by("line_number"):
        if line.amount > ZERO:
            account, amount = grouped.get(line.account_id, (line.account, ZERO))
            grouped[line.account_id] = (account, amount + line.amount)
    if invoice.tax_amount > ZERO:
        tax_account = get_default_account(tax_role)
        account, amount = grouped.get(tax_account.pk, (tax_account, ZERO))
        grouped[tax_account.pk] = (account, amount + invoice.tax_amount)

    memo = f"{invoice.get_invoice_type_display()} {invoice.invoice_number}"
    lines = [{"account": control, control_side: invoice.total, "description": memo,
              "reference": invoice.party_ref}]
    for account, amount in grouped.values():
        lines.append({"account": account, other_side: amount, "description": memo})
    return lines


def post_invoice(invoice_id):
    """
    Post the invoice's journal, then derive its tax transactions.

    A tax derivation failure rolls the posting back only when
    LEDGER["STRICT_TAX_DERIVATION"] is set; otherwise the invoice stays
    posted and the failure is kept in ``tax_derivation_error``.
    """
    with transaction.atomic():
        invoice = get_scoped(Invoice, invoice_id, for_update=True)
        if invoice.status in POSTED_STATUSES:
            raise AlreadyPostedError(f"Invoice {invoice.invoice_number} is already posted.")
        if invoice.status not in ("draft", "submitted"):
            raise InvalidTransitionError(f"Cannot post a {invoice.status} invoice.")
        if invoice.total <= ZERO:
            raise LedgerValidationError("Invoice total must be > 0")

        je = create_and_post_journal(
            date=invoice.date,
            journal_type=invoice.invoice_type,
            description=invoice.description or f"Invoice {invoice.invoice_number}",
            reference=invoice.invoice_number,
            source=invoice,
            lines=build_invoice_journal_lines(invoice),
        )
        invoice.journal = je
        invoice.status = "posted"
        invoice.posted_at = timezone.now()
        invoice.tax_derivation_error = ""
        invoice.save(update_fields=["journal", "status", "posted_at", "tax_derivation_error"])

        _derive_taxes_on_post(invoice)

    logger.info(
        "Invoice %s posted as %s", invoice.invoice_number, je.journal_number,
        extra={"company_id": invoice.company_id, "invoice_id": invoice.pk},
    )
    return invoice


def _derive_taxes_on_post(invoice):
    try:
        # savepoint: a failure must not poison the posting transaction
        with transaction.atomic():
            derive_tax_transactions(invoice)
    except LedgerError as exc:
        if ledger_setting("STRICT_TAX_DERIVATION"):
            raise
        logger.warning(
            "Tax derivation failed for invoice %s: %s", invoice.invoice_number, exc,
            extra={"company_id": invoice.company_id, "invoice_id": invoice.pk},
        )
        invoice.tax_derivation_error = str(exc)
        invoice.save(update_fields=["tax_derivation_error"])
        log_action(
            action="tax_derivation_failed",
            instance=invoice,
            changes={"error": str(exc)},
        )


def cancel_invoice(invoice_id, reason=""):
    """
    Draft/submitted invoices are simply cancelled. A posted invoice with no
    allocations is cancelled through a reversal journal and loses its tax
    transactions. Anything paid must have its allocations removed first.
    """
    with transaction.atomic():
        invoice = get_scoped(Invoice, invoice_id, for_update=True)
        if invoice.status == "cancelled":
            raise InvalidTransitionError(f"Invoice {invoice.invoice_number} is already cancelled.")
        if invoice.status in POSTED_STATUSES:
            if invoice.allocations.exists():
                raise ConflictError(
                    f"Invoice {invoice.invoice_number} has payment allocations; remove them first."
                )
            reverse_journal(
                invoice.journal_id,
                reason=reason or f"Cancellation of {invoice.invoice_number}",
            )
            invoice.tax_transactions.all().delete()
        invoice.status = "cancelled"
        invoice.cancelled_at = timezone.now()
        invoice.cancel_reason = reason or ""
        invoice.save(update_fields=["status", "cancelled_at", "cancel_reason"])
        log_action(action="cancel", instance=invoice, changes={"reason": reason})
    return invoice


def delete_invoice(invoice_id):
    with transaction.atomic():
        invoice = get_scoped(Invoice, invoice_id, for_update=True)
        if invoice.status != "draft":
            raise InvalidTransitionError(f"Only draft invoices can be deleted ({invoice.status}).")
        for tax in invoice.taxes.all():
            tax.delete()
        for line in invoice.lines.all():
            line.delete()
        invoice.delete()


def list_invoices(*, invoice_type=None, status=None, party_ref=None):
    qs = Invoice.objects.all()
    if invoice_type:
        qs = qs.filter(invoice_type=invoice_type)
    if status:
        qs = qs.filter(status=status)
    if party_ref:
        qs = qs.filter(party_ref=party_ref)
    return qs.order_by("date", "invoice_number")
