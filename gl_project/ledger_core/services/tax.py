import logging

from django.db import models, transaction

from ..exceptions import DuplicateCodeError, InvalidTransitionError
from ..models import FiscalPeriod, Invoice, TaxCode, TaxTransaction
from ..utils import to_money
from .periods import resolve_period
from .validation import get_scoped

logger = logging.getLogger(__name__)

# Invoice statuses that carry tax transactions
TAXED_STATUSES = ("posted", "partially_paid", "paid")


def create_tax_code(*, code, name, rate):
    if TaxCode.objects.filter(code=code).exists():
        raise DuplicateCodeError(f"Tax code {code} already exists.")
    return TaxCode.objects.create(code=code, name=name, rate=to_money(rate))


def derive_tax_transactions(invoice):
    """
    Regenerate the VAT ledger rows of one posted invoice.

    Prior rows of the invoice are deleted first, so calling this again
    yields the same set. Rows are bucketed into the fiscal period that
    contains the invoice date (NoFiscalPeriodError if none does).
    Returns carry negative amounts so they net against the original sales
    or purchases in vat_summary().
    """
    with transaction.atomic():
        TaxTransaction.objects.filter(invoice=invoice).delete()
        period = resolve_period(invoice.date)

        sign = -1 if invoice.invoice_type.endswith("_return") else 1
        if invoice.is_sales_side:
            transaction_type, vat_type = "sales", "output"
        else:
            transaction_type, vat_type = "purchases", "input"

        rows = [
            TaxTransaction(
                invoice=invoice,
                transaction_type=transaction_type,
                vat_type=vat_type,
                tax_code=tax.tax_code,
                vat_code=tax.tax_code.code,
                vat_percentage=tax.rate,
                taxable_amount=sign * tax.taxable_amount,
                tax_amount=sign * tax.tax_amount,
                date=invoice.date,
                period=period,
            )
            for tax in invoice.taxes.select_related("tax_code").order_by("id")
        ]
        created = TaxTransaction.objects.bulk_create(rows)

    logger.debug(
        "Derived %s tax transaction(s) for invoice %s", len(created), invoice.invoice_number,
        extra={"company_id": invoice.company_id, "invoice_id": invoice.pk},
    )
    return created


def rederive_tax_transactions(invoice_id):
    """Retry derivation for an invoice whose earlier attempt failed."""
    with transaction.atomic():
        invoice = get_scoped(Invoice, invoice_id, for_update=True)
        if invoice.status not in TAXED_STATUSES:
            raise InvalidTransitionError(
                f"Invoice {invoice.invoice_number} is {invoice.status}; only posted invoices carry tax."
            )
        created = derive_tax_transactions(invoice)
        if invoice.tax_derivation_error:
            invoice.tax_derivation_error = ""
            invoice.save(update_fields=["tax_derivation_error"])
    return created


def vat_summary(period_id):
    """Output VAT, input VAT and the net payable for one fiscal period."""
    period = get_scoped(FiscalPeriod, period_id)
    totals = dict(
        TaxTransaction.objects.filter(period=period)
        .values_list("vat_type")
        .annotate(total=models.Sum("tax_amount"))
        .order_by()
    )
    output_vat = to_money(totals.get("output"))
    input_vat = to_money(totals.get("input"))
    return {
        "period": period.name,
        "output_vat": output_vat,
        "input_vat": input_vat,
        "net_vat_payable": output_vat - input_vat,
    }
