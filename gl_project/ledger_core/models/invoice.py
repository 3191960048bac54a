from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models

from ..exceptions import ImmutableRecordError
from ..utils import to_money
from .base import AuditedModel

INVOICE_TYPES = [
    ("sales", "Sales"),
    ("purchase", "Purchase"),
    ("sales_return", "Sales return"),
    ("purchase_return", "Purchase return"),
]

# Number prefix per invoice type → SI00001
INVOICE_PREFIXES = {
    "sales": "SI",
    "purchase": "PI",
    "sales_return": "SRN",
    "purchase_return": "PRN",
}

# Types whose party is a customer (receivable side)
SALES_SIDE_TYPES = ("sales", "sales_return")

INV_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("submitted", "Submitted"),
    ("posted", "Posted"),
    ("partially_paid", "Partially paid"),
    ("paid", "Paid"),
    ("cancelled", "Cancelled"),
]
""" Workflow:
    draft → submitted → posted → partially_paid → paid
    draft/submitted/posted (unpaid) → cancelled """

# Fields frozen once the invoice leaves draft
FROZEN_FIELDS = ("invoice_type", "date", "subtotal", "tax_amount", "total")


class Invoice(AuditedModel):  # Sales or purchase invoice, or a return of either
    # human-readable, tenant-scoped (e.g. "SI00001")
    invoice_number = models.CharField(max_length=20)
    invoice_type = models.CharField(max_length=20, choices=INVOICE_TYPES)
    # Customer / vendor reference owned by the caller's party registry
    party_ref = models.CharField(max_length=100)
    date = models.DateField()  # issue date
    due_date = models.DateField(null=True, blank=True)
    description = models.TextField(blank=True, default="")

    status = models.CharField(
        max_length=15, choices=INV_STATUS_CHOICES, default="draft"
    )

    # Sum of line amounts (after line discounts)
    subtotal = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Sum of tax lines
    tax_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Written only by the payment allocation engine
    paid_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # total - paid_amount, recomputed on every save
    balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    journal = models.ForeignKey(
        "ledger_core.JournalEntry",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    posted_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.TextField(blank=True, default="")
    # Last tax-derivation failure, empty when tax transactions are in place
    tax_derivation_error = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["company", "status"]),
            models.Index(fields=["company", "party_ref"]),
        ]

        constraints = [
            # Within one company, each invoice number must be unique
            models.UniqueConstraint(
                fields=["company", "invoice_number"],
                name="uq_invoice_company_number"
            )
        ]

    def __str__(self):
        return f"Inv {self.invoice_number or self.pk}"

    @property
    def is_sales_side(self):
        return self.invoice_type in SALES_SIDE_TYPES

    def recalc_totals(self):
        """ Recompute subtotal / tax / total from lines and tax lines """
        if not self.pk:
            self.subtotal = self.tax_amount = self.total = Decimal("0.00")
            return
        self.subtotal = to_money(
            sum((line.amount for line in self.lines.all()), Decimal("0.00"))
        )
        self.tax_amount = to_money(
            sum((tax.tax_amount for tax in self.taxes.all()), Decimal("0.00"))
        )
        self.total = self.subtotal + self.tax_amount

    def clean(self):
        """ Non-draft invoices keep their amounts """
        if self.pk:
            orig = Invoice._base_manager.filter(pk=self.pk).first()
            if orig and orig.status != "draft":
                changed = [
                    f for f in FROZEN_FIELDS if getattr(orig, f) != getattr(self, f)
                ]
                if changed:
                    raise ImmutableRecordError(
                        f"Cannot modify {changed} on a {orig.status} invoice."
                    )
        if self.paid_amount < 0:
            raise ValidationError("Paid amount cannot be negative.")

    def save(self, *args, **kwargs):
        # balance is derived, never set independently
        self.balance = self.total - self.paid_amount
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = set(update_fields) | {"balance"}
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)


class InvoiceLine(AuditedModel):
    """ One revenue (sales) or expense (purchase) line """

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="lines")
    line_number = models.PositiveIntegerField(default=1)
    # Revenue account for sales, expense account for purchases
    account = models.ForeignKey(
        "ledger_core.Account", on_delete=models.PROTECT, related_name="invoice_lines"
    )
    description = models.CharField(max_length=400, blank=True, default="")
    quantity = models.DecimalField(max_digits=18, decimal_places=4, default=Decimal("1"))
    unit_price = models.DecimalField(max_digits=18, decimal_places=2)
    discount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # quantity * unit_price - discount
    amount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        ordering = ("invoice_id", "line_number")

    def __str__(self):
        return f"{self.invoice_id}/{self.line_number}: {self.amount}"

    def clean(self):
        if self.quantity <= 0:
            raise ValidationError("Quantity must be > 0")
        if self.unit_price < 0 or self.discount < 0:
            raise ValidationError("Unit price and discount must be >= 0")
        if self.amount < 0:
            raise ValidationError("Discount cannot exceed the line value")
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError("InvoiceLine.account must belong to the same company.")

    def save(self, *args, **kwargs):
        self.amount = to_money(self.quantity * self.unit_price - self.discount)
        self.full_clean()
        return super().save(*args, **kwargs)


class InvoiceTax(AuditedModel):
    """ VAT applied to (part of) an invoice """

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="taxes")
    tax_code = models.ForeignKey(
        "ledger_core.TaxCode", on_delete=models.PROTECT, related_name="invoice_taxes"
    )
    # Rate copied from the tax code at invoicing time
    rate = models.DecimalField(max_digits=5, decimal_places=2)
    taxable_amount = models.DecimalField(max_digits=18, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=18, decimal_places=2)

    def __str__(self):
        return f"{self.invoice_id} {self.tax_code_id} {self.rate}%: {self.tax_amount}"

    def clean(self):
        if self.taxable_amount < 0 or self.tax_amount < 0:
            raise ValidationError("Tax amounts must be >= 0")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
