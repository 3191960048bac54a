from django.core.exceptions import ValidationError
from django.db import models

from .base import AuditedModel, TenantModel

VAT_TYPES = [
    ("output", "Output VAT"),  # charged on sales
    ("input", "Input VAT"),  # paid on purchases
]

TAX_TRANSACTION_TYPES = [
    ("sales", "Sales"),
    ("purchases", "Purchases"),
]


class TaxCode(AuditedModel):
    code = models.CharField(max_length=20)
    name = models.CharField(max_length=100)
    # Percentage, e.g. 15.00
    rate = models.DecimalField(max_digits=5, decimal_places=2)
    is_active = models.BooleanField(default=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["company", "code"], name="uq_company_tax_code"),
        ]

    def __str__(self):
        return f"{self.code} ({self.rate}%)"

    def clean(self):
        if self.rate < 0 or self.rate > 100:
            raise ValidationError("Tax rate must be between 0 and 100")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


class TaxTransaction(TenantModel):
    """
    VAT ledger entry derived from a posted invoice tax line.
    Regenerated (delete + insert) by services.tax.derive_tax_transactions.
    """

    invoice = models.ForeignKey(
        "ledger_core.Invoice", on_delete=models.CASCADE, related_name="tax_transactions"
    )
    transaction_type = models.CharField(max_length=10, choices=TAX_TRANSACTION_TYPES)
    vat_type = models.CharField(max_length=10, choices=VAT_TYPES)
    tax_code = models.ForeignKey(TaxCode, on_delete=models.PROTECT, related_name="tax_transactions")
    vat_code = models.CharField(max_length=20)
    vat_percentage = models.DecimalField(max_digits=5, decimal_places=2)
    taxable_amount = models.DecimalField(max_digits=18, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=18, decimal_places=2)
    # Invoice date, and the fiscal period that contains it
    date = models.DateField()
    period = models.ForeignKey(
        "ledger_core.FiscalPeriod", on_delete=models.PROTECT, related_name="tax_transactions"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["company", "period", "vat_type"]),
        ]
        ordering = ("date", "id")

    def __str__(self):
        return f"{self.vat_type} {self.vat_code} {self.tax_amount} ({self.date})"
