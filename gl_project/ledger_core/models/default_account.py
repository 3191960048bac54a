from django.core.exceptions import ValidationError
from django.db import models

from .base import AuditedModel

# Accounts the engines post to without being told explicitly
DEFAULT_ACCOUNT_ROLES = [
    ("receivable", "Accounts receivable"),
    ("payable", "Accounts payable"),
    ("bank", "Bank / cash"),
    ("sales_revenue", "Sales revenue"),
    ("purchase_expense", "Purchases expense"),
    ("tax_payable", "Output VAT payable"),
    ("tax_recoverable", "Input VAT recoverable"),
    ("depreciation_expense", "Depreciation expense"),
    ("accumulated_depreciation", "Accumulated depreciation"),
]


class DefaultAccount(AuditedModel):
    """Which account a company uses for each auto-posting role."""

    role = models.CharField(max_length=40, choices=DEFAULT_ACCOUNT_ROLES)
    account = models.ForeignKey(
        "ledger_core.Account", on_delete=models.PROTECT, related_name="default_roles"
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["company", "role"], name="uq_company_default_role"
            ),
        ]

    def __str__(self):
        return f"{self.role} → {self.account_id}"

    def clean(self):
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError("Account must belong to the same company.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
