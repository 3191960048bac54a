from decimal import Decimal         # exact decimal arithmetic for money values
from django.core.exceptions import ValidationError
from django.db import models

from .base import AuditedModel


class DepreciationMethod(models.TextChoices):
    """Closed set of methods; services.depreciate dispatches on every member."""

    STRAIGHT_LINE = "straight_line", "Straight line"
    DECLINING_BALANCE = "declining_balance", "Declining balance"
    DOUBLE_DECLINING_BALANCE = "double_declining_balance", "Double declining balance"


class AssetStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    DISPOSED = "disposed", "Disposed"
    SOLD = "sold", "Sold"
    SCRAPPED = "scrapped", "Scrapped"


# ---------- Fixed Assets ----------
class FixedAsset(AuditedModel):  # tracks long-term assets and their depreciation
    # Tenant-scoped code allocated from CompanySequence → AST00001
    asset_code = models.CharField(max_length=20)
    name = models.CharField(max_length=200)
    name_ar = models.CharField(max_length=200, blank=True, default="")
    description = models.TextField(blank=True, default="")
    # Date the asset was bought
    purchase_date = models.DateField()
    # Acquisition cost and what is expected back at the end of its life
    purchase_value = models.DecimalField(max_digits=18, decimal_places=2)
    salvage_value = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Estimated lifespan in years (for depreciation)
    useful_life_years = models.PositiveIntegerField()
    depreciation_method = models.CharField(
        max_length=30,
        choices=DepreciationMethod.choices,
        default=DepreciationMethod.STRAIGHT_LINE,
    )
    # Written only by the depreciation engine
    accumulated_depreciation = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # purchase_value - accumulated_depreciation, kept in step on every save
    net_book_value = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    status = models.CharField(
        max_length=20, choices=AssetStatus.choices, default=AssetStatus.ACTIVE
    )
    # GL account where this asset is capitalized
    asset_account = models.ForeignKey(
        "ledger_core.Account",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="fixed_assets",
    )
    # Filled by dispose / sell / scrap
    disposal_date = models.DateField(null=True, blank=True)
    disposal_amount = models.DecimalField(
        max_digits=18, decimal_places=2, null=True, blank=True
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["company", "status"]),
        ]
        constraints = [
            # Within one company, each asset code is unique
            models.UniqueConstraint(
                fields=["company", "asset_code"], name="uq_fa_company_asset_code"
            )
        ]

    def __str__(self):
        return f"{self.asset_code} {self.name}"

    def clean(self):
        # Ensure account chosen belongs to the same company
        if self.asset_account_id and self.asset_account.company_id != self.company_id:
            raise ValidationError("Account must belong to the same company.")
        # Without a positive number of years, depreciation makes no sense
        if not self.useful_life_years or self.useful_life_years <= 0:
            raise ValidationError("Useful life must be > 0")
        if self.purchase_value < 0 or self.salvage_value < 0:
            raise ValidationError("Purchase and salvage values must be >= 0")
        if self.salvage_value > self.purchase_value:
            raise ValidationError("Salvage value cannot exceed purchase value")

    def save(self, *args, **kwargs):
        # net book value is derived, never set independently
        self.net_book_value = self.purchase_value - self.accumulated_depreciation
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = set(update_fields) | {"net_book_value"}
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
