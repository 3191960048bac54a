from decimal import Decimal
from django.db import models

from ..exceptions import CannotDeletePostedError, ImmutableRecordError
from .base import AuditedModel

RUN_STATUS = [
    ("draft", "Draft"),
    ("calculated", "Calculated"),  # lines computed, assets updated
    ("posted", "Posted"),  # journal created, frozen
]


class DepreciationRun(AuditedModel):
    """One monthly depreciation pass over a set of assets."""

    # Tenant-scoped number → DEPR00001
    run_number = models.CharField(max_length=20)
    run_date = models.DateField()
    # First and last day of the month being depreciated
    period_start = models.DateField()
    period_end = models.DateField()
    status = models.CharField(max_length=12, choices=RUN_STATUS, default="draft")
    total_depreciation = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    asset_count = models.PositiveIntegerField(default=0)
    description = models.TextField(blank=True, default="")
    # Set when posted
    journal = models.ForeignKey(
        "ledger_core.JournalEntry",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="depreciation_runs",
    )
    posted_at = models.DateTimeField(null=True, blank=True)
    created_by = models.CharField(max_length=150, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["company", "run_number"], name="uq_depr_company_run_number"
            )
        ]
        ordering = ("-run_date", "-id")

    def __str__(self):
        return f"{self.run_number} {self.period_start:%Y-%m} [{self.status}]"

    def save(self, *args, **kwargs):
        if self.pk:
            orig = DepreciationRun._base_manager.filter(pk=self.pk).first()
            if orig and orig.status == "posted":
                raise ImmutableRecordError("A posted depreciation run cannot be changed.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.status == "posted":
            raise CannotDeletePostedError("Cannot delete a posted depreciation run.")
        for line in self.lines.all():
            line.delete()
        return super().delete(*args, **kwargs)


class DepreciationLine(AuditedModel):
    """Depreciation of one asset inside a run, with before/after values."""

    run = models.ForeignKey(
        DepreciationRun, on_delete=models.CASCADE, related_name="lines"
    )
    line_number = models.PositiveIntegerField(default=1)
    asset = models.ForeignKey(
        "ledger_core.FixedAsset",
        on_delete=models.PROTECT,
        related_name="depreciation_lines",
    )
    depreciation_amount = models.DecimalField(max_digits=18, decimal_places=2)
    accumulated_before = models.DecimalField(max_digits=18, decimal_places=2)
    accumulated_after = models.DecimalField(max_digits=18, decimal_places=2)
    nbv_before = models.DecimalField(max_digits=18, decimal_places=2)
    nbv_after = models.DecimalField(max_digits=18, decimal_places=2)
    # Asset status before this line was applied (restored on run delete)
    status_before = models.CharField(max_length=20, default="active")

    class Meta:
        ordering = ("run_id", "line_number")

    def __str__(self):
        return f"{self.run_id}/{self.line_number} asset {self.asset_id}: {self.depreciation_amount}"
