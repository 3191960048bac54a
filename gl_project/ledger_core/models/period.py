from django.core.exceptions import ValidationError  # Built-in way to raise validation errors
from django.db import models

from .base import AuditedModel


# ---------- Fiscal period ----------
class FiscalPeriod(AuditedModel):  # A time bucket transactions are grouped and taxed in
    """
    Tenant isolation:
        "Company A" can close July while "Company B" is still open.
    """

    # Human-readable label for the period
    name = models.CharField(max_length=50)  # Example: "2025-07" or "FY2025-01"

    # Define the exact (inclusive) date range of the period
    start_date = models.DateField()
    end_date = models.DateField()

    # When is_closed=True no journal may be created, edited or posted inside it
    is_closed = models.BooleanField(default=False)

    class Meta:
        indexes = [
            models.Index(fields=["company", "start_date"]),
            models.Index(fields=["company", "is_closed"]),
        ]

        # Prevent duplicate period names inside the same company
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_period_name"
            ),
        ]

        # Periods are returned chronologically
        ordering = ("start_date",)

    def __str__(self):
        return self.name

    def contains(self, date):
        return self.start_date <= date <= self.end_date

    def clean(self):
        if self.start_date >= self.end_date:
            raise ValidationError("start_date must be before end_date")

        # a date must never fall into two periods
        overlapping = FiscalPeriod.objects.filter(
            start_date__lte=self.end_date,
            end_date__gte=self.start_date,
        ).exclude(pk=self.pk)
        if overlapping.exists():
            raise ValidationError(
                f"Period {self.name} overlaps {overlapping.first().name}"
            )

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
