from decimal import Decimal
from django.db import models

from .base import TenantModel


# ---------- Account Balance Snapshot ----------
class AccountBalanceSnapshot(TenantModel):
    """
    Posted debit/credit movement of one account on one day.

    Written in the same transaction as the journal post, so summing the
    snapshots up to a date always equals summing the posted lines.
    tasks.rebuild_balance_snapshots recomputes them from scratch.
    """

    account = models.ForeignKey(
        "ledger_core.Account", on_delete=models.CASCADE, related_name="snapshots"
    )
    # The journal date the movement belongs to
    snapshot_date = models.DateField()
    # Example: Cash might show Debit = 10,000; Credit = 2,500 on 2025-08-31
    debit_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    credit_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    class Meta:
        indexes = [models.Index(fields=["company", "snapshot_date"])]

        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(debit_balance__gte=0) &
                    models.Q(credit_balance__gte=0)
                ),
                name="ab_snap_non_negative_amounts",
            ),
            # Do not store duplicate snapshots for the same account/date
            models.UniqueConstraint(
                fields=["company", "account", "snapshot_date"],
                name="uq_company_account_snapshot_date",
            ),
        ]

    def __str__(self):
        return (
            f"{self.snapshot_date} | {self.account_id}: "
            f"D {self.debit_balance} / C {self.credit_balance}"
        )
