import logging

from celery import shared_task
from django.db import models, transaction

from .tenancy import tenant_context

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def rebuild_balance_snapshots(company_id):
    """
    Recompute a company's per-day AccountBalanceSnapshot rows from its
    posted journal lines. Repair job; posting keeps snapshots current.
    """
    # import models lazily to avoid circular imports at module import time
    from .models import AccountBalanceSnapshot, JournalLine

    with tenant_context(company_id), transaction.atomic():
        # Wipe out any previous snapshots for this company
        AccountBalanceSnapshot.objects.all().delete()

        # One row per account per posting day
        rows = (
            JournalLine.objects.filter(journal__status="posted")
            .values("account_id", "journal__date")
            .annotate(debit=models.Sum("debit"), credit=models.Sum("credit"))
            .order_by()
        )
        created = AccountBalanceSnapshot.objects.bulk_create([
            AccountBalanceSnapshot(
                account_id=row["account_id"],
                snapshot_date=row["journal__date"],
                debit_balance=row["debit"] or 0,
                credit_balance=row["credit"] or 0,
            )
            for row in rows
        ])

    logger.info(
        "Rebuilt %s balance snapshot(s)", len(created),
        extra={"company_id": company_id},
    )
    return len(created)
