import calendar
import datetime
import logging
from decimal import Decimal

from django.core.exceptions import ImproperlyConfigured
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from ..exceptions import (AlreadyPostedError, CannotDeletePostedError,
                          InvalidTransitionError, NoEligibleAssetsError)
from ..models import DepreciationLine, DepreciationRun, FixedAsset
from ..models.fixed_asset import AssetStatus, DepreciationMethod
from ..tenancy import get_current_actor
from ..utils import ZERO, to_money
from .accounts import get_default_account
from .audit import log_action
from .journals import create_and_post_journal
from .sequences import allocate_code
from .validation import get_scoped

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = Decimal("12")


# ----------------------------
# Monthly amount per method
# ----------------------------
def _straight_line(asset):
    depreciable = asset.purchase_value - asset.salvage_value
    return depreciable / Decimal(asset.useful_life_years) / MONTHS_PER_YEAR


def _declining(asset):
    # one rate (2 / life) for both declining methods
    rate = Decimal("2") / Decimal(asset.useful_life_years)
    remaining = asset.purchase_value - asset.accumulated_depreciation
    return remaining * rate / MONTHS_PER_YEAR


MONTHLY_CALCULATORS = {
    DepreciationMethod.STRAIGHT_LINE: _straight_line,
    DepreciationMethod.DECLINING_BALANCE: _declining,
    DepreciationMethod.DOUBLE_DECLINING_BALANCE: _declining,
}

_uncovered = set(DepreciationMethod) - set(MONTHLY_CALCULATORS)
if _uncovered:
    raise ImproperlyConfigured(
        f"No depreciation calculator for: {', '.join(sorted(_uncovered))}"
    )


def monthly_depreciation(asset) -> Decimal:
    """
    One month of depreciation for ``asset``, rounded half up to cents.
    Never takes the net book value below the salvage value.
    """
    calculator = MONTHLY_CALCULATORS[DepreciationMethod(asset.depreciation_method)]
    amount = to_money(calculator(asset))
    headroom = to_money(
        asset.purchase_value - asset.accumulated_depreciation - asset.salvage_value
    )
    return max(min(amount, headroom), ZERO)


def month_bounds(as_of_date):
    last_day = calendar.monthrange(as_of_date.year, as_of_date.month)[1]
    return (
        as_of_date.replace(day=1),
        datetime.date(as_of_date.year, as_of_date.month, last_day),
    )


# ----------------------------
# Depreciation runs
# ----------------------------
def calculate_depreciation(as_of_date, asset_ids=None, description=""):
    """
    Depreciate every eligible asset for the month containing ``as_of_date``.

    Eligible: active, bought on or before the month end, still above its
    salvage value and with a monthly amount of at least one cent. Writes one
    line per asset, moves the assets' accumulated depreciation forward and
    returns the run in status "calculated".
    """
    period_start, period_end = month_bounds(as_of_date)

    with transaction.atomic():
        assets = (
            FixedAsset.objects.select_for_update()
            .filter(
                status=AssetStatus.ACTIVE,
                purchase_date__lte=period_end,
                net_book_value__gt=F("salvage_value"),
            )
            .order_by("asset_code")
        )
        if asset_ids is not None:
            assets = assets.filter(pk__in=list(asset_ids))
        # assets whose month rounds to 0.00 get no line
        charges = [(asset, monthly_depreciation(asset)) for asset in assets]
        charges = [(asset, amount) for asset, amount in charges if amount > ZERO]
        if not charges:
            raise NoEligibleAssetsError(
                f"No assets eligible for depreciation in {period_start:%Y-%m}."
            )

        run = DepreciationRun.objects.create(
            run_number=allocate_code("DEPR", existing=(DepreciationRun.objects, "run_number")),
            run_date=as_of_date,
            period_start=period_start,
            period_end=period_end,
            description=description or f"Depreciation {period_start:%Y-%m}",
            created_by=get_current_actor(),
        )

        total = ZERO
        for no, (asset, amount) in enumerate(charges, start=1):
            accumulated_before = asset.accumulated_depreciation
            nbv_before = asset.purchase_value - accumulated_before
            status_before = asset.status

            asset.accumulated_depreciation = accumulated_before + amount
            nbv_after = asset.purchase_value - asset.accumulated_depreciation
            if nbv_after <= asset.salvage_value:
                asset.status = AssetStatus.DISPOSED
            asset.save(update_fields=["accumulated_depreciation", "status"])

            DepreciationLine.objects.create(
                run=run,
                line_number=no,
                asset=asset,
                depreciation_amount=amount,
                accumulated_before=accumulated_before,
                accumulated_after=asset.accumulated_depreciation,
                nbv_before=nbv_before,
                nbv_after=nbv_after,
                status_before=status_before,
            )
            total += amount

        run.total_depreciation = to_money(total)
        run.asset_count = len(charges)
        run.status = "calculated"
        run.save(update_fields=["total_depreciation", "asset_count", "status"])

    logger.info(
        "Depreciation run %s calculated: %s assets, total %s",
        run.run_number, run.asset_count, run.total_depreciation,
        extra={"company_id": run.company_id, "run_id": run.pk},
    )
    return run


def post_depreciation_to_journal(run_id):
    """
    Dr depreciation expense / Cr accumulated depreciation for the run total,
    dated at the end of the depreciated month.
    """
    with transaction.atomic():
        run = get_scoped(DepreciationRun, run_id, for_update=True)
        if run.status == "posted":
            raise AlreadyPostedError(f"Depreciation run {run.run_number} is already posted.")
        if run.status != "calculated":
            raise InvalidTransitionError(
                f"Depreciation run {run.run_number} has not been calculated."
            )

        expense = get_default_account("depreciation_expense")
        accumulated = get_default_account("accumulated_depreciation")
        memo = f"Depreciation {run.run_number}"
        je = create_and_post_journal(
            date=run.period_end,
            journal_type="depreciation",
            description=run.description or memo,
            reference=run.run_number,
            source=run,
            lines=[
                {"account": expense, "debit": run.total_depreciation, "description": memo},
                {"account": accumulated, "credit": run.total_depreciation, "description": memo},
            ],
        )

        run.journal = je
        run.status = "posted"
        run.posted_at = timezone.now()
        run.save(update_fields=["journal", "status", "posted_at"])
        log_action(
            action="depreciate",
            instance=run,
            changes={"journal_id": je.pk, "total": str(run.total_depreciation)},
        )

    logger.info(
        "Depreciation run %s posted as %s", run.run_number, je.journal_number,
        extra={"company_id": run.company_id, "run_id": run.pk},
    )
    return run


def delete_depreciation_run(run_id):
    """
    Delete a draft or calculated run and hand its amounts back to the assets.
    """
    with transaction.atomic():
        run = get_scoped(DepreciationRun, run_id, for_update=True)
        if run.status == "posted":
            raise CannotDeletePostedError(
                f"Depreciation run {run.run_number} is posted and cannot be deleted."
            )
        for line in run.lines.select_related("asset").order_by("-line_number"):
            asset = FixedAsset.objects.select_for_update().get(pk=line.asset_id)
            asset.accumulated_depreciation -= line.depreciation_amount
            # only undo the disposal this run caused
            if asset.status == AssetStatus.DISPOSED and asset.disposal_date is None:
                asset.status = line.status_before
            asset.save(update_fields=["accumulated_depreciation", "status"])
        run_number = run.run_number
        run.delete()

    logger.info("Depreciation run %s deleted", run_number)


def list_depreciation_runs(*, status=None):
    qs = DepreciationRun.objects.all()
    if status:
        qs = qs.filter(status=status)
    return qs
