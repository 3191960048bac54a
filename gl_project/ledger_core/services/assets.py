import logging

from django.db import models, transaction

from ..exceptions import (ConflictError, InvalidTransitionError,
                          LedgerValidationError)
from ..models import FixedAsset
from ..models.fixed_asset import AssetStatus, DepreciationMethod
from ..utils import ZERO, to_money
from .sequences import allocate_code
from .validation import get_scoped

logger = logging.getLogger(__name__)

DESCRIPTIVE_FIELDS = ("name", "name_ar", "description", "asset_account")
# Changeable only until the first depreciation run touches the asset
DEPRECIATION_FIELDS = (
    "purchase_date", "purchase_value", "salvage_value",
    "useful_life_years", "depreciation_method",
)


def _check_method(method):
    if method not in DepreciationMethod.values:
        raise LedgerValidationError(f"Unknown depreciation method: {method}")


# ----------------------------
# Fixed Asset workflows
# ----------------------------
def create_asset(*, name, purchase_date, purchase_value, useful_life_years,
                 salvage_value=ZERO, depreciation_method=DepreciationMethod.STRAIGHT_LINE,
                 asset_account=None, name_ar="", description=""):
    """Register an asset; its code comes from the AST sequence."""
    _check_method(depreciation_method)
    with transaction.atomic():
        asset = FixedAsset.objects.create(
            asset_code=allocate_code("AST", existing=(FixedAsset.objects, "asset_code")),
            name=name,
            name_ar=name_ar,
            description=description,
            purchase_date=purchase_date,
            purchase_value=to_money(purchase_value),
            salvage_value=to_money(salvage_value),
            useful_life_years=useful_life_years,
            depreciation_method=depreciation_method,
            asset_account=asset_account,
        )
    logger.info("Asset %s created", asset.asset_code, extra={"company_id": asset.company_id})
    return asset


def update_asset(asset_id, **changes):
    allowed = set(DESCRIPTIVE_FIELDS) | set(DEPRECIATION_FIELDS)
    unknown = set(changes) - allowed
    if unknown:
        raise LedgerValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    if "depreciation_method" in changes:
        _check_method(changes["depreciation_method"])
    with transaction.atomic():
        asset = get_scoped(FixedAsset, asset_id, for_update=True)
        if asset.status != AssetStatus.ACTIVE:
            raise InvalidTransitionError(f"Asset {asset.asset_code} is {asset.status}.")
        touches_depreciation = set(changes) & set(DEPRECIATION_FIELDS)
        if touches_depreciation and asset.accumulated_depreciation != ZERO:
            raise ConflictError(
                f"Asset {asset.asset_code} has been depreciated; "
                f"{', '.join(sorted(touches_depreciation))} can no longer change."
            )
        for field, value in changes.items():
            if field in ("purchase_value", "salvage_value"):
                value = to_money(value)
            setattr(asset, field, value)
        asset.save()
    return asset


def _retire(asset_id, status, date, amount=None):
    with transaction.atomic():
        asset = get_scoped(FixedAsset, asset_id, for_update=True)
        if asset.status != AssetStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Asset {asset.asset_code} is already {asset.status}."
            )
        asset.status = status
        asset.disposal_date = date
        asset.disposal_amount = None if amount is None else to_money(amount)
        asset.save(update_fields=["status", "disposal_date", "disposal_amount"])
    logger.info(
        "Asset %s %s", asset.asset_code, status,
        extra={"company_id": asset.company_id},
    )
    return asset


def dispose_asset(asset_id, date):
    return _retire(asset_id, AssetStatus.DISPOSED, date)


def sell_asset(asset_id, date, sale_amount):
    if to_money(sale_amount) < ZERO:
        raise LedgerValidationError("Sale amount must be >= 0")
    return _retire(asset_id, AssetStatus.SOLD, date, sale_amount)


def scrap_asset(asset_id, date):
    return _retire(asset_id, AssetStatus.SCRAPPED, date, ZERO)


def delete_asset(asset_id):
    with transaction.atomic():
        asset = get_scoped(FixedAsset, asset_id, for_update=True)
        if asset.depreciation_lines.exists():
            raise ConflictError(
                f"Asset {asset.asset_code} appears in depreciation runs and cannot be deleted."
            )
        asset.delete()


def list_assets(*, status=None):
    qs = FixedAsset.objects.all()
    if status:
        qs = qs.filter(status=status)
    return qs.order_by("asset_code")


def asset_summary():
    """Counts and totals over the company's asset register."""
    agg = FixedAsset.objects.aggregate(
        count=models.Count("id"),
        total_cost=models.Sum("purchase_value"),
        total_accumulated=models.Sum("accumulated_depreciation"),
        total_nbv=models.Sum("net_book_value"),
    )
    by_status = dict(
        FixedAsset.objects.values_list("status")
        .annotate(n=models.Count("id"))
        .order_by()
    )
    return {
        "count": agg["count"],
        "total_cost": to_money(agg["total_cost"]),
        "total_accumulated_depreciation": to_money(agg["total_accumulated"]),
        "total_net_book_value": to_money(agg["total_nbv"]),
        "by_status": {status: by_status.get(status, 0) for status in AssetStatus.values},
    }
