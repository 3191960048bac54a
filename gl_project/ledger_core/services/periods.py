import calendar
import datetime
import logging

from django.db import transaction

from ..exceptions import NoFiscalPeriodError
from ..models import FiscalPeriod
from .validation import get_scoped

logger = logging.getLogger(__name__)

"""
    Posting date determines the period.
    Changing the date before posting changes the period.
"""


def find_period(date):
    """Period containing ``date`` (closed or not), or None."""
    return FiscalPeriod.objects.filter(start_date__lte=date, end_date__gte=date).first()


def resolve_period(date):
    period = find_period(date)
    if period is None:
        raise NoFiscalPeriodError(f"No fiscal period contains {date}")
    return period


def create_period(*, name, start_date, end_date):
    period = FiscalPeriod.objects.create(name=name, start_date=start_date, end_date=end_date)
    logger.info("Fiscal period %s created", name, extra={"company_id": period.company_id})
    return period


def create_monthly_periods(year: int):
    """Twelve calendar-month periods named YYYY-MM."""
    periods = []
    with transaction.atomic():
        for month in range(1, 13):
            last_day = calendar.monthrange(year, month)[1]
            periods.append(create_period(
                name=f"{year}-{month:02d}",
                start_date=datetime.date(year, month, 1),
                end_date=datetime.date(year, month, last_day),
            ))
    return periods


def close_period(period_id):
    with transaction.atomic():
        period = get_scoped(FiscalPeriod, period_id, for_update=True)
        if not period.is_closed:
            period.is_closed = True
            period.save(update_fields=["is_closed"])
            logger.info("Fiscal period %s closed", period.name, extra={"company_id": period.company_id})
    return period


def reopen_period(period_id):
    with transaction.atomic():
        period = get_scoped(FiscalPeriod, period_id, for_update=True)
        if period.is_closed:
            period.is_closed = False
            period.save(update_fields=["is_closed"])
            logger.info("Fiscal period %s reopened", period.name, extra={"company_id": period.company_id})
    return period
