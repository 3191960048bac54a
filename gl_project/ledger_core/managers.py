from django.db import models

from .exceptions import NotFoundError
from .tenancy import get_current_company_id


# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
class TenantQuerySet(models.QuerySet):

    def active(self):
        # only fetch active records (accounts, tax codes)
        return self.filter(is_active=True)

    def bulk_create(self, objs, *args, **kwargs):
        # bulk_create skips save(), so stamp/verify the tenant here
        objs = list(objs)
        company_id = get_current_company_id()
        for obj in objs:
            if obj.company_id is None:
                obj.company_id = company_id
            elif obj.company_id != company_id:
                raise NotFoundError(f"{obj.__class__.__name__} not found.")
        return super().bulk_create(objs, *args, **kwargs)


class TenantManager(models.Manager.from_queryset(TenantQuerySet)):
    """
    Default manager of every tenant-owned model.

    Every queryset is filtered to the company bound in the tenant context,
    so rows of another company look exactly like rows that do not exist.
    Related managers (journal.lines, run.lines...) inherit the filter.
    Querying with nothing bound raises TenantContextMissing.
    """

    def get_queryset(self):
        return super().get_queryset().filter(company_id=get_current_company_id())
