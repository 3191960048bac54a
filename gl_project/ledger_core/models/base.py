from django.db import models, transaction
from django.forms.models import model_to_dict

from ..exceptions import NotFoundError
from ..managers import TenantManager
from ..tenancy import get_current_company_id


# ---------- Tenant-owned rows ----------
class TenantModel(models.Model):
    """
    Base for every row that belongs to a company.

    Reads go through TenantManager (filtered by the bound tenant).
    Writes stamp the bound company on new rows and refuse rows of
    another company as if they did not exist.
    """

    company = models.ForeignKey("ledger_core.Company", on_delete=models.CASCADE)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        abstract = True

    def _stamp_company(self):
        company_id = get_current_company_id()
        if self.company_id is None:
            self.company_id = company_id
        elif self.company_id != company_id:
            raise NotFoundError(f"{self.__class__.__name__} not found.")

    def full_clean(self, *args, **kwargs):
        # company must be known before field validation runs
        self._stamp_company()
        return super().full_clean(*args, **kwargs)

    def save(self, *args, **kwargs):
        self._stamp_company()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        self._stamp_company()
        return super().delete(*args, **kwargs)


# ---------- Audited rows ----------
class AuditedModel(TenantModel):
    """
    Tenant-owned row whose every insert/update/delete is written to AuditLog
    inside the same transaction as the change itself.

    Before/after snapshots are read back from the database so that
    unsaved in-memory values (e.g. Decimal("5") vs Decimal("5.00"))
    don't show up as spurious changes.
    """

    # Fields left out of snapshots
    audit_exclude = ("created_at", "updated_at")

    class Meta:
        abstract = True

    def _db_snapshot(self):
        if self.pk is None:
            return None
        row = type(self)._base_manager.filter(pk=self.pk).first()
        if row is None:
            return None
        return model_to_dict(row, exclude=self.audit_exclude)

    def save(self, *args, **kwargs):
        from .auditlog import AuditLog

        with transaction.atomic():
            before = self._db_snapshot()
            super().save(*args, **kwargs)
            after = self._db_snapshot()
            AuditLog.record(
                self,
                "insert" if before is None else "update",
                before=before,
                after=after,
            )

    def delete(self, *args, **kwargs):
        from .auditlog import AuditLog

        with transaction.atomic():
            record_id = self.pk
            before = self._db_snapshot()
            result = super().delete(*args, **kwargs)
            AuditLog.record(
                self, "delete", before=before, after=None, record_id=record_id
            )
        return result
