from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from ..exceptions import ImmutableRecordError
from ..tenancy import get_current_actor
from .base import TenantModel

AUDIT_ACTIONS = [
    # row-level changes written by AuditedModel
    ("insert", "Insert"),
    ("update", "Update"),
    ("delete", "Delete"),
    # business events written by services.audit.log_action
    ("post", "Post"),
    ("cancel", "Cancel"),
    ("reverse", "Reverse"),
    ("allocate", "Allocate"),
    ("depreciate", "Depreciate"),
    ("tax_derivation_failed", "Tax derivation failed"),
]


# ---------- Audit / Event log ----------
class AuditLog(TenantModel):
    """
    Append-only trail of every change to a protected row.
    Rows can be created, never updated or deleted.
    """

    # User id from the tenant context (None for system jobs)
    actor_id = models.CharField(max_length=150, null=True, blank=True)
    # insert / update / delete, or a business event such as post
    action = models.CharField(max_length=50, choices=AUDIT_ACTIONS)
    # Table of the affected row (e.g. "ledger_core_journalentry")
    object_type = models.CharField(max_length=100)
    # The primary key of the affected row
    object_id = models.CharField(max_length=100)
    # Row state before and after the change (None on insert / delete)
    before = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    after = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    changed_fields = models.JSONField(default=list, blank=True)
    # Timestamp when the event was logged
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["company", "object_type", "object_id"]),
            models.Index(fields=["company", "created_at"]),
        ]
        ordering = ("created_at", "id")

    def __str__(self):
        time = self.created_at
        return f"[{time:%Y-%m-%d %H:%M}] {self.actor_id} {self.action} {self.object_type}({self.object_id})"

    @classmethod
    def record(cls, instance, action, before=None, after=None, record_id=None):
        """Write one audit row for ``instance``. Unchanged updates are skipped."""
        before_d = before or {}
        after_d = after or {}
        changed = sorted(
            key
            for key in set(before_d) | set(after_d)
            if before_d.get(key) != after_d.get(key)
        )
        if action == "update" and not changed:
            return None
        return cls.objects.create(
            company_id=instance.company_id,
            actor_id=get_current_actor(),
            action=action,
            object_type=instance._meta.db_table,
            object_id=str(record_id if record_id is not None else instance.pk),
            before=before,
            after=after,
            changed_fields=changed,
        )

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ImmutableRecordError("Audit records cannot be modified.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError("Audit records cannot be deleted.")
