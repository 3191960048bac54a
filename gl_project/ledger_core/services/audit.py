from ..models import AuditLog
from ..tenancy import get_current_actor


def log_action(*, action: str, instance, changes: dict | None = None):
    """
    Record a business event (post, allocate, reverse...) on a row.

    Row-level inserts/updates/deletes are recorded by AuditedModel itself;
    this is for the events that mean more than the field diff shows.
    """
    return AuditLog.objects.create(
        company_id=instance.company_id,
        actor_id=get_current_actor(),
        action=action,
        object_type=instance._meta.db_table,
        object_id=str(instance.pk),
        after=changes,
        changed_fields=sorted(changes or {}),
    )
