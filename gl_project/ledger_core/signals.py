from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .exceptions import ConflictError
from .models import Account, FiscalPeriod, Invoice

"""Accounts are deactivated, never deleted."""


# pre_delete signal auto-fires just before Django deletes a model instance
@receiver(pre_delete, sender=Account)
def prevent_delete_account(sender, instance, **kwargs):
    raise ConflictError(
        f"Account {instance.code} cannot be deleted; deactivate it instead.")


"""Block deletion if the period holds journals."""


@receiver(pre_delete, sender=FiscalPeriod)
def prevent_delete_period_with_journals(sender, instance, **kwargs):
    if instance.journals.exists():
        raise ConflictError(
            f"Cannot delete period {instance.name}: it holds journal entries.")


"""Block invoice deletion if any payments are allocated."""


@receiver(pre_delete, sender=Invoice)
def prevent_delete_invoice_with_allocations(sender, instance, **kwargs):
    if instance.allocations.exists():
        raise ConflictError(
            f"Cannot delete invoice {instance.invoice_number} with allocated payments.")
