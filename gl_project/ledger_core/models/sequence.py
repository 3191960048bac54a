from django.db import models

from .base import TenantModel


class CompanySequence(TenantModel):
    """
    Per-company counters for sequential document numbers
    (AST00001, DEPR00001, GN000001...).

    The row is locked with select_for_update while a number is taken,
    so two concurrent creators can never receive the same value.
    """

    name = models.CharField(max_length=100)
    next_value = models.BigIntegerField(default=1)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"],
                name="uq_company_sequence_name",
            ),
        ]

    def __str__(self):
        return f"{self.company_id}:{self.name}={self.next_value}"
