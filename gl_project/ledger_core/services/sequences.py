import logging

from django.db import IntegrityError, transaction

from ..conf import ledger_setting
from ..models import CompanySequence

logger = logging.getLogger(__name__)


def _highest_existing(prefix, existing):
    """Largest numeric suffix among codes already stored with this prefix."""
    queryset, field = existing
    highest = 0
    codes = queryset.filter(**{f"{field}__startswith": prefix}).values_list(field, flat=True)
    for code in codes:
        suffix = code[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return highest


def next_sequence_value(name: str, existing=None) -> int:
    """
    Allocate the next value of the company's ``name`` counter.

    The counter row is locked with select_for_update, so concurrent callers
    queue on it instead of reading the same "last number". The first call
    seeds the counter from the highest code already stored (``existing`` is
    a (queryset, field) pair) so imported documents are not re-numbered.
    """
    with transaction.atomic():
        try:
            seq = CompanySequence.objects.select_for_update().get(name=name)
        except CompanySequence.DoesNotExist:
            start = _highest_existing(name, existing) + 1 if existing else 1
            try:
                # savepoint: a concurrent creator may win the insert
                with transaction.atomic():
                    seq = CompanySequence.objects.create(name=name, next_value=start)
            except IntegrityError:
                seq = CompanySequence.objects.select_for_update().get(name=name)

        value = seq.next_value
        seq.next_value = value + 1
        seq.save(update_fields=["next_value", "updated_at"])
        return value


def allocate_code(prefix: str, width: int | None = None, existing=None) -> str:
    """Next document code for ``prefix``, e.g. allocate_code("AST") → "AST00001"."""
    width = width or ledger_setting("DEFAULT_SEQUENCE_WIDTH")
    value = next_sequence_value(prefix, existing=existing)
    code = f"{prefix}{value:0{width}d}"
    logger.debug("Allocated %s", code)
    return code
