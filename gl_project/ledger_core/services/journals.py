import logging

from django.db import transaction
from django.db.models import F

from ..conf import ledger_setting
from ..exceptions import (ConflictError, InvalidTransitionError,
                          LedgerValidationError, PeriodClosedError)
from ..models import AccountBalanceSnapshot, JournalEntry, JournalLine
from ..models.journal import JOURNAL_PREFIXES
from ..tenancy import get_current_actor
from .audit import log_action
from .periods import find_period
from .sequences import allocate_code
from .validation import get_scoped, validate_journal_lines

logger = logging.getLogger(__name__)


def _allocate_journal_number(journal_type):
    prefix = JOURNAL_PREFIXES[journal_type]
    return allocate_code(
        prefix,
        width=ledger_setting("JOURNAL_SEQUENCE_WIDTH"),
        existing=(JournalEntry.objects, "journal_number"),
    )


def _open_period_for(date):
    period = find_period(date)
    if period is not None and period.is_closed:
        raise PeriodClosedError(f"Period {period.name} is closed")
    return period


def _write_lines(journal, lines):
    for no, line in enumerate(lines, start=1):
        JournalLine.objects.create(
            journal=journal,
            line_number=no,
            account=line["account"],
            debit=line["debit"],
            credit=line["credit"],
            description=line["description"],
            reference=line["reference"],
        )


# ----------------------------
# Journal-related workflows
# ----------------------------
def create_draft_journal(*, date, lines, description="", journal_type="general",
                         reference="", source=None, reversal_of=None):
    """
    Validate a set of lines and store them as a draft journal.

    ``source`` is the business document the journal came from (invoice,
    payment, depreciation run) and is recorded as source_type/source_id.
    """
    if journal_type not in JOURNAL_PREFIXES:
        raise LedgerValidationError(f"Unknown journal type: {journal_type}")
    normalized = validate_journal_lines(lines)
    with transaction.atomic():
        period = _open_period_for(date)
        je = JournalEntry.objects.create(
            journal_number=_allocate_journal_number(journal_type),
            journal_type=journal_type,
            date=date,
            period=period,
            description=description,
            reference=reference,
            created_by=get_current_actor(),
            source_type=source._meta.model_name if source is not None else "",
            source_id=source.pk if source is not None else None,
            reversal_of=reversal_of,
        )
        _write_lines(je, normalized)
    logger.info(
        "Journal %s created", je.journal_number,
        extra={"company_id": je.company_id, "journal_id": je.pk},
    )
    return je


def update_draft_journal(journal_id, *, lines=None, date=None, description=None, reference=None):
    """Replace lines and/or header fields of a draft journal."""
    with transaction.atomic():
        je = get_scoped(JournalEntry, journal_id, for_update=True)
        if je.status != "draft":
            raise InvalidTransitionError(f"Only draft journals can be edited ({je.status}).")
        if date is not None:
            je.date = date
            je.period = _open_period_for(date)
        if description is not None:
            je.description = description
        if reference is not None:
            je.reference = reference
        je.save()
        if lines is not None:
            normalized = validate_journal_lines(lines)
            for line in je.lines.all():
                line.delete()
            _write_lines(je, normalized)
    return je


def submit_journal(journal_id):
    with transaction.atomic():
        je = get_scoped(JournalEntry, journal_id, for_update=True)
        je.transition_to("submitted")
    return je


def post_journal(journal_id):
    """
    Post a draft or submitted journal.
    Wraps JournalEntry.post() (validation, line freeze, snapshots) and
    records the posting event. Re-posting a posted journal returns it untouched.
    """
    with transaction.atomic():
        je = get_scoped(JournalEntry, journal_id, for_update=True)
        already_posted = je.status == "posted"
        je.post()
        if not already_posted:
            log_action(
                action="post",
                instance=je,
                changes={"journal_number": je.journal_number,
                         "fingerprint": je.posting_fingerprint},
            )
    if not already_posted:
        logger.info(
            "Journal %s posted", je.journal_number,
            extra={"company_id": je.company_id, "journal_id": je.pk},
        )
    return je


def create_and_post_journal(**kwargs):
    """create_draft_journal + post_journal as one unit."""
    with transaction.atomic():
        je = create_draft_journal(**kwargs)
        return post_journal(je.pk)


def cancel_journal(journal_id, reason=""):
    """Cancel a journal that never reached posting. Posted ones are reversed instead."""
    with transaction.atomic():
        je = get_scoped(JournalEntry, journal_id, for_update=True)
        if je.status == "posted":
            raise ConflictError(
                f"Journal {je.journal_number} is posted; reverse it instead of cancelling."
            )
        je.transition_to("cancelled", reason=reason)
        log_action(action="cancel", instance=je, changes={"reason": reason})
    return je


def reverse_journal(journal_id, *, date=None, reason=""):
    """
    Cancel out a posted journal with a new posted journal that swaps every
    debit and credit. The original stays posted and untouched.
    """
    with transaction.atomic():
        original = get_scoped(JournalEntry, journal_id, for_update=True)
        if original.status != "posted":
            raise InvalidTransitionError(
                f"Only posted journals can be reversed ({original.status})."
            )
        if original.reversals.exclude(status="cancelled").exists():
            raise ConflictError(f"Journal {original.journal_number} is already reversed.")

        lines = [
            {
                "account": line.account_id,
                "debit": line.credit,
                "credit": line.debit,
                "description": line.description,
                "reference": line.reference,
            }
            for line in original.lines.order_by("line_number", "id")
        ]
        reversal = create_draft_journal(
            date=date or original.date,
            lines=lines,
            journal_type="reversal",
            description=reason or f"Reversal of {original.journal_number}",
            reference=original.journal_number,
            reversal_of=original,
        )
        # the reversal keeps the business source of the original
        reversal.source_type = original.source_type
        reversal.source_id = original.source_id
        reversal.save(update_fields=["source_type", "source_id"])
        reversal = post_journal(reversal.pk)
        log_action(
            action="reverse",
            instance=original,
            changes={"reversal_id": reversal.pk, "reason": reason},
        )
    return reversal


def delete_draft_journal(journal_id):
    with transaction.atomic():
        je = get_scoped(JournalEntry, journal_id, for_update=True)
        je.delete()


def get_journal(journal_id):
    return get_scoped(JournalEntry, journal_id)


def list_journals(*, status=None, journal_type=None, date_from=None, date_to=None):
    qs = JournalEntry.objects.all()
    if status:
        qs = qs.filter(status=status)
    if journal_type:
        qs = qs.filter(journal_type=journal_type)
    if date_from:
        qs = qs.filter(date__gte=date_from)
    if date_to:
        qs = qs.filter(date__lte=date_to)
    return qs.order_by("date", "journal_number")


# ----------------------------
# Balance snapshots
# ----------------------------
def update_snapshots_for_journal(je, lines=None):
    """
    Add a journal's lines to the per-day AccountBalanceSnapshot rows.
    Called by JournalEntry.post() inside its transaction.
    """
    lines = lines if lines is not None else list(je.lines.all())
    for line in lines:
        snap, _ = AccountBalanceSnapshot.objects.get_or_create(
            account_id=line.account_id,
            snapshot_date=je.date,
        )
        # F() so concurrent posts to the same account/day add up
        AccountBalanceSnapshot.objects.filter(pk=snap.pk).update(
            debit_balance=F("debit_balance") + line.debit,
            credit_balance=F("credit_balance") + line.credit,
        )
