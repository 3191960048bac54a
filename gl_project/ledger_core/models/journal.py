import hashlib
import json
from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.utils import timezone
from ..conf import ledger_setting
from ..exceptions import (AlreadyPostedDifferentPayload,
                          CannotDeletePostedError, EmptyJournalError,
                          ImmutableRecordError, InvalidTransitionError,
                          PeriodClosedError, UnbalancedJournalError,
                          UnknownAccountError)
from ..tenancy import get_current_actor
from .account import Account
from .base import AuditedModel
from .period import FiscalPeriod

JOURNAL_STATUS = [
    ("draft", "Draft"),  # still editable
    ("submitted", "Submitted"),  # validated, waiting to be posted
    ("posted", "Posted"),  # finalized, only reversible
    ("cancelled", "Cancelled"),  # abandoned before posting
]

# Allowed status changes, posted/cancelled are terminal
ALLOWED_TRANSITIONS = {
    "draft": ["submitted", "posted", "cancelled"],
    "submitted": ["posted", "cancelled"],
    "posted": [],
    "cancelled": [],
}

JOURNAL_TYPES = [
    ("general", "General"),
    ("sales", "Sales"),
    ("purchase", "Purchase"),
    ("sales_return", "Sales return"),
    ("purchase_return", "Purchase return"),
    ("receipt", "Receipt"),
    ("payment", "Payment"),
    ("depreciation", "Depreciation"),
    ("reversal", "Reversal"),
]

# Number prefix per journal type → GN000001, DP000003...
JOURNAL_PREFIXES = {
    "general": "GN",
    "sales": "SL",
    "purchase": "PU",
    "sales_return": "SR",
    "purchase_return": "PR",
    "receipt": "RC",
    "payment": "PM",
    "depreciation": "DP",
    "reversal": "RV",
}

# Header fields frozen once a journal reaches a terminal status
FROZEN_FIELDS = (
    "status", "date", "period_id", "journal_number", "journal_type",
    "description", "reference", "posting_fingerprint",
)


# ---------- Journal (Header) & JournalLine ----------
class JournalEntry(AuditedModel):  # Represents one accounting transaction
    # Optional link to a fiscal period (resolved from the date)
    period = models.ForeignKey(
        FiscalPeriod,
        null=True,
        blank=True,
        on_delete=models.PROTECT,  # Prevent breaking historical ledger
        related_name="journals",
    )
    # Tenant-monotonic number allocated from CompanySequence
    journal_number = models.CharField(max_length=20)
    journal_type = models.CharField(
        max_length=20, choices=JOURNAL_TYPES, default="general"
    )
    # Business metadata
    date = models.DateField()
    reference = models.CharField(max_length=200, blank=True, default="")
    description = models.TextField(blank=True, default="")
    status = models.CharField(max_length=10, choices=JOURNAL_STATUS, default="draft")
    submitted_at = models.DateTimeField(null=True, blank=True)
    posted_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.TextField(blank=True, default="")
    # User ids from the tenant context
    created_by = models.CharField(max_length=150, null=True, blank=True)
    posted_by = models.CharField(max_length=150, null=True, blank=True)
    # optional polymorphic source info
    # (invoice, payment, depreciation run)
    source_type = models.CharField(max_length=50, blank=True, default="")
    source_id = models.BigIntegerField(null=True, blank=True)
    # A reversal journal points at the posted journal it cancels out
    reversal_of = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="reversals",
    )
    # Fingerprint-based idempotency (safe to post twice if nothing has changed)
    posting_fingerprint = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        # Speed up listing & filtering
        # (e.g. show all posted entries this month)
        indexes = [
            models.Index(fields=["company", "date"]),
            models.Index(fields=["company", "status"]),
            models.Index(fields=["company", "source_type", "source_id"]),
        ]

        constraints = [
            # Within one company, each journal number is unique
            models.UniqueConstraint(
                fields=["company", "journal_number"], name="uq_je_company_number"
            )
        ]

    def __str__(self):
        return f"{self.journal_number} {self.date} [{self.status}]"

    # Aggregate all debit and credit amounts across entry’s lines
    def compute_totals(self):
        """Return debits, credits sums for lines"""
        aggs = self.lines.aggregate(
            total_debit=models.Sum("debit"),
            total_credit=models.Sum("credit"),
        )
        return (
            aggs["total_debit"] or Decimal("0.00"),
            aggs["total_credit"] or Decimal("0.00"),
        )

    # True if double-entry rule holds within tolerance
    def is_balanced(self):
        debit, credit = self.compute_totals()
        return abs(debit - credit) <= ledger_setting("BALANCE_TOLERANCE")

    def _posting_payload(self):
        """Deterministic representation of what matters for posting

        If the data hasn't changed, the JSON string always looks the same,
        so it tells whether this exact version has already been posted.
        """
        lines = [
            {
                "acct": line.account_id,
                "debit": str(line.debit),
                "credit": str(line.credit),
                "desc": line.description or "",
            }
            # always in the same order
            for line in self.lines.order_by("line_number", "id")
        ]
        payload = {
            "company": self.company_id,
            "date": self.date.isoformat(),
            "lines": lines,
        }
        return json.dumps(payload, separators=(",", ":"), sort_keys=True)

    def _fingerprint(self):
        return hashlib.sha256(self._posting_payload().encode()).hexdigest()

    # Post the entry safely inside a database transaction
    @transaction.atomic
    def post(self):
        """
        Post the journal: validate, freeze lines, update balance snapshots.
        All of it commits together or not at all.
        Posting an already-posted, unchanged journal is a no-op.
        """
        # lazy import to avoid circular import at module load time
        from ..services.journals import update_snapshots_for_journal

        # Lock row + lines to prevent concurrent modifications
        je = JournalEntry.objects.select_for_update().get(pk=self.pk)
        lines = list(je.lines.select_for_update().order_by("line_number", "id"))

        """ Idempotency & immutability """
        if je.status == "posted":
            if je.posting_fingerprint == je._fingerprint():
                # Idempotent: retries are safe
                self.refresh_from_db()
                return je
            raise AlreadyPostedDifferentPayload(
                "Journal already posted with different payload."
            )
        if "posted" not in ALLOWED_TRANSITIONS[je.status]:
            raise InvalidTransitionError(f"Cannot post a {je.status} journal")

        """ Business validations, re-run against the locked rows """
        if len(lines) < 2:
            raise EmptyJournalError("A journal needs at least two lines.")

        # Recompute totals fresh from DB & ignore any stale cached values
        td, tc = je.compute_totals()
        if abs(td - tc) > ledger_setting("BALANCE_TOLERANCE"):
            raise UnbalancedJournalError(
                f"Journal not balanced: debits={td}, credits={tc}"
            )

        accounts = Account.objects.in_bulk({line.account_id for line in lines})
        for line in lines:
            account = accounts.get(line.account_id)
            if account is None or not account.is_active or not account.is_posting_allowed:
                raise UnknownAccountError(
                    f"Line {line.line_number}: account is missing, inactive "
                    "or does not accept postings."
                )

        # Period is resolved at posting time if none was attached at creation
        if je.period_id is None:
            je.period = FiscalPeriod.objects.filter(
                start_date__lte=je.date, end_date__gte=je.date
            ).first()
        if je.period and je.period.is_closed:
            raise PeriodClosedError(f"Period {je.period.name} is closed")

        """ Update state """
        for line in lines:
            line.is_posted = True
            line.save(update_fields=["is_posted"])

        je.status = "posted"
        je.posted_at = timezone.now()
        je.posted_by = get_current_actor()
        je.posting_fingerprint = je._fingerprint()
        je.save(
            update_fields=[
                "status", "posted_at", "posted_by", "posting_fingerprint", "period"
            ]
        )

        # Balance snapshots move in the same transaction
        update_snapshots_for_journal(je, lines)

        self.refresh_from_db()
        return je

    def clean(self):
        """ Don't allow journals in closed periods """
        if self.status in ("draft", "submitted") and self.period_id and self.period.is_closed:
            raise PeriodClosedError(
                "Cannot create or edit journal inside a closed period."
            )

    def save(self, *args, **kwargs):
        if self.pk:  # Does this row already exist in DB?
            orig = JournalEntry._base_manager.filter(pk=self.pk).first()
            # Posted and cancelled journals are frozen
            if orig and orig.status in ("posted", "cancelled"):
                changed = [
                    f for f in FROZEN_FIELDS if getattr(orig, f) != getattr(self, f)
                ]
                if changed:
                    raise ImmutableRecordError(
                        f"Cannot modify a {orig.status} journal ({', '.join(changed)})."
                    )
        self.full_clean()
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.status == "posted":
            raise CannotDeletePostedError("Posted journals can only be reversed.")
        if self.status != "draft":
            raise InvalidTransitionError(f"Cannot delete a {self.status} journal.")
        # one audit row per line, then the header
        for line in self.lines.all():
            line.delete()
        return super().delete(*args, **kwargs)

    # Control status changes
    def transition_to(self, new_status, reason=""):
        # prevent skipping validations
        if new_status not in ALLOWED_TRANSITIONS.get(self.status, []):
            raise InvalidTransitionError(
                f"Cannot go from {self.status} to {new_status}")

        if new_status == "posted":
            # call posting logic (validations, mark lines as is_posted, etc.)
            return self.post()

        now = timezone.now()
        if new_status == "submitted":
            if not self.is_balanced():
                td, tc = self.compute_totals()
                raise UnbalancedJournalError(
                    f"Journal not balanced: debits={td}, credits={tc}"
                )
            self.submitted_at = now
            fields = ["status", "submitted_at"]
        else:  # cancelled
            self.cancelled_at = now
            self.cancel_reason = reason or ""
            fields = ["status", "cancelled_at", "cancel_reason"]
        self.status = new_status
        self.save(update_fields=fields)
        return self


class JournalLine(AuditedModel):  # Stores Lines ( credits / debits )
    """
    Each line belongs to a journal entry and to a GL account,
    with exactly one of debit / credit non-zero.
    """

    journal = models.ForeignKey(
        JournalEntry,
        on_delete=models.CASCADE,
        related_name="lines",
    )
    # Position inside the journal (1-based)
    line_number = models.PositiveIntegerField(default=1)

    # Must point to one Account (can’t delete account if lines exist → PROTECT)
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="journal_lines"
    )

    description = models.CharField(max_length=400, blank=True, default="")
    reference = models.CharField(max_length=200, blank=True, default="")
    debit = models.DecimalField(max_digits=18, decimal_places=2, default=0)
    credit = models.DecimalField(max_digits=18, decimal_places=2, default=0)

    # audit / immutability marker (populated when journal posted)
    is_posted = models.BooleanField(default=False)  # prevents edits later

    class Meta:
        ordering = ("journal_id", "line_number", "id")
        # For fast queries like “all lines for this account”
        indexes = [
            models.Index(fields=["company", "account"]),
            models.Index(fields=["company", "journal"]),
        ]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(debit__gte=0) & models.Q(credit__gte=0),
                name="jl_non_negative_amounts",
            ),
            # exactly one side carries an amount
            models.CheckConstraint(
                condition=~(models.Q(debit=0) & models.Q(credit=0)),
                name="jl_debit_or_credit_nonzero",
            ),
            models.CheckConstraint(
                condition=~(models.Q(debit__gt=0) & models.Q(credit__gt=0)),
                name="jl_not_both_debit_and_credit",
            ),
        ]

    def __str__(self):
        return f"{self.journal_id} | {self.account_id} | D:{self.debit} C:{self.credit}"

    def clean(self):
        # Ensure no negative values sneak in
        # (redundant with CheckConstraint but useful at app-level)
        if self.debit < 0 or self.credit < 0:
            raise ValidationError("Debit and credit must be >= 0")
        if self.debit > 0 and self.credit > 0:
            raise ValidationError(
                "JournalLine should not have both debit and credit > 0"
            )
        if self.debit == 0 and self.credit == 0:
            raise ValidationError(
                "JournalLine requires a non-0 amount on either debit or credit"
            )

        # Every line must belong to same company as its journal and account
        if self.journal_id and self.journal.company_id != self.company_id:
            raise ValidationError("JournalLine.company must equal JournalEntry.company")
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError("JournalLine.account must belong to the same company.")

        # Lines of a posted journal are frozen
        if self.journal_id and self.journal.status == "posted":
            if not self.pk:
                raise ImmutableRecordError("Cannot add JournalLine: parent journal is posted.")
            orig = JournalLine._base_manager.get(pk=self.pk)
            changed = (
                orig.debit != self.debit
                or orig.credit != self.credit
                or orig.account_id != self.account_id
                or orig.journal_id != self.journal_id
            )
            if changed:
                raise ImmutableRecordError(
                    "Cannot modify JournalLine: parent JournalEntry is posted."
                )

    def delete(self, *args, **kwargs):
        # Prevent deletion if parent journal is posted
        if JournalEntry._base_manager.filter(pk=self.journal_id, status="posted").exists():
            raise CannotDeletePostedError(
                "Cannot delete JournalLine: parent JournalEntry is posted."
            )
        return super().delete(*args, **kwargs)

    def save(self, *args, **kwargs):
        # Inherit the company of the journal
        if not self.company_id and self.journal_id:
            self.company_id = self.journal.company_id
        # clean()+field validation always run whenever
        # you save a JournalLine programmatically
        self.full_clean()
        return super().save(*args, **kwargs)
