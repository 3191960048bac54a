from django.core.exceptions import ValidationError
from django.db import models

from .base import AuditedModel

# Choice Lists
AC_TYPES = [
    # Used in Account model to classify general ledger accounts
    ("asset", "Asset"),
    ("liability", "Liability"),
    ("equity", "Equity"),
    ("revenue", "Revenue"),
    ("expense", "Expense"),
]

# Define whether the account normally increases
# on the debit side or credit side
BALANCE_SIDES = [
    ("debit", "Debit"),
    ("credit", "Credit"),
]

# Assets/Expenses → Debit, Liabilities/Equity/Revenue → Credit
DEBIT_NORMAL_TYPES = ("asset", "expense")


def default_balance_side(ac_type):
    return "debit" if ac_type in DEBIT_NORMAL_TYPES else "credit"


class Account(AuditedModel):
    """
    Actual ledger account entry in Chart of Accounts.
    - code is unique per company and never changes once created
    - ac_type: determines reporting - BS vs P&L
    - balance_side: used to interpret sign when building reports
    - accounts are never deleted, only deactivated
    """

    # Every account has a code
    # which lets you sort/group accounts consistently in reports.
    code = models.CharField(max_length=32)
    # Bilingual name → "Cash on Hand" / "النقدية"
    name = models.CharField(max_length=200)
    name_ar = models.CharField(max_length=200, blank=True, default="")

    # Classify account into one of the 5 basic accounting types
    ac_type = models.CharField(max_length=10, choices=AC_TYPES)

    # Define whether the account normally carries a debit or credit balance
    # Left blank → derived from ac_type in clean()
    balance_side = models.CharField(max_length=6, choices=BALANCE_SIDES, blank=True)

    # Optional hierarchy:
    # (e.g. 1000 Current Assets → 1100 Cash → 1110 Petty Cash)
    parent = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,  # you can’t delete a parent if children exist
        related_name="children",
    )
    # “soft deactivate” accounts (stop new postings) without deleting history
    is_active = models.BooleanField(default=True)
    # Header accounts group children and never receive journal lines
    is_posting_allowed = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            # For reports grouped by ac_type (Trial Balance, P&L, Balance Sheet)
            models.Index(fields=["company", "ac_type"]),
            models.Index(fields=["company", "parent"]),
        ]

        # Codes repeat across companies but must be unique within one.
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"], name="uq_company_account_code"
            )
        ]

    def __str__(self):
        return f"{self.code} – {self.name}"

    def ancestors(self):
        """Parents from the direct parent up to the root."""
        chain = []
        seen = {self.pk}
        node = self.parent
        while node is not None:
            if node.pk in seen:
                raise ValidationError("Account hierarchy contains a cycle.")
            seen.add(node.pk)
            chain.append(node)
            node = node.parent
        return chain

    @property
    def level(self):
        # Roots are level 1
        return len(self.ancestors()) + 1

    @property
    def is_debit_normal(self):
        return self.balance_side == "debit"

    def signed_balance(self, debit, credit):
        """Net movement expressed on the account's natural side."""
        return debit - credit if self.is_debit_normal else credit - debit

    def clean(self):
        if not self.balance_side:
            self.balance_side = default_balance_side(self.ac_type)

        # Check if parent account belongs to same company
        if self.parent_id and self.parent.company_id != self.company_id:
            raise ValidationError(
                "Parent & child accounts must belong to the same company"
            )
        if self.parent_id and self.pk and self.parent_id == self.pk:
            raise ValidationError("An account cannot be its own parent.")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
