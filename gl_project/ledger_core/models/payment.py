from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models

from ..exceptions import ImmutableRecordError
from .base import AuditedModel

PAYMENT_TYPES = [
    ("receipt", "Receipt"),  # money in from a customer
    ("payment", "Payment"),  # money out to a vendor
]

# Number prefix per payment type → RCT00001 / PAY00001
PAYMENT_PREFIXES = {"receipt": "RCT", "payment": "PAY"}

PAYMENT_METHODS = [
    ("cash", "Cash"),
    ("bank_transfer", "Bank transfer"),
    ("check", "Check"),
    ("card", "Card"),
]

PAYMENT_STATUS = [
    ("draft", "Draft"),
    ("submitted", "Submitted"),
    ("approved", "Approved"),
    ("posted", "Posted"),
    ("cancelled", "Cancelled"),
]

# Allowed status changes (cancel is handled by services.payment.cancel_payment)
ALLOWED_TRANSITIONS = {
    "draft": ["submitted", "cancelled"],
    "submitted": ["approved", "cancelled"],
    "approved": ["posted", "cancelled"],
    "posted": ["cancelled"],
    "cancelled": [],
}


class Payment(AuditedModel):
    payment_number = models.CharField(max_length=20)
    payment_type = models.CharField(max_length=10, choices=PAYMENT_TYPES)
    # Customer / vendor reference owned by the caller's party registry
    party_ref = models.CharField(max_length=100)
    date = models.DateField()
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    method = models.CharField(max_length=20, choices=PAYMENT_METHODS, default="bank_transfer")
    reference = models.CharField(max_length=200, blank=True, default="")
    status = models.CharField(max_length=10, choices=PAYMENT_STATUS, default="draft")
    # Cash/bank GL account the money moves through (default role "bank" if empty)
    bank_account = models.ForeignKey(
        "ledger_core.Account",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    journal = models.ForeignKey(
        "ledger_core.JournalEntry",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    # Set when a posted payment is cancelled
    reversal_journal = models.ForeignKey(
        "ledger_core.JournalEntry",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="reversed_payments",
    )
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    posted_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["company", "status"]),
            models.Index(fields=["company", "party_ref"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "payment_number"], name="uq_payment_company_number"
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0), name="payment_amount_positive"
            ),
        ]

    def __str__(self):
        return f"{self.payment_number} {self.amount} [{self.status}]"

    @property
    def allocated_amount(self):
        return self.allocations.aggregate(
            total=models.Sum("amount")
        )["total"] or Decimal("0.00")

    @property
    def unallocated_amount(self):
        return self.amount - self.allocated_amount

    def clean(self):
        if self.amount is not None and self.amount <= 0:
            raise ValidationError("Payment amount must be > 0")
        if self.bank_account_id and self.bank_account.company_id != self.company_id:
            raise ValidationError("Bank account must belong to the same company.")
        # amount and type are fixed once the payment leaves draft
        if self.pk:
            orig = Payment._base_manager.filter(pk=self.pk).first()
            if orig and orig.status != "draft":
                for f in ("amount", "payment_type", "date"):
                    if getattr(orig, f) != getattr(self, f):
                        raise ImmutableRecordError(
                            f"Cannot modify {f} on a {orig.status} payment."
                        )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


class PaymentAllocation(AuditedModel):
    """ Part of a payment assigned to one invoice """

    payment = models.ForeignKey(Payment, on_delete=models.CASCADE, related_name="allocations")
    invoice = models.ForeignKey(
        "ledger_core.Invoice", on_delete=models.PROTECT, related_name="allocations"
    )
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("payment_id", "id")
        constraints = [
            # one row per payment/invoice pair, repeated allocations add up
            models.UniqueConstraint(
                fields=["payment", "invoice"], name="uq_allocation_payment_invoice"
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0), name="allocation_amount_positive"
            ),
        ]

    def __str__(self):
        return f"{self.payment_id} → {self.invoice_id}: {self.amount}"

    def clean(self):
        if self.payment_id and self.payment.company_id != self.company_id:
            raise ValidationError("Payment must belong to the same company.")
        if self.invoice_id and self.invoice.company_id != self.company_id:
            raise ValidationError("Invoice must belong to the same company.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
