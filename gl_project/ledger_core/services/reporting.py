"""
Read-only reports over posted journal lines.

Each report runs one aggregate query per concern and never writes, so a
report taken while a journal is being posted sees the journal either fully
or not at all (the post is a single transaction).
"""
from decimal import Decimal

from django.db import models
from django.utils import timezone

from ..conf import ledger_setting
from ..exceptions import LedgerValidationError
from ..models import Account, Invoice, JournalLine
from ..models.account import AC_TYPES
from ..utils import ZERO


def _posted_lines(*, date_from=None, date_to=None, account_ids=None):
    qs = JournalLine.objects.filter(journal__status="posted")
    if date_from is not None:
        qs = qs.filter(journal__date__gte=date_from)
    if date_to is not None:
        qs = qs.filter(journal__date__lte=date_to)
    if account_ids is not None:
        qs = qs.filter(account_id__in=list(account_ids))
    return qs


def _sums_by_account(lines):
    rows = lines.values("account_id").annotate(
        debit=models.Sum("debit"), credit=models.Sum("credit")
    ).order_by()
    return {
        row["account_id"]: (row["debit"] or ZERO, row["credit"] or ZERO)
        for row in rows
    }


def _is_balanced(debit: Decimal, credit: Decimal) -> bool:
    return abs(debit - credit) <= ledger_setting("BALANCE_TOLERANCE")


# ----------------------------
# Trial balance
# ----------------------------
def trial_balance(as_of_date=None, *, date_from=None, account_types=None,
                  account_ids=None, include_zero=False):
    """
    Posted debits and credits per account up to ``as_of_date``, grouped by
    account type with a subtotal per type and a grand total.

    Every type appears in ``groups`` even when it has no rows, so the
    subtotals always add up to the grand total, including for empty results.
    """
    accounts = Account.objects.order_by("code")
    if account_types:
        accounts = accounts.filter(ac_type__in=list(account_types))
    if account_ids is not None:
        accounts = accounts.filter(pk__in=list(account_ids))

    sums = _sums_by_account(
        _posted_lines(date_from=date_from, date_to=as_of_date, account_ids=account_ids)
    )

    groups = {
        ac_type: {
            "ac_type": ac_type,
            "label": label,
            "accounts": [],
            "subtotal": {"debit": ZERO, "credit": ZERO},
        }
        for ac_type, label in AC_TYPES
        if not account_types or ac_type in account_types
    }
    total_debit = total_credit = ZERO

    for account in accounts:
        debit, credit = sums.get(account.pk, (ZERO, ZERO))
        if not include_zero and debit == ZERO and credit == ZERO:
            continue
        group = groups[account.ac_type]
        group["accounts"].append({
            "account_id": account.pk,
            "code": account.code,
            "name": account.name,
            "name_ar": account.name_ar,
            "ac_type": account.ac_type,
            "balance_side": account.balance_side,
            "debit": debit,
            "credit": credit,
            "balance": account.signed_balance(debit, credit),
        })
        group["subtotal"]["debit"] += debit
        group["subtotal"]["credit"] += credit
        total_debit += debit
        total_credit += credit

    return {
        "as_of_date": as_of_date,
        "date_from": date_from,
        "groups": list(groups.values()),
        "total": {"debit": total_debit, "credit": total_credit},
        "is_balanced": _is_balanced(total_debit, total_credit),
    }


# ----------------------------
# General ledger
# ----------------------------
def general_ledger(*, account_ids=None, date_from=None, date_to=None, include_empty=False):
    """
    Posted lines per account in date order with a running balance.

    The running balance follows the account's balance_side (debit-normal
    accounts grow with debits, credit-normal ones with credits). Lines
    before ``date_from`` are folded into the opening balance.
    """
    accounts = Account.objects.order_by("code")
    if account_ids is not None:
        accounts = accounts.filter(pk__in=list(account_ids))
    accounts = list(accounts)

    opening = {}
    if date_from is not None:
        before = _posted_lines(account_ids=account_ids).filter(journal__date__lt=date_from)
        opening = _sums_by_account(before)

    lines_by_account = {}
    lines = (
        _posted_lines(date_from=date_from, date_to=date_to, account_ids=account_ids)
        .select_related("journal")
        .order_by("journal__date", "journal__journal_number", "line_number", "id")
    )
    for line in lines:
        lines_by_account.setdefault(line.account_id, []).append(line)

    result = []
    for account in accounts:
        opening_debit, opening_credit = opening.get(account.pk, (ZERO, ZERO))
        account_lines = lines_by_account.get(account.pk, [])
        if not account_lines and not include_empty and opening_debit == opening_credit == ZERO:
            continue

        balance = account.signed_balance(opening_debit, opening_credit)
        opening_balance = balance
        rows = []
        total_debit = total_credit = ZERO
        for line in account_lines:
            balance += account.signed_balance(line.debit, line.credit)
            total_debit += line.debit
            total_credit += line.credit
            rows.append({
                "date": line.journal.date,
                "journal_id": line.journal_id,
                "journal_number": line.journal.journal_number,
                "journal_type": line.journal.journal_type,
                "description": line.description or line.journal.description,
                "reference": line.reference,
                "debit": line.debit,
                "credit": line.credit,
                "balance": balance,
            })
        result.append({
            "account_id": account.pk,
            "code": account.code,
            "name": account.name,
            "balance_side": account.balance_side,
            "opening_balance": opening_balance,
            "lines": rows,
            "total_debit": total_debit,
            "total_credit": total_credit,
            "closing_balance": balance,
        })
    return result


# ----------------------------
# Financial statements
# ----------------------------
def _section(tb, ac_type):
    for group in tb["groups"]:
        if group["ac_type"] == ac_type:
            rows = [
                {"code": r["code"], "name": r["name"], "balance": r["balance"]}
                for r in group["accounts"]
            ]
            return rows, sum((r["balance"] for r in rows), ZERO)
    return [], ZERO


def income_statement(date_from=None, date_to=None):
    """Revenue, expenses and net income for posted activity in the range."""
    tb = trial_balance(date_to, date_from=date_from, account_types=("revenue", "expense"))
    revenue, total_revenue = _section(tb, "revenue")
    expenses, total_expenses = _section(tb, "expense")
    return {
        "date_from": date_from,
        "date_to": date_to,
        "revenue": {"accounts": revenue, "total": total_revenue},
        "expenses": {"accounts": expenses, "total": total_expenses},
        "net_income": total_revenue - total_expenses,
    }


def balance_sheet(as_of_date=None):
    """
    Assets against liabilities plus equity as of a date.
    Revenue less expenses not yet closed to equity shows as current earnings.
    """
    tb = trial_balance(as_of_date)
    assets, total_assets = _section(tb, "asset")
    liabilities, total_liabilities = _section(tb, "liability")
    equity, total_equity = _section(tb, "equity")
    _, total_revenue = _section(tb, "revenue")
    _, total_expenses = _section(tb, "expense")
    current_earnings = total_revenue - total_expenses

    liabilities_and_equity = total_liabilities + total_equity + current_earnings
    return {
        "as_of_date": as_of_date,
        "assets": {"accounts": assets, "total": total_assets},
        "liabilities": {"accounts": liabilities, "total": total_liabilities},
        "equity": {
            "accounts": equity,
            "current_earnings": current_earnings,
            "total": total_equity + current_earnings,
        },
        "total_liabilities_and_equity": liabilities_and_equity,
        "is_balanced": _is_balanced(total_assets, liabilities_and_equity),
    }


# ----------------------------
# Customer / vendor balances
# ----------------------------
# (invoice type, return type) per party side; returns count against the party
PARTY_SIDES = {
    "customer": ("sales", "sales_return"),
    "vendor": ("purchase", "purchase_return"),
}
OPEN_INVOICE_STATUSES = ("posted", "partially_paid", "paid")
# (bucket, first day, last day) counted from the due date
AGING_BUCKETS = (
    ("1_30", 1, 30),
    ("31_60", 31, 60),
    ("61_90", 61, 90),
    ("over_90", 91, None),
)


def _aging_bucket(days_overdue):
    for name, first, last in AGING_BUCKETS:
        if days_overdue >= first and (last is None or days_overdue <= last):
            return name
    return None


def party_balances(side, as_of_date=None, *, include_settled=False):
    """
    Outstanding balance per ``party_ref`` for customers or vendors.

    Invoices count positive and returns negative; draft, submitted and
    cancelled documents are left out. ``paid`` is what the allocation engine
    has applied so far. An invoice is overdue once ``as_of_date`` is past its
    due date while a balance remains; its balance goes to one aging bucket.
    Parties whose balance nets to zero are skipped unless ``include_settled``.
    """
    if side not in PARTY_SIDES:
        raise LedgerValidationError(f"Unknown party side: {side}")
    as_of_date = as_of_date or timezone.localdate()
    invoice_type, return_type = PARTY_SIDES[side]

    invoices = Invoice.objects.filter(
        invoice_type__in=(invoice_type, return_type),
        status__in=OPEN_INVOICE_STATUSES,
        date__lte=as_of_date,
    )
    rows = invoices.values("party_ref").annotate(
        invoiced=models.Sum("total", filter=models.Q(invoice_type=invoice_type)),
        returned=models.Sum("total", filter=models.Q(invoice_type=return_type)),
        paid=models.Sum("paid_amount"),
        invoice_count=models.Count("id"),
    ).order_by("party_ref")

    overdue = {}
    late = invoices.filter(
        invoice_type=invoice_type, balance__gt=ZERO, due_date__lt=as_of_date
    ).values_list("party_ref", "due_date", "balance")
    for party_ref, due_date, balance in late:
        buckets = overdue.setdefault(
            party_ref, {name: ZERO for name, _, _ in AGING_BUCKETS}
        )
        buckets[_aging_bucket((as_of_date - due_date).days)] += balance

    parties = []
    for row in rows:
        total = (row["invoiced"] or ZERO) - (row["returned"] or ZERO)
        paid = row["paid"] or ZERO
        balance = total - paid
        if balance == ZERO and not include_settled:
            continue
        buckets = overdue.get(row["party_ref"], {name: ZERO for name, _, _ in AGING_BUCKETS})
        parties.append({
            "party_ref": row["party_ref"],
            "invoice_count": row["invoice_count"],
            "total": total,
            "paid": paid,
            "balance": balance,
            "overdue": sum(buckets.values(), ZERO),
            "aging": buckets,
        })

    return {
        "side": side,
        "as_of_date": as_of_date,
        "parties": parties,
        "total_balance": sum((p["balance"] for p in parties), ZERO),
        "total_overdue": sum((p["overdue"] for p in parties), ZERO),
    }
