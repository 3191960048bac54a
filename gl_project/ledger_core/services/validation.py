from decimal import Decimal

from ..conf import ledger_setting
from ..exceptions import (EmptyJournalError, LedgerValidationError,
                          NotFoundError, UnbalancedJournalError,
                          UnknownAccountError)
from ..models import Account
from ..utils import ZERO, to_money


def get_scoped(model, pk, *, for_update=False):
    """
    Fetch one row of the bound tenant.
    Another company's row raises the same NotFoundError as a missing one.
    """
    if isinstance(pk, model):
        pk = pk.pk
    qs = model.objects.select_for_update() if for_update else model.objects
    try:
        return qs.get(pk=pk)
    except model.DoesNotExist:
        raise NotFoundError(f"{model.__name__} {pk} not found.")


def resolve_posting_account(account, line_no=None):
    """Account instance or pk → active, postable Account of this tenant."""
    pk = account.pk if isinstance(account, Account) else account
    where = f"Line {line_no}: " if line_no is not None else ""
    found = Account.objects.filter(pk=pk).first()
    if found is None:
        raise UnknownAccountError(f"{where}account {pk} does not exist.")
    if not found.is_active:
        raise UnknownAccountError(f"{where}account {found.code} is inactive.")
    if not found.is_posting_allowed:
        raise UnknownAccountError(f"{where}account {found.code} does not accept postings.")
    return found


# ------------------------------------
# Journal line validation
# ------------------------------------
def validate_journal_lines(lines):
    """
    Check a proposed set of journal lines and return them normalized.

    Each item is a dict with ``account`` (Account or pk), ``debit`` and/or
    ``credit``, and optional ``description`` / ``reference``.
    Raises EmptyJournalError, LedgerValidationError, UnknownAccountError
    or UnbalancedJournalError.
    """
    lines = list(lines or [])
    if len(lines) < 2:
        raise EmptyJournalError("A journal needs at least two lines.")

    normalized = []
    total_debit = total_credit = Decimal("0.00")
    for no, line in enumerate(lines, start=1):
        debit = to_money(line.get("debit"))
        credit = to_money(line.get("credit"))
        if debit < 0 or credit < 0:
            raise LedgerValidationError(f"Line {no}: amounts must be >= 0.")
        # exactly one side carries an amount
        if (debit > ZERO) == (credit > ZERO):
            raise LedgerValidationError(
                f"Line {no}: exactly one of debit or credit must be non-zero."
            )
        normalized.append({
            "account": resolve_posting_account(line.get("account"), no),
            "debit": debit,
            "credit": credit,
            "description": line.get("description") or "",
            "reference": line.get("reference") or "",
        })
        total_debit += debit
        total_credit += credit

    if abs(total_debit - total_credit) > ledger_setting("BALANCE_TOLERANCE"):
        raise UnbalancedJournalError(
            f"Journal not balanced: debits={total_debit}, credits={total_credit}"
        )
    return normalized
