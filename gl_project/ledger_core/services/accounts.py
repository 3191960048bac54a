import datetime
import logging
from decimal import Decimal

from django.db import models, transaction

from ..exceptions import (AccountInUseError, DuplicateCodeError,
                          InvalidParentError, LedgerValidationError,
                          MissingDefaultAccountError)
from ..models import (Account, AccountBalanceSnapshot, DefaultAccount,
                      JournalLine)
from ..models.account import AC_TYPES, default_balance_side
from .periods import find_period
from .validation import get_scoped

logger = logging.getLogger(__name__)

# Fields update_account() may change; code is fixed at creation
EDITABLE_FIELDS = ("name", "name_ar", "parent", "balance_side", "is_posting_allowed")


def _resolve_parent(parent):
    if parent is None:
        return None
    pk = parent.pk if isinstance(parent, Account) else parent
    # another company's account is indistinguishable from a missing one
    found = Account.objects.filter(pk=pk).first()
    if found is None:
        raise InvalidParentError(f"Parent account {pk} not found.")
    return found


def _check_no_cycle(account, parent):
    node = parent
    while node is not None:
        if node.pk == account.pk:
            raise InvalidParentError(
                f"Account {parent.code} is a descendant of {account.code}; "
                "it cannot be its parent."
            )
        node = node.parent


# ----------------------------
# Chart of accounts workflows
# ----------------------------
def create_account(*, code, name, ac_type, balance_side=None, parent=None,
                   name_ar="", is_posting_allowed=True):
    """
    Add an account to the chart.
    balance_side defaults to debit for asset/expense, credit otherwise.
    """
    if ac_type not in dict(AC_TYPES):
        raise LedgerValidationError(f"Unknown account type: {ac_type}")
    with transaction.atomic():
        if Account.objects.filter(code=code).exists():
            raise DuplicateCodeError(f"Account code {code} already exists.")
        account = Account.objects.create(
            code=code,
            name=name,
            name_ar=name_ar,
            ac_type=ac_type,
            balance_side=balance_side or default_balance_side(ac_type),
            parent=_resolve_parent(parent),
            is_posting_allowed=is_posting_allowed,
        )
    logger.info("Account %s created", code, extra={"company_id": account.company_id})
    return account


def update_account(account_id, **changes):
    unknown = set(changes) - set(EDITABLE_FIELDS) - {"code"}
    if unknown:
        raise LedgerValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    with transaction.atomic():
        account = get_scoped(Account, account_id, for_update=True)
        if "code" in changes and changes.pop("code") != account.code:
            raise LedgerValidationError("Account code cannot be changed.")
        if "parent" in changes:
            parent = _resolve_parent(changes.pop("parent"))
            if parent is not None:
                _check_no_cycle(account, parent)
            account.parent = parent
        for field, value in changes.items():
            setattr(account, field, value)
        account.save()
    return account


def deactivate_account(account_id, as_of=None):
    """
    Soft-delete an account.
    Refused while it carries journal lines in the open fiscal period
    containing ``as_of`` (today by default).
    """
    as_of = as_of or datetime.date.today()
    with transaction.atomic():
        account = get_scoped(Account, account_id, for_update=True)
        period = find_period(as_of)
        if period is not None and not period.is_closed:
            in_use = (
                JournalLine.objects.filter(
                    account=account,
                    journal__date__gte=period.start_date,
                    journal__date__lte=period.end_date,
                )
                .exclude(journal__status="cancelled")
                .exists()
            )
            if in_use:
                raise AccountInUseError(
                    f"Account {account.code} has journal lines in open period {period.name}."
                )
        if account.is_active:
            account.is_active = False
            account.save(update_fields=["is_active"])
            logger.info("Account %s deactivated", account.code,
                        extra={"company_id": account.company_id})
    return account


def reactivate_account(account_id):
    with transaction.atomic():
        account = get_scoped(Account, account_id, for_update=True)
        if not account.is_active:
            account.is_active = True
            account.save(update_fields=["is_active"])
    return account


def list_accounts(*, ac_type=None, include_inactive=True):
    """
    Chart of accounts flattened depth-first: every parent comes before its
    children, siblings ordered by code. ``level`` counts ancestors (roots = 1).
    """
    accounts = list(Account.objects.order_by("code"))
    by_id = {a.pk: a for a in accounts}
    children = {}
    for account in accounts:
        children.setdefault(account.parent_id, []).append(account)

    levels = {}

    def walk(parent_id, level):
        for account in children.get(parent_id, []):
            levels[account.pk] = level
            yield account
            yield from walk(account.pk, level + 1)

    rows = []
    for account in walk(None, 1):
        if ac_type and account.ac_type != ac_type:
            continue
        if not include_inactive and not account.is_active:
            continue
        rows.append({
            "id": account.pk,
            "code": account.code,
            "name": account.name,
            "name_ar": account.name_ar,
            "ac_type": account.ac_type,
            "balance_side": account.balance_side,
            "parent_id": account.parent_id,
            "parent_code": by_id[account.parent_id].code if account.parent_id else None,
            "is_active": account.is_active,
            "is_posting_allowed": account.is_posting_allowed,
            "level": levels[account.pk],
        })
    return rows


def accounts_by_type(ac_type):
    return Account.objects.filter(ac_type=ac_type, is_active=True).order_by("code")


def account_balance(account_id, as_of=None):
    """Posted balance of one account from the daily snapshots."""
    account = get_scoped(Account, account_id)
    snapshots = AccountBalanceSnapshot.objects.filter(account=account)
    if as_of is not None:
        snapshots = snapshots.filter(snapshot_date__lte=as_of)
    agg = snapshots.aggregate(
        debit=models.Sum("debit_balance"),
        credit=models.Sum("credit_balance"),
    )
    debit = agg["debit"] or Decimal("0.00")
    credit = agg["credit"] or Decimal("0.00")
    return {
        "account_id": account.pk,
        "code": account.code,
        "total_debit": debit,
        "total_credit": credit,
        "balance": account.signed_balance(debit, credit),
    }


# ----------------------------
# Auto-posting configuration
# ----------------------------
def set_default_account(role, account_id):
    account = get_scoped(Account, account_id)
    with transaction.atomic():
        default = DefaultAccount.objects.select_for_update().filter(role=role).first()
        if default is None:
            return DefaultAccount.objects.create(role=role, account=account)
        default.account = account
        default.save(update_fields=["account"])
    return default


def get_default_account(role):
    default = DefaultAccount.objects.select_related("account").filter(role=role).first()
    if default is None:
        raise MissingDefaultAccountError(f"No default account configured for role '{role}'.")
    return default.account
