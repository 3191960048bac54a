from decimal import Decimal

from ledger_core.exceptions import (AccountInUseError, ConflictError,
                                    DuplicateCodeError, InvalidParentError,
                                    LedgerValidationError,
                                    MissingDefaultAccountError)
from ledger_core.models import Account, Company
from ledger_core.services import (account_balance, create_account,
                                  create_draft_journal, deactivate_account,
                                  get_default_account, list_accounts,
                                  post_journal, reactivate_account,
                                  update_account)
from ledger_core.tenancy import tenant_context

from .base import LedgerTestCase


class ChartOfAccountsTests(LedgerTestCase):

    def test_balance_side_defaults_from_type(self):
        self.assertEqual(self.cash.balance_side, "debit")
        self.assertEqual(self.expense.balance_side, "debit")
        self.assertEqual(self.payable.balance_side, "credit")
        self.assertEqual(self.capital.balance_side, "credit")
        self.assertEqual(self.revenue.balance_side, "credit")
        # explicit contra side wins
        self.assertEqual(self.accum_depr.balance_side, "credit")

    def test_duplicate_code(self):
        with self.assertRaises(DuplicateCodeError):
            create_account(code="1110", name="Petty cash", ac_type="asset")

    def test_same_code_in_another_company(self):
        other = Company.objects.create(name="Other Co", slug="other-co")
        with tenant_context(other):
            account = create_account(code="1110", name="Cash", ac_type="asset")
        self.assertEqual(account.company_id, other.pk)

    def test_unknown_type(self):
        with self.assertRaises(LedgerValidationError):
            create_account(code="9000", name="Odd", ac_type="memo")

    def test_parent_from_another_company(self):
        other = Company.objects.create(name="Other Co", slug="other-co")
        with tenant_context(other):
            foreign = create_account(code="1000", name="Assets", ac_type="asset")
        with self.assertRaises(InvalidParentError):
            create_account(code="1120", name="Petty cash", ac_type="asset", parent=foreign.pk)

    def test_cycle_is_rejected(self):
        root = create_account(code="1000", name="Current assets", ac_type="asset")
        child = create_account(code="1100", name="Cash", ac_type="asset", parent=root)
        grandchild = create_account(code="1101", name="Till", ac_type="asset", parent=child)

        with self.assertRaises(InvalidParentError):
            update_account(root.pk, parent=grandchild.pk)

    def test_code_cannot_change(self):
        with self.assertRaises(LedgerValidationError):
            update_account(self.cash.pk, code="1111")
        account = update_account(self.cash.pk, code="1110", name="Main bank")
        self.assertEqual(account.name, "Main bank")

    def test_hierarchical_listing(self):
        root = create_account(code="1000", name="Current assets", ac_type="asset",
                              is_posting_allowed=False)
        update_account(self.cash.pk, parent=root)
        petty = create_account(code="1111", name="Petty cash", ac_type="asset", parent=self.cash)

        rows = list_accounts(ac_type="asset")
        codes = [row["code"] for row in rows]
        levels = {row["code"]: row["level"] for row in rows}

        self.assertLess(codes.index("1000"), codes.index("1110"))
        self.assertLess(codes.index("1110"), codes.index("1111"))
        self.assertEqual(levels["1000"], 1)
        self.assertEqual(levels["1110"], 2)
        self.assertEqual(levels["1111"], 3)
        self.assertEqual(petty.level, 3)

    def test_accounts_are_never_deleted(self):
        with self.assertRaises(ConflictError):
            self.capital.delete()
        self.assertTrue(Account.objects.filter(pk=self.capital.pk).exists())

    def test_deactivate_refused_while_in_use(self):
        je = create_draft_journal(
            date=self.day(3),
            lines=self.lines((self.cash, 100, 0), (self.revenue, 0, 100)),
        )
        post_journal(je.pk)

        with self.assertRaises(AccountInUseError):
            deactivate_account(self.cash.pk, as_of=self.day(3, 31))

        # a later period is free of lines
        account = deactivate_account(self.cash.pk, as_of=self.day(4))
        self.assertFalse(account.is_active)
        self.assertTrue(reactivate_account(self.cash.pk).is_active)

    def test_missing_default_role(self):
        with self.assertRaises(MissingDefaultAccountError):
            get_default_account("suspense")

    def test_account_balance_follows_balance_side(self):
        je = create_draft_journal(
            date=self.day(3),
            lines=self.lines((self.cash, 300, 0), (self.revenue, 0, 300)),
        )
        post_journal(je.pk)
        je = create_draft_journal(
            date=self.day(4),
            lines=self.lines((self.revenue, 50, 0), (self.cash, 0, 50)),
        )
        post_journal(je.pk)

        self.assertEqual(account_balance(self.cash.pk)["balance"], Decimal("250.00"))
        self.assertEqual(account_balance(self.revenue.pk)["balance"], Decimal("250.00"))
        self.assertEqual(
            account_balance(self.cash.pk, as_of=self.day(3, 31))["balance"], Decimal("300.00")
        )
