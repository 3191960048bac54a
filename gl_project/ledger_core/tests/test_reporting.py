from decimal import Decimal

from ledger_core.exceptions import LedgerValidationError
from ledger_core.services import (allocate_payment, balance_sheet,
                                  create_and_post_journal,
                                  create_draft_journal, create_invoice,
                                  create_payment, general_ledger,
                                  income_statement, party_balances,
                                  post_invoice, trial_balance)

from .base import LedgerTestCase


class ReportTestCase(LedgerTestCase):

    def setUp(self):
        super().setUp()
        # March: capital in, a sale and an expense. April: another sale.
        self.post(self.day(3, 1), (self.cash, 10000, 0), (self.capital, 0, 10000))
        self.post(self.day(3, 10), (self.receivable, 2300, 0),
                  (self.revenue, 0, 2000), (self.vat_out, 0, 300))
        self.post(self.day(3, 20), (self.expense, 800, 0), (self.cash, 0, 800))
        self.post(self.day(4, 5), (self.cash, 500, 0), (self.revenue, 0, 500))
        # drafts never show up in reports
        create_draft_journal(
            date=self.day(3, 25),
            lines=self.lines((self.cash, 999, 0), (self.revenue, 0, 999)),
        )

    def post(self, date, *pairs):
        return create_and_post_journal(date=date, lines=self.lines(*pairs))


class TrialBalanceTests(ReportTestCase):

    def test_totals_and_subtotals(self):
        tb = trial_balance()

        self.assertTrue(tb["is_balanced"])
        self.assertEqual(tb["total"]["debit"], Decimal("13600.00"))
        self.assertEqual(tb["total"]["credit"], Decimal("13600.00"))
        self.assertEqual(
            [group["ac_type"] for group in tb["groups"]],
            ["asset", "liability", "equity", "revenue", "expense"],
        )
        self.assertEqual(
            sum((g["subtotal"]["debit"] for g in tb["groups"]), Decimal("0.00")),
            tb["total"]["debit"],
        )
        self.assertEqual(
            sum((g["subtotal"]["credit"] for g in tb["groups"]), Decimal("0.00")),
            tb["total"]["credit"],
        )

    def test_account_rows(self):
        tb = trial_balance()
        rows = {row["code"]: row for g in tb["groups"] for row in g["accounts"]}

        self.assertEqual(rows["1110"]["debit"], Decimal("10500.00"))
        self.assertEqual(rows["1110"]["credit"], Decimal("800.00"))
        self.assertEqual(rows["1110"]["balance"], Decimal("9700.00"))
        # credit-normal account shows a positive balance
        self.assertEqual(rows["4100"]["balance"], Decimal("2500.00"))
        # nothing posted, left out
        self.assertNotIn("2100", rows)

    def test_as_of_date(self):
        tb = trial_balance(self.day(3, 31))
        rows = {row["code"]: row for g in tb["groups"] for row in g["accounts"]}
        self.assertEqual(rows["4100"]["credit"], Decimal("2000.00"))
        self.assertEqual(tb["total"]["debit"], Decimal("13100.00"))
        self.assertTrue(tb["is_balanced"])

    def test_type_filter_and_zero_rows(self):
        tb = trial_balance(account_types=["expense"], include_zero=True)
        self.assertEqual([g["ac_type"] for g in tb["groups"]], ["expense"])
        codes = [row["code"] for row in tb["groups"][0]["accounts"]]
        self.assertEqual(codes, ["5100", "5200"])
        self.assertEqual(tb["total"]["debit"], Decimal("800.00"))

    def test_account_filter(self):
        tb = trial_balance(account_ids=[self.cash.pk])
        rows = [row for g in tb["groups"] for row in g["accounts"]]
        self.assertEqual([row["code"] for row in rows], ["1110"])

    def test_empty_company_is_balanced(self):
        tb = trial_balance(self.day(1, 31))
        self.assertTrue(tb["is_balanced"])
        self.assertEqual(len(tb["groups"]), 5)
        self.assertEqual(tb["total"], {"debit": Decimal("0.00"), "credit": Decimal("0.00")})


class GeneralLedgerTests(ReportTestCase):

    def test_running_balance(self):
        (cash,) = general_ledger(account_ids=[self.cash.pk])

        self.assertEqual(cash["opening_balance"], Decimal("0.00"))
        self.assertEqual(
            [line["balance"] for line in cash["lines"]],
            [Decimal("10000.00"), Decimal("9200.00"), Decimal("9700.00")],
        )
        self.assertEqual(cash["closing_balance"], Decimal("9700.00"))
        self.assertEqual(cash["total_debit"], Decimal("10500.00"))
        self.assertEqual(cash["total_credit"], Decimal("800.00"))

    def test_opening_balance_folds_earlier_lines(self):
        (cash,) = general_ledger(account_ids=[self.cash.pk], date_from=self.day(4, 1))

        self.assertEqual(cash["opening_balance"], Decimal("9200.00"))
        self.assertEqual(len(cash["lines"]), 1)
        self.assertEqual(cash["lines"][0]["journal_number"][:2], "GN")
        self.assertEqual(cash["closing_balance"], Decimal("9700.00"))

    def test_credit_normal_running_balance(self):
        (revenue,) = general_ledger(account_ids=[self.revenue.pk])
        self.assertEqual(
            [line["balance"] for line in revenue["lines"]],
            [Decimal("2000.00"), Decimal("2500.00")],
        )

    def test_empty_accounts(self):
        codes = [a["code"] for a in general_ledger()]
        self.assertNotIn("2100", codes)
        codes = [a["code"] for a in general_ledger(include_empty=True)]
        self.assertIn("2100", codes)


class FinancialStatementTests(ReportTestCase):

    def test_income_statement(self):
        report = income_statement(self.day(3, 1), self.day(3, 31))
        self.assertEqual(report["revenue"]["total"], Decimal("2000.00"))
        self.assertEqual(report["expenses"]["total"], Decimal("800.00"))
        self.assertEqual(report["net_income"], Decimal("1200.00"))

    def test_balance_sheet_balances(self):
        report = balance_sheet(self.day(4, 30))

        self.assertEqual(report["assets"]["total"], Decimal("12000.00"))
        self.assertEqual(report["liabilities"]["total"], Decimal("300.00"))
        self.assertEqual(report["equity"]["current_earnings"], Decimal("1700.00"))
        self.assertEqual(report["equity"]["total"], Decimal("11700.00"))
        self.assertEqual(report["total_liabilities_and_equity"], Decimal("12000.00"))
        self.assertTrue(report["is_balanced"])


class PartyBalanceTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        # CUST-A: two invoices, one credit note, 300 received
        big = self.invoice("CUST-A", "1000.00", self.day(3, 1), due=self.day(5, 31))
        self.invoice("CUST-A", "500.00", self.day(2, 1), due=self.day(3, 31))
        self.invoice("CUST-A", "200.00", self.day(3, 10), invoice_type="sales_return")
        self.settle("CUST-A", big, "300.00")
        # CUST-B: fully paid
        paid = self.invoice("CUST-B", "400.00", self.day(3, 5), due=self.day(4, 5))
        self.settle("CUST-B", paid, "400.00")
        # drafts are not receivables yet
        self.invoice("CUST-C", "999.00", self.day(3, 5), post=False)
        self.invoice("VEND-1", "600.00", self.day(6, 1), invoice_type="purchase",
                     due=self.day(6, 15))

    def invoice(self, party_ref, amount, date, invoice_type="sales", due=None, post=True):
        account = self.revenue if invoice_type.startswith("sales") else self.expense
        invoice = create_invoice(
            invoice_type=invoice_type,
            party_ref=party_ref,
            date=date,
            due_date=due,
            lines=[{"account": account, "unit_price": Decimal(amount)}],
        )
        return post_invoice(invoice.pk) if post else invoice

    def settle(self, party_ref, invoice, amount):
        receipt = create_payment(
            payment_type="receipt", party_ref=party_ref, date=self.day(4, 1),
            amount=Decimal(amount),
        )
        allocate_payment(receipt.pk, [{"invoice": invoice.pk, "amount": amount}])

    def test_customer_balances_net_returns_and_payments(self):
        report = party_balances("customer", self.day(6, 30))

        (cust_a,) = report["parties"]
        self.assertEqual(cust_a["party_ref"], "CUST-A")
        self.assertEqual(cust_a["invoice_count"], 3)
        self.assertEqual(cust_a["total"], Decimal("1300.00"))
        self.assertEqual(cust_a["paid"], Decimal("300.00"))
        self.assertEqual(cust_a["balance"], Decimal("1000.00"))
        self.assertEqual(report["total_balance"], Decimal("1000.00"))

    def test_overdue_aging_from_due_date(self):
        (cust_a,) = party_balances("customer", self.day(6, 30))["parties"]

        # 30 days past 31 May, 91 days past 31 March
        self.assertEqual(cust_a["aging"], {
            "1_30": Decimal("700.00"),
            "31_60": Decimal("0.00"),
            "61_90": Decimal("0.00"),
            "over_90": Decimal("500.00"),
        })
        self.assertEqual(cust_a["overdue"], Decimal("1200.00"))

    def test_nothing_overdue_before_due_dates(self):
        report = party_balances("customer", self.day(3, 31))
        (cust_a,) = report["parties"]
        self.assertEqual(cust_a["overdue"], Decimal("0.00"))
        self.assertEqual(report["total_overdue"], Decimal("0.00"))

    def test_settled_parties_on_request(self):
        report = party_balances("customer", self.day(6, 30), include_settled=True)
        rows = {p["party_ref"]: p for p in report["parties"]}
        self.assertEqual(set(rows), {"CUST-A", "CUST-B"})
        self.assertEqual(rows["CUST-B"]["balance"], Decimal("0.00"))

    def test_vendor_side(self):
        report = party_balances("vendor", self.day(6, 30))
        (vendor,) = report["parties"]
        self.assertEqual(vendor["party_ref"], "VEND-1")
        self.assertEqual(vendor["balance"], Decimal("600.00"))
        self.assertEqual(vendor["aging"]["1_30"], Decimal("600.00"))

        # invoices dated after the report date are left out
        self.assertEqual(party_balances("vendor", self.day(5, 31))["parties"], [])

    def test_unknown_side(self):
        with self.assertRaises(LedgerValidationError):
            party_balances("employee")
