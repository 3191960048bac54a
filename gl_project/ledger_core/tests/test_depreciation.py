from decimal import Decimal

from ledger_core.exceptions import (AlreadyPostedError,
                                    CannotDeletePostedError, ConflictError,
                                    InvalidTransitionError,
                                    LedgerValidationError,
                                    MissingDefaultAccountError,
                                    NoEligibleAssetsError)
from ledger_core.models import (DefaultAccount, DepreciationLine,
                                DepreciationRun, FixedAsset)
from ledger_core.models.fixed_asset import AssetStatus, DepreciationMethod
from ledger_core.services import (asset_summary, calculate_depreciation,
                                  create_asset, delete_asset,
                                  delete_depreciation_run, dispose_asset,
                                  list_assets, monthly_depreciation,
                                  post_depreciation_to_journal, scrap_asset,
                                  sell_asset, update_asset)
from ledger_core.services.depreciate import MONTHLY_CALCULATORS

from .base import LedgerTestCase


class AssetTestCase(LedgerTestCase):

    def make_asset(self, method=DepreciationMethod.STRAIGHT_LINE, **kwargs):
        values = {
            "name": "Delivery van",
            "purchase_date": self.day(1, 1),
            "purchase_value": Decimal("12000.00"),
            "salvage_value": Decimal("0.00"),
            "useful_life_years": 5,
            "depreciation_method": method,
        }
        values.update(kwargs)
        return create_asset(**values)


class DepreciationFormulaTests(AssetTestCase):

    def test_straight_line_monthly_amount(self):
        # (12000 - 0) / 5 / 12
        asset = self.make_asset()
        self.assertEqual(monthly_depreciation(asset), Decimal("200.00"))

    def test_straight_line_respects_salvage(self):
        asset = self.make_asset(salvage_value=Decimal("2400.00"))
        self.assertEqual(monthly_depreciation(asset), Decimal("160.00"))

    def test_declining_methods_share_double_rate(self):
        # 12000 × (2 / 5) / 12
        declining = self.make_asset(DepreciationMethod.DECLINING_BALANCE)
        double = self.make_asset(DepreciationMethod.DOUBLE_DECLINING_BALANCE)
        self.assertEqual(monthly_depreciation(declining), Decimal("400.00"))
        self.assertEqual(monthly_depreciation(double), Decimal("400.00"))

    def test_rounding_is_half_up(self):
        # 1000 / 3 / 12 = 27.777...
        asset = self.make_asset(purchase_value=Decimal("1000.00"), useful_life_years=3)
        self.assertEqual(monthly_depreciation(asset), Decimal("27.78"))

    def test_every_method_has_a_calculator(self):
        self.assertEqual(set(MONTHLY_CALCULATORS), set(DepreciationMethod))

    def test_asset_codes(self):
        first = self.make_asset()
        second = self.make_asset()
        self.assertEqual(first.asset_code, "AST00001")
        self.assertEqual(second.asset_code, "AST00002")
        self.assertEqual(first.net_book_value, Decimal("12000.00"))


class DepreciationRunTests(AssetTestCase):

    def test_calculate_updates_assets_and_run(self):
        asset = self.make_asset()

        run = calculate_depreciation(self.day(1, 31))

        self.assertEqual(run.status, "calculated")
        self.assertEqual(run.run_number, "DEPR00001")
        self.assertEqual(run.total_depreciation, Decimal("200.00"))
        self.assertEqual(run.asset_count, 1)
        self.assertEqual((run.period_start, run.period_end), (self.day(1, 1), self.day(1, 31)))

        line = run.lines.get()
        self.assertEqual(line.depreciation_amount, Decimal("200.00"))
        self.assertEqual(line.accumulated_before, Decimal("0.00"))
        self.assertEqual(line.accumulated_after, Decimal("200.00"))
        self.assertEqual(line.nbv_before, Decimal("12000.00"))
        self.assertEqual(line.nbv_after, Decimal("11800.00"))

        asset.refresh_from_db()
        self.assertEqual(asset.accumulated_depreciation, Decimal("200.00"))
        self.assertEqual(asset.net_book_value, Decimal("11800.00"))

    def test_declining_balance_uses_remaining_value(self):
        self.make_asset(DepreciationMethod.DECLINING_BALANCE)
        calculate_depreciation(self.day(1))
        run = calculate_depreciation(self.day(2))
        # (12000 - 400) × 0.4 / 12
        self.assertEqual(run.total_depreciation, Decimal("386.67"))

    def test_straight_line_runs_repeat_amounts(self):
        self.make_asset()
        first = calculate_depreciation(self.day(1))
        second = calculate_depreciation(self.day(1))
        self.assertNotEqual(first.pk, second.pk)
        self.assertEqual(first.total_depreciation, second.total_depreciation)

    def test_no_eligible_assets(self):
        with self.assertRaises(NoEligibleAssetsError):
            calculate_depreciation(self.day(1))
        self.assertFalse(DepreciationRun.objects.exists())

    def test_assets_bought_after_the_month_are_skipped(self):
        self.make_asset(purchase_date=self.day(6, 1))
        with self.assertRaises(NoEligibleAssetsError):
            calculate_depreciation(self.day(5))

    def test_disposed_assets_are_skipped(self):
        asset = self.make_asset()
        dispose_asset(asset.pk, self.day(1, 2))
        with self.assertRaises(NoEligibleAssetsError):
            calculate_depreciation(self.day(1))

    def test_asset_filter(self):
        van = self.make_asset()
        self.make_asset(name="Forklift")
        run = calculate_depreciation(self.day(1), asset_ids=[van.pk])
        self.assertEqual(list(run.lines.values_list("asset_id", flat=True)), [van.pk])

    def test_sub_cent_assets_are_left_out(self):
        # 0.10 / 10 / 12 rounds to 0.00
        tiny = self.make_asset(name="Stapler", purchase_value=Decimal("0.10"), useful_life_years=10)
        with self.assertRaises(NoEligibleAssetsError):
            calculate_depreciation(self.day(1))
        self.assertFalse(DepreciationRun.objects.exists())

        van = self.make_asset()
        run = calculate_depreciation(self.day(1))
        self.assertEqual(list(run.lines.values_list("asset_id", flat=True)), [van.pk])
        self.assertEqual(run.asset_count, 1)

        run = post_depreciation_to_journal(run.pk)
        self.assertEqual(run.status, "posted")
        self.assertEqual(run.journal.compute_totals(), (Decimal("200.00"), Decimal("200.00")))
        tiny.refresh_from_db()
        self.assertEqual(tiny.accumulated_depreciation, Decimal("0.00"))
        self.assertEqual(tiny.status, AssetStatus.ACTIVE)

    def test_last_month_is_capped_and_disposes(self):
        asset = self.make_asset()
        # 50.00 left above salvage
        FixedAsset.objects.filter(pk=asset.pk).update(
            accumulated_depreciation=Decimal("11950.00"),
            net_book_value=Decimal("50.00"),
        )

        run = calculate_depreciation(self.day(1))

        self.assertEqual(run.total_depreciation, Decimal("50.00"))
        asset.refresh_from_db()
        self.assertEqual(asset.net_book_value, Decimal("0.00"))
        self.assertEqual(asset.status, AssetStatus.DISPOSED)

    def test_post_run_to_journal(self):
        self.make_asset()
        run = calculate_depreciation(self.day(1))

        run = post_depreciation_to_journal(run.pk)

        self.assertEqual(run.status, "posted")
        je = run.journal
        self.assertEqual(je.status, "posted")
        self.assertEqual(je.journal_type, "depreciation")
        self.assertEqual(je.date, self.day(1, 31))
        lines = {line.account_id: (line.debit, line.credit) for line in je.lines.all()}
        self.assertEqual(lines[self.depr_expense.pk], (Decimal("200.00"), Decimal("0.00")))
        self.assertEqual(lines[self.accum_depr.pk], (Decimal("0.00"), Decimal("200.00")))

        with self.assertRaises(AlreadyPostedError):
            post_depreciation_to_journal(run.pk)

    def test_post_needs_default_accounts(self):
        self.make_asset()
        run = calculate_depreciation(self.day(1))
        DefaultAccount.objects.get(role="depreciation_expense").delete()

        with self.assertRaises(MissingDefaultAccountError):
            post_depreciation_to_journal(run.pk)
        run.refresh_from_db()
        self.assertEqual(run.status, "calculated")

    def test_posted_run_cannot_be_deleted(self):
        self.make_asset()
        run = calculate_depreciation(self.day(1))
        post_depreciation_to_journal(run.pk)

        with self.assertRaises(CannotDeletePostedError):
            delete_depreciation_run(run.pk)

    def test_delete_calculated_run_restores_assets(self):
        asset = self.make_asset()
        FixedAsset.objects.filter(pk=asset.pk).update(
            accumulated_depreciation=Decimal("11900.00"),
            net_book_value=Decimal("100.00"),
        )
        run = calculate_depreciation(self.day(1))
        asset.refresh_from_db()
        self.assertEqual(asset.status, AssetStatus.DISPOSED)

        delete_depreciation_run(run.pk)

        asset.refresh_from_db()
        self.assertEqual(asset.accumulated_depreciation, Decimal("11900.00"))
        self.assertEqual(asset.net_book_value, Decimal("100.00"))
        self.assertEqual(asset.status, AssetStatus.ACTIVE)
        self.assertFalse(DepreciationRun.objects.filter(pk=run.pk).exists())
        self.assertFalse(DepreciationLine.objects.filter(run_id=run.pk).exists())


class AssetRegisterTests(AssetTestCase):

    def test_descriptive_fields_stay_editable(self):
        asset = self.make_asset()
        calculate_depreciation(self.day(1))

        asset = update_asset(asset.pk, name="Van #2", description="Blue")
        self.assertEqual(asset.name, "Van #2")

    def test_unknown_method_is_a_validation_error(self):
        with self.assertRaises(LedgerValidationError):
            self.make_asset(method="sum_of_years")
        self.assertFalse(FixedAsset.objects.exists())

        asset = self.make_asset()
        with self.assertRaises(LedgerValidationError):
            update_asset(asset.pk, depreciation_method="sum_of_years")

    def test_depreciation_inputs_freeze_after_first_run(self):
        asset = self.make_asset()
        asset = update_asset(asset.pk, purchase_value="15000.00")
        self.assertEqual(asset.net_book_value, Decimal("15000.00"))

        calculate_depreciation(self.day(1))
        with self.assertRaises(ConflictError):
            update_asset(asset.pk, useful_life_years=10)

    def test_retirement_is_one_way(self):
        sold = sell_asset(self.make_asset().pk, self.day(2), "9000.00")
        self.assertEqual(sold.status, AssetStatus.SOLD)
        self.assertEqual(sold.disposal_amount, Decimal("9000.00"))

        scrapped = scrap_asset(self.make_asset().pk, self.day(2))
        self.assertEqual(scrapped.status, AssetStatus.SCRAPPED)

        with self.assertRaises(InvalidTransitionError):
            dispose_asset(sold.pk, self.day(3))
        with self.assertRaises(InvalidTransitionError):
            update_asset(scrapped.pk, name="back again")

    def test_delete_refused_once_depreciated(self):
        fresh = self.make_asset()
        used = self.make_asset(name="Forklift")
        calculate_depreciation(self.day(1), asset_ids=[used.pk])

        delete_asset(fresh.pk)
        self.assertFalse(FixedAsset.objects.filter(pk=fresh.pk).exists())
        with self.assertRaises(ConflictError):
            delete_asset(used.pk)

    def test_summary(self):
        self.make_asset()
        self.make_asset(name="Forklift", purchase_value=Decimal("6000.00"))
        calculate_depreciation(self.day(1))
        sell_asset(self.make_asset(name="Old van").pk, self.day(1, 2), "100.00")

        summary = asset_summary()

        self.assertEqual(summary["count"], 3)
        self.assertEqual(summary["total_cost"], Decimal("30000.00"))
        # 200 + 100
        self.assertEqual(summary["total_accumulated_depreciation"], Decimal("300.00"))
        self.assertEqual(summary["total_net_book_value"], Decimal("29700.00"))
        self.assertEqual(summary["by_status"][AssetStatus.ACTIVE], 2)
        self.assertEqual(summary["by_status"][AssetStatus.SOLD], 1)
        self.assertEqual(
            [a.name for a in list_assets(status=AssetStatus.ACTIVE)],
            ["Delivery van", "Forklift"],
        )
