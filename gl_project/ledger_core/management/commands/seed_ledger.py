import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils.text import slugify

from ledger_core.models import (Account, Company, CompanyMembership,
                                FiscalPeriod, TaxCode)
from ledger_core.services import (create_account, create_monthly_periods,
                                  create_tax_code, set_default_account)
from ledger_core.tenancy import tenant_context

User = get_user_model()

# (code, name, type, parent code, role)
STARTER_CHART = [
    ("1000", "Assets", "asset", None, None),
    ("1100", "Cash at bank", "asset", "1000", "bank"),
    ("1200", "Accounts receivable", "asset", "1000", "receivable"),
    ("1300", "VAT recoverable", "asset", "1000", "tax_recoverable"),
    ("1500", "Fixed assets", "asset", "1000", None),
    ("1590", "Accumulated depreciation", "asset", "1000", "accumulated_depreciation"),
    ("2000", "Liabilities", "liability", None, None),
    ("2100", "Accounts payable", "liability", "2000", "payable"),
    ("2200", "VAT payable", "liability", "2000", "tax_payable"),
    ("3000", "Equity", "equity", None, None),
    ("3100", "Share capital", "equity", "3000", None),
    ("4000", "Revenue", "revenue", None, None),
    ("4100", "Sales", "revenue", "4000", "sales_revenue"),
    ("5000", "Expenses", "expense", None, None),
    ("5100", "Purchases", "expense", "5000", "purchase_expense"),
    ("5200", "Depreciation expense", "expense", "5000", "depreciation_expense"),
]

# Header accounts only group their children
HEADER_CODES = {"1000", "2000", "3000", "4000", "5000"}
# Contra accounts carry the opposite balance of their type
CONTRA_CODES = {"1590"}

TAX_CODES = [
    ("VAT15", "Standard VAT 15%", Decimal("15.00")),
    ("VAT0", "Zero-rated", Decimal("0.00")),
]


class Command(BaseCommand):
    help = (
        "Create a company with a starter chart of accounts, default posting "
        "accounts, tax codes and the monthly fiscal periods of one year."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--company",
            default="Demo Ltd",
            help="Name of the company to create (default: Demo Ltd).",
        )
        parser.add_argument(
            "--year",
            type=int,
            default=datetime.date.today().year,
            help="Fiscal year to open periods for (default: current year).",
        )
        parser.add_argument(
            "--username",
            default=None,
            help="Optional existing user to make owner of the company.",
        )

    def unique_slug(self, name, max_tries=100):
        # "Test Ltd" → "test-ltd", then "test-ltd-1", "test-ltd-2"...
        base = slugify(name) or "company"
        slug = base
        for i in range(1, max_tries + 1):
            if not Company.objects.filter(slug=slug).exists():
                return slug
            slug = f"{base}-{i}"
        raise CommandError("Couldn't generate unique slug")

    @transaction.atomic
    def handle(self, *args, **options):
        name = options["company"]
        year = options["year"]

        company = Company.objects.filter(name=name).first()
        if company is None:
            company = Company.objects.create(name=name, slug=self.unique_slug(name))
            self.stdout.write(self.style.SUCCESS(f"Created company: {company}"))
        else:
            self.stdout.write(self.style.NOTICE(f"Using existing company: {company}"))

        if options["username"]:
            try:
                user = User.objects.get(username=options["username"])
            except User.DoesNotExist:
                raise CommandError(f"User {options['username']} does not exist.")
            CompanyMembership.objects.get_or_create(
                user=user, company=company, defaults={"role": "owner"}
            )
            self.stdout.write(self.style.SUCCESS(f"{user} is owner of {company}"))

        with tenant_context(company):
            self.seed_chart()
            self.seed_tax_codes()
            self.seed_periods(year)

        self.stdout.write(self.style.SUCCESS("Ledger seeded successfully!"))

    def seed_chart(self):
        created = 0
        for code, name, ac_type, parent_code, role in STARTER_CHART:
            account = Account.objects.filter(code=code).first()
            if account is None:
                parent = Account.objects.get(code=parent_code) if parent_code else None
                account = create_account(
                    code=code,
                    name=name,
                    ac_type=ac_type,
                    parent=parent,
                    balance_side="credit" if code in CONTRA_CODES else None,
                    is_posting_allowed=code not in HEADER_CODES,
                )
                created += 1
            if role:
                set_default_account(role, account.pk)
        self.stdout.write(self.style.SUCCESS(f"Created {created} account(s)"))

    def seed_tax_codes(self):
        for code, name, rate in TAX_CODES:
            if not TaxCode.objects.filter(code=code).exists():
                create_tax_code(code=code, name=name, rate=rate)
        self.stdout.write(self.style.SUCCESS("Tax codes ready"))

    def seed_periods(self, year):
        if FiscalPeriod.objects.filter(name__startswith=f"{year}-").exists():
            self.stdout.write(self.style.NOTICE(f"Periods for {year} already exist"))
            return
        create_monthly_periods(year)
        self.stdout.write(self.style.SUCCESS(f"Created 12 periods for {year}"))
