from .account import Account
from .auditlog import AuditLog
from .company import Company, CompanyMembership
from .default_account import DefaultAccount
from .depreciation import DepreciationLine, DepreciationRun
from .fixed_asset import AssetStatus, DepreciationMethod, FixedAsset
from .invoice import Invoice, InvoiceLine, InvoiceTax
from .journal import JournalEntry, JournalLine
from .payment import Payment, PaymentAllocation
from .period import FiscalPeriod
from .sequence import CompanySequence
from .snapshot import AccountBalanceSnapshot
from .tax import TaxCode, TaxTransaction
