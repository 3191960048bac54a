"""
Business operations of the ledger.

Callers bind a tenant with ledger_core.tenancy.tenant_context() and use
these functions; models are never mutated directly from outside.
"""
from .accounts import (account_balance, accounts_by_type, create_account,
                       deactivate_account, get_default_account, list_accounts,
                       reactivate_account, set_default_account, update_account)
from .assets import (asset_summary, create_asset, delete_asset, dispose_asset,
                     list_assets, scrap_asset, sell_asset, update_asset)
from .depreciate import (calculate_depreciation, delete_depreciation_run,
                         list_depreciation_runs, monthly_depreciation,
                         post_depreciation_to_journal)
from .invoices import (cancel_invoice, create_invoice, delete_invoice,
                       list_invoices, post_invoice, submit_invoice,
                       update_invoice)
from .journals import (cancel_journal, create_and_post_journal,
                       create_draft_journal, delete_draft_journal, get_journal,
                       list_journals, post_journal, reverse_journal,
                       submit_journal, update_draft_journal)
from .payment import (allocate_payment, approve_payment, cancel_payment,
                      create_payment, delete_payment, payment_summary,
                      post_payment, remove_allocation, submit_payment,
                      update_allocation)
from .periods import (close_period, create_monthly_periods, create_period,
                      reopen_period, resolve_period)
from .reporting import (balance_sheet, general_ledger, income_statement,
                        party_balances, trial_balance)
from .tax import (create_tax_code, derive_tax_transactions,
                  rederive_tax_transactions, vat_summary)
from .sequences import allocate_code
