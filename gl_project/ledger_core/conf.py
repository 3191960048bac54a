from decimal import Decimal
from django.conf import settings

# Used when settings.LEDGER is missing a key
DEFAULTS = {
    "BALANCE_TOLERANCE": Decimal("0.01"),
    "STRICT_TAX_DERIVATION": False,
    "DEFAULT_SEQUENCE_WIDTH": 5,
    "JOURNAL_SEQUENCE_WIDTH": 6,
}


def ledger_setting(name):
    """Read one key of settings.LEDGER, falling back to DEFAULTS."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown ledger setting: {name}")
    return getattr(settings, "LEDGER", {}).get(name, DEFAULTS[name])
