from django.core.exceptions import ObjectDoesNotExist, ValidationError


class LedgerError(Exception):
    """Base class for every ledger business error."""
    pass


class TenantContextMissing(LedgerError):
    """Raised when tenant-owned rows are touched without a bound tenant."""
    pass


# ---------- Validation (rejected request) ----------
class LedgerValidationError(LedgerError, ValidationError):
    """Malformed or out-of-range input. Still a Django ValidationError."""
    pass


class EmptyJournalError(LedgerValidationError):
    """Raised when a journal has fewer than two lines."""
    pass


class UnknownAccountError(LedgerValidationError):
    """Raised when a line references a missing, inactive or header account."""
    pass


class InvalidParentError(LedgerValidationError):
    """Raised when an account parent is missing or would create a cycle."""
    pass


class NoEligibleAssetsError(LedgerValidationError):
    """Raised when a depreciation run would have no lines."""
    pass


class PeriodClosedError(LedgerValidationError):
    """Raised when a journal is dated inside a closed fiscal period."""
    pass


# ---------- Invariant violations (never auto-corrected) ----------
class InvariantViolation(LedgerError):
    pass


class UnbalancedJournalError(InvariantViolation):
    """Raised when a JournalEntry fails double-entry balance check."""
    pass


class OverAllocationError(InvariantViolation):
    """Raised when allocations exceed the payment or an invoice balance."""
    pass


# ---------- Not found (also covers other-tenant rows) ----------
class NotFoundError(LedgerError, ObjectDoesNotExist):
    pass


# ---------- Conflicts ----------
class ConflictError(LedgerError):
    pass


class DuplicateCodeError(ConflictError):
    """Raised when an account code already exists for the company."""
    pass


class AlreadyPostedError(ConflictError):
    """Raised when posting something that is already posted."""
    pass


class AlreadyPostedDifferentPayload(ConflictError):
    """Raised when a JournalEntry already posted with different payload """
    pass


class CannotDeletePostedError(ConflictError):
    pass


class InvalidTransitionError(ConflictError):
    """Raised on a status change the workflow does not allow."""
    pass


class AccountInUseError(ConflictError):
    """Raised when deactivating an account with lines in the open period."""
    pass


class ImmutableRecordError(ConflictError):
    """Raised when an append-only record is updated or deleted."""
    pass


# ---------- Missing configuration / reference data ----------
class DependencyError(LedgerError):
    pass


class NoFiscalPeriodError(DependencyError):
    """Raised when no fiscal period contains a date."""
    pass


class MissingDefaultAccountError(DependencyError):
    """Raised when auto-posting needs a default account role that is not set."""
    pass
