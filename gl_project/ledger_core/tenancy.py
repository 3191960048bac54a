"""
Tenant context for the ledger, stored in a ContextVar.

Every query and save of a tenant-owned model consults the context bound
here, so ledger code never passes a company around by hand:

    with tenant_context(company, user_id="alice"):
        Account.objects.all()      # this company's accounts only

The HTTP side binds it in TenantContextMiddleware; jobs and management
commands bind it explicitly.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from typing import NamedTuple, Optional, Tuple

from .exceptions import TenantContextMissing


class TenantContext(NamedTuple):
    """Immutable caller identity for one request or job."""

    company_id: int
    user_id: Optional[str] = None
    roles: Tuple[str, ...] = ()


# None means nothing is bound, tenant-scoped access refuses to run
_current_tenant: ContextVar[Optional[TenantContext]] = ContextVar(
    "current_tenant",
    default=None,
)


def get_current_tenant() -> Optional[TenantContext]:
    return _current_tenant.get()


def require_tenant() -> TenantContext:
    ctx = _current_tenant.get()
    if ctx is None:
        raise TenantContextMissing(
            "No tenant context bound; wrap the call in tenant_context()."
        )
    return ctx


def get_current_company_id() -> int:
    return require_tenant().company_id


def get_current_actor() -> Optional[str]:
    """User id of the caller, None for system work."""
    ctx = _current_tenant.get()
    return ctx.user_id if ctx else None


@contextmanager
def tenant_context(company, user_id=None, roles=()):
    """
    Bind the tenant for the duration of the block.

    ``company`` may be a Company instance or its primary key.
    Nested blocks restore the outer context on exit.
    """
    ctx = TenantContext(
        company_id=getattr(company, "pk", company),
        user_id=None if user_id is None else str(user_id),
        roles=tuple(roles),
    )
    token = _current_tenant.set(ctx)
    try:
        yield ctx
    finally:
        _current_tenant.reset(token)
