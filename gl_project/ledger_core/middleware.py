from .models import CompanyMembership
from .tenancy import tenant_context


class TenantContextMiddleware:
    """
    Bind the tenant context for the duration of a request.

    The active company comes from the session ("active_company_id") and is
    only honoured when the user holds an active membership in it, so a
    tampered session can't jump into another company. Requests without
    one run unbound: any tenant-scoped query then fails loudly.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        membership = self._resolve_membership(request)
        if membership is None:
            request.company = None
            return self.get_response(request)

        request.company = membership.company
        with tenant_context(
            membership.company,
            user_id=request.user.pk,
            roles=(membership.role,),
        ) as ctx:
            request.tenant = ctx
            return self.get_response(request)

    def _resolve_membership(self, request):
        user = getattr(request, "user", None)
        if user is None or not user.is_authenticated:
            return None
        company_id = request.session.get("active_company_id")
        if not company_id:
            return None
        return (
            CompanyMembership.objects.select_related("company")
            .filter(user=user, company_id=company_id, is_active=True)
            .first()
        )
