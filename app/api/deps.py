from dataclasses import dataclass

from app.core.context import set_tenant_id


@dataclass(slots=True)
class TenantContext:
    org_id: str


def tenant_scope(org_id: str) -> TenantContext:
    """Build the tenant context for a unit of work and tag log records with it."""
    set_tenant_id(org_id)
    return TenantContext(org_id=org_id)
