"""
Request Dependencies

FastAPI dependencies resolving the service container and the calling tenant.
"""

from fastapi import Header, HTTPException, Request

from profitcore.config.logging import bind_tenant_context
from profitcore.services import ProfitServices


def get_services(request: Request) -> ProfitServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


async def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-ID")) -> str:
    """Tenant of the request, taken from the X-Tenant-ID header"""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(status_code=400, detail="X-Tenant-ID header must not be empty")
    bind_tenant_context(tenant_id)
    return tenant_id
