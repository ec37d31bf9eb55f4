"""
Cost Configuration Endpoints

Tenant cost defaults, lead batches and product cost prices.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from profitcore.profit.models import TenantCostConfigUpdate
from profitcore.serving.api.dependencies import get_services, get_tenant_id
from profitcore.services import ProfitServices

router = APIRouter()


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CostConfigResponse(BaseModel):
    default_packaging_cost: float
    default_printing_cost: float
    default_return_cost: float


class CostConfigUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their stored value"""
    default_packaging_cost: Optional[float] = None
    default_printing_cost: Optional[float] = None
    default_return_cost: Optional[float] = None


class LeadBatchCreateRequest(BaseModel):
    user_id: str
    total_cost: float
    lead_count: int


class LeadBatchUpdateRequest(BaseModel):
    total_cost: float


class LeadBatchResponse(BaseModel):
    batch_id: str
    total_cost: float
    lead_count: int
    cost_per_lead: float
    imported_at: Optional[datetime] = None


class ProductCostUpdateRequest(BaseModel):
    cost_price: float


class ProductCostResponse(BaseModel):
    product_id: str
    cost_price: Optional[float] = None
    price: float


# =============================================================================
# TENANT COST CONFIG
# =============================================================================

@router.get("/tenant/cost-config", response_model=CostConfigResponse)
async def get_cost_config(
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    """Effective defaults, including the system fallback when nothing is configured"""
    defaults = await services.engine.get_default_costs(tenant_id)
    return {
        "default_packaging_cost": defaults.packaging,
        "default_printing_cost": defaults.printing,
        "default_return_cost": defaults.return_cost,
    }


@router.put("/tenant/cost-config", response_model=CostConfigResponse)
async def update_cost_config(
    body: CostConfigUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    config = await services.cost_tracking.update_tenant_cost_config(
        tenant_id,
        TenantCostConfigUpdate(
            default_packaging_cost=body.default_packaging_cost,
            default_printing_cost=body.default_printing_cost,
            default_return_cost=body.default_return_cost,
        ),
    )
    return {
        "default_packaging_cost": config.default_packaging_cost,
        "default_printing_cost": config.default_printing_cost,
        "default_return_cost": config.default_return_cost,
    }


# =============================================================================
# LEAD BATCHES
# =============================================================================

@router.get("/lead-batches", response_model=List[LeadBatchResponse])
async def list_lead_batches(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    batches = await services.cost_tracking.get_lead_batches(tenant_id, limit=limit, offset=offset)
    return [asdict(batch) for batch in batches]


@router.post("/lead-batches", response_model=LeadBatchResponse, status_code=201)
async def create_lead_batch(
    body: LeadBatchCreateRequest,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    batch = await services.cost_tracking.create_lead_batch(
        tenant_id, body.user_id, body.total_cost, body.lead_count,
    )
    return asdict(batch)


@router.patch("/lead-batches/{batch_id}", response_model=LeadBatchResponse)
async def update_lead_batch(
    batch_id: str,
    body: LeadBatchUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    batch = await services.cost_tracking.update_lead_batch_cost(batch_id, tenant_id, body.total_cost)
    return asdict(batch)


@router.delete("/lead-batches/{batch_id}", status_code=204)
async def delete_lead_batch(
    batch_id: str,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Response:
    await services.cost_tracking.delete_lead_batch(batch_id, tenant_id)
    return Response(status_code=204)


# =============================================================================
# PRODUCTS
# =============================================================================

@router.patch("/products/{product_id}/cost-price", response_model=ProductCostResponse)
async def update_product_cost_price(
    product_id: str,
    body: ProductCostUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    product = await services.cost_tracking.update_product_cost_price(product_id, tenant_id, body.cost_price)
    return {"product_id": product.id, "cost_price": product.cost_price, "price": product.price}
