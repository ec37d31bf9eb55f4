"""
Profit API Endpoints

Order profit breakdowns, status changes, manual cost edits and period
reports for the calling tenant.
"""

from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from profitcore.database.models import OrderStatus
from profitcore.profit.aggregation import Period, PeriodProfitParams
from profitcore.profit.models import OrderCostUpdate
from profitcore.serving.api.dependencies import get_services, get_tenant_id
from profitcore.services import ProfitServices

router = APIRouter()


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CostVectorResponse(BaseModel):
    product: float
    lead: float
    packaging: float
    printing: float
    return_cost: float
    total: float


class ProfitBreakdownResponse(BaseModel):
    """Profit breakdown of a single order"""
    order_id: str
    revenue: float
    costs: CostVectorResponse
    gross_profit: float
    net_profit: float
    profit_margin: float
    is_return: bool
    warnings: List[str] = []
    used_fallback: bool = False


class StatusChangeRequest(BaseModel):
    status: OrderStatus
    return_cost: Optional[float] = Field(None, description="Explicit return cost when marking as returned")


class CostUpdateRequest(BaseModel):
    """Manual cost edit; omitted fields stay unchanged"""
    packaging_cost: Optional[float] = None
    printing_cost: Optional[float] = None
    return_cost: Optional[float] = None


class BatchProfitRequest(BaseModel):
    order_ids: List[str] = Field(..., min_length=1, max_length=500)


class BatchProfitResponse(BaseModel):
    items: List[ProfitBreakdownResponse]
    requested: int
    calculated: int


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/orders/{order_id}/profit", response_model=ProfitBreakdownResponse)
async def get_order_profit(
    order_id: str,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    breakdown = await services.engine.calculate_order_profit(order_id, tenant_id)
    return breakdown.to_dict()


@router.post("/orders/{order_id}/status", response_model=ProfitBreakdownResponse)
async def change_order_status(
    order_id: str,
    body: StatusChangeRequest,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Change an order's status and return the recalculated breakdown.

    Marking an order returned applies the explicit return cost, else the
    tenant default.
    """
    breakdown = await services.engine.recalculate_on_status_change(
        order_id, body.status, tenant_id, return_cost=body.return_cost,
    )
    return breakdown.to_dict()


@router.patch("/orders/{order_id}/costs", response_model=ProfitBreakdownResponse)
async def update_order_costs(
    order_id: str,
    body: CostUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    breakdown = await services.engine.update_order_costs_manually(
        order_id,
        tenant_id,
        OrderCostUpdate(
            packaging=body.packaging_cost,
            printing=body.printing_cost,
            return_cost=body.return_cost,
        ),
    )
    return breakdown.to_dict()


@router.post("/orders/profits", response_model=BatchProfitResponse)
async def calculate_order_profits(
    body: BatchProfitRequest,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    """Breakdowns for many orders; orders that fail are left out"""
    breakdowns = await services.engine.calculate_multiple_order_profits(body.order_ids, tenant_id)
    return {
        "items": [b.to_dict() for b in breakdowns],
        "requested": len(body.order_ids),
        "calculated": len(breakdowns),
    }


@router.get("/reports/profit")
async def get_profit_report(
    start_date: date,
    end_date: date,
    period: Period = Period.MONTHLY,
    product_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    tenant_id: str = Depends(get_tenant_id),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Period profit report.

    Dates are inclusive calendar days; trends are bucketed by period.
    """
    params = PeriodProfitParams(
        start_date=datetime.combine(start_date, time.min),
        end_date=datetime.combine(end_date, time.max),
        period=period,
        product_id=product_id,
        user_id=user_id,
        status=status,
    )
    report = await services.engine.calculate_period_profit(params, tenant_id)
    return report.to_dict()
