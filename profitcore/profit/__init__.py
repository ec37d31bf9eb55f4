"""
Profit Module
Value objects shared by the engine, aggregation and cost tracking
"""
from .models import (
    BatchCostSummary,
    CostBreakdownTotals,
    CostVector,
    DefaultCosts,
    LeadBatchCost,
    OrderCostUpdate,
    PeriodProfitReport,
    ProfitBreakdown,
    ProfitSummary,
    ProfitTrendPoint,
    TenantCostConfigUpdate,
)

__all__ = [
    "BatchCostSummary",
    "CostBreakdownTotals",
    "CostVector",
    "DefaultCosts",
    "LeadBatchCost",
    "OrderCostUpdate",
    "PeriodProfitReport",
    "ProfitBreakdown",
    "ProfitSummary",
    "ProfitTrendPoint",
    "TenantCostConfigUpdate",
]
