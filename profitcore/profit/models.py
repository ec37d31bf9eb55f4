"""
Profit Value Objects

Immutable results produced by the engine and aggregation, plus the partial
update payloads accepted by the cost-tracking surface.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class CostVector:
    """Itemized costs of one order; total is the sum of the five parts"""
    product: float = 0.0
    lead: float = 0.0
    packaging: float = 0.0
    printing: float = 0.0
    return_cost: float = 0.0
    total: float = 0.0

    @classmethod
    def from_parts(
        cls,
        product: float,
        lead: float,
        packaging: float,
        printing: float,
        return_cost: float,
    ) -> "CostVector":
        return cls(
            product=product,
            lead=lead,
            packaging=packaging,
            printing=printing,
            return_cost=return_cost,
            total=product + lead + packaging + printing + return_cost,
        )

    @property
    def parts_sum(self) -> float:
        return self.product + self.lead + self.packaging + self.printing + self.return_cost


@dataclass(frozen=True)
class ProfitBreakdown:
    """
    Financial breakdown of a single order.

    used_fallback marks estimates synthesized from revenue ratios; such
    breakdowns are never cached or persisted.
    """
    order_id: str
    revenue: float
    costs: CostVector
    gross_profit: float
    net_profit: float
    profit_margin: float
    is_return: bool
    warnings: Tuple[str, ...] = ()
    used_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["warnings"] = list(self.warnings)
        return data


@dataclass(frozen=True)
class ProfitSummary:
    total_revenue: float
    total_costs: float
    net_profit: float
    profit_margin: float
    order_count: int
    return_count: int


@dataclass(frozen=True)
class CostBreakdownTotals:
    product_costs: float
    lead_costs: float
    packaging_costs: float
    printing_costs: float
    return_costs: float


@dataclass(frozen=True)
class ProfitTrendPoint:
    date: str
    revenue: float
    costs: float
    profit: float
    order_count: int


@dataclass(frozen=True)
class PeriodProfitReport:
    start: datetime
    end: datetime
    period: str
    summary: ProfitSummary
    breakdown: CostBreakdownTotals
    trends: Tuple[ProfitTrendPoint, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "period": self.period,
            "summary": asdict(self.summary),
            "breakdown": asdict(self.breakdown),
            "trends": [asdict(point) for point in self.trends],
        }


@dataclass(frozen=True)
class DefaultCosts:
    """Tenant operational cost defaults"""
    packaging: float = 0.0
    printing: float = 0.0
    return_cost: float = 0.0


@dataclass(frozen=True)
class LeadBatchCost:
    batch_id: str
    total_cost: float
    lead_count: int
    cost_per_lead: float
    imported_at: Optional[datetime] = None


@dataclass
class OrderCostUpdate:
    """Partial manual edit of an order's operational costs; None means unchanged"""
    packaging: Optional[float] = None
    printing: Optional[float] = None
    return_cost: Optional[float] = None

    def supplied(self) -> Dict[str, float]:
        """Fields actually supplied, keyed by storage column"""
        values = {}
        if self.packaging is not None:
            values["packaging_cost"] = self.packaging
        if self.printing is not None:
            values["printing_cost"] = self.printing
        if self.return_cost is not None:
            values["return_cost"] = self.return_cost
        return values

    def is_empty(self) -> bool:
        return not self.supplied()


@dataclass
class TenantCostConfigUpdate:
    default_packaging_cost: Optional[float] = None
    default_printing_cost: Optional[float] = None
    default_return_cost: Optional[float] = None

    def supplied(self) -> Dict[str, float]:
        return {
            key: value
            for key, value in (
                ("default_packaging_cost", self.default_packaging_cost),
                ("default_printing_cost", self.default_printing_cost),
                ("default_return_cost", self.default_return_cost),
            )
            if value is not None
        }


@dataclass
class BatchCostSummary:
    """Totals over the stored cost rows of several orders"""
    total_product_costs: float = 0.0
    total_lead_costs: float = 0.0
    total_packaging_costs: float = 0.0
    total_printing_costs: float = 0.0
    total_return_costs: float = 0.0
    total_costs: float = 0.0
    order_count: int = 0
    missing_order_ids: Tuple[str, ...] = field(default_factory=tuple)
