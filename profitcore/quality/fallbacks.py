"""
Fallback and Recovery Module

Best-effort substitutes for missing cost inputs and failed calculations.

Every function here returns a FallbackResult carrying the substituted value,
whether an estimate was used, a machine-readable reason and human-readable
warnings. None of them raise.

The revenue ratios are industry rules of thumb, configurable through
ProfitSettings; they are heuristics, not ground truth.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

import structlog

from profitcore.config.settings import ProfitSettings
from profitcore.database.models import OrderStatus
from profitcore.errors import ErrorCode, ErrorKind, FATAL_CODES, ProfitError, is_recoverable
from profitcore.profit.models import CostVector, DefaultCosts, ProfitBreakdown

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FallbackRatios:
    """Heuristic constants used when real cost data is unavailable"""
    product: float = 0.60
    lead: float = 0.05
    packaging: float = 0.02
    printing: float = 0.01
    return_cost: float = 0.03
    flat_lead_cost: float = 25.00
    default_packaging: float = 5.00
    default_printing: float = 2.50
    default_return: float = 15.00
    tolerance: float = 0.01
    # Totals above this multiple of revenue are flagged during repair
    high_cost_multiple: float = 1.5

    @classmethod
    def from_settings(cls, settings: ProfitSettings) -> "FallbackRatios":
        return cls(
            product=settings.product_cost_ratio,
            lead=settings.lead_cost_ratio,
            packaging=settings.packaging_cost_ratio,
            printing=settings.printing_cost_ratio,
            return_cost=settings.return_cost_ratio,
            flat_lead_cost=settings.fallback_lead_cost,
            default_packaging=settings.fallback_packaging_cost,
            default_printing=settings.fallback_printing_cost,
            default_return=settings.fallback_return_cost,
            tolerance=settings.consistency_tolerance,
        )


DEFAULT_RATIOS = FallbackRatios()


@dataclass
class FallbackResult(Generic[T]):
    value: T
    used_fallback: bool
    reason: str
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SafeProfit:
    gross_profit: float
    net_profit: float
    profit_margin: float
    total_costs: float


@dataclass(frozen=True)
class RecoveryStrategy:
    can_recover: bool
    fallback_available: bool
    action: str
    user_action: Optional[str] = None


def _non_negative(value: Optional[float]) -> float:
    """Clamp to a finite, non-negative number"""
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return max(0.0, number)


def _describe(error: Optional[BaseException]) -> str:
    if error is None:
        return ""
    return str(error) or type(error).__name__


# =============================================================================
# INPUT SUBSTITUTES
# =============================================================================

def fallback_product_cost(
    order_total: float,
    quantity: int = 1,
    error: Optional[BaseException] = None,
    ratios: FallbackRatios = DEFAULT_RATIOS,
) -> FallbackResult[float]:
    """
    Estimate the unit product cost from order revenue.

    The whole order's product cost is estimated as a fixed share of revenue
    and spread evenly across quantity.
    """
    reason = f"Product cost error: {_describe(error)}" if error else "Product cost information not found"
    units = quantity if quantity and quantity > 0 else 1
    unit_cost = _non_negative(order_total) * ratios.product / units
    return FallbackResult(
        value=unit_cost,
        used_fallback=True,
        reason=reason,
        warnings=[
            "Product cost unavailable. Using estimated cost based on order total.",
            "Please update product cost information for accurate profit calculations.",
        ],
    )


def fallback_lead_cost(
    error: Optional[BaseException] = None,
    ratios: FallbackRatios = DEFAULT_RATIOS,
) -> FallbackResult[float]:
    reason = f"Lead batch error: {_describe(error)}" if error else "Lead batch information not found"
    return FallbackResult(
        value=ratios.flat_lead_cost,
        used_fallback=True,
        reason=reason,
        warnings=[
            "Lead acquisition cost unavailable. Using estimated cost.",
            "Consider updating lead batch information for accurate profit calculations.",
        ],
    )


def fallback_default_costs(
    error: Optional[BaseException] = None,
    ratios: FallbackRatios = DEFAULT_RATIOS,
) -> FallbackResult[DefaultCosts]:
    """System-wide defaults used when a tenant has no usable cost configuration"""
    reason = f"Tenant configuration error: {_describe(error)}" if error else "Tenant cost configuration not found"
    return FallbackResult(
        value=DefaultCosts(
            packaging=ratios.default_packaging,
            printing=ratios.default_printing,
            return_cost=ratios.default_return,
        ),
        used_fallback=True,
        reason=reason,
        warnings=["Using system default costs. Please configure tenant-specific defaults."],
    )


# =============================================================================
# WHOLE-BREAKDOWN FALLBACK
# =============================================================================

def estimate_costs_from_revenue(
    revenue: float,
    is_return: bool = False,
    ratios: FallbackRatios = DEFAULT_RATIOS,
) -> CostVector:
    """Apply the industry ratios to revenue; the return share only for returns"""
    revenue = _non_negative(revenue)
    return CostVector.from_parts(
        product=revenue * ratios.product,
        lead=revenue * ratios.lead,
        packaging=revenue * ratios.packaging,
        printing=revenue * ratios.printing,
        return_cost=revenue * ratios.return_cost if is_return else 0.0,
    )


def fallback_profit_breakdown(
    order_id: str,
    revenue: float,
    status: Optional[OrderStatus] = None,
    error: Optional[BaseException] = None,
    ratios: FallbackRatios = DEFAULT_RATIOS,
    warnings: Optional[List[str]] = None,
) -> FallbackResult[ProfitBreakdown]:
    """
    Synthesize a structurally valid breakdown from revenue alone.

    The estimate still satisfies total == sum of parts.
    """
    is_return = status == OrderStatus.RETURNED
    safe_revenue = _non_negative(revenue)
    costs = estimate_costs_from_revenue(safe_revenue, is_return, ratios)
    net_profit = safe_revenue - costs.total
    margin = net_profit / safe_revenue * 100 if safe_revenue > 0 else 0.0

    collected = list(warnings or [])
    collected.extend([
        "Unable to calculate accurate profit breakdown. Using estimated values.",
        "Please review and update cost information when possible.",
    ])

    breakdown = ProfitBreakdown(
        order_id=order_id,
        revenue=safe_revenue,
        costs=costs,
        gross_profit=safe_revenue - costs.product,
        net_profit=net_profit,
        profit_margin=margin,
        is_return=is_return,
        warnings=tuple(collected),
        used_fallback=True,
    )
    return FallbackResult(
        value=breakdown,
        used_fallback=True,
        reason=f"Profit calculation failed: {_describe(error)}" if error else "Profit calculation failed",
        warnings=collected,
    )


# =============================================================================
# REPAIR AND SAFE ARITHMETIC
# =============================================================================

def repair_inconsistent_cost_data(
    product: Optional[float],
    lead: Optional[float],
    packaging: Optional[float],
    printing: Optional[float],
    return_cost: Optional[float],
    total: Optional[float],
    revenue: float,
    ratios: FallbackRatios = DEFAULT_RATIOS,
) -> FallbackResult[CostVector]:
    """
    Repair a persisted cost row.

    Components are clamped to non-negative, the total is recomputed from the
    parts, and a zero product cost on positive revenue is re-estimated.
    """
    warnings: List[str] = []
    parts = {
        "product": _non_negative(product),
        "lead": _non_negative(lead),
        "packaging": _non_negative(packaging),
        "printing": _non_negative(printing),
        "return_cost": _non_negative(return_cost),
    }
    calculated_total = sum(parts.values())
    provided_total = _non_negative(total)

    if abs(calculated_total - provided_total) > ratios.tolerance:
        warnings.append("Total cost mismatch detected. Recalculated from individual costs.")
        warnings.append(
            f"Previous total: ${provided_total:.2f}, Corrected total: ${calculated_total:.2f}"
        )

    if calculated_total > revenue * ratios.high_cost_multiple:
        warnings.append(
            f"Total costs ({calculated_total:.2f}) seem high relative to revenue ({revenue:.2f}). Please verify."
        )

    if parts["product"] == 0 and revenue > 0:
        parts["product"] = revenue * ratios.product
        warnings.append(
            f"Product cost was missing. Estimated as ${parts['product']:.2f} based on revenue."
        )

    return FallbackResult(
        value=CostVector.from_parts(**parts),
        used_fallback=bool(warnings),
        reason="Inconsistent cost data detected and repaired" if warnings else "No repairs needed",
        warnings=warnings,
    )


def safe_profit_calculation(revenue: float, costs: CostVector) -> FallbackResult[SafeProfit]:
    """
    Derive profit figures with every input clamped.

    Margin is 0 whenever revenue is 0; no division by zero is attempted.
    """
    warnings: List[str] = []
    safe_revenue = _non_negative(revenue)
    safe_product = _non_negative(costs.product)
    total = (
        safe_product
        + _non_negative(costs.lead)
        + _non_negative(costs.packaging)
        + _non_negative(costs.printing)
        + _non_negative(costs.return_cost)
    )
    gross_profit = safe_revenue - safe_product
    net_profit = safe_revenue - total

    margin = 0.0
    if safe_revenue > 0:
        margin = net_profit / safe_revenue * 100
    else:
        warnings.append("Cannot calculate profit margin with zero revenue")

    if total > safe_revenue:
        warnings.append("Total costs exceed revenue. This order is operating at a loss.")
    if safe_revenue == 0 and total > 0:
        warnings.append("Order has costs but no revenue. Please verify order data.")

    return FallbackResult(
        value=SafeProfit(
            gross_profit=gross_profit,
            net_profit=net_profit,
            profit_margin=margin,
            total_costs=total,
        ),
        used_fallback=bool(warnings),
        reason="Safe calculation with validated inputs" if warnings else "Normal calculation",
        warnings=warnings,
    )


# =============================================================================
# RECOVERY
# =============================================================================

def recover_from_database_failure(
    operation: str,
    cached: Any = None,
    error: Optional[BaseException] = None,
) -> FallbackResult[Any]:
    """Serve a cached value after a storage failure; value is None when nothing is cached"""
    warnings: List[str] = []
    if error is not None:
        warnings.append(f"Database error: {_describe(error)}")

    if cached is not None:
        warnings.append("Using cached data. Information may not be current.")
    else:
        warnings.append("No cached data available. Operation failed.")

    logger.warning(
        "Storage operation failed",
        operation=operation,
        served_from_cache=cached is not None,
        error=_describe(error) or None,
    )
    return FallbackResult(
        value=cached,
        used_fallback=True,
        reason=f"Database operation failed: {operation}",
        warnings=warnings,
    )


def recovery_strategy(error: BaseException) -> RecoveryStrategy:
    """Decide whether the engine should answer an error with an estimate"""
    if not is_recoverable(error):
        if isinstance(error, ProfitError) and error.code == ErrorCode.ORDER_NOT_FOUND:
            return RecoveryStrategy(
                can_recover=False,
                fallback_available=False,
                action="Order verification required",
                user_action="Please verify the order exists and you have access to it.",
            )
        if isinstance(error, ProfitError) and error.code in FATAL_CODES:
            return RecoveryStrategy(
                can_recover=False,
                fallback_available=False,
                action="Reject request",
                user_action="Please provide a valid identifier and all required fields.",
            )
        return RecoveryStrategy(
            can_recover=False,
            fallback_available=False,
            action="Reject input",
            user_action=str(error),
        )

    if not isinstance(error, ProfitError):
        return RecoveryStrategy(
            can_recover=True,
            fallback_available=True,
            action="Use safe fallback",
            user_action="An error occurred. Please try again or contact support.",
        )

    if error.code == ErrorCode.MISSING_COST_DATA:
        return RecoveryStrategy(True, True, "Use estimated costs", "Review and update cost information when possible.")
    if error.code == ErrorCode.DIVISION_BY_ZERO:
        return RecoveryStrategy(True, True, "Skip margin calculation", "Ensure order has a valid total amount.")
    if error.code == ErrorCode.TIMEOUT_ERROR:
        return RecoveryStrategy(True, True, "Use fallback calculation", "Operation timed out. Please try again.")
    if error.kind == ErrorKind.DATA_INTEGRITY:
        return RecoveryStrategy(
            True, True, "Repair data inconsistencies",
            "Data has been automatically repaired. Please review the results.",
        )
    if error.kind == ErrorKind.TENANT_CONFIG:
        return RecoveryStrategy(
            True, True, "Use system defaults",
            "Please configure tenant-specific cost defaults in settings.",
        )
    return RecoveryStrategy(
        True, True, "Use fallback calculation",
        "Please try again or contact support if the issue persists.",
    )
