"""
Cost Validation Module

Pure validation of every cost value that enters the profit engine.

Features:
- Single value checks (presence, type, finiteness, range)
- Soft "usually high" warnings per cost category
- Composite checks for order costs, lead batches, tenant defaults and products
- Order status transition rules for return costs
- Last-resort sanitizer for free-form numeric input

Nothing here performs I/O; results are deterministic for the same input.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from profitcore.database.models import OrderStatus, RETURN_COST_STATUSES
from profitcore.errors import (
    ErrorCode,
    ProfitError,
    WARNING_THRESHOLDS,
    business_rule_error,
    validation_error,
    warning_message,
)


# Soft business ceilings
MAX_PACKAGING_COST = 1000.0
MAX_PRINTING_COST = 500.0
MAX_RETURN_COST = 2000.0
MAX_LEAD_BATCH_TOTAL = 100000.0
MIN_LEAD_COUNT = 1
MAX_LEAD_COUNT = 10000
MAX_PRODUCT_COST = 50000.0
LOW_MARKUP_PERCENT = 50.0

# Category keyword in a field name -> warning threshold key
_CATEGORY_WARNINGS = (
    ("return", "HIGH_RETURN_COST"),
    ("packaging", "HIGH_PACKAGING_COST"),
    ("printing", "HIGH_PRINTING_COST"),
    ("lead", "HIGH_LEAD_COST"),
)

_NUMERIC_PREFIX = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_CURRENCY_CHARS = re.compile(r"[^0-9.\-]")


@dataclass
class CostValidationResult:
    """Outcome of validating one value"""
    errors: List[ProfitError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    sanitized_value: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class CompositeValidationResult:
    """Outcome of validating a set of related values"""
    errors: List[ProfitError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    values: Dict[str, float] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def merge(self, result: CostValidationResult, key: Optional[str] = None) -> None:
        self.errors.extend(result.errors)
        self.warnings.extend(result.warnings)
        if key is not None and result.is_valid and result.sanitized_value is not None:
            self.values[key] = result.sanitized_value

    def raise_for_errors(self) -> None:
        """Raise the first collected error, if any"""
        if self.errors:
            raise self.errors[0]


@dataclass
class ProfitInputValidation(CompositeValidationResult):
    can_calculate_margin: bool = False


def _label(field_name: str) -> str:
    return field_name.replace("_", " ")


def _parse_number(value: str) -> Optional[float]:
    """Parse a loosely formatted numeric string such as '$1,250.00'"""
    cleaned = value.strip().replace(",", "")
    try:
        return float(cleaned)
    except ValueError:
        pass
    cleaned = cleaned.lstrip("$€£¥ ")
    match = _NUMERIC_PREFIX.match(cleaned)
    if match is None:
        return None
    return float(match.group(0))


# =============================================================================
# SINGLE VALUE
# =============================================================================

def validate_cost_value(
    value: Any,
    field_name: str,
    required: bool = False,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    allow_zero: bool = True,
) -> CostValidationResult:
    """
    Validate one candidate cost value.

    Args:
        value: None, a number, or a numeric string
        field_name: Name used in messages and for the category warning
        required: Reject None when set
        min_value: Lower bound (defaults to 0, or 0.01 when allow_zero is False)
        max_value: Optional upper bound
        allow_zero: Whether zero is acceptable

    Returns:
        CostValidationResult with the parsed value when valid. An absent,
        optional value is valid and sanitizes to 0.
    """
    result = CostValidationResult()
    label = _label(field_name)

    if value is None:
        if required:
            result.errors.append(validation_error(
                f"{label} is required", field_name, value,
                {"required": True}, code=ErrorCode.MISSING_REQUIRED_FIELD,
            ))
        else:
            result.sanitized_value = 0.0
        return result

    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        result.errors.append(validation_error(
            f"{label} must be a number", field_name, value,
            {"expected_type": "number"}, code=ErrorCode.INVALID_DATA_TYPE,
        ))
        return result

    if isinstance(value, str):
        number = _parse_number(value)
        if number is None:
            result.errors.append(validation_error(
                f"{label} must be a valid number", field_name, value,
                {"expected_type": "number"}, code=ErrorCode.INVALID_DATA_TYPE,
            ))
            return result
    else:
        number = float(value)

    if not math.isfinite(number):
        result.errors.append(validation_error(
            f"{label} must be a finite number", field_name, value,
            {"must_be_finite": True}, code=ErrorCode.INVALID_DATA_TYPE,
        ))
        return result

    if not allow_zero and number <= 0:
        result.errors.append(validation_error(
            f"{label} must be greater than zero", field_name, value,
            {"allow_zero": False},
            code=ErrorCode.NEGATIVE_COST if number < 0 else ErrorCode.INVALID_COST_RANGE,
        ))
        return result

    minimum = min_value if min_value is not None else (0.0 if allow_zero else 0.01)
    if number < minimum:
        result.errors.append(validation_error(
            f"{label} cannot be less than {minimum:g}", field_name, value,
            {"min": minimum},
            code=ErrorCode.NEGATIVE_COST if number < 0 else ErrorCode.INVALID_COST_RANGE,
        ))
        return result

    if max_value is not None and number > max_value:
        result.errors.append(validation_error(
            f"{label} cannot be greater than {max_value:g}", field_name, value,
            {"max": max_value}, code=ErrorCode.INVALID_COST_RANGE,
        ))
        return result

    lowered = field_name.lower()
    # Counts share the "lead" keyword but are not amounts
    if "count" not in lowered:
        for keyword, threshold in _CATEGORY_WARNINGS:
            if keyword in lowered:
                if number > WARNING_THRESHOLDS[threshold]:
                    result.warnings.append(warning_message(threshold, number))
                break

    result.sanitized_value = number
    return result


# =============================================================================
# COMPOSITES
# =============================================================================

def validate_order_costs(
    packaging: Any = None,
    printing: Any = None,
    return_cost: Any = None,
    order_status: Optional[OrderStatus] = None,
    order_total: Optional[float] = None,
) -> CompositeValidationResult:
    """
    Validate the operational costs of one order.

    Only supplied fields are validated and appear in values. A positive return
    cost on an order whose status is not a return status is a business-rule
    violation.
    """
    result = CompositeValidationResult()

    if packaging is not None:
        result.merge(validate_cost_value(packaging, "packaging_cost", max_value=MAX_PACKAGING_COST), "packaging_cost")
    if printing is not None:
        result.merge(validate_cost_value(printing, "printing_cost", max_value=MAX_PRINTING_COST), "printing_cost")
    if return_cost is not None:
        result.merge(validate_cost_value(return_cost, "return_cost", max_value=MAX_RETURN_COST), "return_cost")
        sanitized_return = result.values.get("return_cost", 0.0)
        if (
            order_status is not None
            and OrderStatus(order_status) not in RETURN_COST_STATUSES
            and sanitized_return > 0
        ):
            result.errors.append(business_rule_error(
                "Return cost can only be applied to returned orders",
                ErrorCode.RETURN_COST_ON_ACTIVE_ORDER,
                field="return_cost",
                value=return_cost,
                context={"order_status": OrderStatus(order_status).value},
            ))

    if order_total and order_total > 0:
        operational = sum(
            result.values.get(key, 0.0) for key in ("packaging_cost", "printing_cost", "return_cost")
        )
        ratio = operational / order_total
        if ratio > WARNING_THRESHOLDS["EXCESSIVE_COST_RATIO"]:
            result.warnings.append(warning_message("EXCESSIVE_COST_RATIO", ratio))

    return result


def validate_lead_batch_costs(total_cost: Any, lead_count: Any) -> CompositeValidationResult:
    """
    Validate a lead batch and derive its cost per lead.

    values holds total_cost, lead_count and cost_per_lead when valid.
    """
    result = CompositeValidationResult()
    result.merge(
        validate_cost_value(total_cost, "total_cost", required=True, max_value=MAX_LEAD_BATCH_TOTAL),
        "total_cost",
    )
    result.merge(
        validate_cost_value(
            lead_count, "lead_count", required=True,
            min_value=MIN_LEAD_COUNT, max_value=MAX_LEAD_COUNT, allow_zero=False,
        ),
        "lead_count",
    )
    if not result.is_valid:
        result.values = {}
        return result

    count = result.values["lead_count"]
    if count != int(count):
        result.errors.append(validation_error(
            "lead count must be a whole number", "lead_count", lead_count,
            {"integer": True}, code=ErrorCode.INVALID_DATA_TYPE,
        ))
        result.values = {}
        return result

    cost_per_lead = result.values["total_cost"] / count
    if not math.isfinite(cost_per_lead):
        result.errors.append(validation_error(
            "cost per lead must be a finite number", "cost_per_lead", cost_per_lead,
            {"must_be_finite": True}, code=ErrorCode.CALCULATION_OVERFLOW,
        ))
        result.values = {}
        return result

    if cost_per_lead > WARNING_THRESHOLDS["HIGH_LEAD_COST"]:
        result.warnings.append(warning_message("HIGH_LEAD_COST", cost_per_lead))

    result.values["lead_count"] = int(count)
    result.values["cost_per_lead"] = cost_per_lead
    return result


def validate_tenant_cost_config(
    default_packaging_cost: Any = None,
    default_printing_cost: Any = None,
    default_return_cost: Any = None,
) -> CompositeValidationResult:
    """Validate tenant default costs; same ceilings as order costs"""
    result = CompositeValidationResult()
    if default_packaging_cost is not None:
        result.merge(
            validate_cost_value(default_packaging_cost, "default_packaging_cost", max_value=MAX_PACKAGING_COST),
            "default_packaging_cost",
        )
    if default_printing_cost is not None:
        result.merge(
            validate_cost_value(default_printing_cost, "default_printing_cost", max_value=MAX_PRINTING_COST),
            "default_printing_cost",
        )
    if default_return_cost is not None:
        result.merge(
            validate_cost_value(default_return_cost, "default_return_cost", max_value=MAX_RETURN_COST),
            "default_return_cost",
        )
    return result


def validate_product_costs(cost_price: Any, selling_price: Optional[float] = None) -> CompositeValidationResult:
    """Validate a product cost price; values gains markup (percent) when a selling price is known"""
    result = CompositeValidationResult()
    result.merge(
        validate_cost_value(cost_price, "cost_price", required=True, max_value=MAX_PRODUCT_COST),
        "cost_price",
    )
    if not result.is_valid:
        return result

    sanitized = result.values["cost_price"]
    if selling_price and selling_price > 0 and sanitized > 0:
        markup = (selling_price - sanitized) / sanitized * 100
        result.values["markup"] = markup
        if markup < LOW_MARKUP_PERCENT:
            result.warnings.append(
                f"Product markup of {markup:.1f}% is relatively low. Consider reviewing pricing strategy."
            )
    return result


def validate_profit_calculation_inputs(revenue: Any, total_costs: Any) -> ProfitInputValidation:
    """
    Validate the (revenue, total costs) pair before deriving profit.

    Revenue must be positive; costs must be non-negative and finite.
    """
    result = ProfitInputValidation()
    result.merge(validate_cost_value(revenue, "revenue", required=True, allow_zero=False), "revenue")
    result.merge(validate_cost_value(total_costs, "total_costs", required=True), "total_costs")
    if not result.is_valid:
        return result

    revenue_value = result.values["revenue"]
    result.can_calculate_margin = revenue_value > 0
    if not result.can_calculate_margin:
        result.warnings.append("Cannot calculate profit margin with zero revenue")
        return result

    net_profit = revenue_value - result.values["total_costs"]
    margin = net_profit / revenue_value * 100
    if not math.isfinite(margin):
        result.errors.append(validation_error(
            "profit margin is not a finite number", "profit_margin", margin,
            {"must_be_finite": True}, code=ErrorCode.CALCULATION_OVERFLOW,
        ))
    elif margin < WARNING_THRESHOLDS["NEGATIVE_PROFIT_MARGIN"]:
        result.warnings.append(warning_message("NEGATIVE_PROFIT_MARGIN", margin))
    elif margin < WARNING_THRESHOLDS["LOW_PROFIT_MARGIN"]:
        result.warnings.append(warning_message("LOW_PROFIT_MARGIN", margin))
    return result


def validate_order_status_transition(
    current_status: OrderStatus,
    new_status: OrderStatus,
    has_return_cost: bool = False,
) -> CompositeValidationResult:
    """
    Check a status change against the return-cost rule.

    Supplying a return cost for a target status that is not a return status
    is rejected; leaving RETURNED only produces a warning.
    """
    result = CompositeValidationResult()
    current_status = OrderStatus(current_status)
    new_status = OrderStatus(new_status)

    if has_return_cost and new_status not in RETURN_COST_STATUSES:
        result.errors.append(business_rule_error(
            "Return cost can only be applied when marking order as returned",
            ErrorCode.RETURN_COST_ON_ACTIVE_ORDER,
            field="return_cost",
            context={
                "current_status": current_status.value,
                "new_status": new_status.value,
                "has_return_cost": has_return_cost,
            },
        ))

    if current_status == OrderStatus.RETURNED and new_status != OrderStatus.RETURNED:
        result.warnings.append(
            "Changing status from RETURNED may affect profit calculations. Return costs will be recalculated."
        )
    return result


# =============================================================================
# SANITIZER
# =============================================================================

def sanitize_numeric_input(value: Any) -> float:
    """
    Coerce free-form input to a non-negative finite number.

    Strips currency symbols and separators; anything unparsable, negative or
    non-finite becomes 0. Only for untrusted form input; stored costs go
    through validate_cost_value instead.
    """
    if value is None or value == "" or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        number = float(value)
        return max(0.0, number) if math.isfinite(number) else 0.0

    if isinstance(value, str):
        match = _NUMERIC_PREFIX.match(_CURRENCY_CHARS.sub("", value))
        if match is None:
            return 0.0
        number = float(match.group(0))
        return max(0.0, number) if math.isfinite(number) else 0.0

    return 0.0
