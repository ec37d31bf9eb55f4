"""
Profit Error Taxonomy

A single exception type tagged with an ErrorKind and an ErrorCode. Fallback
eligibility and user-facing messages are pure functions of the tag, so
callers never need isinstance dispatch.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Broad class of a profit error"""
    VALIDATION = "validation"
    DATA_INTEGRITY = "data_integrity"
    BUSINESS_RULE = "business_rule"
    CALCULATION = "calculation"
    TENANT_CONFIG = "tenant_config"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    """Machine-readable error codes"""
    # Validation
    NEGATIVE_COST = "NEGATIVE_COST"
    INVALID_COST_RANGE = "INVALID_COST_RANGE"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_DATA_TYPE = "INVALID_DATA_TYPE"

    # Data integrity
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    LEAD_BATCH_NOT_FOUND = "LEAD_BATCH_NOT_FOUND"
    MISSING_COST_DATA = "MISSING_COST_DATA"
    ORPHANED_COST_RECORD = "ORPHANED_COST_RECORD"

    # Business rules
    RETURN_COST_ON_ACTIVE_ORDER = "RETURN_COST_ON_ACTIVE_ORDER"
    EXCESSIVE_COST_AMOUNT = "EXCESSIVE_COST_AMOUNT"
    INVALID_ORDER_STATUS_TRANSITION = "INVALID_ORDER_STATUS_TRANSITION"
    LEAD_BATCH_IN_USE = "LEAD_BATCH_IN_USE"

    # Calculation
    DIVISION_BY_ZERO = "DIVISION_BY_ZERO"
    CALCULATION_OVERFLOW = "CALCULATION_OVERFLOW"
    INCONSISTENT_CALCULATION = "INCONSISTENT_CALCULATION"

    # Tenant configuration
    MISSING_TENANT_CONFIG = "MISSING_TENANT_CONFIG"
    INVALID_DEFAULT_COSTS = "INVALID_DEFAULT_COSTS"

    # System
    DATABASE_ERROR = "DATABASE_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"


ERROR_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.NEGATIVE_COST: "Cost values cannot be negative. Please enter a positive amount.",
    ErrorCode.INVALID_COST_RANGE: "Cost amount is outside the acceptable range. Please verify the amount.",
    ErrorCode.MISSING_REQUIRED_FIELD: "Required information is missing. Please fill in all required fields.",
    ErrorCode.INVALID_DATA_TYPE: "Invalid data format. Please enter a valid number.",
    ErrorCode.ORDER_NOT_FOUND: "Order not found. The order may have been deleted or you may not have access to it.",
    ErrorCode.PRODUCT_NOT_FOUND: "Product information is missing. Please ensure the product exists.",
    ErrorCode.LEAD_BATCH_NOT_FOUND: "Lead batch information not found. The batch may have been deleted.",
    ErrorCode.MISSING_COST_DATA: "Cost information is incomplete. Using default values where possible.",
    ErrorCode.ORPHANED_COST_RECORD: "Cost data is inconsistent. Please refresh and try again.",
    ErrorCode.RETURN_COST_ON_ACTIVE_ORDER: "Return costs can only be applied to returned orders.",
    ErrorCode.EXCESSIVE_COST_AMOUNT: "Cost amount seems unusually high. Please verify the amount is correct.",
    ErrorCode.INVALID_ORDER_STATUS_TRANSITION: "Invalid order status change. Please check the order status.",
    ErrorCode.LEAD_BATCH_IN_USE: "This lead batch still has leads attached and cannot be deleted.",
    ErrorCode.DIVISION_BY_ZERO: "Cannot calculate percentage with zero revenue. Please check the order total.",
    ErrorCode.CALCULATION_OVERFLOW: "Calculation result is too large. Please check your input values.",
    ErrorCode.INCONSISTENT_CALCULATION: "Calculation results are inconsistent. Please refresh and try again.",
    ErrorCode.MISSING_TENANT_CONFIG: "Default cost configuration is missing. Please contact your administrator.",
    ErrorCode.INVALID_DEFAULT_COSTS: "Default cost configuration is invalid. Please update your settings.",
    ErrorCode.DATABASE_ERROR: "Database error occurred. Please try again later.",
    ErrorCode.EXTERNAL_SERVICE_ERROR: "External service is temporarily unavailable. Please try again later.",
    ErrorCode.TIMEOUT_ERROR: "Operation timed out. Please try again.",
}

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

# Warning thresholds for business rules
WARNING_THRESHOLDS = {
    "HIGH_RETURN_COST": 1000.0,
    "HIGH_PACKAGING_COST": 100.0,
    "HIGH_PRINTING_COST": 50.0,
    "HIGH_LEAD_COST": 500.0,
    "LOW_PROFIT_MARGIN": 10.0,
    "NEGATIVE_PROFIT_MARGIN": 0.0,
    "EXCESSIVE_COST_RATIO": 0.9,  # share of revenue
}

# Codes that always propagate to the caller
FATAL_CODES = frozenset({
    ErrorCode.ORDER_NOT_FOUND,
    ErrorCode.MISSING_REQUIRED_FIELD,
    ErrorCode.INVALID_DATA_TYPE,
})


class ProfitError(Exception):
    """
    Error raised (or collected) by the profit subsystem.

    Carries enough context (order, tenant, offending field and value) to
    reconstruct the failure without another storage round trip.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        code: ErrorCode,
        order_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        field: Optional[str] = None,
        value: Any = None,
        constraints: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        self.order_id = order_id
        self.tenant_id = tenant_id
        self.field = field
        self.value = value
        self.constraints = constraints or {}
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured payload for logs and API responses"""
        return {
            "kind": self.kind.value,
            "code": self.code.value,
            "message": self.message,
            "order_id": self.order_id,
            "tenant_id": self.tenant_id,
            "field": self.field,
            "value": self.value if _is_plain(self.value) else repr(self.value),
            "constraints": self.constraints,
        }

    def __repr__(self) -> str:
        return f"ProfitError(kind={self.kind.value}, code={self.code.value}, message={self.message!r})"


def _is_plain(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


# =============================================================================
# CONSTRUCTORS
# =============================================================================

def validation_error(
    message: str,
    field: str,
    value: Any,
    constraints: Optional[Dict[str, Any]] = None,
    code: ErrorCode = ErrorCode.INVALID_COST_RANGE,
) -> ProfitError:
    return ProfitError(
        message, ErrorKind.VALIDATION, code,
        field=field, value=value, constraints=constraints,
    )


def business_rule_error(
    message: str,
    code: ErrorCode,
    field: Optional[str] = None,
    value: Any = None,
    context: Optional[Dict[str, Any]] = None,
    order_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> ProfitError:
    return ProfitError(
        message, ErrorKind.BUSINESS_RULE, code,
        order_id=order_id, tenant_id=tenant_id,
        field=field, value=value, context=context,
    )


def data_integrity_error(
    message: str,
    code: ErrorCode,
    order_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> ProfitError:
    return ProfitError(
        message, ErrorKind.DATA_INTEGRITY, code,
        order_id=order_id, tenant_id=tenant_id, context=context,
    )


def calculation_error(
    message: str,
    code: ErrorCode,
    order_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> ProfitError:
    return ProfitError(
        message, ErrorKind.CALCULATION, code,
        order_id=order_id, tenant_id=tenant_id, context=context,
    )


def tenant_config_error(message: str, tenant_id: str, config_type: str = "default_costs") -> ProfitError:
    return ProfitError(
        message, ErrorKind.TENANT_CONFIG, ErrorCode.MISSING_TENANT_CONFIG,
        tenant_id=tenant_id, context={"config_type": config_type},
    )


def system_error(
    message: str,
    code: ErrorCode = ErrorCode.DATABASE_ERROR,
    order_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> ProfitError:
    return ProfitError(
        message, ErrorKind.SYSTEM, code,
        order_id=order_id, tenant_id=tenant_id, context=context,
    )


# =============================================================================
# PURE FUNCTIONS OVER THE TAG
# =============================================================================

def is_recoverable(error: BaseException) -> bool:
    """
    Whether an error has a fallback the engine should use.

    Missing entities, bad identifiers, invalid input and business-rule
    violations are fatal. Anything else, including unexpected exceptions,
    may be answered with an estimate.
    """
    if not isinstance(error, ProfitError):
        return True
    if error.code in FATAL_CODES:
        return False
    return error.kind not in (ErrorKind.VALIDATION, ErrorKind.BUSINESS_RULE)


def user_friendly_message(error: BaseException) -> str:
    """
    Message safe to show to an end user.

    Validation and business-rule errors keep their specific message; other
    kinds are translated to a generic message for their code.
    """
    if isinstance(error, ProfitError):
        if error.kind in (ErrorKind.VALIDATION, ErrorKind.BUSINESS_RULE):
            return error.message
        return ERROR_MESSAGES.get(error.code, error.message)
    return GENERIC_ERROR_MESSAGE


def warning_message(warning_type: str, value: float) -> str:
    """Human-readable warning text for a threshold breach"""
    if warning_type == "HIGH_RETURN_COST":
        return f"Return cost of ${value:.2f} is unusually high. Please verify this amount is correct."
    if warning_type == "HIGH_PACKAGING_COST":
        return f"Packaging cost of ${value:.2f} is higher than typical. Please review if this is accurate."
    if warning_type == "HIGH_PRINTING_COST":
        return f"Printing cost of ${value:.2f} is higher than typical. Please review if this is accurate."
    if warning_type == "HIGH_LEAD_COST":
        return f"Lead acquisition cost of ${value:.2f} is unusually high. Please verify this amount."
    if warning_type == "LOW_PROFIT_MARGIN":
        return f"Profit margin of {value:.1f}% is below recommended levels. Consider reviewing costs or pricing."
    if warning_type == "NEGATIVE_PROFIT_MARGIN":
        return f"This order is operating at a loss with {value:.1f}% margin. Review costs and pricing urgently."
    if warning_type == "EXCESSIVE_COST_RATIO":
        return f"Costs represent {value * 100:.1f}% of revenue, which is very high. Review cost structure."
    return f"Warning: {warning_type} - Value: {value}"
