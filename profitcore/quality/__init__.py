"""
Data Quality Module
Cost validation and fallback estimation for the profit engine
"""
from .validators import (
    CostValidationResult,
    CompositeValidationResult,
    sanitize_numeric_input,
    validate_cost_value,
    validate_lead_batch_costs,
    validate_order_costs,
    validate_order_status_transition,
    validate_product_costs,
    validate_profit_calculation_inputs,
    validate_tenant_cost_config,
)
from .fallbacks import (
    FallbackRatios,
    FallbackResult,
    RecoveryStrategy,
    fallback_default_costs,
    fallback_lead_cost,
    fallback_product_cost,
    fallback_profit_breakdown,
    recover_from_database_failure,
    recovery_strategy,
    repair_inconsistent_cost_data,
    safe_profit_calculation,
)

__all__ = [
    "CostValidationResult",
    "CompositeValidationResult",
    "sanitize_numeric_input",
    "validate_cost_value",
    "validate_lead_batch_costs",
    "validate_order_costs",
    "validate_order_status_transition",
    "validate_product_costs",
    "validate_profit_calculation_inputs",
    "validate_tenant_cost_config",
    "FallbackRatios",
    "FallbackResult",
    "RecoveryStrategy",
    "fallback_default_costs",
    "fallback_lead_cost",
    "fallback_product_cost",
    "fallback_profit_breakdown",
    "recover_from_database_failure",
    "recovery_strategy",
    "repair_inconsistent_cost_data",
    "safe_profit_calculation",
]
