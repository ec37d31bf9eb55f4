"""
Order Profit Engine

Per-order profit derivation, period reporting and caching for multi-tenant
order data.
"""

__version__ = "1.0.0"
