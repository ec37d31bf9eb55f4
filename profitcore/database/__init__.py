"""
Database Module
"""
from .connection import Database
from .models import Base, OrderStatus, RETURN_COST_STATUSES
from .repository import ProfitStore, SqlAlchemyProfitStore

__all__ = [
    "Database",
    "Base",
    "OrderStatus",
    "RETURN_COST_STATUSES",
    "ProfitStore",
    "SqlAlchemyProfitStore",
]
