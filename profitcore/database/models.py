"""
Database Models - Order Profit Storage

Tenant-scoped tables read and written by the profit engine:

Reference Tables (owned elsewhere, read by the engine):
- Product: catalog entry with unit cost price
- LeadBatch / Lead: imported leads and their acquisition cost
- Order: order record with revenue and lifecycle status

Owned Tables:
- OrderCosts: denormalized result of the last successful calculation
- TenantCostConfig: per-tenant default operational costs
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# ENUMERATIONS
# =============================================================================

class OrderStatus(str, Enum):
    """Order lifecycle status"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    PARTIALLY_RETURNED = "PARTIALLY_RETURNED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


# Statuses for which a non-zero return cost is legitimate
RETURN_COST_STATUSES = frozenset({OrderStatus.RETURNED, OrderStatus.PARTIALLY_RETURNED})


# =============================================================================
# REFERENCE TABLES
# =============================================================================

class Product(Base):
    """Product catalog entry"""
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cost_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    orders: Mapped[List["Order"]] = relationship(back_populates="product")


class LeadBatch(Base):
    """
    A group of leads imported together.

    cost_per_lead is stored denormalized (total_cost / lead_count) at write time.
    """
    __tablename__ = "lead_batches"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    total_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    lead_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_per_lead: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    imported_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    leads: Mapped[List["Lead"]] = relationship(back_populates="batch")


class Lead(Base):
    """Imported sales lead"""
    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    batch_id: Mapped[Optional[str]] = mapped_column(ForeignKey("lead_batches.id"), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(64))

    batch: Mapped[Optional["LeadBatch"]] = relationship(back_populates="leads")


class Order(Base):
    """Order record; total is post-discount revenue"""
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[Optional[str]] = mapped_column(ForeignKey("products.id"), nullable=True)
    lead_id: Mapped[Optional[str]] = mapped_column(ForeignKey("leads.id"), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, native_enum=False, length=32),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    product: Mapped[Optional["Product"]] = relationship(back_populates="orders")
    lead: Mapped[Optional["Lead"]] = relationship()
    costs: Mapped[Optional["OrderCosts"]] = relationship(
        back_populates="order", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_orders_tenant_created", "tenant_id", "created_at"),
        Index("idx_orders_tenant_status", "tenant_id", "status"),
    )


# =============================================================================
# OWNED TABLES
# =============================================================================

class OrderCosts(Base):
    """
    Denormalized cost vector of the last successful calculation.

    Not the source of truth for revenue or status; those stay on Order.
    Deleted only with its order.
    """
    __tablename__ = "order_costs"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    lead_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    packaging_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    printing_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    return_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_costs: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    gross_profit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    net_profit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    profit_margin: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    order: Mapped["Order"] = relationship(back_populates="costs")


class TenantCostConfig(Base):
    """Per-tenant default operational costs"""
    __tablename__ = "tenant_cost_configs"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    default_packaging_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    default_printing_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    default_return_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
