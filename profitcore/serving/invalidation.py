"""
Profit Cache Invalidation

Translates domain events into cache invalidation calls. Always errs on the
side of over-invalidation: a needless recalculation is cheap, a stale profit
figure is not.

Product cost price changes only drop tenant reports; order-level profit
entries are left to expire by TTL because no product -> orders index is kept.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

import structlog

from profitcore.serving.cache import ProfitCache

if TYPE_CHECKING:
    from profitcore.serving.cache_bus import RedisInvalidationBus

logger = structlog.get_logger(__name__)


class InvalidationEventType(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_UPDATED = "order_updated"
    ORDER_STATUS_CHANGED = "order_status_changed"
    ORDER_COSTS_UPDATED = "order_costs_updated"
    PRODUCT_COST_PRICE_UPDATED = "product_cost_price_updated"
    TENANT_COST_CONFIG_UPDATED = "tenant_cost_config_updated"
    LEAD_BATCH_UPDATED = "lead_batch_updated"
    LEADS_IMPORTED = "leads_imported"
    ORDER_DELETED = "order_deleted"
    BULK_DATA_CHANGE = "bulk_data_change"


@dataclass(frozen=True)
class InvalidationEvent:
    type: InvalidationEventType
    tenant_id: str
    order_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({
            "type": self.type.value,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "data": self.data,
        })

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "InvalidationEvent":
        return cls(
            type=InvalidationEventType(payload["type"]),
            tenant_id=payload["tenant_id"],
            order_id=payload.get("order_id"),
            data=payload.get("data") or {},
        )


# Order fields whose change alters tenant aggregates
_SIGNIFICANT_CHANGES = ("status_changed", "total_changed", "quantity_changed", "product_changed")


class ProfitCacheInvalidationService:
    """
    Dispatches domain events to a ProfitCache.

    When a bus is attached, every event is also published so that other
    instances drop their copies; events received from the bus are applied
    locally through apply() without being republished.
    """

    def __init__(self, cache: ProfitCache, bus: Optional["RedisInvalidationBus"] = None):
        self.cache = cache
        self.bus = bus

    def _dispatch(self, event: InvalidationEvent) -> None:
        self.apply(event)
        if self.bus is not None:
            self.bus.publish_nowait(event)

    def apply(self, event: InvalidationEvent) -> None:
        """Apply an event to the local cache only"""
        cache = self.cache
        tenant_id = event.tenant_id
        event_type = event.type

        if event_type == InvalidationEventType.ORDER_CREATED:
            cache.invalidate_reports_for_tenant(tenant_id)

        elif event_type == InvalidationEventType.ORDER_UPDATED:
            cache.invalidate_order_profit(tenant_id, event.order_id)
            if any(event.data.get(flag) for flag in _SIGNIFICANT_CHANGES):
                cache.invalidate_reports_for_tenant(tenant_id)

        elif event_type in (
            InvalidationEventType.ORDER_STATUS_CHANGED,
            InvalidationEventType.ORDER_COSTS_UPDATED,
            InvalidationEventType.ORDER_DELETED,
        ):
            cache.invalidate_order_profit(tenant_id, event.order_id)
            cache.invalidate_reports_for_tenant(tenant_id)

        elif event_type in (
            InvalidationEventType.PRODUCT_COST_PRICE_UPDATED,
            InvalidationEventType.LEAD_BATCH_UPDATED,
            InvalidationEventType.LEADS_IMPORTED,
        ):
            cache.invalidate_reports_for_tenant(tenant_id)

        elif event_type == InvalidationEventType.TENANT_COST_CONFIG_UPDATED:
            cache.invalidate_default_costs(tenant_id)
            cache.invalidate_reports_for_tenant(tenant_id)

        elif event_type == InvalidationEventType.BULK_DATA_CHANGE:
            cache.invalidate_tenant(tenant_id)

        logger.debug(
            "Cache invalidation applied",
            event_type=event_type.value,
            tenant_id=tenant_id,
            order_id=event.order_id,
        )

    # ------------------------------------------------------------------ events

    def on_order_created(self, order_id: str, tenant_id: str) -> None:
        self._dispatch(InvalidationEvent(InvalidationEventType.ORDER_CREATED, tenant_id, order_id))

    def on_order_updated(
        self,
        order_id: str,
        tenant_id: str,
        status_changed: bool = False,
        total_changed: bool = False,
        quantity_changed: bool = False,
        product_changed: bool = False,
    ) -> None:
        self._dispatch(InvalidationEvent(
            InvalidationEventType.ORDER_UPDATED,
            tenant_id,
            order_id,
            {
                "status_changed": status_changed,
                "total_changed": total_changed,
                "quantity_changed": quantity_changed,
                "product_changed": product_changed,
            },
        ))

    def on_order_status_changed(
        self,
        order_id: str,
        tenant_id: str,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
    ) -> None:
        self._dispatch(InvalidationEvent(
            InvalidationEventType.ORDER_STATUS_CHANGED,
            tenant_id,
            order_id,
            {"old_status": old_status, "new_status": new_status},
        ))

    def on_order_costs_updated(self, order_id: str, tenant_id: str) -> None:
        self._dispatch(InvalidationEvent(InvalidationEventType.ORDER_COSTS_UPDATED, tenant_id, order_id))

    def on_product_cost_price_updated(self, product_id: str, tenant_id: str) -> None:
        self._dispatch(InvalidationEvent(
            InvalidationEventType.PRODUCT_COST_PRICE_UPDATED, tenant_id, data={"product_id": product_id}
        ))

    def on_tenant_cost_config_updated(self, tenant_id: str) -> None:
        self._dispatch(InvalidationEvent(InvalidationEventType.TENANT_COST_CONFIG_UPDATED, tenant_id))

    def on_lead_batch_updated(self, batch_id: str, tenant_id: str) -> None:
        self._dispatch(InvalidationEvent(
            InvalidationEventType.LEAD_BATCH_UPDATED, tenant_id, data={"batch_id": batch_id}
        ))

    def on_leads_imported(self, tenant_id: str, lead_ids: Iterable[str] = ()) -> None:
        self._dispatch(InvalidationEvent(
            InvalidationEventType.LEADS_IMPORTED, tenant_id, data={"lead_count": len(list(lead_ids))}
        ))

    def on_order_deleted(self, order_id: str, tenant_id: str) -> None:
        self._dispatch(InvalidationEvent(InvalidationEventType.ORDER_DELETED, tenant_id, order_id))

    def on_bulk_data_change(self, tenant_id: str) -> None:
        self._dispatch(InvalidationEvent(InvalidationEventType.BULK_DATA_CHANGE, tenant_id))

    # ------------------------------------------------------------ maintenance

    def perform_scheduled_cleanup(self) -> Dict[str, int]:
        return self.cache.clean_expired()

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
