"""
Shipment storage interface

The storefront owns persistence; the engine only talks to it through
ShipmentStore. Updates are single-record and last-writer-wins.

InMemoryShipmentStore backs tests and demo deployments.
"""
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from shipping_engine.models.order import Order
from shipping_engine.models.shipment import (
    Shipment,
    ShipmentEvent,
    ShipmentStatus,
    WebhookLog,
    utcnow,
)

logger = logging.getLogger(__name__)


class ShipmentStore(ABC):
    """Persistence operations the shipping engine depends on."""

    # ==================== Orders ====================

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def update_order(self, order_id: str, **fields: Any) -> Optional[Order]:
        """Apply fields to the order; returns None when it does not exist."""
        pass

    # ==================== Shipments ====================

    @abstractmethod
    async def add_shipment(self, shipment: Shipment) -> Shipment:
        pass

    @abstractmethod
    async def get_shipment(self, shipment_id: str) -> Optional[Shipment]:
        pass

    @abstractmethod
    async def get_shipment_by_tracking(self, tracking_number: str) -> Optional[Shipment]:
        pass

    @abstractmethod
    async def get_shipment_by_label_id(self, label_id: str) -> Optional[Shipment]:
        pass

    @abstractmethod
    async def update_shipment(self, shipment_id: str, **fields: Any) -> Optional[Shipment]:
        """Apply fields to the shipment and bump updated_at."""
        pass

    @abstractmethod
    async def find_stale_shipments(
        self,
        stale_before: datetime,
        excluded_statuses: Iterable[ShipmentStatus],
    ) -> List[Shipment]:
        """
        Shipments with a tracking number, not in excluded_statuses, never
        synced or last synced before stale_before. Oldest sync first.
        """
        pass

    # ==================== Events / webhook logs ====================

    @abstractmethod
    async def append_event(self, event: ShipmentEvent) -> ShipmentEvent:
        pass

    @abstractmethod
    async def list_events(self, shipment_id: str) -> List[ShipmentEvent]:
        pass

    @abstractmethod
    async def add_webhook_log(self, log: WebhookLog) -> WebhookLog:
        pass

    @abstractmethod
    async def update_webhook_log(self, log_id: str, **fields: Any) -> Optional[WebhookLog]:
        pass


class InMemoryShipmentStore(ShipmentStore):
    """
    Dict-backed store.

    Records are copied on the way in and out so callers never hold a live
    reference to stored state.
    """

    def __init__(self, orders: Optional[Iterable[Order]] = None):
        self._orders: Dict[str, Order] = {}
        self._shipments: Dict[str, Shipment] = {}
        self._events: List[ShipmentEvent] = []
        self._webhook_logs: Dict[str, WebhookLog] = {}
        for order in orders or []:
            self.add_order(order)

    def add_order(self, order: Order) -> Order:
        self._orders[order.id] = copy.deepcopy(order)
        return order

    @property
    def webhook_logs(self) -> List[WebhookLog]:
        return [copy.deepcopy(log) for log in self._webhook_logs.values()]

    @property
    def shipments(self) -> List[Shipment]:
        return [copy.deepcopy(s) for s in self._shipments.values()]

    @staticmethod
    def _apply(record: Any, fields: Dict[str, Any]):
        for name, value in fields.items():
            if not hasattr(record, name):
                raise AttributeError(f"{type(record).__name__} has no field {name!r}")
            setattr(record, name, value)

    async def get_order(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def update_order(self, order_id: str, **fields: Any) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None:
            return None
        self._apply(order, fields)
        return copy.deepcopy(order)

    async def add_shipment(self, shipment: Shipment) -> Shipment:
        self._shipments[shipment.id] = copy.deepcopy(shipment)
        return shipment

    async def get_shipment(self, shipment_id: str) -> Optional[Shipment]:
        shipment = self._shipments.get(shipment_id)
        return copy.deepcopy(shipment) if shipment else None

    async def get_shipment_by_tracking(self, tracking_number: str) -> Optional[Shipment]:
        for shipment in self._shipments.values():
            if tracking_number and shipment.tracking_number == tracking_number:
                return copy.deepcopy(shipment)
        return None

    async def get_shipment_by_label_id(self, label_id: str) -> Optional[Shipment]:
        for shipment in self._shipments.values():
            if label_id and shipment.label_id == label_id:
                return copy.deepcopy(shipment)
        return None

    async def update_shipment(self, shipment_id: str, **fields: Any) -> Optional[Shipment]:
        shipment = self._shipments.get(shipment_id)
        if shipment is None:
            return None
        self._apply(shipment, fields)
        shipment.updated_at = utcnow()
        return copy.deepcopy(shipment)

    async def find_stale_shipments(
        self,
        stale_before: datetime,
        excluded_statuses: Iterable[ShipmentStatus],
    ) -> List[Shipment]:
        excluded = set(excluded_statuses)
        stale = [
            s for s in self._shipments.values()
            if s.tracking_number
            and s.status not in excluded
            and (s.last_sync_at is None or s.last_sync_at < stale_before)
        ]
        stale.sort(key=lambda s: s.last_sync_at or s.created_at)
        return [copy.deepcopy(s) for s in stale]

    async def append_event(self, event: ShipmentEvent) -> ShipmentEvent:
        self._events.append(event)
        return event

    async def list_events(self, shipment_id: str) -> List[ShipmentEvent]:
        return [e for e in self._events if e.shipment_id == shipment_id]

    async def add_webhook_log(self, log: WebhookLog) -> WebhookLog:
        self._webhook_logs[log.id] = copy.deepcopy(log)
        return log

    async def update_webhook_log(self, log_id: str, **fields: Any) -> Optional[WebhookLog]:
        log = self._webhook_logs.get(log_id)
        if log is None:
            logger.warning(f"Webhook log {log_id} not found for update")
            return None
        self._apply(log, fields)
        return copy.deepcopy(log)
