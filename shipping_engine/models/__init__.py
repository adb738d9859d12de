from shipping_engine.models.order import Order, OrderItem, OrderStatus
from shipping_engine.models.shipment import (
    Shipment,
    ShipmentEvent,
    ShipmentStatus,
    StatusCategory,
    WebhookLog,
)

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "Shipment",
    "ShipmentEvent",
    "ShipmentStatus",
    "StatusCategory",
    "WebhookLog",
]
