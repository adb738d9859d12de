"""
Order view used by the shipping engine

Orders are owned by the storefront; the engine only reads the destination and
line items, and writes tracking number, carrier and fulfillment status.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


@dataclass
class OrderItem:
    quantity: int
    unit_price: float
    product_name: Optional[str] = None
    sale_price: Optional[float] = None
    weight: Optional[float] = None  # kg


@dataclass
class Order:
    id: str
    order_number: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_notes: Optional[str] = None
    shipping_address: Dict[str, Any] = field(default_factory=dict)
    items: List[OrderItem] = field(default_factory=list)
    shipping_cost: Optional[float] = None
    status: OrderStatus = OrderStatus.CONFIRMED
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
