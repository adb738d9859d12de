"""
Shipment, ShipmentEvent and WebhookLog records

Tracks a shipment from label creation through delivery. The persisted schema
is owned by the storage collaborator; these dataclasses are the field set the
engine reads and writes through ShipmentStore.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class ShipmentStatus(str, enum.Enum):
    """Canonical shipment lifecycle status"""
    # Base
    PENDING = "pending"  # Label not created yet
    QUOTE_REQUESTED = "quote_requested"
    LABEL_CREATED = "label_created"
    LABEL_CONFIRMED = "label_confirmed"  # Confirmed by carrier
    AWAITING_PICKUP = "awaiting_pickup"
    PICKUP_SCHEDULED = "pickup_scheduled"

    # Moving
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"

    # Failed delivery attempts
    DELIVERY_ATTEMPT_1 = "delivery_attempt_1"
    DELIVERY_ATTEMPT_2 = "delivery_attempt_2"
    DELIVERY_ATTEMPT_3 = "delivery_attempt_3"

    # Problems
    DELAYED = "delayed"
    EXCEPTION = "exception"  # Catch-all for unrecognised carrier tokens
    ADDRESS_ERROR = "address_error"
    UNDELIVERABLE = "undeliverable"
    LOST = "lost"
    DAMAGED = "damaged"

    # Terminal
    DELIVERED = "delivered"
    RETURNED = "returned"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class StatusCategory(str, enum.Enum):
    """Presentation grouping for shipment dashboards"""
    NEEDS_ACTION = "needs_action"
    AWAITING_PICKUP = "awaiting_pickup"
    IN_TRANSIT = "in_transit"
    DELIVERY_ISSUE = "delivery_issue"
    PROBLEM = "problem"
    CRITICAL = "critical"
    COMPLETED = "completed"
    CLOSED = "closed"
    UNKNOWN = "unknown"


@dataclass
class Shipment:
    """
    A shipment for one order.

    Created at label generation with status label_created; afterwards only
    tracking refresh and webhook ingestion change it. Never deleted.
    """
    order_id: str
    carrier: str
    service: str
    tracking_number: Optional[str] = None
    label_url: Optional[str] = None
    label_id: Optional[str] = None
    quoted_price: Optional[float] = None

    status: ShipmentStatus = ShipmentStatus.LABEL_CREATED
    status_description: Optional[str] = None

    last_event_description: Optional[str] = None
    last_event_location: Optional[str] = None
    last_event_at: Optional[datetime] = None

    # Only ever set from a delivered observation
    delivered_at: Optional[datetime] = None
    estimated_delivery: Optional[str] = None
    delivery_attempts: int = 0

    pickup_scheduled: bool = False
    pickup_date: Optional[str] = None

    last_sync_at: Optional[datetime] = None
    sync_error: Optional[str] = None

    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __repr__(self):
        return f"<Shipment(id={self.id}, tracking={self.tracking_number}, status={self.status.value})>"


@dataclass(frozen=True)
class ShipmentEvent:
    """Immutable tracking observation, appended once per webhook/tracking update."""
    shipment_id: str
    status: ShipmentStatus
    event_at: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    carrier_status: Optional[str] = None  # raw carrier token
    raw_payload: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class WebhookLog:
    """
    Raw inbound webhook, kept for audit and replay diagnosis.

    Logs are not deduplicated; idempotency lives at the shipment/event layer.
    """
    payload: Dict[str, Any]
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    event_type: Optional[str] = None
    shipment_id: Optional[str] = None
    processed: bool = False
    processed_at: Optional[datetime] = None
    process_error: Optional[str] = None
    id: str = field(default_factory=new_id)
    received_at: datetime = field(default_factory=utcnow)
