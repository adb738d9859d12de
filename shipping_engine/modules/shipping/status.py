"""
Shipment Status Normalizer v1.0.0

Maps the provider's carrier status vocabulary onto the canonical
ShipmentStatus lifecycle, and derives presentation helpers from it:
- normalize: carrier token -> ShipmentStatus
- translate: human-readable label
- is_final / is_problem: follow-up predicates
- category: dashboard grouping

All tables are read-only module constants.
"""
import logging
from types import MappingProxyType
from typing import Optional, Union

from shipping_engine.models.shipment import ShipmentStatus, StatusCategory

logger = logging.getLogger(__name__)

S = ShipmentStatus

# Keys are upper-cased, trimmed carrier tokens. Many-to-one by design of the
# provider: carriers disagree on spacing/underscores for the same state.
CARRIER_STATUS_MAP = MappingProxyType({
    # Initial
    "CREATED": S.LABEL_CREATED,
    "PENDING": S.AWAITING_PICKUP,
    "INFORMATION": S.LABEL_CONFIRMED,

    # Pickup
    "PICKED UP": S.PICKED_UP,
    "PICKED_UP": S.PICKED_UP,
    "1 PICKUP ATTEMPT": S.AWAITING_PICKUP,
    "OUT FOR PICKUP": S.AWAITING_PICKUP,

    # Transit
    "SHIPPED": S.IN_TRANSIT,
    "IN_TRANSIT": S.IN_TRANSIT,
    "IN TRANSIT": S.IN_TRANSIT,
    "REDIRECTED": S.IN_TRANSIT,
    "OUT FOR DELIVERY": S.OUT_FOR_DELIVERY,
    "OUT_FOR_DELIVERY": S.OUT_FOR_DELIVERY,

    # Delivery attempts
    "1 DELIVERY ATTEMPT": S.DELIVERY_ATTEMPT_1,
    "2 DELIVERY ATTEMPT": S.DELIVERY_ATTEMPT_2,
    "3 DELIVERY ATTEMPT": S.DELIVERY_ATTEMPT_3,

    # Delivered
    "DELIVERED": S.DELIVERED,
    "PICKUP AT OFFICE": S.DELIVERED,
    "DELIVERED AT ORIGIN": S.RETURNED,

    # Problems
    "DELAYED": S.DELAYED,
    "ADDRESS ERROR": S.ADDRESS_ERROR,
    "ADDRESS_ERROR": S.ADDRESS_ERROR,
    "UNDELIVERABLE": S.UNDELIVERABLE,
    "LOST": S.LOST,
    "DAMAGED": S.DAMAGED,
    "RETURN PROBLEM": S.EXCEPTION,
    "RETURN_PROBLEM": S.EXCEPTION,

    # Negative terminal
    "RETURNED": S.RETURNED,
    "REJECTED": S.REJECTED,
    "CANCELED": S.CANCELLED,
    "CANCELLED": S.CANCELLED,
})

STATUS_TRANSLATIONS = MappingProxyType({
    S.PENDING: "Pending",
    S.QUOTE_REQUESTED: "Quote requested",
    S.LABEL_CREATED: "Label created",
    S.LABEL_CONFIRMED: "Label confirmed",
    S.AWAITING_PICKUP: "Awaiting pickup",
    S.PICKUP_SCHEDULED: "Pickup scheduled",
    S.PICKED_UP: "Picked up",
    S.IN_TRANSIT: "In transit",
    S.OUT_FOR_DELIVERY: "Out for delivery",
    S.DELIVERY_ATTEMPT_1: "First delivery attempt",
    S.DELIVERY_ATTEMPT_2: "Second delivery attempt",
    S.DELIVERY_ATTEMPT_3: "Third delivery attempt",
    S.DELAYED: "Delayed",
    S.EXCEPTION: "Exception",
    S.ADDRESS_ERROR: "Address error",
    S.UNDELIVERABLE: "Undeliverable",
    S.LOST: "Lost",
    S.DAMAGED: "Damaged",
    S.DELIVERED: "Delivered",
    S.RETURNED: "Returned",
    S.REJECTED: "Rejected",
    S.CANCELLED: "Cancelled",
})

UNKNOWN_LABEL = "Unknown"

STATUS_CATEGORIES = MappingProxyType({
    S.PENDING: StatusCategory.NEEDS_ACTION,
    S.QUOTE_REQUESTED: StatusCategory.NEEDS_ACTION,
    S.LABEL_CREATED: StatusCategory.AWAITING_PICKUP,
    S.LABEL_CONFIRMED: StatusCategory.AWAITING_PICKUP,
    S.AWAITING_PICKUP: StatusCategory.AWAITING_PICKUP,
    S.PICKUP_SCHEDULED: StatusCategory.AWAITING_PICKUP,
    S.PICKED_UP: StatusCategory.IN_TRANSIT,
    S.IN_TRANSIT: StatusCategory.IN_TRANSIT,
    S.OUT_FOR_DELIVERY: StatusCategory.IN_TRANSIT,
    S.DELIVERY_ATTEMPT_1: StatusCategory.DELIVERY_ISSUE,
    S.DELIVERY_ATTEMPT_2: StatusCategory.DELIVERY_ISSUE,
    S.DELIVERY_ATTEMPT_3: StatusCategory.DELIVERY_ISSUE,
    S.DELAYED: StatusCategory.PROBLEM,
    S.EXCEPTION: StatusCategory.PROBLEM,
    S.ADDRESS_ERROR: StatusCategory.PROBLEM,
    S.UNDELIVERABLE: StatusCategory.PROBLEM,
    S.LOST: StatusCategory.CRITICAL,
    S.DAMAGED: StatusCategory.CRITICAL,
    S.DELIVERED: StatusCategory.COMPLETED,
    S.RETURNED: StatusCategory.CLOSED,
    S.REJECTED: StatusCategory.CLOSED,
    S.CANCELLED: StatusCategory.CLOSED,
})

FINAL_STATUSES = frozenset({
    S.DELIVERED,
    S.RETURNED,
    S.REJECTED,
    S.CANCELLED,
    S.LOST,
})

PROBLEM_STATUSES = frozenset({
    S.DELAYED,
    S.EXCEPTION,
    S.ADDRESS_ERROR,
    S.UNDELIVERABLE,
    S.LOST,
    S.DAMAGED,
    S.DELIVERY_ATTEMPT_1,
    S.DELIVERY_ATTEMPT_2,
    S.DELIVERY_ATTEMPT_3,
})

_ATTEMPT_NUMBERS = MappingProxyType({
    S.DELIVERY_ATTEMPT_1: 1,
    S.DELIVERY_ATTEMPT_2: 2,
    S.DELIVERY_ATTEMPT_3: 3,
})

StatusLike = Union[ShipmentStatus, str, None]


def normalize(carrier_status: Optional[str]) -> ShipmentStatus:
    """
    Map a carrier status token to the canonical status.

    Empty/missing tokens are PENDING; unrecognised tokens are EXCEPTION.
    """
    if carrier_status is None:
        return S.PENDING
    token = str(carrier_status).strip().upper()
    if not token:
        return S.PENDING

    status = CARRIER_STATUS_MAP.get(token)
    if status is None:
        logger.warning(f"Unknown carrier status: {carrier_status!r}, mapping to EXCEPTION")
        return S.EXCEPTION
    return status


def _coerce(status: StatusLike) -> Optional[ShipmentStatus]:
    if isinstance(status, ShipmentStatus):
        return status
    if not status:
        return None
    try:
        return ShipmentStatus(str(status).strip().lower())
    except ValueError:
        return None


def translate(status: StatusLike) -> str:
    """Human-readable label; never empty."""
    canonical = _coerce(status)
    if canonical is None:
        return UNKNOWN_LABEL
    return STATUS_TRANSLATIONS.get(canonical, UNKNOWN_LABEL)


def is_final(status: StatusLike) -> bool:
    """No further tracking is expected."""
    return _coerce(status) in FINAL_STATUSES


def is_problem(status: StatusLike) -> bool:
    """Shipment needs attention."""
    return _coerce(status) in PROBLEM_STATUSES


def category(status: StatusLike) -> StatusCategory:
    canonical = _coerce(status)
    if canonical is None:
        return StatusCategory.UNKNOWN
    return STATUS_CATEGORIES.get(canonical, StatusCategory.UNKNOWN)


def delivery_attempt_number(status: StatusLike) -> int:
    """1-3 for failed delivery attempt statuses, 0 otherwise."""
    return _ATTEMPT_NUMBERS.get(_coerce(status), 0)
