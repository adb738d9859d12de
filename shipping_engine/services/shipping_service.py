"""
Shipping Service v1.0.0

Shipment lifecycle manager. Coordinates:
- Quoting (delegates to RateAggregator)
- Label generation
- Tracking refresh, single and batched
- Webhook reconciliation
- Pickup scheduling and cancellation

Only this service writes Shipment / ShipmentEvent records. Status changes are
last-observation-wins; no transition is ever rejected.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from shipping_engine.core.config import Settings, settings as default_settings
from shipping_engine.core.exceptions import (
    GatewayUnconfiguredError,
    LabelIncompleteError,
    NotFoundError,
    ShippingEngineError,
    ValidationError,
)
from shipping_engine.core.extract import extract
from shipping_engine.models.order import Order, OrderStatus
from shipping_engine.models.shipment import (
    Shipment,
    ShipmentEvent,
    ShipmentStatus,
    WebhookLog,
    utcnow,
)
from shipping_engine.modules.shipping import status as status_map
from shipping_engine.modules.shipping.carriers import GatewayFactory
from shipping_engine.modules.shipping.carriers.base import (
    AddressInput,
    BaseGateway,
    Package,
    RawCancelResult,
    RawPickupResult,
    RawTrackingResult,
)
from shipping_engine.modules.shipping.packages import calculate_subtotal, prepare_packages
from shipping_engine.services.rate_aggregator import AggregateResult, RateAggregator
from shipping_engine.services.shipment_store import ShipmentStore

logger = logging.getLogger(__name__)

S = ShipmentStatus

# Order cascade
SHIPPED_TRIGGER_STATUSES = frozenset({S.PICKED_UP, S.IN_TRANSIT})
ALREADY_MOVING_STATUSES = frozenset({S.PICKED_UP, S.IN_TRANSIT, S.OUT_FOR_DELIVERY, S.DELIVERED})
SHIPPABLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING})

# Never refreshed by background sync
SYNC_EXCLUDED_STATUSES = status_map.FINAL_STATUSES | {S.PENDING}

# Destination fields inside Order.shipping_address
ADDRESS_POSTAL_KEYS = ("postal_code", "postalCode", "zip", "cp")
ADDRESS_CITY_KEYS = ("city",)
ADDRESS_STATE_KEYS = ("state", "region")
ADDRESS_STREET_KEYS = ("street", "address", "line1")
ADDRESS_NUMBER_KEYS = ("number", "exterior_number")
ADDRESS_DISTRICT_KEYS = ("district", "colony", "neighborhood")

# Webhook fields, first present wins
WEBHOOK_TRACKING_KEYS = (
    "trackingNumber", "tracking_number", "guia",
    "data.trackingNumber", "data.tracking_number", "data.guia",
)
# "event" is usually the event type; tried last
WEBHOOK_STATUS_KEYS = (
    "status", "shipmentStatus", "eventStatus",
    "data.status", "data.shipmentStatus", "data.eventStatus",
    "event",
)
WEBHOOK_CARRIER_KEYS = ("carrier", "carrierName", "data.carrier")
WEBHOOK_DESCRIPTION_KEYS = ("description", "message", "statusDescription", "data.description")
WEBHOOK_LOCATION_KEYS = ("location", "city", "data.location")
WEBHOOK_EVENT_AT_KEYS = ("date", "timestamp", "eventDate", "data.date")
WEBHOOK_EVENT_TYPE_KEYS = ("event", "type", "eventType")

REASON_MISSING_TRACKING = "missing_tracking_number"
REASON_NOT_FOUND = "shipment_not_found"
REASON_ERROR = "error"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Best-effort parse of a provider timestamp into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# Result types
# =============================================================================

@dataclass
class LabelResult:
    shipment_id: str
    order_id: str
    tracking_number: str
    carrier: str
    service: str
    label_url: Optional[str] = None
    label_id: Optional[str] = None
    estimated_delivery: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shipment_id": self.shipment_id,
            "order_id": self.order_id,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "service": self.service,
            "label_url": self.label_url,
            "label_id": self.label_id,
            "estimated_delivery": self.estimated_delivery,
        }


@dataclass
class TrackingEventView:
    status: ShipmentStatus
    carrier_status: Optional[str]
    description: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None
    occurred_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "status_label": status_map.translate(self.status),
            "carrier_status": self.carrier_status,
            "description": self.description,
            "location": self.location,
            "date": self.date,
        }


@dataclass
class TrackingView:
    """Composite tracking answer; events are newest first."""
    tracking_number: str
    carrier: str
    status: ShipmentStatus
    status_description: str
    category: str
    is_final: bool
    is_problem: bool
    events: List[TrackingEventView] = field(default_factory=list)
    carrier_status: Optional[str] = None
    estimated_delivery: Optional[str] = None
    delivered_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)
    is_simulated: bool = False

    @property
    def latest_event(self) -> Optional[TrackingEventView]:
        return self.events[0] if self.events else None

    def to_dict(self) -> Dict[str, Any]:
        latest = self.latest_event
        return {
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "status": self.status.value,
            "status_description": self.status_description,
            "category": self.category,
            "is_final": self.is_final,
            "is_problem": self.is_problem,
            "carrier_status": self.carrier_status,
            "events": [e.to_dict() for e in self.events],
            "latest_event": latest.to_dict() if latest else None,
            "estimated_delivery": self.estimated_delivery,
            "delivered_at": _isoformat(self.delivered_at),
            "last_sync_at": _isoformat(self.last_sync_at),
            "is_simulated": self.is_simulated,
        }


@dataclass
class SyncResult:
    synced: int = 0
    failed: int = 0
    updates: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.synced + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "updates": self.updates,
            "errors": self.errors,
        }


@dataclass
class WebhookAck:
    """Always returned to the webhook sender, whatever happened internally."""
    received: bool = True
    processed: bool = False
    reason: Optional[str] = None
    tracking_number: Optional[str] = None
    shipment_id: Optional[str] = None
    status: Optional[str] = None
    webhook_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "received": self.received,
            "processed": self.processed,
            "reason": self.reason,
            "tracking_number": self.tracking_number,
            "shipment_id": self.shipment_id,
            "status": self.status,
            "webhook_id": self.webhook_id,
        }


def simulated_tracking_view(tracking_number: str, carrier: str) -> TrackingView:
    """Placeholder in-transit view returned when the provider is not configured."""
    now = utcnow()
    event = TrackingEventView(
        status=S.IN_TRANSIT,
        carrier_status=None,
        description="Package in transit",
        location="Distribution center",
        date=now.isoformat(),
        occurred_at=now,
    )
    return TrackingView(
        tracking_number=tracking_number,
        carrier=carrier,
        status=S.IN_TRANSIT,
        status_description=status_map.translate(S.IN_TRANSIT),
        category=status_map.category(S.IN_TRANSIT).value,
        is_final=False,
        is_problem=False,
        events=[event],
        is_simulated=True,
    )


# =============================================================================
# Service
# =============================================================================

class ShippingService:
    """
    Central service for shipment lifecycle operations.
    """

    def __init__(
        self,
        gateway: BaseGateway,
        store: ShipmentStore,
        aggregator: Optional[RateAggregator] = None,
        readonly: bool = False,
        sync_batch_size: int = 5,
        stale_hours: int = 4,
    ):
        self.gateway = gateway
        self.store = store
        self.aggregator = aggregator or RateAggregator(gateway)
        self.readonly = readonly
        self.sync_batch_size = max(1, sync_batch_size)
        self.stale_hours = stale_hours

    async def close(self):
        """Clean up resources."""
        await self.gateway.close()

    def _require_configured(self):
        if not self.gateway.is_configured:
            raise GatewayUnconfiguredError(
                message="Shipping provider is not configured",
                details={"provider": self.gateway.provider_name},
            )

    # ==================== Quotes ====================

    async def get_quotes(
        self,
        destination: AddressInput,
        packages: List[Package],
        carriers: Optional[List[str]] = None,
        cart_subtotal: float = 0.0,
    ) -> AggregateResult:
        return await self.aggregator.get_quotes(destination, packages, carriers, cart_subtotal)

    async def quote_cart(
        self,
        destination: AddressInput,
        items: Sequence[Any],
        carriers: Optional[List[str]] = None,
    ) -> AggregateResult:
        """Quote a cart: packages and subtotal are derived from its line items."""
        return await self.get_quotes(
            destination,
            prepare_packages(items),
            carriers=carriers,
            cart_subtotal=calculate_subtotal(items),
        )

    # ==================== Labels ====================

    @staticmethod
    def _destination_for(order: Order) -> AddressInput:
        address = order.shipping_address or {}
        postal_code = extract(address, ADDRESS_POSTAL_KEYS)
        city = extract(address, ADDRESS_CITY_KEYS)

        if not postal_code or not city:
            raise ValidationError(
                message="Order destination needs a postal code and city",
                field="shipping_address",
                code="INVALID_DESTINATION",
                details={"order_id": order.id},
            )

        return AddressInput(
            name=order.customer_name or address.get("name"),
            email=order.customer_email or address.get("email"),
            phone=order.customer_phone or address.get("phone"),
            street=extract(address, ADDRESS_STREET_KEYS, ""),
            number=str(extract(address, ADDRESS_NUMBER_KEYS, "")),
            district=extract(address, ADDRESS_DISTRICT_KEYS, ""),
            city=city,
            state=extract(address, ADDRESS_STATE_KEYS, ""),
            postal_code=str(postal_code),
            country=address.get("country") or "MX",
            reference=address.get("reference") or order.customer_notes,
        )

    async def create_label(self, order_id: str, carrier: str, service_id: str) -> LabelResult:
        """
        Generate a label for an order and record the shipment.

        Raises:
            ValidationError: missing carrier/service or incomplete destination
            GatewayUnconfiguredError: provider not configured
            NotFoundError: unknown order
            LabelIncompleteError: provider returned no tracking number
            GatewayError: provider failure, propagated as-is
        """
        if not carrier or not service_id:
            raise ValidationError(
                message="Carrier and service are required",
                code="MISSING_CARRIER_SERVICE",
            )

        self._require_configured()

        order = await self.store.get_order(order_id)
        if not order:
            raise NotFoundError(message="Order not found", code="ORDER_NOT_FOUND", details={"order_id": order_id})

        destination = self._destination_for(order)
        packages = prepare_packages(order.items)

        result = await self.gateway.create_label(
            destination=destination,
            packages=packages,
            carrier=carrier,
            service_id=service_id,
            reference=order.order_number,
        )

        if not result.tracking_number:
            partial = {
                "label_url": result.label_url,
                "label_id": result.label_id,
                "raw": result.raw,
            }
            logger.error(
                f"Label for order {order.order_number} returned no tracking number "
                f"(label_id={result.label_id}); manual reconciliation required"
            )
            raise LabelIncompleteError(
                message="Label generated but no tracking number was returned",
                partial_data=partial,
                details={"order_id": order_id, "carrier": carrier},
            )

        shipment = Shipment(
            order_id=order.id,
            carrier=carrier,
            service=service_id,
            tracking_number=result.tracking_number,
            label_url=result.label_url,
            label_id=result.label_id,
            quoted_price=order.shipping_cost,
            status=S.LABEL_CREATED,
            status_description=status_map.translate(S.LABEL_CREATED),
            estimated_delivery=result.estimated_delivery,
        )

        try:
            await self.store.add_shipment(shipment)
            await self.store.update_order(
                order.id,
                tracking_number=result.tracking_number,
                shipping_carrier=carrier,
                status=OrderStatus.PROCESSING,
            )
        except Exception as e:
            logger.error(
                f"Label {result.tracking_number} created for order {order.order_number} "
                f"but could not be recorded: {e}"
            )
            raise

        logger.info(f"Label created for order {order.order_number}: {carrier} {result.tracking_number}")

        return LabelResult(
            shipment_id=shipment.id,
            order_id=order.id,
            tracking_number=result.tracking_number,
            carrier=carrier,
            service=service_id,
            label_url=result.label_url,
            label_id=result.label_id,
            estimated_delivery=result.estimated_delivery,
        )

    # ==================== Tracking ====================

    @staticmethod
    def _build_view(raw: RawTrackingResult) -> TrackingView:
        status = status_map.normalize(raw.carrier_status)

        events = [
            TrackingEventView(
                status=status_map.normalize(e.carrier_status),
                carrier_status=e.carrier_status,
                description=e.description,
                location=e.location,
                date=str(e.date) if e.date is not None else None,
                occurred_at=parse_timestamp(e.date),
            )
            for e in raw.events
        ]
        # Undated events sink to the end
        events.sort(
            key=lambda e: (e.occurred_at is not None, e.occurred_at or datetime.min.replace(tzinfo=timezone.utc)),
            reverse=True,
        )

        delivered_at = None
        if status == S.DELIVERED:
            delivered_at = parse_timestamp(raw.delivered_at) or (events[0].occurred_at if events else None)

        return TrackingView(
            tracking_number=raw.tracking_number,
            carrier=raw.carrier,
            status=status,
            status_description=status_map.translate(status),
            category=status_map.category(status).value,
            is_final=status_map.is_final(status),
            is_problem=status_map.is_problem(status),
            events=events,
            carrier_status=raw.carrier_status,
            estimated_delivery=raw.estimated_delivery,
            delivered_at=delivered_at,
            raw=raw.raw,
        )

    async def track(self, tracking_number: str, carrier: Optional[str] = None) -> TrackingView:
        """
        Refresh tracking from the provider.

        The carrier is looked up from the stored shipment when not given.
        Gateway failures propagate; persistence failures are logged only.
        """
        if not tracking_number:
            raise ValidationError(message="Tracking number is required", field="tracking_number")

        shipment = await self.store.get_shipment_by_tracking(tracking_number)
        carrier = carrier or (shipment.carrier if shipment else None)
        if not carrier:
            raise ValidationError(
                message="Carrier not specified and no shipment found for tracking number",
                field="carrier",
                code="MISSING_CARRIER",
            )

        raw = await self.gateway.track(tracking_number, carrier)
        view = self._build_view(raw)

        if shipment and not self.readonly:
            try:
                view.last_sync_at = await self._persist_tracking(shipment, view)
            except Exception as e:
                logger.error(f"Failed to persist tracking for {tracking_number}: {e}")
        elif shipment:
            view.last_sync_at = shipment.last_sync_at

        return view

    async def _persist_tracking(self, shipment: Shipment, view: TrackingView) -> datetime:
        now = utcnow()
        latest = view.latest_event
        fields: Dict[str, Any] = {
            "status": view.status,
            "status_description": view.status_description,
            "last_sync_at": now,
            "sync_error": None,
        }
        if view.estimated_delivery:
            fields["estimated_delivery"] = view.estimated_delivery
        if latest:
            fields["last_event_description"] = latest.description
            fields["last_event_location"] = latest.location
            fields["last_event_at"] = latest.occurred_at
        if view.status == S.DELIVERED:
            fields["delivered_at"] = view.delivered_at or now
        attempt = status_map.delivery_attempt_number(view.status)
        if attempt:
            fields["delivery_attempts"] = max(shipment.delivery_attempts, attempt)

        await self.store.update_shipment(shipment.id, **fields)

        if view.status != shipment.status:
            await self.store.append_event(ShipmentEvent(
                shipment_id=shipment.id,
                status=view.status,
                event_at=(latest.occurred_at if latest and latest.occurred_at else now),
                description=latest.description if latest else view.status_description,
                location=latest.location if latest else None,
                carrier_status=view.carrier_status,
                raw_payload=view.raw,
            ))
            await self._cascade_order(shipment.order_id, shipment.status, view.status)
            logger.info(
                f"Shipment {shipment.tracking_number}: {shipment.status.value} -> {view.status.value}"
            )

        return now

    async def _sync_one(self, shipment: Shipment) -> Dict[str, Any]:
        if not shipment.tracking_number:
            raise ValidationError(message="Shipment has no tracking number", field="tracking_number")
        view = await self.track(shipment.tracking_number, shipment.carrier)
        return {
            "shipment_id": shipment.id,
            "tracking_number": shipment.tracking_number,
            "previous_status": shipment.status.value,
            "status": view.status.value,
            "changed": view.status != shipment.status,
        }

    async def sync_many(self, shipments: Sequence[Shipment], batch_size: Optional[int] = None) -> SyncResult:
        """
        Refresh tracking for many shipments, batch_size at a time.

        Each batch runs concurrently and completes before the next starts.
        One failure never aborts the batch.
        """
        batch_size = max(1, batch_size or self.sync_batch_size)
        shipments = list(shipments)
        result = SyncResult()

        for start in range(0, len(shipments), batch_size):
            batch = shipments[start:start + batch_size]
            outcomes = await asyncio.gather(
                *(self._sync_one(s) for s in batch),
                return_exceptions=True,
            )

            for shipment, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    result.failed += 1
                    message = outcome.message if isinstance(outcome, ShippingEngineError) else str(outcome)
                    result.errors.append({
                        "shipment_id": shipment.id,
                        "tracking_number": shipment.tracking_number,
                        "error": message,
                        "code": getattr(outcome, "code", None),
                    })
                    logger.warning(f"Tracking sync failed for {shipment.tracking_number}: {message}")
                    await self._record_sync_error(shipment, message)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.synced += 1
                    result.updates.append(outcome)

        logger.info(f"Tracking sync complete: {result.synced} synced, {result.failed} failed")
        return result

    async def _record_sync_error(self, shipment: Shipment, message: str):
        if self.readonly:
            return
        try:
            await self.store.update_shipment(shipment.id, sync_error=message)
        except Exception as e:
            logger.error(f"Could not record sync error for {shipment.id}: {e}")

    async def get_shipments_needing_sync(self, hours_threshold: Optional[int] = None) -> List[Shipment]:
        """Non-final shipments with a tracking number not synced in hours_threshold hours."""
        hours = self.stale_hours if hours_threshold is None else hours_threshold
        cutoff = utcnow() - timedelta(hours=hours)
        return await self.store.find_stale_shipments(cutoff, SYNC_EXCLUDED_STATUSES)

    # ==================== Webhooks ====================

    async def ingest_webhook(self, payload: Any) -> WebhookAck:
        """
        Reconcile a provider webhook.

        Never raises: the sender must always get an acknowledgment or it will
        retry a delivery that cannot succeed.
        """
        log: Optional[WebhookLog] = None
        ack = WebhookAck()

        try:
            if not isinstance(payload, dict):
                payload = {"raw": payload}

            tracking_number = extract(payload, WEBHOOK_TRACKING_KEYS)
            tracking_number = str(tracking_number) if tracking_number is not None else None
            ack.tracking_number = tracking_number

            log = await self.store.add_webhook_log(WebhookLog(
                payload=payload,
                tracking_number=tracking_number,
                carrier=extract(payload, WEBHOOK_CARRIER_KEYS),
                event_type=extract(payload, WEBHOOK_EVENT_TYPE_KEYS),
            ))
            ack.webhook_id = log.id

            if not tracking_number:
                logger.warning("Webhook without tracking number ignored")
                ack.reason = REASON_MISSING_TRACKING
                await self.store.update_webhook_log(log.id, process_error=REASON_MISSING_TRACKING)
                return ack

            shipment = await self.store.get_shipment_by_tracking(tracking_number)
            if not shipment:
                logger.warning(f"Webhook for unknown tracking number {tracking_number}")
                ack.reason = REASON_NOT_FOUND
                await self.store.update_webhook_log(log.id, process_error=REASON_NOT_FOUND)
                return ack

            carrier_status = extract(payload, WEBHOOK_STATUS_KEYS)
            new_status = await self._apply_webhook(shipment, payload, carrier_status)

            await self.store.update_webhook_log(
                log.id,
                shipment_id=shipment.id,
                processed=True,
                processed_at=utcnow(),
            )

            ack.processed = True
            ack.shipment_id = shipment.id
            ack.status = new_status.value
            logger.info(f"Webhook {tracking_number}: {carrier_status!r} -> {new_status.value}")
            return ack

        except Exception as e:
            logger.error(f"Webhook processing failed: {e}", exc_info=True)
            ack.processed = False
            ack.reason = REASON_ERROR
            if log is not None:
                try:
                    await self.store.update_webhook_log(log.id, process_error=str(e))
                except Exception as log_error:
                    logger.error(f"Could not record webhook error on {log.id}: {log_error}")
            return ack

    async def _apply_webhook(
        self,
        shipment: Shipment,
        payload: Dict[str, Any],
        carrier_status: Any,
    ) -> ShipmentStatus:
        new_status = status_map.normalize(carrier_status)
        description = extract(payload, WEBHOOK_DESCRIPTION_KEYS)
        location = extract(payload, WEBHOOK_LOCATION_KEYS)
        now = utcnow()
        event_at = parse_timestamp(extract(payload, WEBHOOK_EVENT_AT_KEYS)) or now

        fields: Dict[str, Any] = {
            "status": new_status,
            "status_description": description or status_map.translate(new_status),
            "last_event_description": description,
            "last_event_location": location,
            "last_event_at": event_at,
            "last_sync_at": now,
        }
        if new_status == S.DELIVERED:
            fields["delivered_at"] = event_at
        attempt = status_map.delivery_attempt_number(new_status)
        if attempt:
            fields["delivery_attempts"] = max(shipment.delivery_attempts, attempt)

        await self.store.update_shipment(shipment.id, **fields)
        await self.store.append_event(ShipmentEvent(
            shipment_id=shipment.id,
            status=new_status,
            event_at=event_at,
            description=description,
            location=location,
            carrier_status=str(carrier_status) if carrier_status is not None else None,
            raw_payload=payload,
        ))
        await self._cascade_order(shipment.order_id, shipment.status, new_status)
        return new_status

    async def _cascade_order(self, order_id: str, previous: ShipmentStatus, new: ShipmentStatus):
        """Move the owning order to shipped / delivered; never backwards."""
        if new == S.DELIVERED:
            await self.store.update_order(order_id, status=OrderStatus.DELIVERED)
            return

        if new in SHIPPED_TRIGGER_STATUSES and previous not in ALREADY_MOVING_STATUSES:
            order = await self.store.get_order(order_id)
            if order and order.status in SHIPPABLE_ORDER_STATUSES:
                await self.store.update_order(order_id, status=OrderStatus.SHIPPED)

    # ==================== Pickup / Cancel ====================

    async def schedule_pickup(
        self,
        carrier: str,
        tracking_numbers: List[str],
        pickup_date: str,
        time_start: str = "09:00",
        time_end: str = "18:00",
        package_count: int = 1,
    ) -> RawPickupResult:
        """Book a carrier pickup; marking shipments is best-effort."""
        if isinstance(tracking_numbers, str):
            tracking_numbers = [tracking_numbers]
        if not carrier or not tracking_numbers or not pickup_date:
            raise ValidationError(
                message="Carrier, tracking numbers and pickup date are required",
                code="MISSING_PICKUP_DATA",
            )
        try:
            date.fromisoformat(pickup_date)
        except ValueError:
            raise ValidationError(message="Pickup date must be YYYY-MM-DD", field="pickup_date")

        self._require_configured()

        result = await self.gateway.schedule_pickup(
            carrier=carrier,
            tracking_numbers=tracking_numbers,
            pickup_date=pickup_date,
            time_start=time_start or "09:00",
            time_end=time_end or "18:00",
            package_count=package_count or len(tracking_numbers),
        )

        if not self.readonly:
            for tracking_number in tracking_numbers:
                try:
                    shipment = await self.store.get_shipment_by_tracking(tracking_number)
                    if shipment:
                        await self.store.update_shipment(
                            shipment.id,
                            pickup_scheduled=True,
                            pickup_date=pickup_date,
                        )
                except Exception as e:
                    logger.error(f"Could not mark pickup for {tracking_number}: {e}")

        logger.info(f"Pickup scheduled with {carrier} on {pickup_date} for {len(tracking_numbers)} shipments")
        return result

    async def cancel(self, label_id: str, carrier: str) -> RawCancelResult:
        """Cancel a label; marking the shipment cancelled is best-effort."""
        if not label_id or not carrier:
            raise ValidationError(message="Label id and carrier are required", code="MISSING_CANCEL_DATA")

        self._require_configured()

        result = await self.gateway.cancel(label_id, carrier)

        if not self.readonly:
            try:
                shipment = await self.store.get_shipment_by_label_id(label_id)
                if shipment:
                    await self.store.update_shipment(
                        shipment.id,
                        status=S.CANCELLED,
                        status_description=status_map.translate(S.CANCELLED),
                    )
            except Exception as e:
                logger.error(f"Could not mark label {label_id} cancelled: {e}")

        logger.info(f"Label {label_id} cancelled with {carrier} (refund {result.refund_amount})")
        return result

    # ==================== Status ====================

    def configuration_status(self) -> Dict[str, Any]:
        configured = self.gateway.is_configured
        return {
            "provider": self.gateway.provider_name,
            "configured": configured,
            "capabilities": {
                "quotes": True,
                "labels": configured,
                "tracking": configured,
                "pickup": configured,
                "webhooks": configured,
            },
        }


def create_shipping_service(store: ShipmentStore, config: Optional[Settings] = None) -> ShippingService:
    """Build a ShippingService wired from settings."""
    config = config or default_settings
    gateway = GatewayFactory.create(config=config)
    aggregator = RateAggregator(
        gateway,
        carriers=config.SHIPPING_CARRIERS,
        timeout=config.SHIPPING_GATEWAY_TIMEOUT_SECONDS,
        free_shipping_threshold=config.SHIPPING_FREE_THRESHOLD,
        currency=config.SHIPPING_CURRENCY,
    )
    return ShippingService(
        gateway=gateway,
        store=store,
        aggregator=aggregator,
        readonly=config.SHIPPING_READONLY,
        sync_batch_size=config.SHIPPING_SYNC_BATCH_SIZE,
        stale_hours=config.SHIPPING_SYNC_STALE_HOURS,
    )
