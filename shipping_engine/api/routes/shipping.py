"""
Shipping API Routes

Provides endpoints for:
- Rate quoting (curated two-option quotes for a cart)
- Label generation, pickup and cancellation
- Tracking lookup
- Provider webhooks
- Batched tracking sync and configuration probe

Authentication is the host application's concern: label, pickup, cancel and
sync are privileged and must be guarded where this router is mounted.
"""
import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from shipping_engine.core.exceptions import (
    ConfigurationError,
    GatewayError,
    GatewayRejectedError,
    GatewayTimeoutError,
    IntegrityError,
    NotFoundError,
    ShippingEngineError,
    ValidationError,
)
from shipping_engine.schemas.shipping import (
    CancelRequest,
    LabelRequest,
    PickupRequest,
    QuoteRequest,
    SyncRequest,
)
from shipping_engine.services.shipment_store import InMemoryShipmentStore
from shipping_engine.services.shipping_service import (
    ShippingService,
    create_shipping_service,
    simulated_tracking_view,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])

POSTAL_CODE_PATTERN = re.compile(r"^\d{5}$")

_default_service: Optional[ShippingService] = None


def get_shipping_service() -> ShippingService:
    """
    Shipping service dependency.

    Hosts override this with a service bound to their own ShipmentStore; the
    default keeps state in memory and is only suitable for demos.
    """
    global _default_service
    if _default_service is None:
        logger.warning("Using in-memory shipment store; override get_shipping_service in production")
        _default_service = create_shipping_service(InMemoryShipmentStore())
    return _default_service


# ==================== Helper Functions ====================


def _status_code_for(error: ShippingEngineError) -> int:
    if isinstance(error, (ValidationError, ConfigurationError)):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, GatewayTimeoutError):
        return 504
    if isinstance(error, (GatewayError, IntegrityError)):
        return 502
    return 500


def error_response(error: ShippingEngineError, context: str) -> JSONResponse:
    """
    Structured error body for label / pickup / cancel / track failures.

    P0/P1 errors (provider and integrity failures) are logged as errors,
    caller mistakes as warnings.
    """
    data = error.to_dict()
    log = logger.error if data["severity"] in ("P0", "P1") else logger.warning
    log(f"{context} failed: {data['code']} {data['message']} (details={data['details']})")

    body = {
        "success": False,
        "error": data["message"],
        "error_code": data["code"],
    }
    if isinstance(error, GatewayRejectedError) and error.carrier_message:
        body["carrier_message"] = error.carrier_message
    if "partial_data" in data["details"]:
        body["partial_data"] = data["details"]["partial_data"]
    return JSONResponse(status_code=_status_code_for(error), content=jsonable_encoder(body))


# ==================== Quote Endpoints ====================


@router.post("/quote")
async def get_quote(
    request: QuoteRequest,
    service: ShippingService = Depends(get_shipping_service),
):
    """
    Quote a cart.

    Always answers: carrier failures degrade to fixed rates.
    """
    if not POSTAL_CODE_PATTERN.match(request.destination.postal_code):
        raise HTTPException(status_code=400, detail="Postal code must be 5 digits")

    if not request.items:
        raise HTTPException(status_code=400, detail="Cart is empty")

    result = await service.quote_cart(
        request.destination.to_address(),
        [item.model_dump() for item in request.items],
        carriers=request.carriers,
    )
    return {"success": True, "data": result.to_dict()}


# ==================== Label Endpoints ====================


@router.post("/label")
async def create_label(
    request: LabelRequest,
    service: ShippingService = Depends(get_shipping_service),
):
    """Generate a label for an order (privileged)."""
    try:
        result = await service.create_label(request.order_id, request.carrier, request.service_id)
    except ShippingEngineError as e:
        return error_response(e, f"Label creation for order {request.order_id}")

    return {"success": True, "data": result.to_dict()}


# ==================== Tracking Endpoints ====================


@router.get("/track/{tracking_number}")
async def track_shipment(
    tracking_number: str,
    carrier: Optional[str] = Query(None, description="Carrier id; looked up from the shipment if omitted"),
    service: ShippingService = Depends(get_shipping_service),
):
    """Track a shipment. Simulated when the provider is not configured."""
    if not service.gateway.is_configured:
        if not carrier:
            shipment = await service.store.get_shipment_by_tracking(tracking_number)
            carrier = shipment.carrier if shipment else None
        if not carrier:
            raise HTTPException(status_code=400, detail="Carrier not specified")
        return {"success": True, "data": simulated_tracking_view(tracking_number, carrier).to_dict()}

    try:
        view = await service.track(tracking_number, carrier)
    except ShippingEngineError as e:
        return error_response(e, f"Tracking {tracking_number}")

    return {"success": True, "data": view.to_dict()}


# ==================== Pickup / Cancel Endpoints ====================


@router.post("/pickup")
async def schedule_pickup(
    request: PickupRequest,
    service: ShippingService = Depends(get_shipping_service),
):
    """Schedule a carrier pickup (privileged)."""
    try:
        result = await service.schedule_pickup(
            carrier=request.carrier,
            tracking_numbers=request.tracking_numbers,
            pickup_date=request.pickup_date.isoformat(),
            time_start=request.time_start,
            time_end=request.time_end,
            package_count=request.package_count,
        )
    except ShippingEngineError as e:
        return error_response(e, "Pickup scheduling")

    return {
        "success": True,
        "data": {
            "carrier": result.carrier,
            "pickup_date": result.pickup_date,
            "pickup_id": result.pickup_id,
            "confirmation_number": result.confirmation_number,
        },
    }


@router.delete("/cancel/{label_id}")
async def cancel_shipment(
    label_id: str,
    request: CancelRequest,
    service: ShippingService = Depends(get_shipping_service),
):
    """Cancel a label (privileged)."""
    try:
        result = await service.cancel(label_id, request.carrier)
    except ShippingEngineError as e:
        return error_response(e, f"Cancel of label {label_id}")

    return {
        "success": True,
        "data": {
            "carrier": result.carrier,
            "label_id": result.label_id,
            "refund_amount": result.refund_amount,
        },
    }


# ==================== Webhook Endpoints ====================


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    service: ShippingService = Depends(get_shipping_service),
):
    """
    Provider webhook.

    Always 200: a failed delivery would only make the provider retry.
    """
    try:
        payload = await request.json()
    except ValueError:
        body = await request.body()
        payload = {"raw": body.decode("utf-8", errors="replace")}

    ack = await service.ingest_webhook(payload)
    return ack.to_dict()


# ==================== Sync / Status Endpoints ====================


@router.post("/sync")
async def sync_tracking(
    request: Optional[SyncRequest] = None,
    service: ShippingService = Depends(get_shipping_service),
):
    """Refresh tracking for stale shipments (privileged)."""
    request = request or SyncRequest()

    if not service.gateway.is_configured:
        raise HTTPException(status_code=400, detail="Shipping provider is not configured")

    shipments = await service.get_shipments_needing_sync(request.hours_threshold)
    result = await service.sync_many(shipments, batch_size=request.batch_size)
    return {"success": True, "data": result.to_dict()}


@router.get("/status")
async def shipping_status(service: ShippingService = Depends(get_shipping_service)):
    """Configuration probe."""
    return {"success": True, **service.configuration_status()}
