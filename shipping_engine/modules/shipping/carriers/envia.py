"""
Envia.com Gateway v1.0.0

REST client for the Envia.com multi-carrier shipping API:
- Rating        POST /ship/rate/
- Labels        POST /ship/generate/
- Tracking      POST /ship/tracking/
- Pickups       POST /ship/pickup/
- Cancellation  POST /ship/cancel/

Envia is not consistent about response shapes, so every logical value is read
with an ordered list of candidate keys (see core.extract).
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from shipping_engine.core.exceptions import (
    GatewayError,
    GatewayRejectedError,
    GatewayTimeoutError,
    GatewayUnconfiguredError,
)
from shipping_engine.core.extract import extract, unwrap_data
from shipping_engine.modules.shipping.carriers import register_gateway, origin_from_settings
from shipping_engine.modules.shipping.carriers.base import (
    AddressInput,
    BaseGateway,
    Package,
    RawCancelResult,
    RawLabelResult,
    RawPickupResult,
    RawServiceOffer,
    RawTrackingEvent,
    RawTrackingResult,
)
from shipping_engine.modules.shipping.regions import normalize_region_code

logger = logging.getLogger(__name__)

RATE_PATH = "/ship/rate/"
GENERATE_PATH = "/ship/generate/"
TRACKING_PATH = "/ship/tracking/"
PICKUP_PATH = "/ship/pickup/"
CANCEL_PATH = "/ship/cancel/"

DOMESTIC_SHIPMENT = 1
PRINT_FORMAT = "PDF"
PRINT_SIZE = "STOCK_4X6"

# Candidate keys per logical field, first present wins
SERVICE_ID_KEYS = ("serviceId", "service")
SERVICE_NAME_KEYS = ("serviceName", "service")
SERVICE_DESCRIPTION_KEYS = ("serviceDescription",)
PRICE_KEYS = ("totalPrice", "basePrice")
DELIVERY_DAYS_KEYS = ("deliveryDays", "deliveryEstimate")
DELIVERY_DATE_KEYS = ("deliveryDate",)

TRACKING_NUMBER_KEYS = ("trackingNumber", "tracking_number", "guia")
LABEL_URL_KEYS = ("label", "labelUrl", "billOfLading", "url")
LABEL_ID_KEYS = ("carrierShipmentId", "shipmentId", "id")
ESTIMATED_DELIVERY_KEYS = ("deliveryDate", "estimatedDelivery", "estimated_delivery")

TRACKING_STATUS_KEYS = ("status", "shipmentStatus")
TRACKING_EVENTS_KEYS = ("events", "checkpoints", "history")
EVENT_STATUS_KEYS = ("status", "eventStatus")
EVENT_DATE_KEYS = ("date", "timestamp", "eventDate")
EVENT_LOCATION_KEYS = ("location", "city", "eventLocation")
EVENT_DESCRIPTION_KEYS = ("description", "message", "eventDescription")
DELIVERED_AT_KEYS = ("deliveredAt", "delivered_at")

PICKUP_ID_KEYS = ("pickupId", "confirmationNumber")
REFUND_KEYS = ("refundAmount", "data.refundAmount")

ERROR_MESSAGE_KEYS = ("message", "error.message", "error")
ERROR_CODE_KEYS = ("error.code", "code")

DEFAULT_DELIVERY_DAYS = "3-5"


def friendly_error_message(http_status: Optional[int], carrier_message: Optional[str]) -> str:
    """Map common provider rejections to a message a merchant can act on."""
    text = (carrier_message or "").lower()
    if "address" in text:
        return "Address error: check that the destination details are correct"
    if "postal" in text:
        return "Invalid postal code or postal code not covered by the carrier"
    if http_status == 401:
        return "Authentication with the shipping provider failed - check the API key"
    if http_status == 429:
        return "Too many requests - try again in a few seconds"
    return carrier_message or f"Shipping provider returned HTTP {http_status}"


@register_gateway("envia")
class EnviaGateway(BaseGateway):
    """
    Envia.com shipping provider gateway.

    Bearer-token authenticated; one httpx.AsyncClient per gateway instance.
    """

    def __init__(
        self,
        api_key: str,
        origin: AddressInput,
        base_url: str = "https://api.envia.com",
        timeout: float = 30.0,
        currency: str = "MXN",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(origin, timeout)
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self._http_client = http_client

    @classmethod
    def from_settings(cls, config) -> "EnviaGateway":
        return cls(
            api_key=config.ENVIA_API_KEY,
            origin=origin_from_settings(config),
            base_url=config.ENVIA_API_URL,
            timeout=config.SHIPPING_GATEWAY_TIMEOUT_SECONDS,
            currency=config.SHIPPING_CURRENCY,
        )

    @property
    def provider_name(self) -> str:
        return "envia.com"

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ==================== Transport ====================

    async def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        """Make an authenticated POST and translate failures."""
        if not self.is_configured:
            raise GatewayUnconfiguredError(
                message="Shipping provider is not configured",
                details={"provider": self.provider_name},
            )

        client = self._get_http_client()

        try:
            response = await client.post(path, json=payload, timeout=self.timeout)
        except httpx.TimeoutException as e:
            logger.error(f"Envia {path} timed out after {self.timeout}s: {e}")
            raise GatewayTimeoutError(
                message=f"Shipping provider timed out after {self.timeout:.0f}s",
                timeout_seconds=self.timeout,
                details={"path": path},
            )
        except httpx.RequestError as e:
            logger.error(f"Envia {path} request failed: {e}")
            raise GatewayError(message=f"Network error: {e}", code="NETWORK_ERROR", details={"path": path})

        logger.debug(f"Envia POST {path} -> {response.status_code}")

        if not 200 <= response.status_code < 300:
            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text[:500]}

            carrier_message = extract(body, ERROR_MESSAGE_KEYS)
            if not isinstance(carrier_message, str):
                carrier_message = None
            carrier_code = extract(body, ERROR_CODE_KEYS)

            logger.error(
                f"Envia API error on {path}: HTTP {response.status_code} "
                f"code={carrier_code} message={carrier_message}"
            )
            raise GatewayRejectedError(
                message=friendly_error_message(response.status_code, carrier_message),
                http_status=response.status_code,
                carrier_message=carrier_message,
                carrier_code=str(carrier_code) if carrier_code is not None else None,
                details={"path": path, "response": body},
            )

        try:
            return response.json()
        except ValueError:
            raise GatewayError(
                message="Shipping provider returned a non-JSON response",
                code="INVALID_RESPONSE",
                details={"path": path, "raw": response.text[:500]},
            )

    # ==================== Payload builders ====================

    def _address_block(self, address: AddressInput, default_name: str = "Cliente") -> Dict[str, Any]:
        block = {
            "name": address.name or default_name,
            "company": address.company or "",
            "email": address.email or "",
            "phone": address.phone or "",
            "street": address.street or "",
            "number": address.number or "",
            "district": address.district or "",
            "city": address.city,
            "state": normalize_region_code(address.state),
            "country": address.country or "MX",
            "postalCode": address.postal_code,
        }
        if address.reference:
            block["reference"] = address.reference
        return block

    def _package_block(self, package: Package) -> Dict[str, Any]:
        return {
            "content": package.content,
            "amount": package.amount,
            "type": "box",
            "weight": package.weight,
            "insurance": package.insurance,
            "declaredValue": package.declared_value,
            "weightUnit": "KG",
            "lengthUnit": "CM",
            "dimensions": {
                "length": package.length,
                "width": package.width,
                "height": package.height,
            },
        }

    def _settings_block(self, comments: Optional[str] = None) -> Dict[str, Any]:
        block = {
            "currency": self.currency,
            "printFormat": PRINT_FORMAT,
            "printSize": PRINT_SIZE,
        }
        if comments:
            block["comments"] = comments
        return block

    # ==================== Operations ====================

    async def quote(
        self,
        destination: AddressInput,
        packages: List[Package],
        carrier: str,
    ) -> List[RawServiceOffer]:
        """Get shipping rates for one carrier."""
        payload = {
            "origin": self._address_block(self.origin),
            "destination": self._address_block(destination),
            "packages": [self._package_block(p) for p in packages],
            "shipment": {"carrier": carrier, "type": DOMESTIC_SHIPMENT},
            "settings": self._settings_block(),
        }

        body = await self._post(RATE_PATH, payload)

        services = body.get("data") if isinstance(body, dict) else None
        if not isinstance(services, list):
            logger.warning(f"Envia rate for {carrier}: no data in response")
            return []

        offers = []
        for service in services:
            if not isinstance(service, dict):
                continue
            service_id = extract(service, SERVICE_ID_KEYS)
            offers.append(RawServiceOffer(
                carrier=carrier,
                service_id=str(service_id) if service_id is not None else "",
                service_name=extract(service, SERVICE_NAME_KEYS, ""),
                service_description=extract(service, SERVICE_DESCRIPTION_KEYS, ""),
                price=float(extract(service, PRICE_KEYS, 0) or 0),
                currency=extract(service, ("currency",), self.currency),
                delivery_days=extract(service, DELIVERY_DAYS_KEYS, DEFAULT_DELIVERY_DAYS),
                delivery_date=extract(service, DELIVERY_DATE_KEYS),
                raw=service,
            ))

        logger.info(f"Envia rate for {carrier}: {len(offers)} services")
        return offers

    async def create_label(
        self,
        destination: AddressInput,
        packages: List[Package],
        carrier: str,
        service_id: str,
        reference: Optional[str] = None,
    ) -> RawLabelResult:
        """Generate a label. tracking_number is None if the provider omitted it."""
        origin = self._address_block(self.origin)
        if reference:
            origin["reference"] = f"Order: {reference}"

        payload = {
            "origin": origin,
            "destination": self._address_block(destination),
            "packages": [self._package_block(p) for p in packages],
            "shipment": {"carrier": carrier, "service": service_id, "type": DOMESTIC_SHIPMENT},
            "settings": self._settings_block(comments=f"Order #{reference}" if reference else None),
        }

        body = await self._post(GENERATE_PATH, payload)
        result = unwrap_data(body)

        tracking_number = extract(result, TRACKING_NUMBER_KEYS)
        label_id = extract(result, LABEL_ID_KEYS)

        return RawLabelResult(
            carrier=carrier,
            service_id=service_id,
            tracking_number=str(tracking_number) if tracking_number is not None else None,
            label_url=extract(result, LABEL_URL_KEYS),
            label_id=str(label_id) if label_id is not None else None,
            estimated_delivery=extract(result, ESTIMATED_DELIVERY_KEYS),
            raw=result if isinstance(result, dict) else {"data": result},
        )

    async def track(self, tracking_number: str, carrier: str) -> RawTrackingResult:
        """Get tracking status and checkpoint history."""
        body = await self._post(TRACKING_PATH, {
            "trackingNumber": tracking_number,
            "carrier": carrier,
        })
        data = unwrap_data(body)

        raw_events = extract(data, TRACKING_EVENTS_KEYS, [])
        events = []
        for event in raw_events if isinstance(raw_events, list) else []:
            if not isinstance(event, dict):
                continue
            events.append(RawTrackingEvent(
                carrier_status=extract(event, EVENT_STATUS_KEYS),
                date=extract(event, EVENT_DATE_KEYS),
                location=extract(event, EVENT_LOCATION_KEYS),
                description=extract(event, EVENT_DESCRIPTION_KEYS),
            ))

        return RawTrackingResult(
            tracking_number=tracking_number,
            carrier=carrier,
            carrier_status=extract(data, TRACKING_STATUS_KEYS),
            events=events,
            estimated_delivery=extract(data, ("estimatedDelivery", "estimated_delivery")),
            delivered_at=extract(data, DELIVERED_AT_KEYS),
            raw=data if isinstance(data, dict) else {"data": data},
        )

    async def schedule_pickup(
        self,
        carrier: str,
        tracking_numbers: List[str],
        pickup_date: str,
        time_start: str = "09:00",
        time_end: str = "18:00",
        package_count: int = 1,
    ) -> RawPickupResult:
        """Book a pickup at the origin address."""
        body = await self._post(PICKUP_PATH, {
            "carrier": carrier,
            "trackings": tracking_numbers,
            "origin": self._address_block(self.origin),
            "pickup": {
                "date": pickup_date,
                "timeStart": time_start or "09:00",
                "timeEnd": time_end or "18:00",
            },
            "settings": {"packages": package_count or 1},
        })
        data = unwrap_data(body)

        return RawPickupResult(
            carrier=carrier,
            pickup_date=pickup_date,
            pickup_id=extract(data, PICKUP_ID_KEYS),
            confirmation_number=extract(data, ("confirmationNumber",)),
            raw=data if isinstance(data, dict) else {"data": data},
        )

    async def cancel(self, label_id: str, carrier: str) -> RawCancelResult:
        """Cancel a generated label."""
        body = await self._post(CANCEL_PATH, {
            "carrier": carrier,
            "shipmentId": label_id,
        })

        return RawCancelResult(
            carrier=carrier,
            label_id=label_id,
            refund_amount=float(extract(body, REFUND_KEYS, 0) or 0),
            raw=body if isinstance(body, dict) else {"data": body},
        )
