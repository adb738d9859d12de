"""
Rate Aggregator v1.0.0

Fans one quote request out to every carrier concurrently and curates the
result down to at most two options:
- One asyncio task per carrier, each with its own timeout
- A failing or slow carrier is recorded in `errors`, never raised
- Cheapest (pre-discount price) and fastest (delivery days) are kept
- Fixed fallback rates when the provider is unconfigured or nothing came back
- Free shipping zeroes prices at or above the subtotal threshold

Usage:
    aggregator = RateAggregator(gateway)
    result = await aggregator.get_quotes(destination, packages, cart_subtotal=350)
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Union

from shipping_engine.core.config import settings
from shipping_engine.core.exceptions import GatewayRejectedError, ShippingEngineError
from shipping_engine.models.carrier import carrier_display_name, carrier_logo, is_express_service
from shipping_engine.modules.shipping.carriers.base import (
    AddressInput,
    BaseGateway,
    Package,
    RawServiceOffer,
)

logger = logging.getLogger(__name__)

LABEL_CHEAPEST = "Most economical"
LABEL_FASTEST = "Fastest"

# Delivery estimate used when the carrier's value cannot be parsed
UNKNOWN_DELIVERY_DAYS = 99

_LEADING_INT = re.compile(r"\s*(\d+)")


@dataclass
class Quote:
    """One priced offer for a carrier + service pair."""
    carrier: str
    carrier_name: str
    service_id: str
    service_name: str
    price: float
    currency: str
    service_description: str = ""
    carrier_logo: Optional[str] = None
    delivery_days: Union[int, str, None] = None
    delivery_date: Optional[str] = None
    is_express: bool = False
    original_price: Optional[float] = None
    is_free: bool = False
    recommended_label: Optional[str] = None
    is_fallback: bool = False

    @property
    def key(self):
        return (self.carrier, self.service_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier": self.carrier,
            "carrier_name": self.carrier_name,
            "carrier_logo": self.carrier_logo,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "service_description": self.service_description,
            "price": self.price,
            "currency": self.currency,
            "delivery_days": self.delivery_days,
            "delivery_date": self.delivery_date,
            "is_express": self.is_express,
            "original_price": self.original_price,
            "is_free": self.is_free,
            "recommended_label": self.recommended_label,
            "is_fallback": self.is_fallback,
        }


@dataclass
class CarrierError:
    """Non-fatal failure of a single carrier during fan-out."""
    carrier: str
    message: str
    http_status: Optional[int] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier": self.carrier,
            "message": self.message,
            "http_status": self.http_status,
            "code": self.code,
        }


@dataclass
class AggregateResult:
    quotes: List[Quote]
    free_shipping_threshold: float
    subtotal: float
    qualifies_for_free_shipping: bool
    is_fallback: bool = False
    errors: List[CarrierError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quotes": [q.to_dict() for q in self.quotes],
            "free_shipping_threshold": self.free_shipping_threshold,
            "subtotal": self.subtotal,
            "qualifies_for_free_shipping": self.qualifies_for_free_shipping,
            "is_fallback": self.is_fallback,
            "errors": [e.to_dict() for e in self.errors] or None,
        }


class _ResultCollector:
    """Lock-guarded accumulator shared by the per-carrier tasks."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self.quotes: List[Quote] = []
        self.errors: List[CarrierError] = []

    async def add_quotes(self, quotes: List[Quote]):
        async with self._lock:
            self.quotes.extend(quotes)

    async def add_error(self, error: CarrierError):
        async with self._lock:
            self.errors.append(error)


def parse_delivery_days(value: Union[int, str, None]) -> int:
    """Leading integer of a delivery estimate ("3-5" -> 3); 99 when unparsable."""
    # 0 is a real same-day estimate, not a missing one
    if isinstance(value, bool):
        return UNKNOWN_DELIVERY_DAYS
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match:
            return int(match.group(1))
    return UNKNOWN_DELIVERY_DAYS


def fallback_quotes(currency: str = "MXN") -> List[Quote]:
    """Fixed carrier-independent rates used when live rating is unavailable."""
    return [
        Quote(
            carrier="standard",
            carrier_name="Standard shipping",
            service_id="standard",
            service_name="Standard",
            service_description="Delivery in 5-7 business days",
            price=99.0,
            original_price=99.0,
            currency=currency,
            delivery_days="5-7",
            is_express=False,
            is_fallback=True,
        ),
        Quote(
            carrier="express",
            carrier_name="Express shipping",
            service_id="express",
            service_name="Express",
            service_description="Delivery in 2-3 business days",
            price=149.0,
            original_price=149.0,
            currency=currency,
            delivery_days="2-3",
            is_express=True,
            is_fallback=True,
        ),
    ]


def quote_from_offer(offer: RawServiceOffer) -> Quote:
    return Quote(
        carrier=offer.carrier,
        carrier_name=carrier_display_name(offer.carrier),
        carrier_logo=carrier_logo(offer.carrier),
        service_id=offer.service_id,
        service_name=offer.service_name,
        service_description=offer.service_description,
        price=offer.price,
        original_price=offer.price,
        currency=offer.currency,
        delivery_days=offer.delivery_days,
        delivery_date=offer.delivery_date,
        is_express=is_express_service(offer.service_name),
    )


def select_options(quotes: Sequence[Quote]) -> List[Quote]:
    """
    Two-option reduction.

    Cheapest by pre-discount price, fastest by delivery days. Ties are broken
    by carrier id then service id so the selection does not depend on the
    order in which carriers answered.
    """
    if not quotes:
        return []

    cheapest = min(quotes, key=lambda q: (q.price, q.carrier, q.service_id))
    fastest = min(
        quotes,
        key=lambda q: (parse_delivery_days(q.delivery_days), q.carrier, q.service_id),
    )

    options = [replace(cheapest, recommended_label=LABEL_CHEAPEST)]
    if fastest.key != cheapest.key:
        options.append(replace(fastest, recommended_label=LABEL_FASTEST, is_express=True))
    return options


def apply_free_shipping(quotes: List[Quote], qualifies: bool) -> List[Quote]:
    if not qualifies:
        return quotes
    return [
        replace(q, original_price=q.price, price=0.0, is_free=True)
        for q in quotes
    ]


class RateAggregator:
    """
    Concurrent multi-carrier quoting over a single gateway.
    """

    def __init__(
        self,
        gateway: BaseGateway,
        carriers: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        free_shipping_threshold: Optional[float] = None,
        currency: Optional[str] = None,
    ):
        self.gateway = gateway
        self.carriers = list(carriers) if carriers is not None else list(settings.SHIPPING_CARRIERS)
        self.timeout = timeout if timeout is not None else settings.SHIPPING_GATEWAY_TIMEOUT_SECONDS
        self.free_shipping_threshold = (
            free_shipping_threshold
            if free_shipping_threshold is not None
            else settings.SHIPPING_FREE_THRESHOLD
        )
        self.currency = currency or settings.SHIPPING_CURRENCY

    async def get_quotes(
        self,
        destination: AddressInput,
        packages: List[Package],
        carriers: Optional[List[str]] = None,
        cart_subtotal: float = 0.0,
    ) -> AggregateResult:
        """
        Quote every carrier and return at most two curated options.

        Args:
            destination: Destination address
            packages: Packages to ship
            carriers: Carrier ids to query (defaults to the configured list)
            cart_subtotal: Merchandise subtotal used for the free-shipping rule

        Returns:
            AggregateResult; never raises for carrier failures
        """
        cart_subtotal = float(cart_subtotal or 0)

        if not self.gateway.is_configured:
            logger.info("Shipping provider not configured, using fixed rates")
            return self._result(fallback_quotes(self.currency), cart_subtotal, is_fallback=True)

        carriers = list(carriers) if carriers else self.carriers
        collector = _ResultCollector()

        await asyncio.gather(*(
            self._quote_carrier(carrier, destination, packages, collector)
            for carrier in carriers
        ))

        if not collector.quotes:
            logger.warning(
                f"No quotes from {len(carriers)} carriers ({len(collector.errors)} errors), "
                f"using fixed rates"
            )
            return self._result(
                fallback_quotes(self.currency),
                cart_subtotal,
                is_fallback=True,
                errors=collector.errors,
            )

        logger.info(
            f"Collected {len(collector.quotes)} quotes from {len(carriers)} carriers "
            f"({len(collector.errors)} errors)"
        )
        return self._result(
            select_options(collector.quotes),
            cart_subtotal,
            errors=collector.errors,
        )

    async def _quote_carrier(
        self,
        carrier: str,
        destination: AddressInput,
        packages: List[Package],
        collector: _ResultCollector,
    ):
        """Quote a single carrier; every failure lands in the collector."""
        try:
            offers = await asyncio.wait_for(
                self.gateway.quote(destination, packages, carrier),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Quote from {carrier} timed out after {self.timeout}s")
            await collector.add_error(CarrierError(
                carrier=carrier,
                message=f"Timed out after {self.timeout}s",
                code="GATEWAY_TIMEOUT",
            ))
            return
        except GatewayRejectedError as e:
            logger.warning(f"Quote from {carrier} rejected: {e.message}")
            await collector.add_error(CarrierError(
                carrier=carrier,
                message=e.carrier_message or e.message,
                http_status=e.http_status,
                code=e.code,
            ))
            return
        except ShippingEngineError as e:
            logger.warning(f"Quote from {carrier} failed: {e.message}")
            await collector.add_error(CarrierError(carrier=carrier, message=e.message, code=e.code))
            return
        except Exception as e:
            logger.error(f"Unexpected error quoting {carrier}: {e}")
            await collector.add_error(CarrierError(carrier=carrier, message=str(e), code="UNEXPECTED_ERROR"))
            return

        await collector.add_quotes([quote_from_offer(offer) for offer in offers or []])

    def _result(
        self,
        quotes: List[Quote],
        cart_subtotal: float,
        is_fallback: bool = False,
        errors: Optional[List[CarrierError]] = None,
    ) -> AggregateResult:
        qualifies = cart_subtotal >= self.free_shipping_threshold
        return AggregateResult(
            quotes=apply_free_shipping(quotes, qualifies),
            free_shipping_threshold=self.free_shipping_threshold,
            subtotal=cart_subtotal,
            qualifies_for_free_shipping=qualifies,
            is_fallback=is_fallback,
            errors=list(errors or []),
        )
