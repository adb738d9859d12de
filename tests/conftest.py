"""
Pytest configuration and fixtures for shipping engine tests.
"""
import asyncio
import os
from typing import Dict, List, Optional

import pytest

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["ENVIA_API_KEY"] = ""
os.environ["SHIPPING_TRACKING_SYNC_ENABLED"] = "false"

from shipping_engine.models.order import Order, OrderItem, OrderStatus
from shipping_engine.modules.shipping.carriers.base import (
    AddressInput,
    BaseGateway,
    RawCancelResult,
    RawLabelResult,
    RawPickupResult,
    RawServiceOffer,
    RawTrackingEvent,
    RawTrackingResult,
)
from shipping_engine.services.rate_aggregator import RateAggregator
from shipping_engine.services.shipment_store import InMemoryShipmentStore
from shipping_engine.services.shipping_service import ShippingService


ORIGIN = AddressInput(
    name="Test Store",
    street="Calle Principal 123",
    city="Xalapa",
    state="VE",
    postal_code="91000",
)


class FakeGateway(BaseGateway):
    """
    In-process gateway double.

    offers / tracking map a carrier or tracking number to a result or to an
    exception instance that is raised instead.
    """

    def __init__(self, configured: bool = True):
        super().__init__(origin=ORIGIN, timeout=5.0)
        self.configured = configured
        self.offers: Dict[str, object] = {}
        self.quote_delays: Dict[str, float] = {}
        self.label_result: object = RawLabelResult(
            carrier="estafeta",
            service_id="express",
            tracking_number="TRK-1001",
            label_url="https://labels.example/TRK-1001.pdf",
            label_id="LBL-1001",
            estimated_delivery="2025-01-20",
        )
        self.tracking: Dict[str, object] = {}
        self.track_delay = 0.0
        self.calls: List[tuple] = []
        self.closed = False
        self._in_flight = 0
        self.max_in_flight = 0

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def _enter(self, delay: float):
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if delay:
                await asyncio.sleep(delay)
        finally:
            self._in_flight -= 1

    async def quote(self, destination, packages, carrier):
        self.calls.append(("quote", carrier))
        await self._enter(self.quote_delays.get(carrier, 0))
        result = self.offers.get(carrier, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def create_label(self, destination, packages, carrier, service_id, reference=None):
        self.calls.append(("create_label", carrier, service_id, reference))
        if isinstance(self.label_result, Exception):
            raise self.label_result
        return self.label_result

    async def track(self, tracking_number, carrier):
        self.calls.append(("track", tracking_number, carrier))
        await self._enter(self.track_delay)
        result = self.tracking.get(tracking_number)
        if isinstance(result, Exception):
            raise result
        if result is None:
            return RawTrackingResult(
                tracking_number=tracking_number,
                carrier=carrier,
                carrier_status="IN TRANSIT",
                events=[RawTrackingEvent("IN TRANSIT", "2025-01-15T10:00:00Z", "Puebla", "In transit")],
            )
        return result

    async def schedule_pickup(self, carrier, tracking_numbers, pickup_date,
                              time_start="09:00", time_end="18:00", package_count=1):
        self.calls.append(("schedule_pickup", carrier, tuple(tracking_numbers), pickup_date))
        return RawPickupResult(carrier=carrier, pickup_date=pickup_date, pickup_id="PU-77")

    async def cancel(self, label_id, carrier):
        self.calls.append(("cancel", label_id, carrier))
        return RawCancelResult(carrier=carrier, label_id=label_id, refund_amount=120.0)

    async def close(self):
        self.closed = True


def make_offer(
    carrier: str,
    service_id: str,
    price: float,
    delivery_days="3-5",
    service_name: Optional[str] = None,
) -> RawServiceOffer:
    return RawServiceOffer(
        carrier=carrier,
        service_id=service_id,
        service_name=service_name or service_id.title(),
        price=price,
        currency="MXN",
        delivery_days=delivery_days,
    )


@pytest.fixture
def offer():
    """Factory for RawServiceOffer."""
    return make_offer


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def unconfigured_gateway() -> FakeGateway:
    return FakeGateway(configured=False)


@pytest.fixture
def destination() -> AddressInput:
    return AddressInput(
        name="Ana Torres",
        street="Av. Juarez 10",
        city="Puebla",
        state="Puebla",
        postal_code="72000",
    )


@pytest.fixture
def sample_order() -> Order:
    return Order(
        id="order-1",
        order_number="MOD-0001",
        customer_name="Ana Torres",
        customer_email="ana@example.com",
        customer_phone="2221234567",
        shipping_address={
            "street": "Av. Juarez",
            "number": "10",
            "colony": "Centro",
            "city": "Puebla",
            "state": "Puebla",
            "postal_code": "72000",
        },
        items=[
            OrderItem(quantity=2, unit_price=150.0, product_name="Miel de azahar"),
            OrderItem(quantity=1, unit_price=220.0, sale_price=200.0, product_name="Polen"),
        ],
        shipping_cost=99.0,
        status=OrderStatus.CONFIRMED,
    )


@pytest.fixture
def store(sample_order) -> InMemoryShipmentStore:
    return InMemoryShipmentStore(orders=[sample_order])


@pytest.fixture
def service(fake_gateway, store) -> ShippingService:
    aggregator = RateAggregator(
        fake_gateway,
        carriers=["estafeta", "fedex"],
        timeout=1.0,
        free_shipping_threshold=500.0,
    )
    return ShippingService(gateway=fake_gateway, store=store, aggregator=aggregator)
