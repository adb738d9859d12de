"""
Tests for the shipment lifecycle service.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from shipping_engine.core.exceptions import (
    ConfigurationError,
    GatewayRejectedError,
    GatewayTimeoutError,
    IntegrityError,
    LabelIncompleteError,
    NotFoundError,
    ValidationError,
)
from shipping_engine.models.order import Order, OrderStatus
from shipping_engine.models.shipment import Shipment, ShipmentStatus, utcnow
from shipping_engine.modules.shipping.carriers.base import (
    RawLabelResult,
    RawTrackingEvent,
    RawTrackingResult,
)
from shipping_engine.services.shipping_service import ShippingService


async def add_shipment(store, tracking_number="TRK-1", status=ShipmentStatus.LABEL_CREATED, **kwargs):
    shipment = Shipment(
        order_id=kwargs.pop("order_id", "order-1"),
        carrier=kwargs.pop("carrier", "estafeta"),
        service="express",
        tracking_number=tracking_number,
        status=status,
        **kwargs,
    )
    await store.add_shipment(shipment)
    return shipment


class TestCreateLabel:

    @pytest.mark.asyncio
    async def test_success_persists_shipment_and_updates_order(self, service, store, fake_gateway):
        result = await service.create_label("order-1", "estafeta", "express")

        assert result.tracking_number == "TRK-1001"
        assert result.label_url == "https://labels.example/TRK-1001.pdf"
        assert fake_gateway.calls == [("create_label", "estafeta", "express", "MOD-0001")]

        shipment = await store.get_shipment_by_tracking("TRK-1001")
        assert shipment.id == result.shipment_id
        assert shipment.status == ShipmentStatus.LABEL_CREATED
        assert shipment.label_id == "LBL-1001"
        assert shipment.quoted_price == 99.0

        order = await store.get_order("order-1")
        assert order.tracking_number == "TRK-1001"
        assert order.shipping_carrier == "estafeta"
        assert order.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("carrier,service_id", [("", "express"), ("estafeta", ""), (None, None)])
    async def test_missing_carrier_or_service(self, service, carrier, service_id):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_label("order-1", carrier, service_id)

        assert exc_info.value.code == "MISSING_CARRIER_SERVICE"

    @pytest.mark.asyncio
    async def test_unconfigured(self, unconfigured_gateway, store):
        service = ShippingService(unconfigured_gateway, store)

        with pytest.raises(ConfigurationError):
            await service.create_label("order-1", "estafeta", "express")

    @pytest.mark.asyncio
    async def test_order_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.create_label("missing", "estafeta", "express")

    @pytest.mark.asyncio
    async def test_incomplete_destination(self, service, store):
        store.add_order(Order(id="order-2", order_number="MOD-0002", shipping_address={"city": "Puebla"}))

        with pytest.raises(ValidationError) as exc_info:
            await service.create_label("order-2", "estafeta", "express")

        assert exc_info.value.code == "INVALID_DESTINATION"

    @pytest.mark.asyncio
    async def test_missing_tracking_number_surfaces_partial_data(self, service, store, fake_gateway):
        fake_gateway.label_result = RawLabelResult(
            carrier="estafeta",
            service_id="express",
            label_url="https://labels.example/orphan.pdf",
            label_id="LBL-ORPHAN",
            raw={"status": "ok"},
        )

        with pytest.raises(LabelIncompleteError) as exc_info:
            await service.create_label("order-1", "estafeta", "express")

        error = exc_info.value
        assert isinstance(error, IntegrityError)
        assert error.code == "NO_TRACKING_NUMBER"
        assert error.partial_data["label_id"] == "LBL-ORPHAN"
        assert error.partial_data["label_url"] == "https://labels.example/orphan.pdf"
        assert store.shipments == []
        assert (await store.get_order("order-1")).status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_gateway_failure_propagates(self, service, store, fake_gateway):
        fake_gateway.label_result = GatewayRejectedError("Rejected", http_status=422, carrier_message="Bad weight")

        with pytest.raises(GatewayRejectedError):
            await service.create_label("order-1", "estafeta", "express")

        assert store.shipments == []


class TestTrack:

    @pytest.mark.asyncio
    async def test_resolves_carrier_from_store(self, service, store, fake_gateway):
        await add_shipment(store, "TRK-1", carrier="fedex")

        await service.track("TRK-1")

        assert fake_gateway.calls == [("track", "TRK-1", "fedex")]

    @pytest.mark.asyncio
    async def test_unknown_carrier(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.track("NOPE")

        assert exc_info.value.code == "MISSING_CARRIER"

    @pytest.mark.asyncio
    async def test_view_is_normalized_and_sorted(self, service, fake_gateway):
        fake_gateway.tracking["TRK-9"] = RawTrackingResult(
            tracking_number="TRK-9",
            carrier="dhl",
            carrier_status=" out for delivery ",
            events=[
                RawTrackingEvent("PICKED UP", "2025-01-10T09:00:00Z", "Xalapa"),
                RawTrackingEvent("SOMETHING ODD", None, None, "Undated"),
                RawTrackingEvent("OUT FOR DELIVERY", "2025-01-12T08:00:00+00:00", "Puebla"),
                RawTrackingEvent("IN TRANSIT", "2025-01-11T12:00:00Z", "Puebla"),
            ],
        )

        view = await service.track("TRK-9", "dhl")

        assert view.status == ShipmentStatus.OUT_FOR_DELIVERY
        assert view.status_description == "Out for delivery"
        assert view.category == "in_transit"
        assert view.is_final is False
        assert view.is_problem is False
        assert [e.status for e in view.events] == [
            ShipmentStatus.OUT_FOR_DELIVERY,
            ShipmentStatus.IN_TRANSIT,
            ShipmentStatus.PICKED_UP,
            ShipmentStatus.EXCEPTION,
        ]
        assert view.latest_event.location == "Puebla"
        assert view.to_dict()["latest_event"]["status"] == "out_for_delivery"

    @pytest.mark.asyncio
    async def test_persists_refresh(self, service, store, fake_gateway):
        shipment = await add_shipment(store, "TRK-1")
        fake_gateway.tracking["TRK-1"] = RawTrackingResult(
            tracking_number="TRK-1",
            carrier="estafeta",
            carrier_status="DELIVERED",
            events=[RawTrackingEvent("DELIVERED", "2025-01-12T15:30:00Z", "Puebla", "Signed")],
        )

        view = await service.track("TRK-1")

        stored = await store.get_shipment(shipment.id)
        assert stored.status == ShipmentStatus.DELIVERED
        assert stored.delivered_at == view.delivered_at
        assert stored.delivered_at.isoformat().startswith("2025-01-12T15:30")
        assert stored.last_sync_at is not None
        assert view.last_sync_at == stored.last_sync_at
        assert len(await store.list_events(shipment.id)) == 1
        assert (await store.get_order("order-1")).status == OrderStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_unchanged_status_appends_no_event(self, service, store):
        shipment = await add_shipment(store, "TRK-1", status=ShipmentStatus.IN_TRANSIT)

        await service.track("TRK-1")

        assert await store.list_events(shipment.id) == []
        assert (await store.get_shipment(shipment.id)).last_sync_at is not None

    @pytest.mark.asyncio
    async def test_readonly_does_not_persist(self, fake_gateway, store):
        shipment = await add_shipment(store, "TRK-1")
        service = ShippingService(fake_gateway, store, readonly=True)

        view = await service.track("TRK-1")

        assert view.status == ShipmentStatus.IN_TRANSIT
        stored = await store.get_shipment(shipment.id)
        assert stored.status == ShipmentStatus.LABEL_CREATED
        assert stored.last_sync_at is None

    @pytest.mark.asyncio
    async def test_persistence_failure_still_returns_view(self, service, store):
        await add_shipment(store, "TRK-1")
        store.update_shipment = AsyncMock(side_effect=RuntimeError("db down"))

        view = await service.track("TRK-1")

        assert view.status == ShipmentStatus.IN_TRANSIT
        assert view.last_sync_at is None

    @pytest.mark.asyncio
    async def test_gateway_failure_propagates(self, service, store, fake_gateway):
        shipment = await add_shipment(store, "TRK-1")
        fake_gateway.tracking["TRK-1"] = GatewayTimeoutError("slow", timeout_seconds=30)

        with pytest.raises(GatewayTimeoutError):
            await service.track("TRK-1")

        assert (await store.get_shipment(shipment.id)).status == ShipmentStatus.LABEL_CREATED


class TestSync:

    @pytest.mark.asyncio
    async def test_counts_sum_to_total_despite_failures(self, service, store, fake_gateway):
        shipments = [await add_shipment(store, f"TRK-{i}") for i in range(12)]
        fake_gateway.tracking["TRK-3"] = GatewayRejectedError("Not found", http_status=404)
        fake_gateway.tracking["TRK-7"] = RuntimeError("boom")
        fake_gateway.track_delay = 0.01

        result = await service.sync_many(shipments)

        assert result.synced == 10
        assert result.failed == 2
        assert result.total == len(shipments)
        assert {e["tracking_number"] for e in result.errors} == {"TRK-3", "TRK-7"}
        assert fake_gateway.max_in_flight <= 5

        failed = await store.get_shipment_by_tracking("TRK-3")
        assert failed.sync_error == "Not found"

    @pytest.mark.asyncio
    async def test_batch_size_caps_concurrency(self, service, store, fake_gateway):
        shipments = [await add_shipment(store, f"TRK-{i}") for i in range(5)]
        fake_gateway.track_delay = 0.02

        result = await service.sync_many(shipments, batch_size=2)

        assert result.synced == 5
        assert fake_gateway.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_shipment_without_tracking_number_fails(self, service, store):
        shipment = await add_shipment(store, None)

        result = await service.sync_many([shipment])

        assert result.failed == 1
        assert result.synced == 0

    @pytest.mark.asyncio
    async def test_shipments_needing_sync(self, service, store):
        now = utcnow()
        stale = await add_shipment(store, "STALE", last_sync_at=now - timedelta(hours=6))
        never = await add_shipment(store, "NEVER")
        await add_shipment(store, "FRESH", last_sync_at=now - timedelta(hours=1))
        await add_shipment(store, "DONE", status=ShipmentStatus.DELIVERED)
        await add_shipment(store, "LOST", status=ShipmentStatus.LOST)
        await add_shipment(store, "PEND", status=ShipmentStatus.PENDING)
        await add_shipment(store, None)

        selected = await service.get_shipments_needing_sync(4)

        assert [s.id for s in selected] == [stale.id, never.id]


class TestPickupAndCancel:

    @pytest.mark.asyncio
    async def test_pickup_marks_shipments(self, service, store, fake_gateway):
        shipment = await add_shipment(store, "TRK-1")

        result = await service.schedule_pickup("estafeta", ["TRK-1", "UNKNOWN"], "2025-01-20")

        assert result.pickup_id == "PU-77"
        stored = await store.get_shipment(shipment.id)
        assert stored.pickup_scheduled is True
        assert stored.pickup_date == "2025-01-20"

    @pytest.mark.asyncio
    async def test_pickup_validation(self, service):
        with pytest.raises(ValidationError):
            await service.schedule_pickup("estafeta", [], "2025-01-20")
        with pytest.raises(ValidationError):
            await service.schedule_pickup("estafeta", ["TRK-1"], "20/01/2025")

    @pytest.mark.asyncio
    async def test_pickup_store_failure_does_not_block_result(self, service, store):
        store.get_shipment_by_tracking = AsyncMock(side_effect=RuntimeError("db down"))

        result = await service.schedule_pickup("estafeta", "TRK-1", "2025-01-20")

        assert result.pickup_id == "PU-77"

    @pytest.mark.asyncio
    async def test_cancel_marks_shipment(self, service, store):
        shipment = await add_shipment(store, "TRK-1", label_id="LBL-1")

        result = await service.cancel("LBL-1", "estafeta")

        assert result.refund_amount == 120.0
        assert (await store.get_shipment(shipment.id)).status == ShipmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_unconfigured(self, unconfigured_gateway, store):
        with pytest.raises(ConfigurationError):
            await ShippingService(unconfigured_gateway, store).cancel("LBL-1", "estafeta")


class TestStatusAndQuotes:

    def test_configuration_status(self, service, unconfigured_gateway, store):
        assert service.configuration_status() == {
            "provider": "fake",
            "configured": True,
            "capabilities": {
                "quotes": True,
                "labels": True,
                "tracking": True,
                "pickup": True,
                "webhooks": True,
            },
        }
        status = ShippingService(unconfigured_gateway, store).configuration_status()
        assert status["configured"] is False
        assert status["capabilities"]["quotes"] is True
        assert status["capabilities"]["labels"] is False

    @pytest.mark.asyncio
    async def test_quote_cart(self, service, fake_gateway, destination, offer):
        fake_gateway.offers["estafeta"] = [offer("estafeta", "ground", 110, "3-4")]

        result = await service.quote_cart(destination, [{"quantity": 2, "price": 300}])

        assert result.subtotal == 600
        assert result.qualifies_for_free_shipping
        assert result.quotes[0].price == 0

    @pytest.mark.asyncio
    async def test_close(self, service, fake_gateway):
        await service.close()
        assert fake_gateway.closed
