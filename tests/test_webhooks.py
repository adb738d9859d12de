"""
Tests for webhook reconciliation.
"""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from shipping_engine.models.order import OrderStatus
from shipping_engine.models.shipment import Shipment, ShipmentStatus


@pytest_asyncio.fixture
async def shipment(store):
    record = Shipment(order_id="order-1", carrier="estafeta", service="express", tracking_number="TRK-1")
    await store.add_shipment(record)
    await store.update_order("order-1", status=OrderStatus.PROCESSING, tracking_number="TRK-1")
    return record


@pytest.mark.asyncio
async def test_unknown_tracking_number_is_acknowledged(service, store):
    ack = await service.ingest_webhook({"trackingNumber": "GHOST", "status": "DELIVERED"})

    assert ack.received is True
    assert ack.processed is False
    assert ack.reason == "shipment_not_found"
    assert store.shipments == []
    logs = store.webhook_logs
    assert len(logs) == 1
    assert logs[0].tracking_number == "GHOST"
    assert logs[0].processed is False


@pytest.mark.asyncio
async def test_missing_tracking_number(service, store):
    ack = await service.ingest_webhook({"status": "DELIVERED"})

    assert ack.processed is False
    assert ack.reason == "missing_tracking_number"
    assert store.webhook_logs[0].process_error == "missing_tracking_number"


@pytest.mark.asyncio
async def test_non_object_payload(service, store):
    ack = await service.ingest_webhook(["not", "an", "object"])

    assert ack.received is True
    assert ack.reason == "missing_tracking_number"
    assert store.webhook_logs[0].payload == {"raw": ["not", "an", "object"]}


@pytest.mark.asyncio
async def test_in_transit_marks_order_shipped(service, store, shipment):
    ack = await service.ingest_webhook({
        "guia": "TRK-1",
        "eventStatus": "IN TRANSIT",
        "description": "Left origin facility",
        "location": "Xalapa",
        "date": "2025-01-11T08:00:00Z",
    })

    assert ack.processed is True
    assert ack.status == "in_transit"
    stored = await store.get_shipment(shipment.id)
    assert stored.status == ShipmentStatus.IN_TRANSIT
    assert stored.last_event_description == "Left origin facility"
    assert stored.last_event_location == "Xalapa"
    assert stored.last_event_at.isoformat().startswith("2025-01-11T08:00")
    assert stored.delivered_at is None
    assert (await store.get_order("order-1")).status == OrderStatus.SHIPPED

    events = await store.list_events(shipment.id)
    assert len(events) == 1
    assert events[0].carrier_status == "IN TRANSIT"
    assert events[0].raw_payload["guia"] == "TRK-1"

    log = store.webhook_logs[0]
    assert log.processed is True
    assert log.shipment_id == shipment.id
    assert log.processed_at is not None


@pytest.mark.asyncio
async def test_nested_payload_fields(service, store, shipment):
    ack = await service.ingest_webhook({
        "event": "shipment.update",
        "data": {"trackingNumber": "TRK-1", "status": "PICKED UP", "carrier": "estafeta"},
    })

    assert ack.processed is True
    assert ack.status == "picked_up"
    assert store.webhook_logs[0].event_type == "shipment.update"
    assert store.webhook_logs[0].carrier == "estafeta"
    assert (await store.get_order("order-1")).status == OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_enveloped_delivered_event_delivers_order(service, store, shipment):
    ack = await service.ingest_webhook({
        "event": "shipment.status_updated",
        "data": {"trackingNumber": "TRK-1", "status": "DELIVERED", "date": "2025-01-12T15:30:00Z"},
    })

    assert ack.status == "delivered"
    stored = await store.get_shipment(shipment.id)
    assert stored.status == ShipmentStatus.DELIVERED
    assert stored.delivered_at.isoformat().startswith("2025-01-12T15:30")
    assert (await store.get_order("order-1")).status == OrderStatus.DELIVERED
    events = await store.list_events(shipment.id)
    assert events[0].carrier_status == "DELIVERED"


@pytest.mark.asyncio
async def test_event_name_is_last_resort_status(service, store, shipment):
    ack = await service.ingest_webhook({"trackingNumber": "TRK-1", "event": "IN TRANSIT"})

    assert ack.status == "in_transit"


@pytest.mark.asyncio
async def test_duplicate_delivered_is_idempotent(service, store, shipment):
    payload = {"trackingNumber": "TRK-1", "status": "DELIVERED", "date": "2025-01-12T15:30:00Z"}

    first = await service.ingest_webhook(payload)
    second = await service.ingest_webhook(payload)

    assert first.processed and second.processed
    stored = await store.get_shipment(shipment.id)
    assert stored.status == ShipmentStatus.DELIVERED
    assert stored.delivered_at.isoformat().startswith("2025-01-12T15:30")
    assert (await store.get_order("order-1")).status == OrderStatus.DELIVERED
    # Duplicate events are tolerated
    assert len(await store.list_events(shipment.id)) == 2
    assert len(store.webhook_logs) == 2


@pytest.mark.asyncio
async def test_late_transit_event_does_not_regress_order(service, store, shipment):
    await service.ingest_webhook({"trackingNumber": "TRK-1", "status": "DELIVERED"})
    await service.ingest_webhook({"trackingNumber": "TRK-1", "status": "DELAYED"})
    await service.ingest_webhook({"trackingNumber": "TRK-1", "status": "IN TRANSIT"})

    # Shipment status is last-write-wins, the order never moves backwards
    assert (await store.get_shipment(shipment.id)).status == ShipmentStatus.IN_TRANSIT
    assert (await store.get_order("order-1")).status == OrderStatus.DELIVERED


@pytest.mark.asyncio
async def test_out_for_delivery_does_not_change_order(service, store, shipment):
    await service.ingest_webhook({"trackingNumber": "TRK-1", "status": "OUT FOR DELIVERY"})

    assert (await store.get_order("order-1")).status == OrderStatus.PROCESSING


@pytest.mark.asyncio
async def test_delivery_attempts_are_monotonic(service, store, shipment):
    await service.ingest_webhook({"trackingNumber": "TRK-1", "status": "2 DELIVERY ATTEMPT"})
    await service.ingest_webhook({"trackingNumber": "TRK-1", "status": "1 DELIVERY ATTEMPT"})

    stored = await store.get_shipment(shipment.id)
    assert stored.status == ShipmentStatus.DELIVERY_ATTEMPT_1
    assert stored.delivery_attempts == 2


@pytest.mark.asyncio
async def test_internal_failure_is_acknowledged_and_logged(service, store, shipment):
    store.append_event = AsyncMock(side_effect=RuntimeError("disk full"))

    ack = await service.ingest_webhook({"trackingNumber": "TRK-1", "status": "DELIVERED"})

    assert ack.received is True
    assert ack.processed is False
    assert ack.reason == "error"
    log = store.webhook_logs[0]
    assert log.processed is False
    assert log.process_error == "disk full"


@pytest.mark.asyncio
async def test_failure_before_logging_is_acknowledged(service, store):
    store.add_webhook_log = AsyncMock(side_effect=RuntimeError("db down"))

    ack = await service.ingest_webhook({"trackingNumber": "TRK-1", "status": "DELIVERED"})

    assert ack.received is True
    assert ack.reason == "error"
