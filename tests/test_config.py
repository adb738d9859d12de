"""
Tests for settings parsing and production guards.
"""
import pytest
from pydantic import ValidationError

from shipping_engine.core.config import DEFAULT_CARRIERS, Settings


def test_development_defaults():
    config = Settings(ENVIRONMENT="development", ENVIA_API_KEY="")

    assert config.envia_configured is False
    assert config.SHIPPING_CARRIERS == DEFAULT_CARRIERS
    assert config.SHIPPING_FREE_THRESHOLD == 500.0
    assert config.SHIPPING_SYNC_BATCH_SIZE == 5


@pytest.mark.parametrize("raw,expected", [
    ('["FedEx", " dhl "]', ["fedex", "dhl"]),
    ("estafeta, Redpack,,", ["estafeta", "redpack"]),
    ("", DEFAULT_CARRIERS),
    (["DHL"], ["dhl"]),
])
def test_carrier_list_parsing(raw, expected):
    assert Settings(ENVIRONMENT="development", SHIPPING_CARRIERS=raw).SHIPPING_CARRIERS == expected


def test_carriers_from_environment(monkeypatch):
    monkeypatch.setenv("SHIPPING_CARRIERS", "fedex,estafeta")

    assert Settings(ENVIRONMENT="development").SHIPPING_CARRIERS == ["fedex", "estafeta"]


def test_production_rejects_debug_and_plain_http():
    with pytest.raises(ValidationError) as exc_info:
        Settings(ENVIRONMENT="production", DEBUG=True, ENVIA_API_URL="http://api.envia.com")

    message = str(exc_info.value)
    assert "DEBUG=True is forbidden" in message
    assert "must use HTTPS" in message


def test_production_accepts_safe_config():
    config = Settings(ENVIRONMENT="production", ENVIA_API_KEY="live-key")

    assert config.envia_configured is True
