"""
Carrier catalog

Parcel couriers reachable through the shipping provider, with the display
metadata shown next to each quote and the keywords used to flag fast services.
"""
from typing import Optional

# carrier id -> user-facing name
CARRIER_DISPLAY_NAMES = {
    "estafeta": "Estafeta",
    "fedex": "FedEx",
    "dhl": "DHL Express",
    "redpack": "Redpack",
    "paquetexpress": "Paquete Express",
    "99minutos": "99 Minutos",
    "ups": "UPS",
    "sendex": "Sendex",
}

CARRIER_LOGOS = {
    "estafeta": "/assets/img/carriers/estafeta.png",
    "fedex": "/assets/img/carriers/fedex.png",
    "dhl": "/assets/img/carriers/dhl.png",
    "redpack": "/assets/img/carriers/redpack.png",
}

# Matched case-insensitively against the service name.
# "99 min" covers 99minutos' same-day services.
EXPRESS_KEYWORDS = (
    "express",
    "priority",
    "overnight",
    "next day",
    "same day",
    "24h",
    "99 min",
)


def carrier_display_name(carrier: str) -> str:
    return CARRIER_DISPLAY_NAMES.get((carrier or "").lower(), carrier)


def carrier_logo(carrier: str) -> Optional[str]:
    return CARRIER_LOGOS.get((carrier or "").lower())


def is_express_service(service_name: Optional[str]) -> bool:
    """Check whether a service name advertises a fast delivery option."""
    name = (service_name or "").lower()
    return any(keyword in name for keyword in EXPRESS_KEYWORDS)
