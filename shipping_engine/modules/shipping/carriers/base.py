"""
Base Gateway Interface v1.0.0

Transport-level client for one outbound shipping provider. A provider fronts
many parcel carriers; every operation takes the carrier id as a selector.

- All gateways implement this interface
- Origin (merchant) address is injected once at construction
- Gateways never persist and never retry; they raise structured errors:
  GatewayUnconfiguredError, GatewayTimeoutError, GatewayRejectedError
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


# =============================================================================
# Provider-Agnostic Data Classes
# =============================================================================

@dataclass
class AddressInput:
    """Shipping address block sent to the provider."""
    postal_code: str
    city: str = ""
    state: str = ""  # region name or code; normalized before sending
    street: str = ""
    number: str = ""
    district: str = ""
    country: str = "MX"
    name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    reference: Optional[str] = None


@dataclass
class Package:
    """Package dimensions and weight."""
    weight: float  # kg
    content: str = ""
    amount: int = 1
    declared_value: float = 0.0
    length: float = 20.0  # cm
    width: float = 15.0  # cm
    height: float = 15.0  # cm
    insurance: float = 0.0


@dataclass
class RawServiceOffer:
    """One service a carrier offers for a quote request."""
    carrier: str
    service_id: str
    service_name: str
    price: float
    currency: str
    service_description: str = ""
    delivery_days: Union[int, str, None] = None  # may be a range like "3-5"
    delivery_date: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawLabelResult:
    """
    Result of label generation.

    tracking_number may be None when the provider omits it; the caller decides
    whether that is acceptable.
    """
    carrier: str
    service_id: str
    tracking_number: Optional[str] = None
    label_url: Optional[str] = None
    label_id: Optional[str] = None
    estimated_delivery: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawTrackingEvent:
    """A single tracking checkpoint, as reported by the carrier."""
    carrier_status: Optional[str]
    date: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None


@dataclass
class RawTrackingResult:
    tracking_number: str
    carrier: str
    carrier_status: Optional[str]
    events: List[RawTrackingEvent] = field(default_factory=list)
    estimated_delivery: Optional[str] = None
    delivered_at: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawPickupResult:
    carrier: str
    pickup_date: str
    pickup_id: Optional[str] = None
    confirmation_number: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawCancelResult:
    carrier: str
    label_id: str
    refund_amount: float = 0.0
    raw: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Base Gateway Interface
# =============================================================================

class BaseGateway(ABC):
    """
    Abstract base class for shipping provider gateways.
    """

    def __init__(self, origin: AddressInput, timeout: float = 30.0):
        """
        Initialize the gateway.

        Args:
            origin: Merchant shipping location used for every request
            timeout: Per-call timeout in seconds
        """
        self.origin = origin
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config) -> "BaseGateway":
        """
        Build the gateway from application Settings.

        Optional: gateways constructed directly (e.g. with an injected http
        client) can skip it. A registered provider without it makes
        GatewayFactory.create raise NotImplementedError.
        """
        raise NotImplementedError(f"{cls.__name__} cannot be built from settings")

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier (e.g. 'envia.com')."""
        pass

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials are present."""
        pass

    @abstractmethod
    async def quote(
        self,
        destination: AddressInput,
        packages: List[Package],
        carrier: str,
    ) -> List[RawServiceOffer]:
        """
        Get zero or more service offers from one carrier.

        Args:
            destination: Destination address
            packages: Packages to ship
            carrier: Carrier id

        Returns:
            List of RawServiceOffer
        """
        pass

    @abstractmethod
    async def create_label(
        self,
        destination: AddressInput,
        packages: List[Package],
        carrier: str,
        service_id: str,
        reference: Optional[str] = None,
    ) -> RawLabelResult:
        """
        Generate a shipping label.

        Args:
            destination: Destination address
            packages: Packages to ship
            carrier: Carrier id
            service_id: Carrier service id
            reference: Merchant reference printed on the label (order number)
        """
        pass

    @abstractmethod
    async def track(self, tracking_number: str, carrier: str) -> RawTrackingResult:
        """Get the current carrier status and checkpoint history."""
        pass

    @abstractmethod
    async def schedule_pickup(
        self,
        carrier: str,
        tracking_numbers: List[str],
        pickup_date: str,
        time_start: str = "09:00",
        time_end: str = "18:00",
        package_count: int = 1,
    ) -> RawPickupResult:
        """Book a carrier pickup at the origin address."""
        pass

    @abstractmethod
    async def cancel(self, label_id: str, carrier: str) -> RawCancelResult:
        """Cancel a label / shipment on the provider side."""
        pass

    async def close(self):
        """Release network resources."""
        pass
