"""
Shipping Engine Exception Hierarchy

Structured exception classes for the carrier gateway, rate aggregation and
shipment lifecycle. All exceptions include code, message, and details so
callers can return a machine-readable error and operators get an audit trail.

Exception Hierarchy:
    ShippingEngineError
    ├── ConfigurationError
    │   └── GatewayUnconfiguredError
    ├── ValidationError
    ├── GatewayError
    │   ├── GatewayTimeoutError
    │   └── GatewayRejectedError
    ├── NotFoundError
    └── IntegrityError
        └── LabelIncompleteError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ShippingEngineError(Exception):
    """
    Base exception for all shipping engine errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "SHIPPING_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(ShippingEngineError):
    """Provider integration is not configured."""
    default_code = "CONFIGURATION_ERROR"
    default_severity = "P3"


class GatewayUnconfiguredError(ConfigurationError):
    """Gateway has no credentials; no network I/O was attempted."""
    default_code = "GATEWAY_UNCONFIGURED"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(ShippingEngineError):
    """Malformed caller input."""
    default_code = "VALIDATION_FAILED"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# GATEWAY ERRORS
# =============================================================================

class GatewayError(ShippingEngineError):
    """Base exception for provider-side failures."""
    default_code = "GATEWAY_ERROR"
    default_severity = "P1"


class GatewayTimeoutError(GatewayError):
    """Provider did not answer within the per-call timeout."""
    default_code = "GATEWAY_TIMEOUT"

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["timeout_seconds"] = timeout_seconds
        super().__init__(message, details=details, **kwargs)


class GatewayRejectedError(GatewayError):
    """Provider answered with a non-2xx status."""
    default_code = "GATEWAY_REJECTED"

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        carrier_message: Optional[str] = None,
        carrier_code: Optional[str] = None,
        **kwargs
    ):
        self.http_status = http_status
        self.carrier_message = carrier_message
        self.carrier_code = carrier_code
        details = kwargs.pop("details", {})
        details.update({
            "http_status": http_status,
            "carrier_message": carrier_message,
            "carrier_code": carrier_code,
        })
        kwargs.setdefault("code", carrier_code)
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# LOOKUP / INTEGRITY ERRORS
# =============================================================================

class NotFoundError(ShippingEngineError):
    """No matching shipment or order."""
    default_code = "NOT_FOUND"
    default_severity = "P3"


class IntegrityError(ShippingEngineError):
    """Provider claimed success but omitted a required field."""
    default_code = "INTEGRITY_ERROR"
    default_severity = "P1"


class LabelIncompleteError(IntegrityError):
    """
    Label was generated without a tracking number.

    The label may exist on the provider side; partial_data must be surfaced
    so an operator can reconcile it manually.
    """
    default_code = "NO_TRACKING_NUMBER"

    def __init__(
        self,
        message: str,
        partial_data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.partial_data = partial_data or {}
        details = kwargs.pop("details", {})
        details["partial_data"] = self.partial_data
        super().__init__(message, details=details, **kwargs)
