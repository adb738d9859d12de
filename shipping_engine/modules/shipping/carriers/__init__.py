"""
Gateway Registry and Factory v1.0.0

- GatewayFactory creates gateway instances by provider name
- Origin address and credentials come from settings unless supplied
- Providers register themselves with @register_gateway
"""
from typing import Dict, List, Optional, Type
import logging

from shipping_engine.core.config import Settings, settings as default_settings
from shipping_engine.modules.shipping.carriers.base import AddressInput, BaseGateway

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "envia"

# Registry of gateway implementations
_GATEWAY_REGISTRY: Dict[str, Type[BaseGateway]] = {}


def register_gateway(provider: str):
    """
    Decorator to register a gateway implementation.

    Usage:
        @register_gateway("envia")
        class EnviaGateway(BaseGateway):
            ...
    """
    def decorator(cls: Type[BaseGateway]):
        _GATEWAY_REGISTRY[provider] = cls
        logger.debug(f"Registered gateway: {provider} -> {cls.__name__}")
        return cls
    return decorator


def origin_from_settings(config: Settings) -> AddressInput:
    """Build the merchant origin address from settings."""
    return AddressInput(
        name=config.SHIPPING_ORIGIN_NAME,
        company=config.SHIPPING_ORIGIN_COMPANY,
        email=config.SHIPPING_ORIGIN_EMAIL,
        phone=config.SHIPPING_ORIGIN_PHONE,
        street=config.SHIPPING_ORIGIN_STREET,
        city=config.SHIPPING_ORIGIN_CITY,
        state=config.SHIPPING_ORIGIN_STATE,
        country=config.SHIPPING_ORIGIN_COUNTRY,
        postal_code=config.SHIPPING_ORIGIN_POSTAL_CODE,
    )


class GatewayFactory:
    """
    Factory for creating gateway instances.
    """

    @classmethod
    def create(
        cls,
        provider: str = DEFAULT_PROVIDER,
        config: Optional[Settings] = None,
    ) -> BaseGateway:
        """
        Create a gateway for a registered provider.

        Args:
            provider: Registered provider name
            config: Settings to read credentials/origin from

        Raises:
            KeyError if no implementation is registered for provider
        """
        config = config or default_settings
        gateway_cls = _GATEWAY_REGISTRY.get(provider)
        if not gateway_cls:
            raise KeyError(f"No gateway registered for provider: {provider}")

        return gateway_cls.from_settings(config)

    @classmethod
    def get_registered_providers(cls) -> List[str]:
        """Get list of all registered provider names."""
        return list(_GATEWAY_REGISTRY.keys())


def get_gateway(provider: str = DEFAULT_PROVIDER, config: Optional[Settings] = None) -> BaseGateway:
    """
    Convenience function to create a gateway.

    Equivalent to GatewayFactory.create().
    """
    return GatewayFactory.create(provider, config)


# Import gateways to trigger registration
# These imports must be at the bottom to avoid circular imports
from shipping_engine.modules.shipping.carriers.envia import EnviaGateway  # noqa: E402, F401
