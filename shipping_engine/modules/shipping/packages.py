"""
Package derivation from cart / order line items.

Everything currently ships as a single box: the weight is summed across
items and the declared value is the merchandise subtotal.
"""
from typing import Any, Iterable, List, Mapping, Union

from shipping_engine.modules.shipping.carriers.base import Package

# Assumed weight for items without one (kg)
DEFAULT_ITEM_WEIGHT_KG = 0.5
MIN_PACKAGE_WEIGHT_KG = 0.5

DEFAULT_PACKAGE_CONTENT = "Miel artesanal y productos de colmena"
DEFAULT_DIMENSIONS_CM = (30.0, 25.0, 20.0)

LineItem = Union[Mapping[str, Any], Any]


def _field(item: LineItem, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def item_unit_price(item: LineItem) -> float:
    """Sale price wins over list price; orders carry unit_price instead."""
    for name in ("sale_price", "price", "unit_price"):
        price = _as_float(_field(item, name))
        if price:
            return price
    return 0.0


def calculate_cart_weight(items: Iterable[LineItem]) -> float:
    """Total weight in kg, assuming 0.5 kg for items without a weight."""
    total = 0.0
    for item in items:
        weight = _as_float(_field(item, "weight")) or DEFAULT_ITEM_WEIGHT_KG
        total += weight * int(_field(item, "quantity", 1) or 0)
    return total


def calculate_subtotal(items: Iterable[LineItem]) -> float:
    return sum(item_unit_price(item) * int(_field(item, "quantity", 1) or 0) for item in items)


def prepare_packages(items: Iterable[LineItem]) -> List[Package]:
    items = list(items)
    length, width, height = DEFAULT_DIMENSIONS_CM
    return [Package(
        content=DEFAULT_PACKAGE_CONTENT,
        amount=1,
        weight=max(calculate_cart_weight(items), MIN_PACKAGE_WEIGHT_KG),
        declared_value=calculate_subtotal(items),
        length=length,
        width=width,
        height=height,
    )]
