"""
First-present-wins field resolution for loosely structured provider JSON.

The shipping provider is not consistent about field names: the same logical
value (tracking number, label URL, status...) shows up under different keys
depending on the endpoint and response shape. Each logical field is declared
as an ordered tuple of candidate keys and resolved with `extract`.

Candidate keys may be dotted paths ("data.trackingNumber") to reach into
nested objects. A value counts as present unless it is None or an empty string.
"""
from typing import Any, Iterable, Mapping, Optional

_MISSING = object()


def _lookup(raw: Any, path: str) -> Any:
    node = raw
    for part in path.split("."):
        if isinstance(node, Mapping) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return _MISSING
    return node


def is_present(value: Any) -> bool:
    return value is not _MISSING and value is not None and value != ""


def extract(raw: Any, candidate_keys: Iterable[str], default: Optional[Any] = None) -> Any:
    """
    Return the value of the first candidate key present in raw.

    Args:
        raw: Decoded JSON object (anything non-mapping yields default)
        candidate_keys: Ordered candidate keys / dotted paths
        default: Returned when no candidate is present
    """
    if raw is None:
        return default
    for key in candidate_keys:
        value = _lookup(raw, key)
        if is_present(value):
            return value
    return default


def unwrap_data(body: Any) -> Any:
    """
    Unwrap the provider's envelope.

    Responses arrive as {"data": [...]}, {"data": {...}} or a bare object;
    single-element lists are collapsed to their element.
    """
    if isinstance(body, Mapping) and "data" in body and body["data"] is not None:
        body = body["data"]
    if isinstance(body, list):
        return body[0] if body else {}
    return body if body is not None else {}
