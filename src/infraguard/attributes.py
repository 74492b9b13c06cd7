"""
Helpers for working with resource attribute values.

Plan attribute values are arbitrary-depth JSON: scalars, sequences and
mappings. Rather than poking at ``Dict[str, Any]`` ad hoc, checkers go through
the small set of functions below so navigation and coercion stay explicit.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

Scalar = Union[str, int, float, bool, None]
AttributeValue = Union[Scalar, List["AttributeValue"], Dict[str, "AttributeValue"]]
Attributes = Mapping[str, AttributeValue]

# Sentinel for "key not present", distinct from an explicit null value.
MISSING = object()


class AttributeKind(str, Enum):
    SCALAR = "scalar"
    SEQUENCE = "sequence"
    MAPPING = "mapping"


def kind_of(value: Any) -> AttributeKind:
    if isinstance(value, Mapping):
        return AttributeKind.MAPPING
    if isinstance(value, (list, tuple)):
        return AttributeKind.SEQUENCE
    return AttributeKind.SCALAR


def as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    """
    Returns ``value`` as a mapping, or None.

    Terraform's JSON plan renders nested blocks as single-element lists
    (e.g. ``"versioning": [{"enabled": true}]``), so a one-element sequence
    holding a mapping is unwrapped. Repeated blocks stay a sequence.
    """
    kind = kind_of(value)
    if kind is AttributeKind.MAPPING:
        return value
    if kind is AttributeKind.SEQUENCE and len(value) == 1 and kind_of(value[0]) is AttributeKind.MAPPING:
        return value[0]
    return None


def lookup(attributes: Attributes, key: str) -> Any:
    """Single-level lookup. Returns MISSING when the key is absent."""
    return attributes.get(key, MISSING) if attributes is not None else MISSING


def lookup_path(attributes: Attributes, dotted_path: str) -> Tuple[Any, Optional[str]]:
    """
    Navigates nested mappings by splitting ``dotted_path`` on '.'.

    Returns ``(value, None)`` on success, or ``(MISSING, reason)`` when a
    segment is absent or an intermediate value is not a mapping.
    """
    parts = dotted_path.split(".")
    current: Any = attributes
    for i, part in enumerate(parts):
        mapping = as_mapping(current)
        if mapping is None:
            walked = ".".join(parts[:i])
            return MISSING, f"Cannot navigate property path '{dotted_path}': '{walked}' is not a mapping"
        if part not in mapping:
            return MISSING, f"Property '{dotted_path}' not found"
        current = mapping[part]
    return current, None


def is_true(value: Any) -> bool:
    return isinstance(value, bool) and value


def is_nonempty_mapping(value: Any) -> bool:
    mapping = as_mapping(value)
    return mapping is not None and len(mapping) > 0


def is_enabled_indicator(value: Any) -> bool:
    """Boolean true, a non-empty mapping, or repeated blocks of which one is non-empty."""
    if is_true(value) or is_nonempty_mapping(value):
        return True
    return kind_of(value) is AttributeKind.SEQUENCE and any(is_nonempty_mapping(v) for v in value)


def is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def render(value: Any) -> str:
    """
    Canonical string form used for loose comparisons and messages.

    Booleans render as ``true``/``false``, None as ``null`` and integral floats
    as integers, so ``7``, ``7.0`` and ``"7"`` all render as ``7``.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Mapping):
        inner = ", ".join(f"{k}: {render(v)}" for k, v in value.items())
        return "{" + inner + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(render(v) for v in value) + "]"
    return str(value)


def loosely_equal(actual: Any, expected: Any) -> bool:
    return render(actual) == render(expected)
