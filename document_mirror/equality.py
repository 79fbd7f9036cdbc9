"""
Structural equality for record payloads.

Two payloads are equal when they hold the same associative content:
mappings compare by key set and per-key value regardless of insertion
order, sequences compare element by element in order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


def deep_equal(a: Any, b: Any) -> bool:
    """Compare two values by structure rather than identity.

    Args:
        a: First value
        b: Second value

    Returns:
        True if both values carry the same content
    """
    if a is b:
        return True

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if len(a) != len(b):
            return False
        for key, value in a.items():
            if key not in b:
                return False
            if not deep_equal(value, b[key]):
                return False
        return True

    if _is_sequence(a) and _is_sequence(b):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))

    if isinstance(a, Mapping) or isinstance(b, Mapping) or _is_sequence(a) or _is_sequence(b):
        return False

    # Booleans and numbers are distinct types in a document store
    if isinstance(a, bool) != isinstance(b, bool):
        return False

    return bool(a == b)


def _is_sequence(value: Any) -> bool:
    # Strings and bytes are scalars here
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))
