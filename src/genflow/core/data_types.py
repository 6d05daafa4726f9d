"""
Data Types - Handle data types that flow along workflow edges.

This module defines:
- HandleDataType: Enum of the data types a handle can carry
- ALLOWED_TARGETS: Which target types each source type may connect to
- is_valid_connection: Edge type-compatibility check
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class HandleDataType(Enum):
    """
    Enumeration of data types that can flow through node connections.

    Each input/output handle has a HandleDataType that determines what
    kinds of connections are valid.
    """
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"
    FILE = "file"


# Direct-match policy: every type may only feed a handle of the same type.
ALLOWED_TARGETS: dict[HandleDataType, frozenset[HandleDataType]] = {
    data_type: frozenset({data_type}) for data_type in HandleDataType
}


def coerce_data_type(value: HandleDataType | str) -> HandleDataType:
    """Accept either an enum member or its string value."""
    if isinstance(value, HandleDataType):
        return value
    return HandleDataType(value)


def is_valid_connection(
    source_type: HandleDataType | str,
    target_type: HandleDataType | str,
) -> bool:
    """
    Check whether an edge from a handle of ``source_type`` may terminate on
    a handle of ``target_type``.

    Unknown type names are never valid.
    """
    try:
        source = coerce_data_type(source_type)
        target = coerce_data_type(target_type)
    except ValueError:
        return False
    return target in ALLOWED_TARGETS.get(source, frozenset())


def is_url_like(value: Any) -> bool:
    """Return True for http(s) URLs and data URLs."""
    if not isinstance(value, str):
        return False
    return value.startswith(("http://", "https://", "data:"))
