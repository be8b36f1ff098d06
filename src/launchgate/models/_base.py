"""Base model for string-keyed records.

Both external providers deliver loosely-typed mappings (numbers, booleans,
nested dictionaries, nulls). Every consumer downstream treats the values as
text, so records normalise them once at the boundary:

* ``str`` values are kept as is.
* ``None`` becomes the empty string.
* ``int`` / ``float`` use ``str()``.
* ``bool`` and containers use compact JSON (``true``, ``{"a":1}``) so they
  survive a round trip through the store.

A record's ``data`` is a read-only view; use :meth:`StringRecord.as_dict`
for a mutable copy.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def stringify_value(value: Any) -> str:
    """Convert a provider value to its string form."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return json.dumps(value)
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value, separators=(",", ":"), sort_keys=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def stringify_mapping(values: Mapping[Any, Any]) -> dict[str, str]:
    """Stringify keys and values of *values*, preserving order."""
    return {str(key): stringify_value(val) for key, val in values.items()}


class StringRecord(BaseModel):
    """Immutable ordered mapping of string keys to string values."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    data: Mapping[str, str] = Field(default_factory=dict, validate_default=True)

    @field_validator("data", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return stringify_mapping(value)
        return value

    @field_validator("data", mode="after")
    @classmethod
    def _freeze(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_serializer("data")
    def _serialize_data(self, value: Mapping[str, str]) -> dict[str, str]:
        return dict(value)

    @classmethod
    def from_raw(cls, values: Mapping[Any, Any] | None) -> Self:
        """Build a record from a provider payload."""
        return cls(data=dict(values or {}))

    @property
    def has_data(self) -> bool:
        return bool(self.data)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.data.get(key, default)

    def as_dict(self) -> dict[str, str]:
        """Return a mutable copy of the record's data."""
        return dict(self.data)

    def __contains__(self, key: object) -> bool:
        return key in self.data
