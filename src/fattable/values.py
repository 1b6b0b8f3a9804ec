"""Closed set of typed property values understood by the table backends."""

from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class PropertyKind(str, Enum):
    STRING = "string"
    BINARY = "binary"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    DOUBLE = "double"
    GUID = "guid"
    INT32 = "int32"
    INT64 = "int64"


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TypedValue:
    """A property value tagged with the comparison encoding it uses."""

    kind: PropertyKind
    value: Any

    def __post_init__(self) -> None:
        _validate(self.kind, self.value)
        if self.kind is PropertyKind.TIMESTAMP:
            object.__setattr__(self, "value", _to_utc(self.value))

    @classmethod
    def of(cls, value: Any) -> TypedValue:
        """Tag a plain Python value by its runtime type."""
        if isinstance(value, TypedValue):
            return value
        if isinstance(value, bool):
            return cls(PropertyKind.BOOLEAN, value)
        if isinstance(value, int):
            if INT32_MIN <= value <= INT32_MAX:
                return cls(PropertyKind.INT32, value)
            return cls(PropertyKind.INT64, value)
        if isinstance(value, float):
            return cls(PropertyKind.DOUBLE, value)
        if isinstance(value, str):
            return cls(PropertyKind.STRING, value)
        if isinstance(value, (bytes, bytearray)):
            return cls(PropertyKind.BINARY, bytes(value))
        if isinstance(value, datetime):
            return cls(PropertyKind.TIMESTAMP, value)
        if isinstance(value, uuid.UUID):
            return cls(PropertyKind.GUID, value)
        raise TypeError(f"Unsupported property value type: {type(value).__name__}")

    @classmethod
    def int64(cls, value: int) -> TypedValue:
        return cls(PropertyKind.INT64, value)

    def wire_value(self) -> Any:
        """JSON-safe representation; orders the same way the backend compares."""
        kind = self.kind
        if kind is PropertyKind.BINARY:
            return base64.b64encode(self.value).decode("ascii")
        if kind is PropertyKind.TIMESTAMP:
            return self.value.strftime(_TIMESTAMP_FORMAT)
        if kind is PropertyKind.GUID:
            return str(self.value)
        if kind is PropertyKind.DOUBLE:
            return float(self.value)
        return self.value

    def to_json(self) -> dict[str, Any]:
        return {"t": self.kind.value, "v": self.wire_value()}

    @classmethod
    def from_wire(cls, kind: PropertyKind | str, raw: Any) -> TypedValue:
        kind = PropertyKind(kind)
        if kind is PropertyKind.BINARY:
            return cls(kind, base64.b64decode(raw))
        if kind is PropertyKind.TIMESTAMP:
            return cls(kind, datetime.strptime(raw, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc))
        if kind is PropertyKind.GUID:
            return cls(kind, uuid.UUID(str(raw)))
        if kind is PropertyKind.DOUBLE:
            return cls(kind, float(raw))
        if kind in (PropertyKind.INT32, PropertyKind.INT64):
            return cls(kind, int(raw))
        return cls(kind, raw)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> TypedValue:
        return cls.from_wire(data["t"], data["v"])


def _validate(kind: PropertyKind, value: Any) -> None:
    expected: tuple[type, ...]
    if kind is PropertyKind.STRING:
        expected = (str,)
    elif kind is PropertyKind.BINARY:
        expected = (bytes,)
    elif kind is PropertyKind.BOOLEAN:
        expected = (bool,)
    elif kind is PropertyKind.TIMESTAMP:
        expected = (datetime,)
    elif kind is PropertyKind.DOUBLE:
        expected = (float, int)
    elif kind is PropertyKind.GUID:
        expected = (uuid.UUID,)
    else:
        expected = (int,)
    if not isinstance(value, expected) or (
        kind not in (PropertyKind.BOOLEAN,) and isinstance(value, bool)
    ):
        raise TypeError(f"{kind.value} property cannot hold {type(value).__name__}")
    if kind is PropertyKind.INT32 and not INT32_MIN <= value <= INT32_MAX:
        raise ValueError(f"{value} is out of int32 range")
    if kind is PropertyKind.INT64 and not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"{value} is out of int64 range")


def coerce_properties(properties: dict[str, Any]) -> dict[str, TypedValue]:
    return {name: TypedValue.of(value) for name, value in properties.items()}
