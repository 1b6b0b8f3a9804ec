"""Fat entity codec: chunked storage of values larger than one table cell."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from fattable.errors import ObjectTooLargeError

# Just under the 64KB per-property string limit; a few characters are kept
# back for transport encoding overhead.
MAX_CHUNK_SIZE = 63_997
MAX_SLOTS = 16

_SLOT_KEY_RE = re.compile(r"^E\d{2}$")


def slot_key(index: int) -> str:
    """Return the property name for the zero-based chunk ``index`` (E01, E02, ...)."""
    return f"E{index + 1:02d}"


def is_slot_key(name: str) -> bool:
    return bool(_SLOT_KEY_RE.match(name))


@dataclass(frozen=True)
class Fits:
    """The serialized value fits; ``chunks`` are ordered (slot_key, payload) pairs."""

    chunks: list[tuple[str, str]]


@dataclass(frozen=True)
class Overflows:
    """The serialized value needs more slots than the codec allows."""

    payload: str
    slots_needed: int


EncodeResult = Union[Fits, Overflows]


class FatEntityCodec:
    """Splits a serialized value into bounded slots and joins them back."""

    def __init__(self, max_chunk_size: int = MAX_CHUNK_SIZE, max_slots: int = MAX_SLOTS) -> None:
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be > 0")
        if not 1 <= max_slots <= 99:
            raise ValueError("max_slots must be between 1 and 99")
        self.max_chunk_size = max_chunk_size
        self.max_slots = max_slots

    @property
    def capacity(self) -> int:
        """Largest serialized length that fits."""
        return self.max_chunk_size * self.max_slots

    def encode(self, serialized: str) -> EncodeResult:
        size = self.max_chunk_size
        slots_needed = max(1, -(-len(serialized) // size))
        if slots_needed > self.max_slots:
            return Overflows(payload=serialized, slots_needed=slots_needed)
        chunks = [
            (slot_key(i), serialized[i * size : (i + 1) * size]) for i in range(slots_needed)
        ]
        return Fits(chunks=chunks)

    def split(self, serialized: str) -> list[tuple[str, str]]:
        """Split ``serialized`` into ordered slots or raise ObjectTooLargeError."""
        result = self.encode(serialized)
        if isinstance(result, Overflows):
            raise ObjectTooLargeError(result.payload, result.slots_needed, self.max_slots)
        return result.chunks

    @staticmethod
    def join(chunks: Iterable[tuple[str, str]] | Mapping[str, Any]) -> str:
        """Concatenate slot payloads in ascending slot-key order.

        Accepts (slot_key, payload) pairs or a record's property mapping, in
        which case properties that are not slots are ignored.
        """
        if isinstance(chunks, Mapping):
            pairs = [(k, v) for k, v in chunks.items() if is_slot_key(k)]
        else:
            pairs = list(chunks)
        pairs.sort(key=lambda pair: pair[0])
        return "".join(_payload_text(v) for _, v in pairs)


def _payload_text(value: Any) -> str:
    # Record properties arrive as TypedValue; raw chunk pairs as plain str.
    inner = getattr(value, "value", value)
    if not isinstance(inner, str):
        raise TypeError(f"Fat entity slot must hold a string, got {type(inner).__name__}")
    return inner
