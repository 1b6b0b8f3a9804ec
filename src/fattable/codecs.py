"""Domain value codecs: how values become text and back.

A codec bundles caller-supplied callables, so the table layer never inspects a
value's type at runtime.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from operator import attrgetter, itemgetter
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class DomainCodec(Generic[T]):
    """Serialization closures for one domain type.

    ``identity`` returns the value's identity field, or is None when the type
    has none (index sort keys then default to a chronological key).
    """

    dumps: Callable[[T], str]
    loads: Callable[[str], T]
    identity: Callable[[T], Any] | None
    type_name: str


def serialize_identity(value: Any) -> str:
    """Render an identity value as a sort key: strings as-is, others as compact JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), default=str)


def pydantic_codec(model: type[M], id_field: str | None = "id") -> DomainCodec[M]:
    """Codec for a pydantic model class using its JSON round-trip."""
    if id_field is not None and id_field not in model.model_fields:
        raise ValueError(f"{model.__name__} has no field '{id_field}'")
    return DomainCodec(
        dumps=lambda value: value.model_dump_json(),
        loads=model.model_validate_json,
        identity=attrgetter(id_field) if id_field is not None else None,
        type_name=model.__name__,
    )


def json_codec(id_key: str | None = "id", type_name: str = "Record") -> DomainCodec[dict[str, Any]]:
    """Codec for plain JSON objects (dicts)."""
    return DomainCodec(
        dumps=lambda value: json.dumps(value, separators=(",", ":"), sort_keys=True),
        loads=json.loads,
        identity=itemgetter(id_key) if id_key is not None else None,
        type_name=type_name,
    )
