"""Encoding of characters that are not allowed in partition and sort keys.

Only the offending characters are rewritten. An encoded key carries the
``$ENC_`` prefix and every illegal character is replaced by an underscore
delimited token such as ``_FS_`` for ``/``. Literal underscores inside an
encoded key are escaped as ``_US_`` so decoding never confuses user text with
a token.
"""

from __future__ import annotations

import re

ENCODED_PREFIX = "$ENC_"
UNDERSCORE_TOKEN = "_US_"

_TABLE_NAME_RE = re.compile(r"[^A-Za-z0-9]")


def _build_invalid_characters_map() -> dict[str, str]:
    mapping = {
        "/": "_FS_",
        "\\": "_BS_",
        "#": "_HT_",
        "?": "_QM_",
    }
    for code in list(range(0, 32)) + list(range(127, 160)):
        mapping.setdefault(chr(code), f"_C{code}_")
    return mapping


INVALID_CHARACTERS_MAP: dict[str, str] = _build_invalid_characters_map()


class KeyEncoder:
    """Reversible encoder for backend key strings."""

    def __init__(self) -> None:
        self.invalid_characters_map = dict(INVALID_CHARACTERS_MAP)
        self._reverse_map = {token: char for char, token in self.invalid_characters_map.items()}
        self._reverse_map[UNDERSCORE_TOKEN] = "_"

    def needs_encoding(self, value: str) -> bool:
        return any(c in self.invalid_characters_map for c in value)

    def encode(self, value: str) -> str:
        """Encode ``value`` if it contains illegal key characters.

        Strings that already carry the encoded prefix are returned unchanged,
        which keeps encoding idempotent.
        """
        if value.startswith(ENCODED_PREFIX):
            return value
        if not self.needs_encoding(value):
            return value

        parts = [ENCODED_PREFIX]
        for char in value:
            if char == "_":
                parts.append(UNDERSCORE_TOKEN)
            else:
                parts.append(self.invalid_characters_map.get(char, char))
        return "".join(parts)

    def decode(self, value: str) -> str:
        """Reverse :meth:`encode`. Strings without the prefix pass through."""
        if not value.startswith(ENCODED_PREFIX):
            return value

        out: list[str] = []
        i = len(ENCODED_PREFIX)
        length = len(value)
        while i < length:
            char = value[i]
            if char != "_":
                out.append(char)
                i += 1
                continue

            end = value.find("_", i + 1)
            span = value[i:] if end == -1 else value[i : end + 1]
            original = self._reverse_map.get(span)
            if original is None:
                # Unknown span: keep the underscore and rescan what follows it.
                out.append(char)
                i += 1
                continue
            out.append(original)
            i += len(span)
        return "".join(out)


def clean_table_name(name: str) -> str:
    """Strip characters a table name may not contain and ensure a leading letter."""
    cleaned = _TABLE_NAME_RE.sub("", name)
    if not cleaned:
        raise ValueError(f"Table name '{name}' has no usable characters")
    if not cleaned[0].isalpha():
        cleaned = f"T{cleaned}"
    return cleaned
