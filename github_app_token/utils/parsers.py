from __future__ import annotations

import base64
import binascii
from typing import Iterable


def parse_identifier(text: str, field_name: str) -> int:
    """Parse a numeric GitHub identifier, tolerating surrounding whitespace."""
    value = text.strip()
    if not value.isdigit() or int(value) <= 0:
        raise ValueError(f"{field_name} must be a positive integer, got {value!r}")
    return int(value)


def parse_permissions(pairs: Iterable[str]) -> dict[str, str]:
    """Parse ``name=level`` pairs such as ``contents=read``."""
    permissions: dict[str, str] = {}
    for pair in pairs:
        name, sep, level = pair.partition("=")
        name, level = name.strip(), level.strip()
        if not sep or not name or not level:
            raise ValueError(f"Permission must be given as name=level, got {pair!r}")
        permissions[name] = level
    return permissions


def decode_private_key(value: str) -> str:
    """Return PEM text, decoding it first when it was base64-wrapped for env transport."""
    stripped = value.strip()
    if stripped.startswith("-----"):
        return stripped + "\n"
    try:
        return base64.b64decode("".join(stripped.split()), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError("Private key is neither PEM nor base64-encoded PEM") from exc
