"""Deterministic JSON encoding and hashing.

The canonical form is the single source of truth for "are two payloads
identical": object keys are sorted by their exact string form at every
level, list order is kept verbatim, separators carry no whitespace,
Unicode and slashes are written unescaped, and NaN/Infinity are refused.
The same value therefore always yields the same bytes, regardless of
the insertion order of its keys.
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any

from pydantic import JsonValue

from .errors import ValidationFailure


def check_json_value(value: Any, path: str = "$") -> None:
    """Raise ValidationFailure unless value is a closed JSON value.

    Accepted: None, bool, int, finite float, str, list/tuple of JSON
    values, dict with str keys and JSON values.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationFailure(
                f"Non-finite number at {path}", {"path": path, "value": repr(value)}
            )
        return
    if isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            check_json_value(item, f"{path}[{index}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationFailure(
                    f"Object key at {path} must be a string, got {type(key).__name__}",
                    {"path": path, "key": repr(key)},
                )
            check_json_value(item, f"{path}.{key}")
        return
    raise ValidationFailure(
        f"Unsupported value type {type(value).__name__} at {path}",
        {"path": path, "type": type(value).__name__},
    )


def encode_text(value: JsonValue) -> str:
    """Canonical JSON text for value."""
    check_json_value(value)
    return json.dumps(
        value,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )


def encode(value: JsonValue) -> bytes:
    """Canonical UTF-8 bytes for value."""
    try:
        return encode_text(value).encode("utf-8")
    except UnicodeEncodeError as e:
        # lone surrogates cannot be written as UTF-8
        raise ValidationFailure(f"Value contains unencodable text: {e}") from e


def decode(data: bytes | str) -> JsonValue:
    """Parse canonical (or any) JSON text back into a value."""
    try:
        return json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationFailure(f"Malformed JSON: {e}") from e


def hash_bytes(data: bytes) -> str:
    """SHA-256 lowercase hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_value(value: JsonValue) -> str:
    """SHA-256 of the canonical encoding of value."""
    return hash_bytes(encode(value))


def is_canonical(data: bytes) -> bool:
    """True when data is exactly the canonical encoding of what it decodes to."""
    try:
        return encode(decode(data)) == data
    except ValidationFailure:
        return False
