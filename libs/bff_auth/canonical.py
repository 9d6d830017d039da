"""Canonical JSON encoding for signed request bodies (bff-canonical-v1).

The gateway hashes and transmits the canonical encoding; the upstream parses
the received body and re-encodes it before hashing. Both sides must agree on
every byte, so the algorithm is pinned here rather than delegated to
``json.dumps`` defaults:

- object keys sorted ascending by Unicode code point, at every depth
- array order preserved
- compact separators (``,`` and ``:``), no whitespace, no trailing newline
- UTF-8 output; non-ASCII characters emitted raw, ``/`` not escaped;
  control characters escaped as ``\\b \\f \\n \\r \\t`` or lowercase ``\\u00xx``
- integers as plain decimal digits
- floats as the shortest round-trip digits laid out by the ECMAScript
  Number-to-String rules (``1.0`` -> ``1``, ``1e21`` -> ``1e+21``,
  ``0.0000001`` -> ``1e-7``); NaN and infinities are rejected

Golden vectors for this version live in tests/fixtures/canonical_vectors.json
and are regenerated with scripts/generate_canonical_vectors.py.
"""

from __future__ import annotations

import hashlib
import json
import math
from collections.abc import Mapping
from typing import Any

from libs.bff_auth.exceptions import CanonicalizationError

CANONICAL_VERSION = "bff-canonical-v1"


def canonicalize(value: Any) -> Any:
    """Return ``value`` with every mapping's keys sorted, recursively.

    Scalars and ``None`` are returned unchanged. Lists and tuples keep their
    order (tuples become lists). The function is idempotent.

    Raises:
        CanonicalizationError: If a mapping has a non-string key.

    Example:
        >>> canonicalize({"b": 1, "a": [{"d": 0, "c": 1}]})
        {'a': [{'c': 1, 'd': 0}], 'b': 1}
    """
    if isinstance(value, Mapping):
        for key in value:
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Object keys must be strings, got {type(key).__name__}"
                )
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    """Serialize ``value`` to its canonical JSON text.

    Example:
        >>> canonical_json({"b": 1, "a": [2, 1]})
        '{"a":[2,1],"b":1}'
    """
    parts: list[str] = []
    _encode(canonicalize(value), parts)
    return "".join(parts)


def canonical_json_bytes(value: Any) -> bytes:
    """UTF-8 bytes of :func:`canonical_json`; these are the bytes that get hashed and sent."""
    try:
        return canonical_json(value).encode("utf-8")
    except UnicodeEncodeError as exc:
        raise CanonicalizationError("String contains an unpaired surrogate") from exc
    except RecursionError as exc:
        raise CanonicalizationError("Value is nested too deeply to encode") from exc


def hash_body(body: Any) -> str:
    """Lowercase hex SHA-256 of the canonical body, or ``""`` when there is no body."""
    if body is None:
        return ""
    return hashlib.sha256(canonical_json_bytes(body)).hexdigest()


def parse_json(body: bytes | str) -> Any:
    """Parse a received JSON document.

    Raises:
        ValueError: If the text is not JSON, contains NaN/Infinity literals or
            is nested too deeply to parse (the last as CanonicalizationError)
    """
    try:
        return json.loads(body, parse_constant=_reject_constant)
    except RecursionError as exc:
        raise CanonicalizationError("JSON document is nested too deeply") from exc


def hash_raw_body(body: bytes) -> str:
    """Hash a received request body the way the signer hashed it.

    Empty bodies hash to ``""``. Bodies that parse as JSON are re-encoded
    canonically before hashing; anything else (form posts, binary uploads,
    JSON with NaN/Infinity literals, pathologically nested documents) is
    hashed as received.
    """
    if not body:
        return ""
    try:
        encoded = canonical_json_bytes(parse_json(body))
    except ValueError:
        return hashlib.sha256(body).hexdigest()
    return hashlib.sha256(encoded).hexdigest()


def format_number(value: int | float) -> str:
    """Render a JSON number using the pinned numeric format.

    Example:
        >>> format_number(1.0), format_number(0.1), format_number(1e21), format_number(12)
        ('1', '0.1', '1e+21', '12')
    """
    if isinstance(value, bool):
        raise CanonicalizationError("Booleans are not numbers")
    if isinstance(value, int):
        return str(value)
    return _format_float(value)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-finite JSON constant {name} is not canonicalizable")


def _encode(value: Any, parts: list[str]) -> None:
    if value is None:
        parts.append("null")
    elif value is True:
        parts.append("true")
    elif value is False:
        parts.append("false")
    elif isinstance(value, str):
        parts.append(json.dumps(value, ensure_ascii=False))
    elif isinstance(value, (int, float)):
        parts.append(format_number(value))
    elif isinstance(value, dict):
        parts.append("{")
        for index, (key, item) in enumerate(value.items()):
            if index:
                parts.append(",")
            parts.append(json.dumps(key, ensure_ascii=False))
            parts.append(":")
            _encode(item, parts)
        parts.append("}")
    elif isinstance(value, list):
        parts.append("[")
        for index, item in enumerate(value):
            if index:
                parts.append(",")
            _encode(item, parts)
        parts.append("]")
    else:
        raise CanonicalizationError(f"Type {type(value).__name__} is not JSON serializable")


def _format_float(value: float) -> str:
    if math.isnan(value) or math.isinf(value):
        raise CanonicalizationError("NaN and Infinity are not valid JSON numbers")
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    digits, n = _shortest_digits(abs(value))
    k = len(digits)

    # value == 0.d1d2...dk * 10**n
    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return sign + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return sign + "0." + "0" * (-n) + digits

    exponent = n - 1
    exp_sign = "+" if exponent >= 0 else "-"
    mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
    return f"{sign}{mantissa}e{exp_sign}{abs(exponent)}"


def _shortest_digits(value: float) -> tuple[str, int]:
    """Split ``repr(value)`` into significant digits and decimal point position."""
    text = repr(value)
    if "e" in text:
        mantissa, exp_text = text.split("e")
        exponent = int(exp_text)
    else:
        mantissa, exponent = text, 0

    int_part, _, frac_part = mantissa.partition(".")
    digits = int_part + frac_part
    point = len(int_part) + exponent

    stripped = digits.lstrip("0")
    point -= len(digits) - len(stripped)
    return stripped.rstrip("0"), point


__all__ = [
    "CANONICAL_VERSION",
    "canonical_json",
    "canonical_json_bytes",
    "canonicalize",
    "format_number",
    "hash_body",
    "hash_raw_body",
    "parse_json",
]
