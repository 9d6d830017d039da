#!/usr/bin/env python3
"""Generate golden canonical-JSON vectors for cross-implementation checks.

The gateway and the upstream API (and any non-Python signer) must produce the
same canonical bytes for the same body. This script regenerates the vector
file consumed by tests/libs/bff_auth/test_canonical.py. Run it only when the
canonical algorithm version changes.

Usage:
    python scripts/generate_canonical_vectors.py [--dry-run]
    python scripts/generate_canonical_vectors.py --validate

Options:
    --dry-run    Print the vectors instead of writing the file
    --validate   Check the committed vectors against the current encoder
"""

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from pathlib import Path
from typing import Any

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from libs.bff_auth.canonical import CANONICAL_VERSION, canonical_json  # noqa: E402

VECTORS_PATH = PROJECT_ROOT / "tests" / "fixtures" / "canonical_vectors.json"

# Vectors whose digest is pinned in the file as well as the canonical text
HASHED_VECTORS = {"key_order", "login_body", "integral_float", "unicode"}

INPUTS: list[tuple[str, Any]] = [
    ("key_order", {"b": 1, "a": [2, 1]}),
    ("login_body", {"password": "secret", "email": "user@example.com"}),
    ("nested_objects", {"z": {"y": 2, "x": 1}, "a": [{"d": 4, "c": 3}]}),
    ("empty_containers", {"o": {}, "l": []}),
    ("literals", {"t": True, "f": False, "n": None}),
    ("code_point_key_order", {"b": 1, "B": 2, "a": 3, "_": 4, "é": 5}),
    ("top_level_array", [{"b": 1, "a": 2}, 3, "x"]),
    ("integral_float", {"amount": 1.0}),
    ("fractional_floats", {"price": 0.1, "qty": 1.5, "neg": -2.25}),
    ("large_exponents", [1e21, 1e20, 1.5e300]),
    ("small_exponents", [1e-7, 0.000001, 1.5e-10]),
    ("negative_zero", [-0.0]),
    ("big_integer", {"id": 12345678901234567890}),
    ("unicode", {"name": "José", "emoji": "\U0001f600"}),
    ("string_escapes", {"s": 'a"b\\c/d\n\t\x01'}),
]


def build_vectors() -> dict[str, Any]:
    """Encode every input with the current canonical encoder."""
    vectors = []
    for name, value in INPUTS:
        canonical = canonical_json(value)
        entry: dict[str, Any] = {"name": name, "input": value, "canonical": canonical}
        if name in HASHED_VECTORS:
            entry["sha256"] = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        vectors.append(entry)
    return {"version": CANONICAL_VERSION, "vectors": vectors}


def validate_vectors() -> bool:
    """Compare the committed file with freshly generated vectors.

    Returns:
        True if every committed vector still matches
    """
    if not VECTORS_PATH.exists():
        print(f"❌ Vector file not found: {VECTORS_PATH}")
        return False

    committed = json.loads(VECTORS_PATH.read_text(encoding="utf-8"))
    if committed.get("version") != CANONICAL_VERSION:
        print(f"❌ Version mismatch: file={committed.get('version')} encoder={CANONICAL_VERSION}")
        return False

    all_valid = True
    for vector in committed["vectors"]:
        actual = canonical_json(vector["input"])
        if actual != vector["canonical"]:
            print(f"❌ {vector['name']}: expected {vector['canonical']!r}, got {actual!r}")
            all_valid = False
            continue
        digest = vector.get("sha256")
        if digest and hashlib.sha256(actual.encode("utf-8")).hexdigest() != digest:
            print(f"❌ {vector['name']}: sha256 mismatch")
            all_valid = False
            continue
        print(f"✅ {vector['name']}")
    return all_valid


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate canonical JSON golden vectors")
    parser.add_argument("--dry-run", action="store_true", help="Print instead of writing")
    parser.add_argument("--validate", action="store_true", help="Validate committed vectors")
    args = parser.parse_args()

    if args.validate:
        return 0 if validate_vectors() else 1

    document = build_vectors()
    text = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
    if args.dry_run:
        print(text)
        return 0

    VECTORS_PATH.parent.mkdir(parents=True, exist_ok=True)
    VECTORS_PATH.write_text(text, encoding="utf-8")
    print(f"Wrote {len(document['vectors'])} vectors to {VECTORS_PATH}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
