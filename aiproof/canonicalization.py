"""
AIProof Canonical JSON Encoding

Two encodings are used when hashing structured values:

- Sorted encoding for generation parameters. Key order of the caller's
  mapping must not influence the digest.
- Ordered encoding for keyword lists. The list order and the key order
  of each entry are part of the claim and are reproduced byte-for-byte
  as a JavaScript ``JSON.stringify`` would emit them.
"""

import json
import math
from typing import Any, Dict


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to sorted canonical JSON bytes.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order), recursively
    - No whitespace between tokens
    - Integral floats written as integers (1.0 -> 1)
    - UTF-8 encoding, no BOM, non-ASCII unescaped
    - Arrays preserve order

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    canonical = _sort_value(json_safe(obj))
    return json.dumps(canonical, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def canonicalize_str(obj: Any) -> str:
    """Return sorted canonical JSON as string."""
    return canonicalize(obj).decode('utf-8')


def ordered_json(obj: Any) -> str:
    """
    Compact JSON that keeps insertion order of object keys.

    Matches ``JSON.stringify(obj)``: no whitespace, non-ASCII left
    unescaped, arrays and objects in the order given.
    """
    return json.dumps(json_safe(obj), separators=(',', ':'), ensure_ascii=False)


def json_safe(value: Any) -> Any:
    """
    Recursively coerce a value into plain JSON data.

    Non-finite floats become None, integral floats become ints, tuples
    become lists, mapping keys become strings and unknown objects are
    stringified. Never raises.
    """
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer() and abs(value) < 2 ** 53:
            return int(value)
        return value
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return str(value)


def _sort_value(value: Any) -> Any:
    if isinstance(value, dict):
        return _sort_object(value)
    if isinstance(value, list):
        return [_sort_value(item) for item in value]
    return value


def _sort_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _sort_value(obj[k]) for k in sorted(obj.keys())}
