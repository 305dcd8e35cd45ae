"""
AIProof Hashing

All digests are SHA-256 over UTF-8 bytes, rendered as lowercase
hexadecimal with a ``0x`` prefix so they slot directly into ``bytes32``
typed-data fields.

No normalization is applied to text. Callers must pass the exact string
that was hashed at signing time.
"""

import hashlib
import re
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from .canonicalization import canonicalize, ordered_json

# 32-byte zero digest for unbound hash fields
ZERO_HASH = "0x" + "0" * 64

# Token written by the attestation guest before the host fills in the image id
PROGRAM_HASH_PLACEHOLDER = "<FILLED_BY_HOST>"

DEFAULT_PARAMS: Dict[str, Any] = {"temperature": 0, "top_p": 1}

_HEX_RE = re.compile(r'^[0-9a-f]*$')


def digest_bytes(data: bytes) -> str:
    """SHA-256 of raw bytes as ``0x``-prefixed lowercase hex."""
    return "0x" + hashlib.sha256(data).hexdigest()


def digest_text(text: Union[str, bytes]) -> str:
    """
    Digest the exact UTF-8 bytes of ``text``.

    Returns:
        Hash string in format "0xabcdef..." (64 hex characters)
    """
    if isinstance(text, str):
        text = text.encode('utf-8')
    return digest_bytes(text)


def merge_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Overlay caller parameters on the generation defaults."""
    merged = dict(DEFAULT_PARAMS)
    if params:
        merged.update(params)
    return merged


def digest_params(params: Optional[Mapping[str, Any]]) -> str:
    """
    Digest generation parameters independent of key insertion order.

    The mapping is merged with ``{temperature: 0, top_p: 1}`` (caller
    values win) and serialized with sorted keys before hashing.
    """
    return digest_bytes(canonicalize(merge_params(params)))


def digest_keywords(keywords: Iterable[Any]) -> str:
    """
    Digest a keyword list exactly as produced.

    Order reflects frequency ranking and is never re-sorted. Entries may
    be ``Keyword`` models or plain ``{"word", "count"}`` dicts.
    """
    return digest_text(ordered_json([_keyword_value(k) for k in keywords]))


def digest_model_config(model: str, params: Optional[Mapping[str, Any]]) -> str:
    """Digest binding a model identifier to the parameters it ran with."""
    return digest_bytes(canonicalize({"model": model, "params": dict(params or {})}))


def to_fixed_width(value: Optional[str]) -> str:
    """
    Normalize a digest to ``0x`` + 64 lowercase hex characters.

    Accepts raw hex, ``sha256:``-prefixed or ``0x``-prefixed input and
    left-pads short values. Empty, placeholder, non-hex or over-long
    input maps to ``ZERO_HASH``.
    """
    if not value or not isinstance(value, str):
        return ZERO_HASH
    v = value.strip()
    if is_placeholder(v):
        return ZERO_HASH
    v = v.lower()
    if v.startswith("sha256:"):
        v = v[len("sha256:"):]
    if v.startswith("0x"):
        v = v[2:]
    if not v or len(v) > 64 or not _HEX_RE.match(v):
        return ZERO_HASH
    return "0x" + v.rjust(64, "0")


def is_placeholder(value: Optional[str]) -> bool:
    """True when the value is the host's unfilled program-hash token."""
    return bool(value) and value.strip() == PROGRAM_HASH_PLACEHOLDER


def is_zero_hash(value: Optional[str]) -> bool:
    """True for the sentinel or anything that normalizes to it."""
    return to_fixed_width(value) == ZERO_HASH


def hashes_equal(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive digest comparison; missing values never match."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


def _keyword_value(keyword: Any) -> Dict[str, Any]:
    if hasattr(keyword, "word") and hasattr(keyword, "count"):
        return {"word": keyword.word, "count": keyword.count}
    return keyword
