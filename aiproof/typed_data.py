"""
Typed-data description of a provenance record.

Records are signed off-chain as EIP-712 typed data. The field order of
``ContentProvenance`` is part of the signed commitment: reordering it
changes the struct hash and therefore every signature.
"""

from typing import Any, Dict, List, Optional

PRIMARY_TYPE = "ContentProvenance"

DOMAIN: Dict[str, Any] = {
    "name": "AIProof",
    "version": "1",
    "chainId": 1,
    "verifyingContract": "0x0000000000000000000000000000000000000000",
}

CONTENT_PROVENANCE_FIELDS: List[Dict[str, str]] = [
    {"name": "version", "type": "uint8"},
    {"name": "modelId", "type": "string"},
    {"name": "modelHash", "type": "string"},
    {"name": "promptHash", "type": "bytes32"},
    {"name": "outputHash", "type": "bytes32"},
    {"name": "paramsHash", "type": "bytes32"},
    {"name": "contentCid", "type": "string"},
    {"name": "timestamp", "type": "uint256"},
    {"name": "attestationStrategy", "type": "string"},
    {"name": "keywordsHash", "type": "bytes32"},
    {"name": "programHash", "type": "bytes32"},
    {"name": "journalCid", "type": "string"},
    {"name": "proofCid", "type": "string"},
]

FIELD_NAMES = [f["name"] for f in CONTENT_PROVENANCE_FIELDS]


def type_schema() -> Dict[str, List[Dict[str, str]]]:
    """
    The pruned type set published with every envelope.

    Only ``ContentProvenance`` is included; the domain type is implied by
    the domain object itself.
    """
    return {PRIMARY_TYPE: [dict(f) for f in CONTENT_PROVENANCE_FIELDS]}


def default_domain() -> Dict[str, Any]:
    return dict(DOMAIN)


def schema_matches(types: Optional[Dict[str, Any]]) -> bool:
    """True when ``types`` is exactly the canonical pruned schema."""
    if not isinstance(types, dict):
        return False
    if set(types.keys()) != {PRIMARY_TYPE}:
        return False
    declared = types.get(PRIMARY_TYPE)
    if not isinstance(declared, list) or len(declared) != len(CONTENT_PROVENANCE_FIELDS):
        return False
    for got, want in zip(declared, CONTENT_PROVENANCE_FIELDS):
        if not isinstance(got, dict):
            return False
        if got.get("name") != want["name"] or got.get("type") != want["type"]:
            return False
    return True


def signing_payload(message: Dict[str, Any], domain: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Full typed-data document for an external wallet (``eth_signTypedData_v4``)."""
    dom = domain or default_domain()
    return {
        "domain": dom,
        "types": {
            "EIP712Domain": _domain_fields(dom),
            **type_schema(),
        },
        "primaryType": PRIMARY_TYPE,
        "message": message,
    }


_DOMAIN_FIELD_TYPES = [
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
]


def _domain_fields(domain: Dict[str, Any]) -> List[Dict[str, str]]:
    return [{"name": n, "type": t} for n, t in _DOMAIN_FIELD_TYPES if n in domain]
