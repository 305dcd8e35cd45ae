"""
AIProof Cryptographic Signing

Provenance records are signed as EIP-712 typed data with a secp256k1 key.
The signer is never trusted from the envelope: it is recovered from the
signature and compared against the claimed address.
"""

from typing import Any, Dict, Mapping, Optional, Tuple, Union

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data

from .models import ProvenanceRecord
from .typed_data import PRIMARY_TYPE, CONTENT_PROVENANCE_FIELDS, default_domain

# Marker stored in place of a signature when no key was available
UNSIGNED = "unsigned"

RecordLike = Union[ProvenanceRecord, Mapping[str, Any]]


class SignatureError(ValueError):
    """Signature could not be produced or recovered."""


def is_unsigned(signature: Optional[str]) -> bool:
    """True for a missing, empty or ``unsigned`` signature."""
    return not signature or signature.strip() == "" or signature.strip() == UNSIGNED


def typed_message(record: RecordLike, domain: Optional[Dict[str, Any]] = None) -> SignableMessage:
    """Encode a record as the EIP-712 message that gets signed."""
    if isinstance(record, ProvenanceRecord):
        message = record.to_message()
    else:
        message = dict(record)
    return encode_typed_data(
        domain_data=dict(domain or default_domain()),
        message_types={PRIMARY_TYPE: [dict(f) for f in CONTENT_PROVENANCE_FIELDS]},
        message_data=message,
    )


def sign_record(
    record: RecordLike,
    private_key: Union[str, bytes],
    domain: Optional[Dict[str, Any]] = None,
) -> Tuple[str, str]:
    """
    Sign a provenance record.

    Args:
        record: Record model or camelCase message dict
        private_key: secp256k1 private key (hex or raw bytes)
        domain: Signing domain (default: AIProof domain)

    Returns:
        Tuple of (0x-prefixed 65-byte signature hex, checksummed signer address)
    """
    try:
        signable = typed_message(record, domain)
        signed = Account.sign_message(signable, private_key=private_key)
        address = Account.from_key(private_key).address
    except Exception as e:
        raise SignatureError(f"signing failed: {e}") from e
    return "0x" + bytes(signed.signature).hex(), address


def recover_signer(
    record: RecordLike,
    signature: str,
    domain: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Recover the address that produced ``signature`` over ``record``.

    Raises:
        SignatureError: signature is missing, malformed or unrecoverable
    """
    if is_unsigned(signature):
        raise SignatureError("no signature")
    try:
        signable = typed_message(record, domain)
        return Account.recover_message(signable, signature=signature)
    except Exception as e:
        raise SignatureError(f"recovery failed: {e}") from e


def addresses_equal(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def generate_signing_key() -> Tuple[str, str]:
    """
    Generate a secp256k1 key pair.

    Returns:
        Tuple of (private_key_hex, checksummed address)
    """
    acct = Account.create()
    return "0x" + bytes(acct.key).hex(), acct.address


def address_for_key(private_key: Union[str, bytes]) -> str:
    return Account.from_key(private_key).address
