"""
Key management module for the AIProof service.

Provides server-side signing for provenance records that are published
without a client signature.
"""

import json
import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from aiproof.models import ProvenanceRecord
from aiproof.signing import address_for_key, sign_record


class KeyProvider(ABC):
    """Abstract interface for provenance signing."""

    @abstractmethod
    def sign_provenance(self, record: ProvenanceRecord) -> Tuple[str, str]:
        """
        Sign a record as EIP-712 typed data.

        Returns:
            Tuple of (signature_hex, signer_address)
        """
        pass

    @abstractmethod
    def get_address(self) -> str:
        """Get the checksummed address signatures recover to."""
        pass


class FileKeyProvider(KeyProvider):
    """
    secp256k1 key stored in a JSON file (``address``, ``private_key_hex``).

    The file's address must match the key; a mismatch means the key file
    was edited by hand or belongs to another deployment.
    """

    def __init__(self, signing_key_path: str):
        self._signing_key_path = signing_key_path
        self._lock = threading.RLock()

        with open(self._signing_key_path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        self._private_key = raw["private_key_hex"]
        self._address = address_for_key(self._private_key)
        declared = raw.get("address")
        if declared and declared.lower() != self._address.lower():
            raise ValueError(f"key file address {declared} does not match key")

    def sign_provenance(self, record: ProvenanceRecord) -> Tuple[str, str]:
        with self._lock:
            return sign_record(record, self._private_key)

    def get_address(self) -> str:
        return self._address


def get_key_provider(signer_type: str = "none", signing_key_path: str = "") -> Optional[KeyProvider]:
    """
    Factory for the configured key provider.

    Returns:
        KeyProvider instance, or None when server-side signing is off
    """
    if signer_type == "none":
        return None
    if signer_type == "file":
        return FileKeyProvider(signing_key_path)
    raise ValueError(f"Unknown signer type: {signer_type}")
