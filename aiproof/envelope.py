"""
AIProof Signing Envelope

Publishing wraps a provenance record with its typed-data description,
signature and claimed signer and stores the result as one blob. The cid
of that blob (the signed provenance cid) is the external handle for the
record.

Publishing does not check the signature. It records a claim; trust is
established later by the verifier.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from .builder import now_ms
from .index import DiscoveryIndex
from .models import CURRENT_VERSION, ProvenanceRecord, SignedEnvelope
from .signing import UNSIGNED, is_unsigned
from .store import ContentStore, StoreError, bounded, get_traced, put_traced
from .typed_data import PRIMARY_TYPE, default_domain, type_schema

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("modelId", "promptHash", "outputHash", "paramsHash", "contentCid")

ServerSigner = Callable[[ProvenanceRecord], Tuple[str, str]]


class PublishRejected(ValueError):
    """The record failed publish-time validation."""


class EnvelopeUnavailable(Exception):
    """The envelope could not be fetched from the store."""

    def __init__(self, cid: str, reason: str = ""):
        super().__init__(f"envelope not retrievable: {cid}" + (f" ({reason})" if reason else ""))
        self.cid = cid
        self.reason = reason


class InvalidEnvelope(ValueError):
    """The fetched blob is not a provenance envelope."""


def validate_for_publish(provenance: Any) -> ProvenanceRecord:
    """
    Check a record before it is published.

    Raises:
        PublishRejected: with a short reason suitable for an HTTP 400
    """
    if not isinstance(provenance, Mapping):
        raise PublishRejected("Missing provenance")
    version = provenance.get("version")
    if isinstance(version, bool) or version != CURRENT_VERSION:
        raise PublishRejected("Unsupported version")
    for name in REQUIRED_FIELDS:
        if not provenance.get(name):
            raise PublishRejected(f"Missing field {name}")
    try:
        return ProvenanceRecord.model_validate(dict(provenance))
    except ValidationError as e:
        raise PublishRejected(f"Malformed provenance ({e.error_count()} errors)") from e


@dataclass
class PublishResult:
    signed_provenance_cid: str
    envelope: SignedEnvelope
    warnings: List[str] = field(default_factory=list)

    @property
    def proof_cid(self) -> Optional[str]:
        return self.envelope.provenance.proof_cid or None

    @property
    def journal_cid(self) -> Optional[str]:
        return self.envelope.provenance.journal_cid or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signedProvenanceCid": self.signed_provenance_cid,
            "proofCid": self.proof_cid,
            "journalCid": self.journal_cid,
            "warnings": list(self.warnings),
        }


class EnvelopePublisher:
    """
    Stores signed envelopes and indexes them by output hash.

    ``server_signer`` signs records submitted without a signature. When
    it is not configured such records are stored with the ``unsigned``
    marker, which every verifier treats as a missing signature.
    """

    def __init__(
        self,
        store: ContentStore,
        index: Optional[DiscoveryIndex] = None,
        server_signer: Optional[ServerSigner] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.index = index
        self.server_signer = server_signer
        self.clock = clock

    async def publish(
        self,
        provenance: Any,
        signature: Optional[str] = None,
        signer: Optional[str] = None,
        prompt_cid: Optional[str] = None,
    ) -> PublishResult:
        record = validate_for_publish(provenance)
        warnings: List[str] = []

        if signature is None or signature.strip() == "":
            if self.server_signer is not None:
                signature, signer = self.server_signer(record)
                warnings.append("server_signed")
            else:
                signature = UNSIGNED
                warnings.append("unsigned_envelope")
        elif is_unsigned(signature):
            warnings.append("unsigned_envelope")
        elif not signer:
            raise PublishRejected("Missing signer")

        envelope = SignedEnvelope(
            domain=default_domain(),
            type_schema=type_schema(),
            primary_type=PRIMARY_TYPE,
            provenance=record,
            signature=signature,
            signer=signer or "",
            created_at=self.clock(),
            prompt_cid=prompt_cid or None,
        )
        put = await put_traced(self.store, envelope.to_json_bytes())
        warnings.extend(put.warnings())

        if self.index is not None:
            try:
                self.index.record(record.output_hash, put.cid)
            except Exception as e:
                logger.warning(
                    "discovery index update failed",
                    extra={"extra_fields": {"cid": put.cid, "reason": str(e)}},
                )
                warnings.append("index_update_failed")

        logger.info(
            "envelope published",
            extra={"extra_fields": {"cid": put.cid, "output_hash": record.output_hash}},
        )
        return PublishResult(signed_provenance_cid=put.cid, envelope=envelope, warnings=warnings)


def parse_envelope(raw: Any) -> SignedEnvelope:
    """
    Parse envelope bytes or a decoded dict.

    Raises:
        InvalidEnvelope: not JSON, or no ``provenance`` object
    """
    data = raw
    if isinstance(raw, (bytes, str)):
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidEnvelope("envelope is not valid JSON") from e
    if not isinstance(data, dict) or not isinstance(data.get("provenance"), dict):
        raise InvalidEnvelope("provenance field missing")
    try:
        return SignedEnvelope.model_validate(data)
    except ValidationError as e:
        raise InvalidEnvelope(f"malformed envelope ({e.error_count()} errors)") from e


async def fetch_envelope(store: ContentStore, cid: str,
                         timeout: Optional[float] = None) -> Tuple[SignedEnvelope, List[str]]:
    """
    Fetch and parse an envelope, returning any read fallbacks that fired.

    Raises:
        EnvelopeUnavailable: the store could not return the blob
        InvalidEnvelope: the blob is not a provenance envelope
    """
    try:
        got = await bounded(get_traced(store, cid), timeout, "envelope fetch")
    except StoreError as e:
        raise EnvelopeUnavailable(cid, str(e)) from e
    return parse_envelope(got.data), got.warnings()


async def load_envelope(store: ContentStore, cid: str, timeout: Optional[float] = None) -> SignedEnvelope:
    """Fetch and parse an envelope."""
    envelope, _ = await fetch_envelope(store, cid, timeout)
    return envelope
