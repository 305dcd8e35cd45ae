"""
AIProof Verification Algorithm

Given a signed provenance cid, recomputes every bound hash and recovers
the signer, producing a report of issues (hard failures) and warnings
(reduced assurance). ``ok`` is true exactly when there are no issues.

Every applicable check runs even after an earlier one fails, so one call
yields the complete diagnostic. The only terminal errors are an envelope
that cannot be fetched (``EnvelopeUnavailable``) or is not an envelope
(``InvalidEnvelope``).

Issues are reported in three groups, in this order:

1. Cryptographic: missing_signature, signature_invalid,
   signature_recover_mismatch
2. Structural: missing fields, unsupported_version, type_schema_mismatch,
   unknown_attestation_strategy, attestation_binding_inconsistent,
   expected_keywords_missing
3. Integrity: recomputed hash differs from the signed one, or the
   journal backing a signed keywords hash is unusable
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .envelope import EnvelopeUnavailable, InvalidEnvelope, fetch_envelope
from .hashing import digest_bytes, digest_keywords, digest_text, hashes_equal, is_zero_hash
from .index import DiscoveryIndex
from .models import CURRENT_VERSION, AttestationStrategy, Keyword, SignedEnvelope
from .signing import SignatureError, addresses_equal, is_unsigned, recover_signer
from .store import ContentStore, GetResult, StoreError, bounded, get_traced
from .typed_data import schema_matches

logger = logging.getLogger(__name__)


class IssueCode(str, Enum):
    MISSING_SIGNATURE = "missing_signature"
    SIGNATURE_INVALID = "signature_invalid"
    SIGNATURE_RECOVER_MISMATCH = "signature_recover_mismatch"
    UNSUPPORTED_VERSION = "unsupported_version"
    TYPE_SCHEMA_MISMATCH = "type_schema_mismatch"
    UNKNOWN_ATTESTATION_STRATEGY = "unknown_attestation_strategy"
    ATTESTATION_BINDING_INCONSISTENT = "attestation_binding_inconsistent"
    EXPECTED_KEYWORDS_MISSING = "expected_keywords_missing"
    PROMPT_HASH_MISMATCH = "prompt_hash_mismatch"
    OUTPUT_HASH_MISMATCH = "output_hash_mismatch"
    STORED_PROMPT_HASH_MISMATCH = "stored_prompt_hash_mismatch"
    KEYWORDS_HASH_MISMATCH = "keywords_hash_mismatch"
    JOURNAL_MISSING_KEYWORDS = "journal_missing_keywords"
    JOURNAL_MALFORMED = "journal_malformed"
    JOURNAL_FETCH_FAILED = "journal_fetch_failed"


class WarningCode(str, Enum):
    NO_PROMPT_SUPPLIED = "no_prompt_supplied"
    PROGRAM_HASH_NOT_BOUND = "program_hash_not_bound"
    ZK_KEYWORDS_NOT_BOUND = "zk_keywords_not_bound"
    ATTESTATION_MOCKED = "attestation_mocked"
    PROOF_UNVERIFIED = "proof_unverified"
    JOURNAL_OVERRIDE_USED = "journalCid_override_used"
    PROOF_OVERRIDE_USED = "proofCid_override_used"
    CONTENT_FETCH_FAILED = "content_fetch_failed"
    STORED_PROMPT_FETCH_FAILED = "stored_prompt_fetch_failed"
    PROOF_FETCH_FAILED = "proof_fetch_failed"
    JOURNAL_NOT_AVAILABLE = "journal_not_available"


# Fields every record must carry, in report order
REQUIRED_FIELDS = (
    ("promptHash", "prompt_hash"),
    ("outputHash", "output_hash"),
    ("paramsHash", "params_hash"),
    ("contentCid", "content_cid"),
)


@dataclass
class VerificationReport:
    """Structured trust report for one envelope."""
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    signer: Optional[str] = None
    recovered_signer: Optional[str] = None
    signature: Optional[str] = None
    signature_domain: str = ""
    provenance: Dict[str, Any] = field(default_factory=dict)
    recomputed: Optional[Dict[str, Optional[str]]] = None
    output_content: Optional[str] = None
    original_prompt: Optional[str] = None
    signed_provenance_cid: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ok": self.ok,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "signedProvenanceCid": self.signed_provenance_cid,
            "provenance": dict(self.provenance),
            "signer": self.signer,
            "recoveredSigner": self.recovered_signer,
            "signature": self.signature,
            "signatureDomain": self.signature_domain,
        }
        if self.recomputed is not None:
            out["recomputed"] = dict(self.recomputed)
        if self.output_content is not None:
            out["outputContent"] = self.output_content
        if self.original_prompt is not None:
            out["originalPrompt"] = self.original_prompt
        return out


@dataclass
class _DeepCheck:
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recomputed: Dict[str, Optional[str]] = field(default_factory=dict)
    output_content: Optional[str] = None
    original_prompt: Optional[str] = None


@dataclass
class ContentVerification:
    """Result of looking up and verifying pasted content."""
    content_hash: str
    candidates: List[str] = field(default_factory=list)
    report: Optional[VerificationReport] = None
    reason: Optional[str] = None
    attempts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.report is not None and self.report.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "contentHash": self.content_hash,
            "candidates": list(self.candidates),
            "signedProvenanceCid": self.report.signed_provenance_cid if self.report else None,
            "reason": self.reason,
            "report": self.report.to_dict() if self.report else None,
            "attempts": list(self.attempts),
        }


class ProvenanceVerifier:
    """
    Verifies published envelopes against a content store.

    Args:
        store: where envelopes and referenced artifacts are fetched from
        index: discovery index used by ``verify_content``
        fetch_timeout: deadline for each individual fetch, in seconds
    """

    def __init__(self, store: ContentStore, index: Optional[DiscoveryIndex] = None,
                 fetch_timeout: Optional[float] = 30.0):
        self.store = store
        self.index = index
        self.fetch_timeout = fetch_timeout

    async def verify(
        self,
        signed_provenance_cid: str,
        prompt: Optional[str] = None,
        journal_cid: Optional[str] = None,
        proof_cid: Optional[str] = None,
        expect_keywords: bool = False,
        include_content: bool = False,
    ) -> VerificationReport:
        """
        Fetch an envelope by cid and verify it.

        Raises:
            EnvelopeUnavailable: envelope cannot be fetched
            InvalidEnvelope: blob has no provenance object
        """
        envelope, read_fallbacks = await fetch_envelope(self.store, signed_provenance_cid, self.fetch_timeout)
        report = await self.verify_envelope(
            envelope,
            prompt=prompt,
            journal_cid=journal_cid,
            proof_cid=proof_cid,
            expect_keywords=expect_keywords,
            include_content=include_content,
        )
        report.signed_provenance_cid = signed_provenance_cid
        report.warnings = _dedupe(report.warnings + read_fallbacks)
        return report

    async def verify_envelope(
        self,
        envelope: SignedEnvelope,
        prompt: Optional[str] = None,
        journal_cid: Optional[str] = None,
        proof_cid: Optional[str] = None,
        expect_keywords: bool = False,
        include_content: bool = False,
    ) -> VerificationReport:
        prov = envelope.provenance
        structural: List[str] = []
        integrity: List[str] = []
        warnings: List[str] = []

        for wire_name, attr in REQUIRED_FIELDS:
            if not getattr(prov, attr):
                structural.append(f"missing_{wire_name}")
        if prov.version != CURRENT_VERSION:
            structural.append(IssueCode.UNSUPPORTED_VERSION.value)
        if not schema_matches(envelope.type_schema):
            structural.append(IssueCode.TYPE_SCHEMA_MISMATCH.value)

        keywords_bound = not is_zero_hash(prov.keywords_hash)
        program_bound = not is_zero_hash(prov.program_hash)
        strategy = prov.attestation_strategy
        is_zk = strategy.startswith(AttestationStrategy.ZK_PREFIX)

        if strategy not in AttestationStrategy.ALL:
            structural.append(IssueCode.UNKNOWN_ATTESTATION_STRATEGY.value)
        elif strategy == AttestationStrategy.NONE and (keywords_bound or program_bound):
            structural.append(IssueCode.ATTESTATION_BINDING_INCONSISTENT.value)

        if expect_keywords and not keywords_bound:
            structural.append(IssueCode.EXPECTED_KEYWORDS_MISSING.value)

        if prompt:
            if not hashes_equal(digest_text(prompt), prov.prompt_hash):
                integrity.append(IssueCode.PROMPT_HASH_MISMATCH.value)
        else:
            warnings.append(WarningCode.NO_PROMPT_SUPPLIED.value)

        if is_zk and not program_bound:
            warnings.append(WarningCode.PROGRAM_HASH_NOT_BOUND.value)
        if is_zk and not keywords_bound:
            warnings.append(WarningCode.ZK_KEYWORDS_NOT_BOUND.value)
        if strategy == AttestationStrategy.ZK_KEYWORDS_MOCK:
            warnings.append(WarningCode.ATTESTATION_MOCKED.value)

        effective_journal = journal_cid or prov.journal_cid
        effective_proof = proof_cid or prov.proof_cid
        if journal_cid and journal_cid != prov.journal_cid:
            warnings.append(WarningCode.JOURNAL_OVERRIDE_USED.value)
        if proof_cid and proof_cid != prov.proof_cid:
            warnings.append(WarningCode.PROOF_OVERRIDE_USED.value)

        signature_check = asyncio.to_thread(self._check_signature, envelope)
        if include_content:
            (recovered, crypto), deep = await asyncio.gather(
                signature_check,
                self._deep_check(envelope, effective_journal, effective_proof, keywords_bound),
            )
        else:
            recovered, crypto = await signature_check
            deep = None

        if deep is not None:
            integrity.extend(deep.issues)
            warnings.extend(deep.warnings)

        # no proof checker exists, so a present proof is never vouched for
        if effective_proof:
            warnings.append(WarningCode.PROOF_UNVERIFIED.value)

        report = VerificationReport(
            issues=_dedupe(crypto + structural + integrity),
            warnings=_dedupe(warnings),
            signer=envelope.signer,
            recovered_signer=recovered,
            signature=envelope.signature,
            signature_domain=str(envelope.domain.get("name") or "AIProof"),
            provenance=self._summary(envelope, effective_journal, effective_proof),
        )
        if deep is not None:
            report.recomputed = deep.recomputed
            report.output_content = deep.output_content
            report.original_prompt = deep.original_prompt

        logger.info(
            "verification completed",
            extra={"extra_fields": {"ok": report.ok, "issues": report.issues}},
        )
        return report

    def _check_signature(self, envelope: SignedEnvelope) -> Tuple[Optional[str], List[str]]:
        if is_unsigned(envelope.signature):
            return None, [IssueCode.MISSING_SIGNATURE.value]
        try:
            recovered = recover_signer(envelope.provenance, envelope.signature, envelope.domain)
        except SignatureError as e:
            logger.debug("signature recovery failed", extra={"extra_fields": {"reason": str(e)}})
            return None, [IssueCode.SIGNATURE_INVALID.value]
        if not addresses_equal(recovered, envelope.signer):
            return recovered, [IssueCode.SIGNATURE_RECOVER_MISMATCH.value]
        return recovered, []

    async def _fetch(self, cid: str) -> GetResult:
        return await bounded(get_traced(self.store, cid), self.fetch_timeout, f"fetch {cid}")

    async def _deep_check(self, envelope: SignedEnvelope, journal_cid: str, proof_cid: str,
                          keywords_bound: bool) -> _DeepCheck:
        prov = envelope.provenance
        result = _DeepCheck(recomputed={"outputHash": None, "promptHash": None, "keywordsHash": None})

        if keywords_bound and not journal_cid:
            result.warnings.append(WarningCode.JOURNAL_NOT_AVAILABLE.value)
        wanted = {
            "content": prov.content_cid,
            "prompt": envelope.prompt_cid,
            "journal": journal_cid if keywords_bound else None,
            "proof": proof_cid,
        }
        names = [k for k, cid in wanted.items() if cid]
        fetched = await asyncio.gather(*(self._fetch(wanted[k]) for k in names), return_exceptions=True)
        blobs: Dict[str, Any] = {}
        for name, value in zip(names, fetched):
            if isinstance(value, BaseException) and not isinstance(value, StoreError):
                raise value
            if isinstance(value, GetResult):
                result.warnings.extend(value.warnings())
                value = value.data
            blobs[name] = value

        content = blobs.get("content")
        if isinstance(content, StoreError):
            result.warnings.append(WarningCode.CONTENT_FETCH_FAILED.value)
        elif content is not None:
            result.output_content = content.decode("utf-8", "replace")
            result.recomputed["outputHash"] = digest_bytes(content)
            if not hashes_equal(result.recomputed["outputHash"], prov.output_hash):
                result.issues.append(IssueCode.OUTPUT_HASH_MISMATCH.value)

        stored_prompt = blobs.get("prompt")
        if isinstance(stored_prompt, StoreError):
            result.warnings.append(WarningCode.STORED_PROMPT_FETCH_FAILED.value)
        elif stored_prompt is not None:
            result.original_prompt = stored_prompt.decode("utf-8", "replace")
            result.recomputed["promptHash"] = digest_bytes(stored_prompt)
            if not hashes_equal(result.recomputed["promptHash"], prov.prompt_hash):
                result.issues.append(IssueCode.STORED_PROMPT_HASH_MISMATCH.value)

        journal = blobs.get("journal")
        if isinstance(journal, StoreError):
            result.issues.append(IssueCode.JOURNAL_FETCH_FAILED.value)
        elif journal is not None:
            keywords_hash, issue = _journal_keywords_hash(journal)
            result.recomputed["keywordsHash"] = keywords_hash
            if issue:
                result.issues.append(issue)
            elif not hashes_equal(keywords_hash, prov.keywords_hash):
                result.issues.append(IssueCode.KEYWORDS_HASH_MISMATCH.value)

        if isinstance(blobs.get("proof"), StoreError):
            result.warnings.append(WarningCode.PROOF_FETCH_FAILED.value)

        return result

    @staticmethod
    def _summary(envelope: SignedEnvelope, journal_cid: str, proof_cid: str) -> Dict[str, Any]:
        prov = envelope.provenance
        return {
            "modelId": prov.model_id,
            "attestationStrategy": prov.attestation_strategy,
            "programHash": prov.program_hash,
            "keywordsHash": None if is_zero_hash(prov.keywords_hash) else prov.keywords_hash,
            "journalCid": journal_cid or None,
            "proofCid": proof_cid or None,
            "contentCid": prov.content_cid,
            "outputHash": prov.output_hash,
            "promptHash": prov.prompt_hash,
            "paramsHash": prov.params_hash,
            "timestamp": prov.timestamp,
        }

    async def verify_content(self, content: str, prompt: Optional[str] = None) -> ContentVerification:
        """
        Find and verify provenance for pasted content.

        Candidates come from the discovery index; each is verified like any
        other envelope. The first candidate whose signed output hash equals
        the content hash and whose report is ok is returned.
        """
        content_hash = digest_text(content)
        candidates = self.index.lookup(content_hash) if self.index is not None else []
        result = ContentVerification(content_hash=content_hash, candidates=list(candidates))
        if not candidates:
            result.reason = "no_provenance_found"
            return result

        for cid in candidates:
            try:
                report = await self.verify(cid, prompt=prompt)
            except (EnvelopeUnavailable, InvalidEnvelope) as e:
                logger.warning("candidate envelope unusable", extra={"extra_fields": {"cid": cid, "reason": str(e)}})
                result.attempts.append({"cid": cid, "ok": False, "issues": ["envelope_unavailable"]})
                continue
            matches = hashes_equal(report.provenance.get("outputHash"), content_hash)
            result.attempts.append({"cid": cid, "ok": report.ok and matches, "issues": list(report.issues)})
            if report.ok and matches:
                result.report = report
                return result

        result.reason = "no_valid_candidate"
        return result


def _journal_keywords_hash(raw: bytes) -> Tuple[Optional[str], Optional[str]]:
    """Recompute the keywords digest from journal bytes, or name the problem."""
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None, IssueCode.JOURNAL_MALFORMED.value
    if not isinstance(data, dict) or data.get("keywords") is None:
        return None, IssueCode.JOURNAL_MISSING_KEYWORDS.value
    entries = data["keywords"]
    if not isinstance(entries, list):
        return None, IssueCode.JOURNAL_MALFORMED.value
    try:
        keywords = [Keyword.model_validate(k) for k in entries]
    except ValidationError:
        return None, IssueCode.JOURNAL_MALFORMED.value
    return digest_keywords(keywords), None


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))
