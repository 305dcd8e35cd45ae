"""
AIProof Attestation Generator

Optionally runs the keyword-extraction program over generated output and
binds its claims (the journal) and supporting artifact (the proof) into
the provenance record.

Mode selection happens once, when the attestor is constructed:

- MockAttestor: extraction in-process, no real proof
- SubprocessAttestor: external host binary with a hard timeout
- HostedProverAttestor: remote prover service over HTTP

Any failure yields mode ``failed`` and strategy ``none``. Keyword data is
never fabricated for a failed run.
"""

import asyncio
import base64
import binascii
import json
import logging
import os
import shlex
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import requests
from pydantic import BaseModel, ValidationError

from .canonicalization import ordered_json
from .hashing import ZERO_HASH, digest_keywords, digest_text, to_fixed_width
from .keywords import extract_keywords, keyword_summary
from .models import AttestationJournal, AttestationStrategy
from .store import ContentStore, StoreError, put_traced

logger = logging.getLogger(__name__)

MOCK_PROGRAM_ID = "mock_program_v1"
MOCK_PROOF = b"mock_proof_data"


class AttestationMode(str, Enum):
    """Outcome reported as ``zk.mode`` in construction responses."""
    DISABLED = "disabled"
    MOCK = "mock"
    REAL = "real"
    FAILED = "failed"


class AttestationFailed(Exception):
    """The attestation run produced no usable journal and proof."""

    def __init__(self, code: str, detail: str = ""):
        super().__init__(f"{code}: {detail}" if detail else code)
        self.code = code
        self.detail = detail


@dataclass
class AttestationArtifacts:
    """Raw output of one successful attestation run."""
    journal: AttestationJournal
    journal_bytes: bytes
    proof_bytes: bytes


@dataclass
class AttestationOutcome:
    mode: AttestationMode
    strategy: str = AttestationStrategy.NONE
    journal: Optional[AttestationJournal] = None
    journal_cid: str = ""
    proof_cid: str = ""
    warnings: List[str] = field(default_factory=list)

    @property
    def bound(self) -> bool:
        return self.journal is not None and self.strategy != AttestationStrategy.NONE

    @property
    def keywords_hash(self) -> str:
        if not self.bound:
            return ZERO_HASH
        return digest_keywords(self.journal.keywords)

    @property
    def program_hash(self) -> str:
        if not self.bound:
            return ZERO_HASH
        return to_fixed_width(self.journal.program_hash)

    @property
    def summary(self) -> Optional[str]:
        if not self.bound:
            return None
        return keyword_summary(self.journal.keywords)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "journalCid": self.journal_cid,
            "proofCid": self.proof_cid,
            "warnings": list(self.warnings),
        }


def parse_journal(raw: Any) -> AttestationJournal:
    """
    Parse journal JSON into a strictly validated model.

    Raises:
        AttestationFailed: not JSON, not an object, or keywords malformed
    """
    data = raw
    if isinstance(raw, (bytes, str)):
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise AttestationFailed("malformed_journal", "not valid JSON") from e
    if not isinstance(data, dict):
        raise AttestationFailed("malformed_journal", "journal is not an object")
    if not isinstance(data.get("keywords"), list):
        raise AttestationFailed("malformed_journal", "keywords array missing")
    try:
        return AttestationJournal.model_validate(data)
    except ValidationError as e:
        raise AttestationFailed("malformed_journal", f"{e.error_count()} validation errors") from e


class Attestor:
    strategy = AttestationStrategy.NONE
    mode = AttestationMode.DISABLED

    async def attest(self, text: str, model_fingerprint: str = "") -> AttestationArtifacts:
        raise NotImplementedError


class MockAttestor(Attestor):
    """Runs extraction locally. The proof is a fixed marker, not a proof."""
    strategy = AttestationStrategy.ZK_KEYWORDS_MOCK
    mode = AttestationMode.MOCK

    async def attest(self, text: str, model_fingerprint: str = "") -> AttestationArtifacts:
        keywords = extract_keywords(text)
        journal = AttestationJournal(
            keywords=keywords,
            program_hash=digest_text(MOCK_PROGRAM_ID),
            input_hash=digest_text(text),
            output_hash=digest_keywords(keywords),
            model_fingerprint=model_fingerprint,
        )
        return AttestationArtifacts(
            journal=journal,
            journal_bytes=journal.to_json_bytes(),
            proof_bytes=MOCK_PROOF,
        )


class SubprocessAttestor(Attestor):
    """
    External host binary invoked as::

        <command> --input <file> --out <journal.json> --proof <proof.bin>

    Success is exit code 0 with both output files written. The process is
    killed if it outlives ``timeout``.
    """
    strategy = AttestationStrategy.ZK_KEYWORDS
    mode = AttestationMode.REAL

    def __init__(self, command: Union[str, Sequence[str]], timeout: float = 180.0):
        self.argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.argv:
            raise ValueError("attestation host command is empty")
        self.timeout = timeout

    async def attest(self, text: str, model_fingerprint: str = "") -> AttestationArtifacts:
        with tempfile.TemporaryDirectory(prefix="aiproof-zk-") as tmp:
            input_path = os.path.join(tmp, "input.txt")
            journal_path = os.path.join(tmp, "journal.json")
            proof_path = os.path.join(tmp, "proof.bin")
            with open(input_path, "w", encoding="utf-8", newline="") as f:
                f.write(text)

            try:
                proc = await asyncio.create_subprocess_exec(
                    *self.argv,
                    "--input", input_path,
                    "--out", journal_path,
                    "--proof", proof_path,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise AttestationFailed("spawn_failed", str(e)) from e

            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                proc.kill()
                await proc.wait()
                raise AttestationFailed("timeout", f"host exceeded {self.timeout}s") from e

            if proc.returncode != 0:
                tail = stderr.decode("utf-8", "replace").strip()[-200:]
                raise AttestationFailed("nonzero_exit", f"exit {proc.returncode}: {tail}")

            journal_bytes = _read_output(journal_path, "journal")
            proof_bytes = _read_output(proof_path, "proof")

        journal = parse_journal(journal_bytes)
        return AttestationArtifacts(journal=journal, journal_bytes=journal_bytes, proof_bytes=proof_bytes)


def _read_output(path: str, what: str) -> bytes:
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise AttestationFailed("missing_output", f"{what} not written") from e
    if not data:
        raise AttestationFailed("missing_output", f"{what} is empty")
    return data


class ProverResponse(BaseModel):
    ok: bool
    output: Optional[Any] = None
    receipt: Optional[str] = None
    error: Optional[str] = None


class HostedProverAttestor(Attestor):
    """
    Remote prover: ``POST {url}/prove`` with ``{image_id, input,
    model_fingerprint}``. Retries with exponential backoff capped at 30s.
    """
    strategy = AttestationStrategy.ZK_KEYWORDS
    mode = AttestationMode.REAL

    def __init__(self, url: str, image_id: str, timeout: float = 180.0, retries: int = 2,
                 session: Optional[requests.Session] = None):
        self.url = url.rstrip("/")
        self.image_id = image_id
        self.timeout = timeout
        self.retries = retries
        self._session = session or requests.Session()

    async def attest(self, text: str, model_fingerprint: str = "") -> AttestationArtifacts:
        return await asyncio.to_thread(self._prove, text, model_fingerprint)

    @staticmethod
    def backoff_delay(attempt: int) -> float:
        """Delay before retry ``attempt`` (1-based): 1s, 2s, 4s ... max 30s."""
        return min(2.0 ** (attempt - 1), 30.0)

    def _prove(self, text: str, model_fingerprint: str) -> AttestationArtifacts:
        last: Optional[AttestationFailed] = None
        for attempt in range(self.retries + 1):
            if attempt > 0:
                delay = self.backoff_delay(attempt)
                logger.info(
                    "retrying hosted prover",
                    extra={"extra_fields": {"attempt": attempt + 1, "delay_s": delay}},
                )
                time.sleep(delay)
            try:
                return self._prove_once(text, model_fingerprint)
            except AttestationFailed as e:
                logger.warning(
                    "hosted prover attempt failed",
                    extra={"extra_fields": {"attempt": attempt + 1, "code": e.code}},
                )
                last = e
        raise last

    def _prove_once(self, text: str, model_fingerprint: str) -> AttestationArtifacts:
        try:
            resp = self._session.post(
                f"{self.url}/prove",
                json={"image_id": self.image_id, "input": text, "model_fingerprint": model_fingerprint},
                headers={"User-Agent": "aiproof/1.0"},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise AttestationFailed("timeout", f"prover exceeded {self.timeout}s") from e
        except requests.RequestException as e:
            raise AttestationFailed("prover_unreachable", str(e)) from e
        if resp.status_code != 200:
            raise AttestationFailed("prover_error", f"HTTP {resp.status_code}")

        try:
            body = ProverResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise AttestationFailed("prover_error", "invalid response format") from e
        if not body.ok:
            raise AttestationFailed("prover_error", body.error or "prover reported failure")
        if body.output is None or not body.receipt:
            raise AttestationFailed("prover_error", "missing output or receipt")
        try:
            receipt = base64.b64decode(body.receipt, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AttestationFailed("prover_error", "receipt is not base64") from e

        output = body.output
        journal = parse_journal(output)
        if isinstance(output, str):
            journal_bytes = output.encode("utf-8")
        else:
            journal_bytes = ordered_json(output).encode("utf-8")
        if not journal.program_hash:
            journal = journal.model_copy(update={"program_hash": self.image_id})
            journal_bytes = journal.to_json_bytes()
        return AttestationArtifacts(journal=journal, journal_bytes=journal_bytes, proof_bytes=receipt)


class AttestationGenerator:
    """
    Runs the configured attestor and stores its artifacts.

    Never raises for attestation or storage problems; they are reported
    through ``AttestationOutcome.mode`` and ``warnings``.
    """

    def __init__(self, attestor: Optional[Attestor], store: ContentStore):
        self.attestor = attestor
        self.store = store

    @property
    def enabled(self) -> bool:
        return self.attestor is not None

    async def run(self, text: str, requested: bool, model_fingerprint: str = "") -> AttestationOutcome:
        if not requested:
            return AttestationOutcome(mode=AttestationMode.DISABLED)
        if self.attestor is None:
            return AttestationOutcome(mode=AttestationMode.DISABLED, warnings=["attestation_disabled"])

        try:
            artifacts = await self.attestor.attest(text, model_fingerprint)
        except AttestationFailed as e:
            logger.warning(
                "attestation failed, record will not bind keywords",
                extra={"extra_fields": {"code": e.code, "detail": e.detail}},
            )
            return AttestationOutcome(
                mode=AttestationMode.FAILED,
                warnings=["attestation_failed", f"attestation_failed:{e.code}"],
            )

        outcome = AttestationOutcome(
            mode=self.attestor.mode,
            strategy=self.attestor.strategy,
            journal=artifacts.journal,
        )
        journal_put, proof_put = await asyncio.gather(
            put_traced(self.store, artifacts.journal_bytes),
            put_traced(self.store, artifacts.proof_bytes),
            return_exceptions=True,
        )
        outcome.journal_cid = self._stored_cid(journal_put, "journal", outcome.warnings)
        outcome.proof_cid = self._stored_cid(proof_put, "proof", outcome.warnings)
        return outcome

    @staticmethod
    def _stored_cid(result: Any, what: str, warnings: List[str]) -> str:
        if isinstance(result, StoreError):
            logger.warning(
                "attestation artifact not stored",
                extra={"extra_fields": {"artifact": what, "reason": str(result)}},
            )
            warnings.append(f"{what}_store_failed")
            return ""
        if isinstance(result, BaseException):
            raise result
        warnings.extend(result.warnings())
        return result.cid
