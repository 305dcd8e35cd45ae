"""
AIProof Provenance Builder

Assembles one ProvenanceRecord from generated output, the prompt, the
generation parameters, a storage reference for the output and the
optional attestation outcome.

Provider and attestation failures never abort construction. The record
is still produced and labeled through ``modelId`` and
``attestationStrategy``; the warnings list says which fallback fired.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .attestation import AttestationGenerator, AttestationOutcome
from .hashing import ZERO_HASH, digest_params, digest_text, merge_params
from .models import CURRENT_VERSION, AttestationStrategy, ProvenanceRecord
from .providers import ProviderError, ProviderOutput, ProviderRegistry
from .store import ContentStore, StoreError, put_traced
from .typed_data import PRIMARY_TYPE, default_domain, type_schema

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def assemble_record(
    *,
    prompt: str,
    output: str,
    params: Optional[Mapping[str, Any]],
    content_cid: str,
    model_id: str,
    model_hash: str = "",
    attestation: Optional[AttestationOutcome] = None,
    timestamp: Optional[int] = None,
) -> ProvenanceRecord:
    """
    Build the signable record from finalized inputs.

    Pure apart from the default timestamp. An attestation that did not
    bind (not requested or failed) leaves strategy ``none`` and both
    attestation hashes at the sentinel.
    """
    if attestation is not None and attestation.bound:
        strategy = attestation.strategy
        keywords_hash = attestation.keywords_hash
        program_hash = attestation.program_hash
        journal_cid = attestation.journal_cid
        proof_cid = attestation.proof_cid
    else:
        strategy = AttestationStrategy.NONE
        keywords_hash = program_hash = ZERO_HASH
        journal_cid = proof_cid = ""

    return ProvenanceRecord(
        version=CURRENT_VERSION,
        model_id=model_id,
        model_hash=model_hash,
        prompt_hash=digest_text(prompt),
        output_hash=digest_text(output),
        params_hash=digest_params(params),
        content_cid=content_cid,
        timestamp=now_ms() if timestamp is None else timestamp,
        attestation_strategy=strategy,
        keywords_hash=keywords_hash,
        program_hash=program_hash,
        journal_cid=journal_cid,
        proof_cid=proof_cid,
    )


@dataclass
class BuildResult:
    record: ProvenanceRecord
    provider_output: ProviderOutput
    attestation: AttestationOutcome
    prompt_cid: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    domain: Dict[str, Any] = field(default_factory=default_domain)

    def to_unsigned_response(self) -> Dict[str, Any]:
        """Everything an external wallet needs to sign, plus diagnostics."""
        return {
            "provenance": self.record.to_message(),
            "domain": dict(self.domain),
            "types": type_schema(),
            "primaryType": PRIMARY_TYPE,
            "providerOutput": self.provider_output.to_dict(),
            "promptCid": self.prompt_cid,
            "zk": self.attestation.to_dict(),
            "warnings": list(self.warnings),
        }


class ProvenanceBuilder:
    def __init__(
        self,
        store: ContentStore,
        providers: ProviderRegistry,
        attestation: AttestationGenerator,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.providers = providers
        self.attestation = attestation
        self.clock = clock

    async def build(
        self,
        text: str,
        prompt: Optional[str] = None,
        provider: str = "mock",
        model: Optional[str] = None,
        use_attestation: bool = False,
        params: Optional[Mapping[str, Any]] = None,
    ) -> BuildResult:
        """
        Generate output for ``text`` and assemble its provenance record.

        ``prompt`` defaults to ``text``. The prompt and output are hashed
        only after generation has fully completed.

        Raises:
            StoreError: the output itself could not be stored anywhere
        """
        warnings: List[str] = []
        merged = merge_params(params)
        prompt_text = text if prompt is None else prompt

        generated = await self._generate(text, provider, model, merged, warnings)
        output = generated.summary

        content_put, prompt_put, outcome = await asyncio.gather(
            put_traced(self.store, output.encode("utf-8")),
            put_traced(self.store, prompt_text.encode("utf-8")),
            self.attestation.run(output, use_attestation, model_fingerprint=generated.model_hash),
            return_exceptions=True,
        )
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(content_put, BaseException):
            raise content_put
        warnings.extend(content_put.warnings())

        prompt_cid: Optional[str] = None
        if isinstance(prompt_put, StoreError):
            logger.warning("prompt not stored", extra={"extra_fields": {"reason": str(prompt_put)}})
            warnings.append("prompt_store_failed")
        elif isinstance(prompt_put, BaseException):
            raise prompt_put
        else:
            prompt_cid = prompt_put.cid
            warnings.extend(prompt_put.warnings())

        warnings.extend(outcome.warnings)

        record = assemble_record(
            prompt=prompt_text,
            output=output,
            params=merged,
            content_cid=content_put.cid,
            model_id=generated.model_id,
            model_hash=generated.model_hash,
            attestation=outcome,
            timestamp=self.clock(),
        )
        logger.info(
            "provenance constructed",
            extra={"extra_fields": {
                "model_id": record.model_id,
                "output_hash": record.output_hash,
                "strategy": record.attestation_strategy,
            }},
        )
        return BuildResult(
            record=record,
            provider_output=generated,
            attestation=outcome,
            prompt_cid=prompt_cid,
            warnings=_dedupe(warnings),
        )

    async def _generate(self, text: str, provider: str, model: Optional[str],
                        params: Dict[str, Any], warnings: List[str]) -> ProviderOutput:
        impl = self.providers.get(provider)
        if impl is None:
            logger.warning("provider not configured", extra={"extra_fields": {"provider": provider}})
            warnings.append(f"provider_fallback:{provider}")
            return await self.providers.mock.generate(text)
        try:
            return await impl.generate(text, model, params)
        except ProviderError as e:
            logger.warning(
                "provider failed, using mock output",
                extra={"extra_fields": {"provider": provider, "reason": str(e)}},
            )
            warnings.append(f"provider_fallback:{provider}")
            return await self.providers.mock.generate(text)


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))
