"""
Wire models for provenance records, envelopes and attestation journals.

External JSON is parsed into these models as soon as it is received.
Python attributes are snake_case; the camelCase aliases are the wire and
typed-data names and must not change.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator

from .canonicalization import ordered_json
from .hashing import ZERO_HASH
from .typed_data import PRIMARY_TYPE, default_domain, type_schema

CURRENT_VERSION = 1


class AttestationStrategy:
    """Labels for ``ProvenanceRecord.attestation_strategy``."""
    NONE = "none"
    ZK_KEYWORDS_MOCK = "zk-keywords-mock"
    ZK_KEYWORDS = "zk-keywords"

    ALL = (NONE, ZK_KEYWORDS_MOCK, ZK_KEYWORDS)
    ZK_PREFIX = "zk"


class ProvenanceRecord(BaseModel):
    """
    The signed struct binding model, prompt, output and parameters.

    Field order matches the ``ContentProvenance`` typed-data schema.
    Defaults exist only so that incomplete records from untrusted input
    can still be parsed and reported on field by field.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, protected_namespaces=())

    version: int = 0
    model_id: str = Field("", alias="modelId")
    model_hash: str = Field("", alias="modelHash")
    prompt_hash: str = Field("", alias="promptHash")
    output_hash: str = Field("", alias="outputHash")
    params_hash: str = Field("", alias="paramsHash")
    content_cid: str = Field("", alias="contentCid")
    timestamp: int = 0
    attestation_strategy: str = Field(AttestationStrategy.NONE, alias="attestationStrategy")
    keywords_hash: str = Field(ZERO_HASH, alias="keywordsHash")
    program_hash: str = Field(ZERO_HASH, alias="programHash")
    journal_cid: str = Field("", alias="journalCid")
    proof_cid: str = Field("", alias="proofCid")

    @model_validator(mode="before")
    @classmethod
    def _nulls_to_defaults(cls, data: Any) -> Any:
        # a null on the wire is an empty field, reported by the verifier
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_message(self) -> Dict[str, Any]:
        """camelCase dict in schema order, the value that gets signed."""
        return self.model_dump(by_alias=True)


class SignedEnvelope(BaseModel):
    """
    A provenance record plus signature, claimed signer and signing schema.

    ``signer`` is an untrusted claim until recovered from ``signature``.
    ``prompt_cid`` sits outside the signed struct so a prompt can be
    withheld without invalidating the signature.
    """
    model_config = ConfigDict(populate_by_name=True)

    domain: Dict[str, Any] = Field(default_factory=default_domain)
    type_schema: Dict[str, Any] = Field(default_factory=type_schema, alias="types")
    primary_type: str = Field(PRIMARY_TYPE, alias="primaryType")
    provenance: ProvenanceRecord
    signature: Optional[str] = None
    signer: Optional[str] = None
    created_at: int = Field(0, alias="createdAt")
    prompt_cid: Optional[str] = Field(None, alias="promptCid")

    def to_json_bytes(self) -> bytes:
        return ordered_json(self.model_dump(by_alias=True, exclude_none=True)).encode("utf-8")


class Keyword(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    word: StrictStr
    count: StrictInt


class AttestationJournal(BaseModel):
    """
    Claimed facts emitted by the keyword attestation program.

    Both the guest's camelCase and the snake_case spellings of the hash
    fields are accepted. Unknown extra keys are kept as-is.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True, protected_namespaces=())

    keywords: List[Keyword]
    program_hash: str = Field(
        "",
        validation_alias=AliasChoices("programHash", "program_hash"),
        serialization_alias="programHash",
    )
    input_hash: str = Field("", validation_alias=AliasChoices("input_hash", "inputHash"))
    output_hash: str = Field("", validation_alias=AliasChoices("output_hash", "outputHash"))
    model_fingerprint: str = Field(
        "", validation_alias=AliasChoices("model_fingerprint", "modelFingerprint")
    )

    def to_json_bytes(self) -> bytes:
        return ordered_json(self.model_dump(by_alias=True)).encode("utf-8")
