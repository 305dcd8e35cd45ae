from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SummarizeRequest(ApiModel):
    text: str = Field(min_length=1)
    prompt: Optional[str] = None
    provider: str = "mock"
    model: Optional[str] = None
    use_zk: bool = Field(default=False, alias="useZk")
    params: Dict[str, Any] = Field(default_factory=dict)


class PublishRequest(ApiModel):
    provenance: Optional[Dict[str, Any]] = None
    signature: Optional[str] = None
    signer: Optional[str] = None
    prompt_cid: Optional[str] = Field(default=None, alias="promptCid")


class VerifyProvenanceRequest(ApiModel):
    signed_provenance_cid: str = Field(min_length=1, alias="signedProvenanceCid")
    prompt: Optional[str] = None
    journal_cid: Optional[str] = Field(default=None, alias="journalCid")
    proof_cid: Optional[str] = Field(default=None, alias="proofCid")
    expect_keywords: bool = Field(default=False, alias="expectKeywords")
    include_content: bool = Field(default=False, alias="includeContent")


class VerifyContentRequest(ApiModel):
    content: str = Field(min_length=1)
    prompt: Optional[str] = None
