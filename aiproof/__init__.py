"""
AIProof Provenance Library

Version: 1.0.0

Verifiable provenance for AI-generated content.

A provenance record binds generated text to the model that produced it,
the prompt, the generation parameters and, optionally, an attestation of
a deterministic keyword extraction over the output. The record is signed
as EIP-712 typed data and published as a single content-addressed
envelope. Anyone holding the envelope cid can recompute every bound hash
and recover the signer.

Verification never collapses to a single boolean: hard failures are
issues, reduced assurance is warnings, and ``ok`` means "no issues".

Usage:
    from aiproof import (
        MemoryContentStore,
        ProviderRegistry,
        AttestationGenerator,
        MockAttestor,
        ProvenanceBuilder,
        EnvelopePublisher,
        ProvenanceVerifier,
        sign_record,
    )

    store = MemoryContentStore()
    builder = ProvenanceBuilder(
        store, ProviderRegistry(), AttestationGenerator(MockAttestor(), store)
    )

    built = await builder.build("Long article text ...", use_attestation=True)
    signature, address = sign_record(built.record, private_key)

    published = await EnvelopePublisher(store).publish(
        built.record.to_message(), signature, address, built.prompt_cid
    )

    report = await ProvenanceVerifier(store).verify(
        published.signed_provenance_cid,
        prompt="Long article text ...",
        include_content=True,
    )
    if not report.ok:
        print(report.issues)
"""

__version__ = "1.0.0"

# Canonicalization and hashing
from .canonicalization import canonicalize, canonicalize_str, ordered_json
from .hashing import (
    ZERO_HASH,
    PROGRAM_HASH_PLACEHOLDER,
    digest_bytes,
    digest_text,
    digest_params,
    digest_keywords,
    digest_model_config,
    to_fixed_width,
    is_zero_hash,
)

# Wire models and typed data
from .models import (
    ProvenanceRecord,
    SignedEnvelope,
    AttestationJournal,
    AttestationStrategy,
    Keyword,
)
from .typed_data import DOMAIN, PRIMARY_TYPE, type_schema, signing_payload

# Signing
from .signing import (
    UNSIGNED,
    SignatureError,
    sign_record,
    recover_signer,
    generate_signing_key,
)

# Content store
from .store import (
    ContentStore,
    MemoryContentStore,
    IpfsContentStore,
    S3ContentStore,
    FallbackContentStore,
    StoreError,
    compute_cid,
)

# Providers
from .providers import ProviderRegistry, ProviderOutput, ProviderError

# Attestation
from .attestation import (
    AttestationGenerator,
    AttestationMode,
    AttestationOutcome,
    AttestationFailed,
    MockAttestor,
    SubprocessAttestor,
    HostedProverAttestor,
)

# Builder, envelope, verifier
from .builder import ProvenanceBuilder, BuildResult, assemble_record
from .envelope import (
    EnvelopePublisher,
    PublishResult,
    PublishRejected,
    EnvelopeUnavailable,
    InvalidEnvelope,
    load_envelope,
    parse_envelope,
)
from .verifier import (
    ProvenanceVerifier,
    VerificationReport,
    ContentVerification,
    IssueCode,
    WarningCode,
)
from .index import DiscoveryIndex, InMemoryDiscoveryIndex, SqliteDiscoveryIndex


__all__ = [
    "__version__",

    # Canonicalization
    "canonicalize",
    "canonicalize_str",
    "ordered_json",

    # Hashing
    "ZERO_HASH",
    "PROGRAM_HASH_PLACEHOLDER",
    "digest_bytes",
    "digest_text",
    "digest_params",
    "digest_keywords",
    "digest_model_config",
    "to_fixed_width",
    "is_zero_hash",

    # Models
    "ProvenanceRecord",
    "SignedEnvelope",
    "AttestationJournal",
    "AttestationStrategy",
    "Keyword",
    "DOMAIN",
    "PRIMARY_TYPE",
    "type_schema",
    "signing_payload",

    # Signing
    "UNSIGNED",
    "SignatureError",
    "sign_record",
    "recover_signer",
    "generate_signing_key",

    # Store
    "ContentStore",
    "MemoryContentStore",
    "IpfsContentStore",
    "S3ContentStore",
    "FallbackContentStore",
    "StoreError",
    "compute_cid",

    # Providers
    "ProviderRegistry",
    "ProviderOutput",
    "ProviderError",

    # Attestation
    "AttestationGenerator",
    "AttestationMode",
    "AttestationOutcome",
    "AttestationFailed",
    "MockAttestor",
    "SubprocessAttestor",
    "HostedProverAttestor",

    # Builder / envelope
    "ProvenanceBuilder",
    "BuildResult",
    "assemble_record",
    "EnvelopePublisher",
    "PublishResult",
    "PublishRejected",
    "EnvelopeUnavailable",
    "InvalidEnvelope",
    "load_envelope",
    "parse_envelope",

    # Verifier
    "ProvenanceVerifier",
    "VerificationReport",
    "ContentVerification",
    "IssueCode",
    "WarningCode",

    # Index
    "DiscoveryIndex",
    "InMemoryDiscoveryIndex",
    "SqliteDiscoveryIndex",
]
