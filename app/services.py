"""
Service wiring: turns a ``Settings`` snapshot into the store, index,
providers, attestor, builder, publisher and verifier used by the API.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from aiproof.attestation import (
    AttestationGenerator,
    Attestor,
    HostedProverAttestor,
    MockAttestor,
    SubprocessAttestor,
)
from aiproof.builder import ProvenanceBuilder
from aiproof.envelope import EnvelopePublisher
from aiproof.index import DiscoveryIndex, InMemoryDiscoveryIndex, SqliteDiscoveryIndex
from aiproof.providers import ProviderRegistry
from aiproof.store import (
    ContentStore,
    FallbackContentStore,
    IpfsContentStore,
    MemoryContentStore,
    S3ContentStore,
)
from aiproof.verifier import ProvenanceVerifier

from .config import Settings, config_problems
from .keys import KeyProvider, get_key_provider

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: ContentStore
    index: DiscoveryIndex
    providers: ProviderRegistry
    attestation: AttestationGenerator
    builder: ProvenanceBuilder
    publisher: EnvelopePublisher
    verifier: ProvenanceVerifier
    keys: Optional[KeyProvider] = None

    def close(self) -> None:
        if isinstance(self.index, SqliteDiscoveryIndex):
            self.index.close()


def build_store(settings: Settings) -> ContentStore:
    """Configured backend chained in front of a process-local fallback."""
    if settings.store_backend == "memory":
        return FallbackContentStore([MemoryContentStore()], timeout=settings.store_timeout_seconds)
    if settings.store_backend == "ipfs":
        primary: ContentStore = IpfsContentStore(
            settings.ipfs_api_url,
            gateways=settings.ipfs_gateways,
            timeout=settings.store_timeout_seconds,
        )
    elif settings.store_backend == "s3":
        primary = S3ContentStore(settings.s3_bucket, prefix=settings.s3_prefix, region=settings.aws_region)
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend}")
    return FallbackContentStore([primary, MemoryContentStore()], timeout=settings.store_timeout_seconds)


def build_index(settings: Settings) -> DiscoveryIndex:
    if settings.index_backend == "sqlite":
        return SqliteDiscoveryIndex(settings.index_db_path)
    return InMemoryDiscoveryIndex()


def build_attestor(settings: Settings) -> Optional[Attestor]:
    if settings.zk_mode == "disabled":
        return None
    if settings.zk_mode == "mock":
        return MockAttestor()
    if settings.zk_mode == "subprocess":
        return SubprocessAttestor(settings.zk_host_bin, timeout=settings.zk_timeout_seconds)
    if settings.zk_mode == "hosted":
        return HostedProverAttestor(
            settings.prover_url,
            settings.prover_image_id,
            timeout=settings.prover_timeout_seconds,
            retries=settings.prover_retries,
        )
    raise ValueError(f"Unknown ZK mode: {settings.zk_mode}")


def build_services(settings: Settings) -> Services:
    """
    Wire every component from settings.

    Raises:
        ValueError: settings cannot be wired (unknown backend, missing bucket, ...)
    """
    problems = config_problems(settings)
    if problems:
        raise ValueError("; ".join(problems))

    store = build_store(settings)
    index = build_index(settings)
    providers = ProviderRegistry.from_credentials(
        ollama_url=settings.ollama_api_url,
        openai_key=settings.openai_api_key,
        anthropic_key=settings.anthropic_api_key,
        together_key=settings.together_api_key,
        timeout=settings.provider_timeout_seconds,
    )
    attestation = AttestationGenerator(build_attestor(settings), store)
    keys = get_key_provider(settings.signer_type, settings.signing_key_path)

    logger.info(
        "services wired",
        extra={"extra_fields": {
            "store": settings.store_backend,
            "index": settings.index_backend,
            "zk_mode": settings.zk_mode,
            "providers": providers.active(),
            "server_signer": keys.get_address() if keys else None,
        }},
    )
    return Services(
        settings=settings,
        store=store,
        index=index,
        providers=providers,
        attestation=attestation,
        builder=ProvenanceBuilder(store, providers, attestation),
        publisher=EnvelopePublisher(
            store,
            index=index,
            server_signer=keys.sign_provenance if keys else None,
        ),
        verifier=ProvenanceVerifier(store, index=index, fetch_timeout=settings.store_timeout_seconds),
        keys=keys,
    )
