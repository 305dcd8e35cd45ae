"""
Provider and provenance builder tests.
"""

import unittest

import requests

from aiproof import ZERO_HASH, digest_keywords, digest_params, digest_text
from aiproof.attestation import AttestationGenerator, AttestationMode, MockAttestor
from aiproof.builder import ProvenanceBuilder, assemble_record
from aiproof.hashing import digest_model_config
from aiproof.keywords import extract_keywords
from aiproof.models import AttestationStrategy
from aiproof.providers import (
    AnthropicProvider,
    OpenAIProvider,
    ProviderError,
    ProviderRegistry,
)
from aiproof.store import ContentStore, FallbackContentStore, MemoryContentStore, StoreError
from aiproof.typed_data import PRIMARY_TYPE, type_schema

TEXT = "The data pipeline moves data. A data stream feeds the pipeline."
MOCK_SUMMARY = "Key topics: data, pipeline, moves, stream, feeds"


class BrokenStore(ContentStore):
    name = "broken"

    async def put(self, data):
        raise StoreError("unavailable", backend=self.name)

    async def get(self, cid):
        raise StoreError("unavailable", backend=self.name)


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def openai_reply(content):
    return FakeResponse(200, {"choices": [{"message": {"content": content}}]})


def fixed_clock():
    return 1700000000000


class TestProviders(unittest.IsolatedAsyncioTestCase):

    async def test_mock_is_deterministic(self):
        mock = ProviderRegistry().mock
        a = await mock.generate(TEXT)
        b = await mock.generate(TEXT, model="ignored", params={"temperature": 1})
        self.assertEqual(a.summary, MOCK_SUMMARY)
        self.assertEqual(a, b)
        self.assertEqual(a.model_id, "mock-local")
        self.assertEqual(a.model_hash, digest_model_config("mock-local", {}))

    async def test_openai_request_and_output(self):
        session = FakeSession(openai_reply("  A short summary.  "))
        provider = OpenAIProvider(api_key="sk-test", timeout=5, session=session)
        out = await provider.generate(TEXT, params={"temperature": 0, "top_p": 1, "unrelated": True})
        self.assertEqual(out.summary, "A short summary.")
        self.assertEqual(out.model_id, "openai:gpt-4o-mini")
        self.assertEqual(out.model_config, {"model": "gpt-4o-mini", "params": {"temperature": 0, "top_p": 1}})
        sent = session.requests[0]
        self.assertEqual(sent["headers"]["Authorization"], "Bearer sk-test")
        self.assertEqual(sent["timeout"], 5)
        self.assertNotIn("unrelated", sent["json"])

    async def test_anthropic_default_max_tokens(self):
        session = FakeSession(FakeResponse(200, {"content": [{"text": "Summary."}]}))
        out = await AnthropicProvider(api_key="k", session=session).generate(TEXT, model="claude-x")
        self.assertEqual(out.model_id, "anthropic:claude-x")
        self.assertEqual(out.params["max_tokens"], 400)
        self.assertEqual(session.requests[0]["headers"]["anthropic-version"], "2023-06-01")

    async def test_provider_failures(self):
        cases = [
            FakeSession(error=requests.Timeout("slow")),
            FakeSession(error=requests.ConnectionError("down")),
            FakeSession(FakeResponse(500, {})),
            FakeSession(FakeResponse(200, {"choices": []})),
            FakeSession(openai_reply("   ")),
        ]
        for session in cases:
            with self.assertRaises(ProviderError):
                await OpenAIProvider(api_key="k", session=session).generate(TEXT)

    def test_registry_only_configured(self):
        registry = ProviderRegistry.from_credentials(openai_key="k", together_key="")
        self.assertEqual(registry.active(), ["mock", "openai"])
        self.assertIsNone(registry.get("together"))
        self.assertIsNotNone(registry.get("openai"))


class TestAssembleRecord(unittest.TestCase):

    def test_without_attestation(self):
        record = assemble_record(
            prompt="p", output="o", params={}, content_cid="bafy", model_id="mock-local", timestamp=5,
        )
        self.assertEqual(record.version, 1)
        self.assertEqual(record.prompt_hash, digest_text("p"))
        self.assertEqual(record.output_hash, digest_text("o"))
        self.assertEqual(record.params_hash, digest_params({}))
        self.assertEqual(record.attestation_strategy, AttestationStrategy.NONE)
        self.assertEqual(record.keywords_hash, ZERO_HASH)
        self.assertEqual(record.program_hash, ZERO_HASH)
        self.assertEqual((record.journal_cid, record.proof_cid), ("", ""))
        self.assertEqual(list(record.to_message().keys()), [f["name"] for f in type_schema()[PRIMARY_TYPE]])


class TestProvenanceBuilder(unittest.IsolatedAsyncioTestCase):

    def builder(self, store=None, providers=None, attestor=None):
        store = store if store is not None else MemoryContentStore()
        return ProvenanceBuilder(
            store,
            providers or ProviderRegistry(),
            AttestationGenerator(attestor, store),
            clock=fixed_clock,
        )

    async def test_basic_record(self):
        store = MemoryContentStore()
        built = await self.builder(store).build(TEXT)
        record = built.record
        self.assertEqual(built.provider_output.summary, MOCK_SUMMARY)
        self.assertEqual(record.prompt_hash, digest_text(TEXT))
        self.assertEqual(record.output_hash, digest_text(MOCK_SUMMARY))
        self.assertEqual(record.params_hash,
                         "0xbb1d14fa2894535f7246d004118088cfa74a05aec759b5a0a38d03ff95ad1edf")
        self.assertEqual(record.model_id, "mock-local")
        self.assertEqual(record.model_hash, built.provider_output.model_hash)
        self.assertEqual(record.timestamp, 1700000000000)
        self.assertEqual(record.attestation_strategy, "none")
        self.assertEqual(await store.get(record.content_cid), MOCK_SUMMARY.encode("utf-8"))
        self.assertEqual(await store.get(built.prompt_cid), TEXT.encode("utf-8"))
        self.assertEqual(built.warnings, [])

    async def test_explicit_prompt(self):
        built = await self.builder().build(TEXT, prompt="Summarize this.")
        self.assertEqual(built.record.prompt_hash, digest_text("Summarize this."))

    async def test_params_bound(self):
        built = await self.builder().build(TEXT, params={"temperature": 0.3, "max_tokens": 400})
        self.assertEqual(built.record.params_hash,
                         "0x96330be81fc0d52853ced3d0e167e2a6ce54da871e770647dd7cd8f57f5abb34")

    async def test_attestation_over_output(self):
        built = await self.builder(attestor=MockAttestor()).build(TEXT, use_attestation=True)
        record = built.record
        self.assertEqual(record.attestation_strategy, AttestationStrategy.ZK_KEYWORDS_MOCK)
        self.assertEqual(record.keywords_hash, digest_keywords(extract_keywords(MOCK_SUMMARY)))
        self.assertEqual(record.program_hash,
                         "0x0357ac6374fed1437ff6385e54b3aea66773a813e18e5c34465db4d27d78e007")
        self.assertTrue(record.journal_cid)
        self.assertTrue(record.proof_cid)
        self.assertEqual(built.attestation.mode, AttestationMode.MOCK)

    async def test_attestation_requested_but_disabled(self):
        built = await self.builder().build(TEXT, use_attestation=True)
        self.assertEqual(built.record.attestation_strategy, "none")
        self.assertEqual(built.warnings, ["attestation_disabled"])

    async def test_unconfigured_provider_falls_back(self):
        built = await self.builder().build(TEXT, provider="openai")
        self.assertEqual(built.record.model_id, "mock-local")
        self.assertEqual(built.warnings, ["provider_fallback:openai"])

    async def test_failing_provider_falls_back(self):
        session = FakeSession(FakeResponse(429, {}))
        providers = ProviderRegistry({"openai": OpenAIProvider(api_key="k", session=session)})
        built = await self.builder(providers=providers).build(TEXT, provider="openai")
        self.assertEqual(built.record.output_hash, digest_text(MOCK_SUMMARY))
        self.assertEqual(built.warnings, ["provider_fallback:openai"])

    async def test_remote_provider_output_bound(self):
        session = FakeSession(openai_reply("Pipelines move data."))
        providers = ProviderRegistry({"openai": OpenAIProvider(api_key="k", session=session)})
        built = await self.builder(providers=providers).build(TEXT, provider="openai", model="gpt-4o")
        self.assertEqual(built.record.model_id, "openai:gpt-4o")
        self.assertEqual(built.record.output_hash, digest_text("Pipelines move data."))
        self.assertEqual(built.record.model_hash, digest_model_config("gpt-4o", {"temperature": 0, "top_p": 1}))

    async def test_storage_fallback_warning(self):
        store = FallbackContentStore([BrokenStore(), MemoryContentStore()])
        built = await self.builder(store).build(TEXT)
        self.assertEqual(built.warnings, ["storage_fallback:memory"])

    async def test_content_store_failure_propagates(self):
        with self.assertRaises(StoreError):
            await self.builder(BrokenStore()).build(TEXT)

    async def test_unsigned_response_shape(self):
        built = await self.builder(attestor=MockAttestor()).build(TEXT, use_attestation=True)
        response = built.to_unsigned_response()
        self.assertEqual(response["primaryType"], "ContentProvenance")
        self.assertEqual(response["types"], type_schema())
        self.assertEqual(response["domain"]["name"], "AIProof")
        self.assertEqual(response["zk"]["mode"], "mock")
        self.assertEqual(response["providerOutput"]["summary"], MOCK_SUMMARY)
        self.assertEqual(response["provenance"]["journalCid"], response["zk"]["journalCid"])


if __name__ == "__main__":
    unittest.main()
