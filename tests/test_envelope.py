"""
Signing and envelope publishing tests.
"""

import json
import unittest

from aiproof import ZERO_HASH, digest_text
from aiproof.builder import assemble_record
from aiproof.envelope import (
    EnvelopePublisher,
    EnvelopeUnavailable,
    InvalidEnvelope,
    PublishRejected,
    load_envelope,
    parse_envelope,
    validate_for_publish,
)
from aiproof.index import InMemoryDiscoveryIndex
from aiproof.signing import (
    UNSIGNED,
    SignatureError,
    addresses_equal,
    generate_signing_key,
    recover_signer,
    sign_record,
)
from aiproof.store import MemoryContentStore, compute_cid
from aiproof.typed_data import DOMAIN, signing_payload, type_schema

PRIVATE_KEY, ADDRESS = generate_signing_key()


def make_record(**overrides):
    record = assemble_record(
        prompt="Write a haiku about testing.",
        output="Bugs hide in silence / Tests reveal the hidden truth / Code sings, clean and clear",
        params={},
        content_cid=compute_cid(b"content"),
        model_id="mock-local",
        timestamp=1700000000000,
    )
    return record.model_copy(update=overrides) if overrides else record


class ExplodingIndex(InMemoryDiscoveryIndex):
    def record(self, output_hash, provenance_cid):
        raise RuntimeError("database is locked")


class TestSigning(unittest.TestCase):

    def test_sign_and_recover(self):
        record = make_record()
        signature, signer = sign_record(record, PRIVATE_KEY)
        self.assertTrue(signature.startswith("0x"))
        self.assertEqual(len(signature), 2 + 130)
        self.assertEqual(signer, ADDRESS)
        self.assertTrue(addresses_equal(recover_signer(record, signature), ADDRESS))

    def test_message_dict_equivalent(self):
        record = make_record()
        signature, _ = sign_record(record, PRIVATE_KEY)
        self.assertEqual(recover_signer(record.to_message(), signature), ADDRESS)

    def test_any_field_change_changes_signer(self):
        record = make_record()
        signature, _ = sign_record(record, PRIVATE_KEY)
        tampered = make_record(output_hash=digest_text("something else"))
        self.assertNotEqual(recover_signer(tampered, signature), ADDRESS)

    def test_domain_is_bound(self):
        record = make_record()
        signature, _ = sign_record(record, PRIVATE_KEY)
        other_chain = dict(DOMAIN, chainId=5)
        self.assertNotEqual(recover_signer(record, signature, other_chain), ADDRESS)

    def test_unsigned_and_malformed(self):
        record = make_record()
        for bad in ("", UNSIGNED, None):
            with self.assertRaises(SignatureError):
                recover_signer(record, bad)
        with self.assertRaises(SignatureError):
            recover_signer(record, "0x1234")

    def test_address_comparison(self):
        self.assertTrue(addresses_equal(ADDRESS.lower(), ADDRESS))
        self.assertFalse(addresses_equal(ADDRESS, ""))

    def test_wallet_payload(self):
        payload = signing_payload(make_record().to_message())
        self.assertEqual(payload["primaryType"], "ContentProvenance")
        self.assertEqual([f["name"] for f in payload["types"]["EIP712Domain"]],
                         ["name", "version", "chainId", "verifyingContract"])


class TestValidateForPublish(unittest.TestCase):

    def test_rejections(self):
        good = make_record().to_message()
        cases = [
            (None, "Missing provenance"),
            ("text", "Missing provenance"),
            (dict(good, version=2), "Unsupported version"),
            (dict(good, version=True), "Unsupported version"),
            (dict(good, modelId=""), "Missing field modelId"),
            ({k: v for k, v in good.items() if k != "contentCid"}, "Missing field contentCid"),
            (dict(good, timestamp="yesterday"), "Malformed provenance"),
        ]
        for provenance, reason in cases:
            with self.assertRaises(PublishRejected) as ctx:
                validate_for_publish(provenance)
            self.assertTrue(str(ctx.exception).startswith(reason), (provenance, str(ctx.exception)))

    def test_accepts_good_record(self):
        record = validate_for_publish(make_record().to_message())
        self.assertEqual(record, make_record())


class TestEnvelopePublisher(unittest.IsolatedAsyncioTestCase):

    async def test_publish_signed(self):
        store = MemoryContentStore()
        index = InMemoryDiscoveryIndex()
        record = make_record()
        signature, signer = sign_record(record, PRIVATE_KEY)
        result = await EnvelopePublisher(store, index, clock=lambda: 42).publish(
            record.to_message(), signature, signer, prompt_cid="bafyprompt"
        )
        self.assertEqual(result.warnings, [])
        self.assertEqual(index.lookup(record.output_hash), [result.signed_provenance_cid])

        raw = await store.get(result.signed_provenance_cid)
        self.assertEqual(result.signed_provenance_cid, compute_cid(raw))
        data = json.loads(raw)
        self.assertEqual(list(data.keys()),
                         ["domain", "types", "primaryType", "provenance", "signature", "signer",
                          "createdAt", "promptCid"])
        self.assertEqual(data["types"], type_schema())
        self.assertEqual(data["signer"], ADDRESS)
        self.assertEqual(data["createdAt"], 42)

        self.assertEqual(result.to_dict(), {
            "signedProvenanceCid": result.signed_provenance_cid,
            "proofCid": None,
            "journalCid": None,
            "warnings": [],
        })

    async def test_unsigned_marker(self):
        store = MemoryContentStore()
        result = await EnvelopePublisher(store).publish(make_record().to_message())
        self.assertEqual(result.warnings, ["unsigned_envelope"])
        self.assertEqual(result.envelope.signature, UNSIGNED)
        envelope = await load_envelope(store, result.signed_provenance_cid)
        self.assertEqual(envelope.signature, UNSIGNED)
        self.assertNotIn("promptCid", json.loads(await store.get(result.signed_provenance_cid)))

    async def test_explicit_unsigned(self):
        result = await EnvelopePublisher(MemoryContentStore()).publish(make_record().to_message(), UNSIGNED)
        self.assertEqual(result.warnings, ["unsigned_envelope"])

    async def test_server_signer(self):
        publisher = EnvelopePublisher(
            MemoryContentStore(), server_signer=lambda record: sign_record(record, PRIVATE_KEY)
        )
        result = await publisher.publish(make_record().to_message())
        self.assertEqual(result.warnings, ["server_signed"])
        self.assertEqual(result.envelope.signer, ADDRESS)
        self.assertEqual(recover_signer(result.envelope.provenance, result.envelope.signature), ADDRESS)

    async def test_signature_without_signer_rejected(self):
        record = make_record()
        signature, _ = sign_record(record, PRIVATE_KEY)
        with self.assertRaises(PublishRejected) as ctx:
            await EnvelopePublisher(MemoryContentStore()).publish(record.to_message(), signature)
        self.assertEqual(str(ctx.exception), "Missing signer")

    async def test_publish_does_not_check_signature(self):
        result = await EnvelopePublisher(MemoryContentStore()).publish(
            make_record().to_message(), "0xdeadbeef", ADDRESS
        )
        self.assertEqual(result.envelope.signature, "0xdeadbeef")

    async def test_index_failure_is_a_warning(self):
        record = make_record()
        signature, signer = sign_record(record, PRIVATE_KEY)
        result = await EnvelopePublisher(MemoryContentStore(), ExplodingIndex()).publish(
            record.to_message(), signature, signer
        )
        self.assertEqual(result.warnings, ["index_update_failed"])
        self.assertTrue(result.signed_provenance_cid)

    async def test_attestation_cids_reported(self):
        record = make_record(
            attestation_strategy="zk-keywords-mock",
            keywords_hash=digest_text("k"),
            program_hash=digest_text("mock_program_v1"),
            journal_cid="bafyjournal",
            proof_cid="bafyproof",
        )
        result = await EnvelopePublisher(MemoryContentStore()).publish(record.to_message(), UNSIGNED)
        self.assertEqual(result.proof_cid, "bafyproof")
        self.assertEqual(result.journal_cid, "bafyjournal")


class TestLoadEnvelope(unittest.IsolatedAsyncioTestCase):

    async def test_unavailable(self):
        with self.assertRaises(EnvelopeUnavailable):
            await load_envelope(MemoryContentStore(), compute_cid(b"missing"))

    async def test_not_an_envelope(self):
        store = MemoryContentStore()
        for blob in (b"plain text", b'{"hello": "world"}', b'{"provenance": "x"}'):
            cid = await store.put(blob)
            with self.assertRaises(InvalidEnvelope):
                await load_envelope(store, cid)

    def test_parse_dict(self):
        envelope = parse_envelope({"provenance": make_record().to_message()})
        self.assertEqual(envelope.provenance.keywords_hash, ZERO_HASH)
        self.assertIsNone(envelope.signature)


if __name__ == "__main__":
    unittest.main()
