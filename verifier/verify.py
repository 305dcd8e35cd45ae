"""Offline provenance verifier.

Verifies a signed envelope against local copies of the artifacts it
references. No network or content store is needed: every file supplied is
served under the cid the envelope declares for it, so a tampered file shows
up as a hash mismatch rather than a missing blob.

Usage:
    python verifier/verify.py envelope.json --content output.txt --prompt prompt.txt
"""
import argparse, asyncio, sys
from pathlib import Path

from aiproof.envelope import InvalidEnvelope, parse_envelope
from aiproof.store import MemoryContentStore
from aiproof.verifier import ProvenanceVerifier


def read_bytes(path: str) -> bytes:
    return Path(path).read_bytes()


def build_store(envelope, args) -> MemoryContentStore:
    prov = envelope.provenance
    blobs = {}
    if args.content and prov.content_cid:
        blobs[prov.content_cid] = read_bytes(args.content)
    if args.prompt and envelope.prompt_cid:
        blobs[envelope.prompt_cid] = read_bytes(args.prompt)
    if args.journal and prov.journal_cid:
        blobs[prov.journal_cid] = read_bytes(args.journal)
    if args.proof and prov.proof_cid:
        blobs[prov.proof_cid] = read_bytes(args.proof)
    return MemoryContentStore(blobs)


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Verify an AIProof envelope offline.")
    ap.add_argument("envelope", help="signed envelope JSON")
    ap.add_argument("--content", help="generated output text")
    ap.add_argument("--prompt", help="original prompt text")
    ap.add_argument("--journal", help="attestation journal JSON")
    ap.add_argument("--proof", help="attestation proof bytes")
    ap.add_argument("--expect-keywords", action="store_true",
                    help="require a bound keywords hash")
    args = ap.parse_args(argv)

    try:
        envelope = parse_envelope(read_bytes(args.envelope))
        store = build_store(envelope, args)
        prompt = read_bytes(args.prompt).decode("utf-8") if args.prompt else None
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        raise SystemExit(2)
    except InvalidEnvelope as e:
        print(f"INVALID: {e}")
        return 1

    deep = bool(args.content or args.journal or args.proof)
    report = asyncio.run(ProvenanceVerifier(store, fetch_timeout=None).verify_envelope(
        envelope,
        prompt=prompt,
        expect_keywords=args.expect_keywords,
        include_content=deep,
    ))

    if report.ok:
        print("VALID")
    else:
        print("INVALID: " + ", ".join(report.issues))
    print(f"signer: {report.recovered_signer or '-'}")
    for w in report.warnings:
        print(f"warning: {w}")
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
