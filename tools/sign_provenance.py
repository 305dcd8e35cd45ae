"""Signs an unsigned /summarize response and prints the matching /publish body.

Lets the signing key stay on an operator machine: fetch the unsigned record
from the service, sign it here, then POST the output to /publish.
"""
import argparse, json, sys
from pathlib import Path

from aiproof.signing import sign_record


def load_json(p: Path) -> dict:
    return json.loads(p.read_text(encoding="utf-8"))


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("response", help="/summarize response JSON, or - for stdin")
    ap.add_argument("--key", default="secrets/aiproof_signing_key.json")
    args = ap.parse_args()

    unsigned = json.load(sys.stdin) if args.response == "-" else load_json(Path(args.response))
    if "provenance" not in unsigned:
        print("error: response has no provenance", file=sys.stderr)
        raise SystemExit(2)

    key = load_json(Path(args.key))
    signature, signer = sign_record(unsigned["provenance"], key["private_key_hex"], unsigned.get("domain"))

    body = {
        "provenance": unsigned["provenance"],
        "signature": signature,
        "signer": signer,
        "promptCid": unsigned.get("promptCid"),
    }
    print(json.dumps(body, indent=2))


if __name__ == "__main__":
    main()
