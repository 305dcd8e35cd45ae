import os, json, sys
from aiproof.signing import generate_signing_key

path = sys.argv[1] if len(sys.argv) > 1 else "secrets/aiproof_signing_key.json"
os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

private_key_hex, address = generate_signing_key()

with open(path, "w", encoding="utf-8") as f:
    json.dump({"address": address, "private_key_hex": private_key_hex}, f, indent=2)
os.chmod(path, 0o600)

print(f"Generated signing key for {address} at {path}")
