import pytest, os, sys, subprocess, tempfile

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Ensure the app and library packages are in path
sys.path.insert(0, ROOT)

# Change to project directory
os.chdir(ROOT)

# Service configuration must be in the environment before app.config is imported
_key_dir = tempfile.mkdtemp(prefix="aiproof-test-keys-")
SIGNING_KEY_PATH = os.path.join(_key_dir, "signing_key.json")
os.environ.update({
    "AIPROOF_ENV": "dev",
    "LOG_JSON": "false",
    "LOG_LEVEL": "WARNING",
    "STORE_BACKEND": "memory",
    "INDEX_BACKEND": "memory",
    "ZK_MODE": "mock",
    "SIGNER_TYPE": "file",
    "SIGNING_KEY_PATH": SIGNING_KEY_PATH,
    "MAX_TEXT_LENGTH": "10000",
})
for var in ("OLLAMA_API_URL", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "TOGETHER_API_KEY"):
    os.environ.pop(var, None)

# Generate the server signing key once at module load time
subprocess.run(
    [sys.executable, "tools/gen_keys.py", SIGNING_KEY_PATH],
    check=True,
    stdout=subprocess.DEVNULL,
    env={**os.environ, "PYTHONPATH": ROOT},
)

from app.main import _startup

_startup()


# Fresh stores and index before each test for isolation
@pytest.fixture(autouse=True)
def _reset_services():
    _startup()
    yield
