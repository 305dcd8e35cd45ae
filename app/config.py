"""
Configuration module for the AIProof service.

Every setting comes from the environment through ``Settings.from_env()``,
read once at startup. Services are wired from that frozen snapshot so
tests can build their own.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple


def _flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


# ============================================================
# Settings Snapshot
# ============================================================

@dataclass(frozen=True)
class Settings:
    """Immutable view of the configuration used to wire services."""
    env: str = "dev"  # dev|stage|prod
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = True
    log_file: str = ""
    max_text_length: int = 10000
    store_backend: str = "memory"  # memory|ipfs|s3
    ipfs_api_url: str = "http://127.0.0.1:5001"
    ipfs_gateways: Tuple[str, ...] = ()
    store_timeout_seconds: float = 30.0
    s3_bucket: str = ""
    s3_prefix: str = "aiproof/objects/"
    aws_region: Optional[str] = None
    index_backend: str = "memory"  # memory|sqlite
    index_db_path: str = "data/aiproof_index.db"
    zk_mode: str = "mock"  # disabled|mock|subprocess|hosted
    zk_host_bin: str = ""
    zk_timeout_seconds: float = 180.0
    prover_url: str = "http://localhost:4000"
    prover_image_id: str = ""
    prover_timeout_seconds: float = 180.0
    prover_retries: int = 2
    provider_timeout_seconds: float = 180.0
    ollama_api_url: str = ""
    openai_api_key: str = field(default="", repr=False)
    anthropic_api_key: str = field(default="", repr=False)
    together_api_key: str = field(default="", repr=False)
    signer_type: str = "none"  # none|file
    signing_key_path: str = "secrets/aiproof_signing_key.json"

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level

    @classmethod
    def from_env(cls) -> "Settings":
        """Read the environment. Used at startup and by tests."""
        return cls(
            env=os.getenv("AIPROOF_ENV", "dev"),
            debug=_flag("AIPROOF_DEBUG"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_flag("LOG_JSON", "true"),
            log_file=os.getenv("LOG_FILE", ""),
            max_text_length=int(os.getenv("MAX_TEXT_LENGTH", "10000")),
            store_backend=os.getenv("STORE_BACKEND", "memory"),
            ipfs_api_url=os.getenv("IPFS_API_URL", "http://127.0.0.1:5001"),
            ipfs_gateways=_split_list(os.getenv("IPFS_GATEWAYS", "")),
            store_timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "30")),
            s3_bucket=os.getenv("S3_BUCKET", ""),
            s3_prefix=os.getenv("S3_PREFIX", "aiproof/objects/"),
            aws_region=os.getenv("AWS_REGION") or None,
            index_backend=os.getenv("INDEX_BACKEND", "memory"),
            index_db_path=os.getenv("INDEX_DB_PATH", "data/aiproof_index.db"),
            zk_mode=os.getenv("ZK_MODE", "mock"),
            zk_host_bin=os.getenv("ZK_HOST_BIN", ""),
            zk_timeout_seconds=float(os.getenv("ZK_TIMEOUT_SECONDS", "180")),
            prover_url=os.getenv("PROVER_URL", "http://localhost:4000"),
            prover_image_id=os.getenv("PROVER_IMAGE_ID", ""),
            prover_timeout_seconds=float(os.getenv("PROVER_TIMEOUT_SECONDS", "180")),
            prover_retries=int(os.getenv("PROVER_RETRIES", "2")),
            provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "180")),
            ollama_api_url=os.getenv("OLLAMA_API_URL", ""),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            together_api_key=os.getenv("TOGETHER_API_KEY", ""),
            signer_type=os.getenv("SIGNER_TYPE", "none"),
            signing_key_path=os.getenv("SIGNING_KEY_PATH", "secrets/aiproof_signing_key.json"),
        )


# ============================================================
# Validation
# ============================================================

def validate_config(settings: Optional[Settings] = None) -> Dict[str, bool]:
    """
    Validate that configured files and binaries exist.
    Returns dict of name -> exists.
    """
    s = settings or Settings.from_env()
    paths: Dict[str, str] = {}

    if s.signer_type == "file":
        paths["signing_key"] = s.signing_key_path
    if s.zk_mode == "subprocess" and s.zk_host_bin:
        paths["zk_host_bin"] = s.zk_host_bin.split()[0]
    if s.index_backend == "sqlite":
        paths["index_db_dir"] = str(Path(s.index_db_path).parent)

    return {name: Path(path).exists() for name, path in paths.items()}


def config_problems(settings: Settings) -> List[str]:
    """Settings combinations that cannot be wired."""
    problems = []
    if settings.store_backend not in ("memory", "ipfs", "s3"):
        problems.append(f"unknown STORE_BACKEND {settings.store_backend!r}")
    if settings.store_backend == "s3" and not settings.s3_bucket:
        problems.append("S3_BUCKET required for the s3 store backend")
    if settings.index_backend not in ("memory", "sqlite"):
        problems.append(f"unknown INDEX_BACKEND {settings.index_backend!r}")
    if settings.zk_mode not in ("disabled", "mock", "subprocess", "hosted"):
        problems.append(f"unknown ZK_MODE {settings.zk_mode!r}")
    if settings.zk_mode == "subprocess" and not settings.zk_host_bin:
        problems.append("ZK_HOST_BIN required for subprocess attestation")
    if settings.zk_mode == "hosted" and not settings.prover_image_id:
        problems.append("PROVER_IMAGE_ID required for hosted attestation")
    if settings.signer_type not in ("none", "file"):
        problems.append(f"unknown SIGNER_TYPE {settings.signer_type!r}")
    return problems

