from app.config import Settings, config_problems, validate_config


def test_from_env_reads_logging_and_store(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    monkeypatch.setenv("LOG_JSON", "false")
    monkeypatch.setenv("IPFS_GATEWAYS", "https://gw-a/ipfs, ,https://gw-b/ipfs")
    monkeypatch.delenv("AIPROOF_DEBUG", raising=False)
    s = Settings.from_env()
    assert s.log_level == "ERROR"
    assert s.log_json is False
    assert s.effective_log_level == "ERROR"
    assert s.ipfs_gateways == ("https://gw-a/ipfs", "https://gw-b/ipfs")


def test_debug_forces_debug_logging(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("AIPROOF_DEBUG", "1")
    assert Settings.from_env().effective_log_level == "DEBUG"


def test_api_keys_hidden_from_repr():
    assert "sk-secret" not in repr(Settings(openai_api_key="sk-secret"))


def test_config_problems():
    assert config_problems(Settings()) == []
    problems = config_problems(Settings(store_backend="s3", zk_mode="subprocess", signer_type="kms"))
    assert problems == [
        "S3_BUCKET required for the s3 store backend",
        "ZK_HOST_BIN required for subprocess attestation",
        "unknown SIGNER_TYPE 'kms'",
    ]


def test_validate_config_reports_missing_paths(tmp_path):
    key = tmp_path / "key.json"
    key.write_text("{}")
    s = Settings(signer_type="file", signing_key_path=str(key),
                 zk_mode="subprocess", zk_host_bin=str(tmp_path / "missing-host") + " --flag")
    assert validate_config(s) == {"signing_key": True, "zk_host_bin": False}
