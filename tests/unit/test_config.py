"""Unit tests for environment-driven settings."""

from pathlib import Path

import pytest

from sealbox.core.config import DEFAULT_PORT, MAX_UPLOAD_BYTES, Settings


def test_defaults_from_empty_env():
    s = Settings.from_env({})
    assert s.max_upload_bytes == MAX_UPLOAD_BYTES
    assert s.port == DEFAULT_PORT
    assert s.rsa_key_size == 2048
    assert s.cert_common_name == "SealBox"
    assert s.cert_organization == "SealBox Inc."
    assert s.reuse_process_key is False
    assert s.enforce_cert_validity is False
    assert s.io_timeout == 30.0


def test_env_values_parsed(tmp_path):
    env = {
        "SEALBOX_STORAGE_ROOT": str(tmp_path),
        "SEALBOX_MAX_UPLOAD_BYTES": "2048",
        "SEALBOX_PORT": "0",
        "SEALBOX_IO_TIMEOUT": "none",
        "SEALBOX_REUSE_PROCESS_KEY": "yes",
        "SEALBOX_ENFORCE_CERT_VALIDITY": "1",
        "SEALBOX_CERT_COMMON_NAME": "Lab",
        "SEALBOX_LOG_LEVEL": "debug",
    }
    s = Settings.from_env(env)
    assert s.storage_root == Path(tmp_path)
    assert s.uploads_root == Path(tmp_path) / "uploads"
    assert s.results_root == Path(tmp_path) / "results"
    assert s.max_upload_bytes == 2048
    assert s.port == 0
    assert s.io_timeout is None
    assert s.reuse_process_key is True
    assert s.enforce_cert_validity is True
    assert s.cert_common_name == "Lab"
    assert s.log_level == "DEBUG"


@pytest.mark.parametrize(
    "var, value",
    [
        ("SEALBOX_MAX_UPLOAD_BYTES", "-5"),
        ("SEALBOX_MAX_UPLOAD_BYTES", "lots"),
        ("SEALBOX_PORT", "70000"),
        ("SEALBOX_REUSE_PROCESS_KEY", "maybe"),
        ("SEALBOX_IO_TIMEOUT", "-1"),
    ],
)
def test_invalid_values_name_the_variable(var, value):
    with pytest.raises(ValueError, match=var):
        Settings.from_env({var: value})


def test_with_overrides_ignores_none():
    s = Settings(port=1234)
    t = s.with_overrides(port=None, max_upload_bytes=10)
    assert t.port == 1234
    assert t.max_upload_bytes == 10
    assert s.max_upload_bytes == MAX_UPLOAD_BYTES
