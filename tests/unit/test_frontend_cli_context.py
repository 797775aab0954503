"""Unit tests for the TUI context builder."""

from sealbox.core.config import Settings
from sealbox.frontend.cli.context import build_context


def test_build_context_uses_storage_root(tmp_path):
    ctx = build_context(storage_root=tmp_path / "root", settings=Settings())
    try:
        assert ctx.settings.storage_root == tmp_path / "root"
        assert ctx.results.root == (tmp_path / "root" / "results").resolve()
        # keys are generated later by the app
        assert ctx.provider.ready is False
    finally:
        ctx.orchestrator.close()


def test_build_context_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("SEALBOX_STORAGE_ROOT", str(tmp_path))
    monkeypatch.setenv("SEALBOX_MAX_UPLOAD_BYTES", "123")
    ctx = build_context()
    try:
        assert ctx.orchestrator.max_upload_bytes == 123
    finally:
        ctx.orchestrator.close()
