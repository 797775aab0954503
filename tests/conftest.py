"""Shared fixtures: RSA key generation is slow, so key material is built once per session."""

import pytest

from sealbox.core.config import Settings
from sealbox.core.orchestrator import FileEnvelopeOrchestrator
from sealbox.core.storage import ContentStore
from sealbox.security.keys import KeyMaterialProvider


@pytest.fixture(scope="session")
def provider():
    """An initialized provider shared by every test in the run."""
    p = KeyMaterialProvider(key_size=2048, common_name="SealBox Test")
    p.initialize()
    return p


@pytest.fixture(scope="session")
def other_provider():
    """A second, unrelated identity for wrong-key scenarios."""
    p = KeyMaterialProvider(key_size=2048, common_name="Someone Else")
    p.initialize()
    return p


@pytest.fixture
def settings(tmp_path):
    return Settings(storage_root=tmp_path / "store", max_upload_bytes=1024 * 1024)


@pytest.fixture
def uploads(settings):
    return ContentStore(settings.uploads_root)


@pytest.fixture
def results(settings):
    return ContentStore(settings.results_root)


@pytest.fixture
def orchestrator(settings, provider, uploads, results):
    orch = FileEnvelopeOrchestrator.from_settings(settings, provider, uploads, results)
    yield orch
    orch.close()
