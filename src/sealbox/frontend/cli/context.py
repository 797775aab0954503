"""Small helper to build a SealBox app context for the TUI."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sealbox.core.config import Settings
from sealbox.core.orchestrator import FileEnvelopeOrchestrator
from sealbox.core.storage import ContentStore
from sealbox.network.adapter import init_env
from sealbox.security.keys import KeyMaterialProvider


@dataclass
class AppContext:
    """Container for runtime objects the UI needs."""

    settings: Settings
    provider: KeyMaterialProvider
    orchestrator: FileEnvelopeOrchestrator
    results: ContentStore


def build_context(
    storage_root: Optional[str | Path] = None,
    settings: Optional[Settings] = None,
) -> AppContext:
    """
    Build stores, provider and orchestrator from ``SEALBOX_*`` settings.

    Key material is *not* generated here: RSA key generation takes long
    enough to notice, so the app runs it on a worker thread after mounting
    and keeps the operation buttons disabled until it finishes.
    """
    settings = settings or Settings.from_env()
    if storage_root is not None:
        settings = settings.with_overrides(storage_root=Path(storage_root).expanduser())
    env = init_env(settings)
    return AppContext(
        settings=settings,
        provider=env["provider"],
        orchestrator=env["orchestrator"],
        results=env["results"],
    )
