"""Glue between the transport (server, TUI) and the envelope core.

An *env* is a plain dict holding everything a request handler needs:
settings, the key material provider, both content stores and the
orchestrator. Handlers only talk to the core through the helpers below.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

from sealbox.core.config import Settings
from sealbox.core.exceptions import ArtifactNotFoundError, InvalidPathError
from sealbox.core.models import Operation, OperationResult
from sealbox.core.orchestrator import FileEnvelopeOrchestrator
from sealbox.core.storage import ContentStore
from sealbox.security.keys import KeyMaterialProvider


def init_env(settings: Optional[Settings] = None, provider: Optional[KeyMaterialProvider] = None) -> dict:
    # build stores + provider + orchestrator; key material is generated separately
    settings = settings or Settings.from_env()
    uploads = ContentStore(settings.uploads_root)
    results = ContentStore(settings.results_root)
    if provider is None:
        provider = KeyMaterialProvider.from_settings(settings)
    orchestrator = FileEnvelopeOrchestrator.from_settings(settings, provider, uploads, results)
    return {
        "settings": settings,
        "provider": provider,
        "uploads": uploads,
        "results": results,
        "orchestrator": orchestrator,
    }


async def start_env(env: dict) -> None:
    """Generate key material off the event loop; raises FatalInitError on failure."""
    await env["provider"].ainitialize()


def close_env(env: dict) -> None:
    env["orchestrator"].close()


async def run_operation(env: dict, operation: Operation, filename: str, data: bytes) -> OperationResult:
    return await env["orchestrator"].process(operation, data, filename)


def open_for_get(env: dict, name: str, offset: int = 0, length: Optional[int] = None) -> Optional[bytes]:
    """Return the requested byte range of an artifact, or None if it is missing."""
    try:
        return env["results"].read_range(name, offset, length)
    except (ArtifactNotFoundError, InvalidPathError):
        return None


def format_list(env: dict) -> str:
    names = env["results"].list_names()
    if not names:
        return "No artifacts.\n"
    return "\n".join(names) + "\n"


def public_keys_json(env: dict) -> str:
    return json.dumps(env["provider"].public_bundle().to_dict()) + "\n"


def health_json(env: dict) -> str:
    status = "OK" if env["provider"].ready else "UNAVAILABLE"
    return json.dumps(
        {"status": status, "timestamp": datetime.now(timezone.utc).isoformat()}
    ) + "\n"
