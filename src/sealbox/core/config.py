"""Runtime settings for SealBox.

Settings are plain values read from ``SEALBOX_*`` environment variables so the
server, the TUI and tests can all build the same environment without a config
file. Command line flags (see :mod:`sealbox.network.server`) override them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional


MAX_UPLOAD_BYTES = 50 * 1024 * 1024  # 50 MiB, whole buffer is held in memory
DEFAULT_PORT = 9999
ENV_PREFIX = "SEALBOX_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _default_root() -> Path:
    return Path.home() / ".sealbox"


@dataclass(frozen=True)
class Settings:
    storage_root: Path = field(default_factory=_default_root)
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    rsa_key_size: int = 2048
    cert_common_name: str = "SealBox"
    cert_organization: str = "SealBox Inc."
    cert_validity_days: int = 365
    enforce_cert_validity: bool = False
    # Legacy mode: every symmetric encode reuses the process-wide key/IV.
    reuse_process_key: bool = False
    cipher_workers: int = 2
    io_timeout: Optional[float] = 30.0
    log_level: str = "INFO"
    port: int = DEFAULT_PORT

    @property
    def uploads_root(self) -> Path:
        return self.storage_root / "uploads"

    @property
    def results_root(self) -> Path:
        return self.storage_root / "results"

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with ``changes`` applied, ignoring ``None`` values."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``environ`` (defaults to ``os.environ``).

        Unset variables keep their dataclass default. A value that cannot be
        parsed raises ``ValueError`` naming the offending variable.
        """
        env = os.environ if environ is None else environ
        values = {}

        root = env.get(ENV_PREFIX + "STORAGE_ROOT")
        if root:
            values["storage_root"] = Path(root).expanduser()

        for name, parse in (
            ("max_upload_bytes", _parse_positive_int),
            ("rsa_key_size", _parse_positive_int),
            ("cert_validity_days", _parse_positive_int),
            ("cipher_workers", _parse_positive_int),
            ("port", _parse_port),
            ("io_timeout", _parse_timeout),
            ("enforce_cert_validity", _parse_bool),
            ("reuse_process_key", _parse_bool),
        ):
            var = ENV_PREFIX + name.upper()
            raw = env.get(var)
            if raw is None:
                continue
            try:
                values[name] = parse(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {var}: {raw!r} ({e})") from e

        for name in ("cert_common_name", "cert_organization"):
            raw = env.get(ENV_PREFIX + name.upper())
            if raw:
                values[name] = raw

        level = env.get(ENV_PREFIX + "LOG_LEVEL")
        if level:
            values["log_level"] = level.upper()

        return cls(**values)


def _parse_positive_int(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise ValueError("must be positive")
    return value


def _parse_port(raw: str) -> int:
    value = int(raw)
    if not 0 <= value <= 65535:
        raise ValueError("must be between 0 and 65535")
    return value


def _parse_timeout(raw: str) -> Optional[float]:
    # "0" or "none" disables the I/O timeout
    if raw.strip().lower() in ("none", "0", ""):
        return None
    value = float(raw)
    if value < 0:
        raise ValueError("must not be negative")
    return value


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError("expected a boolean")
