"""
Content store for uploads and output artifacts

Structure Map for reference:
==============================
 - <storage_root>/
      - uploads/
          - {transient upload name}   (deleted after every operation)
      - results/
          - encrypted_smime_{ms}_{hex}.pem
          - encrypted_aes_{ms}_{hex}.json
          - decrypted_smime_{ms}_{hex}.bin
          - decrypted_aes_{ms}_{hex}.bin
==============================
For reference:
> A ContentStore is a flat directory of named blobs: put / get / delete plus exists and byte-range reads
> Names are plain file names; anything resolving outside the root is rejected
> Writes go to a temporary sibling first and are renamed into place, so readers never see half a blob

"""

import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional

from .exceptions import ArtifactNotFoundError, InvalidPathError, PersistenceError

logger = logging.getLogger(__name__)

TMP_SUFFIX = ".part"


class ContentStore:
    """Named-blob store rooted at a single directory."""

    def __init__(self, root_path: str | Path):
        self.root = Path(root_path).expanduser().resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create store directory {self.root}: {e}") from e

    def _get_safe_path(self, name: str) -> Path:
        # Ensures the name does not lead to path traversal outside the root.
        if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
            raise InvalidPathError(f"Invalid blob name: {name!r}")
        safe_path = (self.root / name).resolve()
        if safe_path.parent != self.root:
            raise InvalidPathError(f"Attempted path traversal: {name!r}")
        return safe_path

    def path_for(self, name: str) -> Path:
        return self._get_safe_path(name)

    def put(self, name: str, data: bytes) -> Path:
        """Write ``data`` under ``name``, replacing any previous blob."""
        destination = self._get_safe_path(name)
        tmp_path = destination.with_name(f"{destination.name}.{uuid.uuid4().hex[:8]}{TMP_SUFFIX}")
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, destination)
        except OSError as e:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning("Could not remove partial write %s", tmp_path)
            raise PersistenceError(f"Failed to write {name}: {e}") from e
        return destination

    def get(self, name: str) -> bytes:
        path = self._get_safe_path(name)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Blob not found: {name}") from None
        except OSError as e:
            raise PersistenceError(f"Failed to read {name}: {e}") from e

    def read_range(self, name: str, offset: int = 0, length: Optional[int] = None) -> bytes:
        """Return ``length`` bytes of ``name`` starting at ``offset``.

        ``length=None`` reads to the end. Offsets past the end yield ``b""``.
        """
        if offset < 0 or (length is not None and length < 0):
            raise ValueError("offset and length must be non-negative")
        path = self._get_safe_path(name)
        try:
            with open(path, "rb") as f:
                f.seek(offset)
                return f.read() if length is None else f.read(length)
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Blob not found: {name}") from None
        except OSError as e:
            raise PersistenceError(f"Failed to read {name}: {e}") from e

    def delete(self, name: str) -> bool:
        """Remove ``name``; returns False if it did not exist."""
        path = self._get_safe_path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Failed to delete {name}: {e}") from e
        return True

    def exists(self, name: str) -> bool:
        path = self._get_safe_path(name)
        try:
            return path.is_file()
        except OSError as e:
            raise PersistenceError(f"Failed to stat {name}: {e}") from e

    def size(self, name: str) -> int:
        path = self._get_safe_path(name)
        try:
            return path.stat().st_size
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Blob not found: {name}") from None
        except OSError as e:
            raise PersistenceError(f"Failed to stat {name}: {e}") from e

    def list_names(self) -> List[str]:
        # Lists every complete blob; in-flight temporary writes are skipped.
        try:
            return sorted(
                p.name
                for p in self.root.iterdir()
                if p.is_file() and not p.name.endswith(TMP_SUFFIX)
            )
        except OSError as e:
            raise PersistenceError(f"Failed to list {self.root}: {e}") from e
