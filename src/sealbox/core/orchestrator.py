"""
Orchestrates one envelope operation from staged upload to persisted artifact.

Per-operation state machine:

    RECEIVED -> ENCODING | DECODING -> PERSISTED -> CLEANED_UP -> DONE
    (any stage may end in FAILED; the cleanup step runs either way)

- RECEIVED: the staged upload must exist, carry an original name and fit the
  size ceiling. The ceiling is checked before the bytes are read and before
  any cipher call.
- ENCODING / DECODING: the codec runs on a worker thread so RSA and AES work
  never blocks the event loop.
- PERSISTED: the result is written under a unique, timestamp-qualified name.
- CLEANED_UP: the staged upload is deleted on every exit path. A failed
  delete is logged and does not change the outcome.

Blocking store calls go through ``asyncio.to_thread`` and are bounded by the
configured I/O timeout.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .config import MAX_UPLOAD_BYTES, Settings
from .exceptions import (
    ArtifactNotFoundError,
    EnvelopeError,
    FatalInitError,
    InputError,
    OperationError,
    PersistenceError,
    StorageError,
)
from .hashing import calculate_sha256_bytes
from .models import Operation, OperationResult, OperationState, Stage, TransientUpload
from .storage import ContentStore
from ..security.cert_envelope import CertificateEnvelopeCodec
from ..security.keys import KeyMaterialProvider
from ..security.sym_envelope import SymmetricEnvelopeCodec

logger = logging.getLogger(__name__)


class FileEnvelopeOrchestrator:
    """Drives the codecs for staged uploads and owns their cleanup."""

    def __init__(
        self,
        provider: KeyMaterialProvider,
        uploads: ContentStore,
        results: ContentStore,
        *,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        io_timeout: Optional[float] = 30.0,
        cipher_workers: int = 2,
        reuse_process_key: bool = False,
        cert_codec: Optional[CertificateEnvelopeCodec] = None,
        sym_codec: Optional[SymmetricEnvelopeCodec] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.uploads = uploads
        self.results = results
        self.max_upload_bytes = max_upload_bytes
        self.io_timeout = io_timeout
        self.reuse_process_key = reuse_process_key
        self.cert_codec = cert_codec or CertificateEnvelopeCodec()
        self.sym_codec = sym_codec or SymmetricEnvelopeCodec()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=cipher_workers, thread_name_prefix="sealbox-cipher"
        )
        self._clock = clock
        self._late_cleanups: set = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: KeyMaterialProvider,
        uploads: Optional[ContentStore] = None,
        results: Optional[ContentStore] = None,
    ) -> "FileEnvelopeOrchestrator":
        return cls(
            provider,
            uploads or ContentStore(settings.uploads_root),
            results or ContentStore(settings.results_root),
            max_upload_bytes=settings.max_upload_bytes,
            io_timeout=settings.io_timeout,
            cipher_workers=settings.cipher_workers,
            reuse_process_key=settings.reuse_process_key,
            cert_codec=CertificateEnvelopeCodec(enforce_validity=settings.enforce_cert_validity),
        )

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def encode_certificate(self, upload: TransientUpload) -> OperationResult:
        return await self.run(Operation.ENCODE_CERT, upload)

    async def encode_symmetric(self, upload: TransientUpload) -> OperationResult:
        return await self.run(Operation.ENCODE_SYM, upload)

    async def decode_certificate(self, upload: TransientUpload) -> OperationResult:
        return await self.run(Operation.DECODE_CERT, upload)

    async def decode_symmetric(self, upload: TransientUpload) -> OperationResult:
        return await self.run(Operation.DECODE_SYM, upload)

    async def stage(self, data: bytes, original_name: str) -> TransientUpload:
        """Write ``data`` into the upload store under a fresh transient name."""
        upload = TransientUpload(name=f"upload_{uuid.uuid4().hex}", original_name=original_name)
        write = asyncio.ensure_future(asyncio.to_thread(self.uploads.put, upload.name, data))
        try:
            await asyncio.wait_for(asyncio.shield(write), timeout=self.io_timeout)
        except asyncio.TimeoutError:
            # the write thread cannot be interrupted; remove its output once it lands
            write.add_done_callback(functools.partial(self._remove_late_upload, upload))
            raise PersistenceError(f"staging {upload.name} timed out after {self.io_timeout}s") from None
        return upload

    async def process(self, operation: Operation, data: bytes, original_name: str) -> OperationResult:
        """Stage ``data`` and run ``operation`` on it in one call."""
        if len(data) > self.max_upload_bytes:
            # Reject before anything touches the store or a cipher.
            raise OperationError(Stage.RECEIVED, self._oversized(len(data)))
        try:
            upload = await self.stage(data, original_name)
        except StorageError as e:
            raise OperationError(Stage.RECEIVED, e) from e
        return await self.run(operation, upload)

    async def run(self, operation: Operation, upload: TransientUpload) -> OperationResult:
        """Execute ``operation`` on ``upload``; the upload is always removed."""
        if not self.provider.ready:
            # Nothing is accepted until key material exists.
            await self._discard(upload)
            raise FatalInitError("Key material is not available; refusing operation")

        op_id = upload.name
        stage = Stage.RECEIVED
        self._transition(op_id, OperationState.RECEIVED)
        try:
            data = await self._receive(upload)

            stage = Stage.ENCODING if operation.encodes else Stage.DECODING
            self._transition(
                op_id, OperationState.ENCODING if operation.encodes else OperationState.DECODING
            )
            output = await self._run_codec(operation, data)

            stage = Stage.PERSISTING
            name = self._artifact_name(operation)
            await self._io(self.results.put, name, output, error=PersistenceError)
            self._transition(op_id, OperationState.PERSISTED)
        except (InputError, EnvelopeError, StorageError) as e:
            self._transition(op_id, OperationState.FAILED)
            logger.info("%s failed for %r at %s: %s", operation.value, upload.original_name, stage.value, e)
            raise OperationError(stage, e) from e
        finally:
            await self._discard(upload)
            self._transition(op_id, OperationState.CLEANED_UP)

        self._transition(op_id, OperationState.DONE)
        result = OperationResult(
            output_artifact_name=name,
            original_name=upload.original_name,
            operation=operation,
            size=len(output),
            sha256=calculate_sha256_bytes(output),
        )
        logger.info("%s %r -> %s (%d bytes)", operation.value, upload.original_name, name, len(output))
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _receive(self, upload: TransientUpload) -> bytes:
        if not upload.original_name or not upload.original_name.strip():
            raise InputError("No original filename supplied")
        try:
            size = await self._io(self.uploads.size, upload.name, error=InputError)
        except ArtifactNotFoundError:
            raise InputError(f"No uploaded file staged as {upload.name!r}") from None
        if size > self.max_upload_bytes:
            raise self._oversized(size)
        return await self._io(self.uploads.get, upload.name, error=InputError)

    async def _run_codec(self, operation: Operation, data: bytes) -> bytes:
        material = self.provider.material
        if operation is Operation.ENCODE_CERT:
            call = functools.partial(self.cert_codec.encode, data, material.certificate)
        elif operation is Operation.DECODE_CERT:
            call = functools.partial(
                self.cert_codec.decode,
                data,
                material.identity_private_key,
                material.certificate,
            )
        elif operation is Operation.ENCODE_SYM:
            if self.reuse_process_key:
                call = functools.partial(
                    self.sym_codec.encode,
                    data,
                    material.transport_public_key,
                    material.symmetric_key,
                    material.initialization_vector,
                )
            else:
                call = functools.partial(self.sym_codec.encode, data, material.transport_public_key)
        else:
            call = functools.partial(self.sym_codec.decode, data, material.transport_private_key)

        loop = asyncio.get_running_loop()
        output = await loop.run_in_executor(self._executor, call)
        if operation is Operation.ENCODE_SYM:
            return output.to_json()
        return output

    async def _discard(self, upload: TransientUpload) -> None:
        try:
            await self._io(self.uploads.delete, upload.name, error=PersistenceError)
        except Exception as e:
            logger.warning("Could not remove transient upload %s: %s", upload.name, e)

    def _remove_late_upload(self, upload: TransientUpload, write: asyncio.Future) -> None:
        if not write.cancelled() and write.exception() is not None:
            # the write failed, so nothing was stored
            return
        cleanup = asyncio.ensure_future(self._discard(upload))
        self._late_cleanups.add(cleanup)
        cleanup.add_done_callback(self._late_cleanups.discard)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _io(self, func, *args, error=PersistenceError):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.io_timeout)
        except asyncio.TimeoutError:
            raise error(f"{func.__name__} timed out after {self.io_timeout}s") from None

    def _artifact_name(self, operation: Operation) -> str:
        millis = int(self._clock() * 1000)
        return f"{operation.artifact_prefix}_{millis}_{uuid.uuid4().hex[:8]}{operation.artifact_extension}"

    def _oversized(self, size: int) -> InputError:
        return InputError(f"File too large: {size} bytes exceeds the {self.max_upload_bytes} byte limit")

    @staticmethod
    def _transition(op_id: str, state: OperationState) -> None:
        logger.debug("operation %s -> %s", op_id, state.value)
