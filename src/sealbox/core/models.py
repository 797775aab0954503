"""
Base data models for orchestrated envelope operations
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class Scheme(Enum):
    # Which envelope codec an operation uses
    CERTIFICATE = "smime"
    SYMMETRIC = "aes"


class Operation(Enum):
    # The four operations a caller can request
    ENCODE_CERT = "encode_cert"
    ENCODE_SYM = "encode_sym"
    DECODE_CERT = "decode_cert"
    DECODE_SYM = "decode_sym"

    @property
    def scheme(self) -> Scheme:
        if self in (Operation.ENCODE_CERT, Operation.DECODE_CERT):
            return Scheme.CERTIFICATE
        return Scheme.SYMMETRIC

    @property
    def encodes(self) -> bool:
        return self in (Operation.ENCODE_CERT, Operation.ENCODE_SYM)

    @property
    def artifact_prefix(self) -> str:
        direction = "encrypted" if self.encodes else "decrypted"
        return f"{direction}_{self.scheme.value}"

    @property
    def artifact_extension(self) -> str:
        if not self.encodes:
            return ".bin"
        return ".pem" if self.scheme is Scheme.CERTIFICATE else ".json"

    @classmethod
    def parse(cls, value: str) -> "Operation":
        """Accept ``encode_cert``, ``ENCODE_CERT`` or ``encode-cert``."""
        normalized = value.strip().lower().replace("-", "_")
        for op in cls:
            if op.value == normalized:
                return op
        raise ValueError(f"Unknown operation: {value!r}")


class Stage(Enum):
    # Stage reported by OperationError
    RECEIVED = "received"
    ENCODING = "encoding"
    DECODING = "decoding"
    PERSISTING = "persisting"


class OperationState(Enum):
    # Per-operation state machine; DONE and FAILED are terminal
    RECEIVED = "received"
    ENCODING = "encoding"
    DECODING = "decoding"
    PERSISTED = "persisted"
    CLEANED_UP = "cleaned_up"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class TransientUpload:
    """An uploaded buffer staged in the upload store for a single operation."""

    name: str
    original_name: str


@dataclass(frozen=True)
class OperationResult:
    output_artifact_name: str
    original_name: str
    operation: Operation
    size: int
    sha256: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outputArtifactName": self.output_artifact_name,
            "originalName": self.original_name,
            "operation": self.operation.value,
            "size": self.size,
            "sha256": self.sha256,
        }
