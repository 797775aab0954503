"""
Exceptions for SealBox
Every error raised by the package derives from SealBoxError so callers have a single catch-all
"""


class SealBoxError(Exception):
    # general container for errors
    pass


class InputError(SealBoxError):
    # raised for missing, oversized or malformed input; never reaches a codec
    pass


class EnvelopeError(SealBoxError):
    # raised when a codec fails cryptographically
    pass


class EncodeError(EnvelopeError):
    # raised on a malformed certificate / key or unencodable plaintext
    pass


class DecodeError(EnvelopeError):
    # raised on key mismatch, padding failure or a malformed envelope
    pass


class StorageError(SealBoxError):
    # raised if the content store fails in some way
    pass


class PersistenceError(StorageError):
    # raised when a write or delete against the store fails
    pass


class ArtifactNotFoundError(StorageError):
    # raised when a named blob does not exist in the store
    pass


class InvalidPathError(StorageError):
    # raised when a blob name escapes the store root
    pass


class FatalInitError(SealBoxError):
    # raised when key material could not be generated; nothing can be served
    pass


class OperationError(SealBoxError):
    """Structured failure of one orchestrated operation.

    ``stage`` is the :class:`~sealbox.core.models.Stage` that failed and
    ``cause`` is the underlying error, kept unchanged.
    """

    def __init__(self, stage, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{getattr(stage, 'value', stage)}: {cause}")

    @property
    def message(self) -> str:
        return str(self.cause)
