"""Symmetric envelopes: AES-256-CBC payload with an RSA-wrapped key and IV.

Wire format (JSON, indented by two spaces, every field base64)::

    {
      "encryptedData": "<AES-256-CBC ciphertext, PKCS#7 padded>",
      "encryptedKey": "<RSA-OAEP(SHA-1) wrapped 32-byte key>",
      "encryptedIV": "<RSA-OAEP(SHA-1) wrapped 16-byte IV>"
    }

OAEP with SHA-1 matches the default of the service that first produced this
format, so envelopes remain interchangeable with it.

CBC carries no integrity check. A tampered ciphertext is only rejected when
the padding check happens to fail; otherwise it decodes to garbage.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..core.exceptions import DecodeError, EncodeError
from .keys import IV_BYTES, SYMMETRIC_KEY_BYTES

BLOCK_SIZE_BITS = 128


def _wrap_padding() -> asym_padding.OAEP:
    return asym_padding.OAEP(
        mgf=asym_padding.MGF1(algorithm=hashes.SHA1()),
        algorithm=hashes.SHA1(),
        label=None,
    )


@dataclass(frozen=True)
class SymmetricEnvelope:
    encrypted_data: str
    encrypted_key: str
    encrypted_iv: str

    def to_dict(self) -> dict:
        return {
            "encryptedData": self.encrypted_data,
            "encryptedKey": self.encrypted_key,
            "encryptedIV": self.encrypted_iv,
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes | str) -> "SymmetricEnvelope":
        """Parse the JSON wire format; extra fields are ignored."""
        try:
            obj = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError(f"symmetric envelope is not valid JSON: {e}") from e
        if not isinstance(obj, dict):
            raise DecodeError("symmetric envelope must be a JSON object")
        fields = {}
        for attr, key in (
            ("encrypted_data", "encryptedData"),
            ("encrypted_key", "encryptedKey"),
            ("encrypted_iv", "encryptedIV"),
        ):
            value = obj.get(key)
            if not isinstance(value, str):
                raise DecodeError(f"symmetric envelope field {key!r} missing or not a string")
            fields[attr] = value
        return cls(**fields)


class SymmetricEnvelopeCodec:
    """Encode/decode payloads under AES-256-CBC with a wrapped key and IV."""

    def encode(
        self,
        plaintext: bytes,
        transport_public_key: rsa.RSAPublicKey,
        symmetric_key: Optional[bytes] = None,
        iv: Optional[bytes] = None,
    ) -> SymmetricEnvelope:
        """Encrypt ``plaintext`` and wrap the key/IV for ``transport_public_key``.

        A fresh key and IV are generated for every call unless both are
        supplied. Reusing one key/IV pair under CBC reveals which messages
        share a common prefix, so callers should only pass them for
        compatibility with the legacy shared-key mode.
        """
        if not isinstance(plaintext, (bytes, bytearray, memoryview)):
            raise EncodeError(f"plaintext must be bytes, not {type(plaintext).__name__}")
        if not isinstance(transport_public_key, rsa.RSAPublicKey):
            raise EncodeError("transport key must be an RSA public key")
        if (symmetric_key is None) != (iv is None):
            raise EncodeError("symmetric_key and iv must be given together")
        if symmetric_key is None:
            symmetric_key = os.urandom(SYMMETRIC_KEY_BYTES)
            iv = os.urandom(IV_BYTES)
        if len(symmetric_key) != SYMMETRIC_KEY_BYTES or len(iv) != IV_BYTES:
            raise EncodeError("symmetric key must be 32 bytes and IV 16 bytes")

        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(bytes(plaintext)) + padder.finalize()
        encryptor = Cipher(algorithms.AES(symmetric_key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        try:
            wrapped_key = transport_public_key.encrypt(symmetric_key, _wrap_padding())
            wrapped_iv = transport_public_key.encrypt(iv, _wrap_padding())
        except ValueError as e:
            raise EncodeError(f"wrapping the symmetric key failed: {e}") from e

        return SymmetricEnvelope(
            encrypted_data=base64.b64encode(ciphertext).decode("ascii"),
            encrypted_key=base64.b64encode(wrapped_key).decode("ascii"),
            encrypted_iv=base64.b64encode(wrapped_iv).decode("ascii"),
        )

    def decode(
        self,
        envelope: SymmetricEnvelope | bytes | str,
        transport_private_key: rsa.RSAPrivateKey,
    ) -> bytes:
        if not isinstance(envelope, SymmetricEnvelope):
            envelope = SymmetricEnvelope.from_json(envelope)
        try:
            ciphertext = base64.b64decode(envelope.encrypted_data, validate=True)
            wrapped_key = base64.b64decode(envelope.encrypted_key, validate=True)
            wrapped_iv = base64.b64decode(envelope.encrypted_iv, validate=True)
        except binascii.Error as e:
            raise DecodeError(f"symmetric envelope field is not valid base64: {e}") from e

        try:
            key = transport_private_key.decrypt(wrapped_key, _wrap_padding())
            iv = transport_private_key.decrypt(wrapped_iv, _wrap_padding())
        except (TypeError, ValueError, AttributeError):
            raise DecodeError("symmetric key could not be unwrapped") from None
        if len(key) != SYMMETRIC_KEY_BYTES or len(iv) != IV_BYTES:
            raise DecodeError("unwrapped symmetric key or IV has the wrong length")

        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise DecodeError("symmetric payload failed to decrypt (bad padding or truncated)") from None
