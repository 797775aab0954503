"""Certificate-addressed envelopes (PKCS#7 / CMS EnvelopedData, "S/MIME").

The library generates a one-time AES-256 content-encryption key, encrypts the
payload with it and wraps the key for the recipient certificate's RSA public
key (PKCS#1 v1.5 key transport, as PKCS#7 requires). The envelope names
exactly one recipient and is serialized as PEM text.

The enveloped content is the base64 text of the plaintext rather than the raw
bytes. This keeps envelopes interchangeable with earlier SealBox builds and
gives decode a strict second check: output of a wrong key almost never forms
valid base64.
"""

from __future__ import annotations

import base64
import binascii
import datetime
import logging

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.ciphers import algorithms
from cryptography.hazmat.primitives.serialization import pkcs7

from ..core.exceptions import DecodeError, EncodeError

logger = logging.getLogger(__name__)

PEM_HEADER = b"-----BEGIN PKCS7-----"
# Single message for every decode failure so callers cannot tell a missing
# recipient from a wrong key or corrupt payload.
DECODE_FAILURE = "certificate envelope could not be decrypted"


class CertificateEnvelopeCodec:
    """Encode/decode payloads for one recipient certificate."""

    def __init__(self, enforce_validity: bool = False):
        self.enforce_validity = enforce_validity

    def encode(self, plaintext: bytes, certificate: x509.Certificate) -> bytes:
        if not isinstance(plaintext, (bytes, bytearray, memoryview)):
            raise EncodeError(f"plaintext must be bytes, not {type(plaintext).__name__}")
        if not isinstance(certificate, x509.Certificate):
            raise EncodeError("recipient must be an x509.Certificate")
        try:
            if not isinstance(certificate.public_key(), rsa.RSAPublicKey):
                raise EncodeError("recipient certificate must carry an RSA public key")
        except ValueError as e:
            raise EncodeError(f"malformed recipient certificate: {e}") from e

        content = base64.b64encode(bytes(plaintext))
        try:
            return (
                pkcs7.PKCS7EnvelopeBuilder()
                .set_data(content)
                .set_content_encryption_algorithm(algorithms.AES256)
                .add_recipient(certificate)
                .encrypt(serialization.Encoding.PEM, [pkcs7.PKCS7Options.Binary])
            )
        except (TypeError, ValueError) as e:
            raise EncodeError(f"certificate envelope encoding failed: {e}") from e

    def decode(
        self,
        envelope: bytes,
        private_key: rsa.RSAPrivateKey,
        certificate: x509.Certificate,
    ) -> bytes:
        """Recover the plaintext addressed to ``certificate``.

        ``private_key`` must correspond to the certificate the envelope was
        encoded for. When ``enforce_validity`` is set, a certificate outside
        its validity window is refused before any decryption happens.
        """
        if isinstance(envelope, str):
            envelope = envelope.encode("ascii", errors="replace")
        if self.enforce_validity:
            self._check_validity(certificate)

        try:
            content = pkcs7.pkcs7_decrypt_pem(bytes(envelope), certificate, private_key, [])
            return base64.b64decode(content, validate=True)
        except (TypeError, ValueError, binascii.Error, UnsupportedAlgorithm) as e:
            logger.debug("Certificate envelope decode failed: %s", e)
            raise DecodeError(DECODE_FAILURE) from None

    @staticmethod
    def _check_validity(certificate: x509.Certificate) -> None:
        now = datetime.datetime.now(datetime.timezone.utc)
        if not certificate.not_valid_before_utc <= now <= certificate.not_valid_after_utc:
            raise DecodeError("recipient certificate is outside its validity window")
