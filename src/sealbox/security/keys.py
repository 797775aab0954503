"""Process-wide key material for both envelope schemes.

One :class:`KeyMaterialProvider` is initialized at startup and holds:

- an identity RSA key pair with a self-signed X.509 certificate (the
  recipient of certificate envelopes)
- a 256-bit symmetric key and 128-bit IV, generated once
- a transport RSA key pair, used only to wrap symmetric keys and IVs

Material lives in memory for the lifetime of the process and is never
rotated or persisted; a restart produces new keys.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import os
import threading
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from ..core.exceptions import FatalInitError

logger = logging.getLogger(__name__)

SYMMETRIC_KEY_BYTES = 32
IV_BYTES = 16
RSA_PUBLIC_EXPONENT = 65537


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)


def generate_self_signed_certificate(
    private_key: rsa.RSAPrivateKey,
    common_name: str,
    organization: str,
    validity_days: int = 365,
    now: Optional[datetime.datetime] = None,
) -> x509.Certificate:
    """Create a certificate whose subject and issuer are the same name.

    The validity window starts at ``now`` (UTC) and lasts ``validity_days``.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        ]
    )
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=validity_days))
        .sign(private_key, hashes.SHA256())
    )


def public_key_to_pem(public_key) -> str:
    return public_key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@dataclass(frozen=True)
class PublicKeyBundle:
    """Read-only export of public material; private keys never appear here."""

    certificate_pem: str
    certificate_public_key_pem: str
    transport_public_key_pem: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "certificatePem": self.certificate_pem,
            "certificatePublicKeyPem": self.certificate_public_key_pem,
            "transportPublicKeyPem": self.transport_public_key_pem,
        }


@dataclass(frozen=True)
class KeyMaterial:
    certificate: x509.Certificate
    identity_private_key: rsa.RSAPrivateKey
    symmetric_key: bytes
    initialization_vector: bytes
    transport_private_key: rsa.RSAPrivateKey

    @property
    def transport_public_key(self) -> rsa.RSAPublicKey:
        return self.transport_private_key.public_key()

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        return f"KeyMaterial(subject={self.certificate.subject.rfc4514_string()!r})"

    def public_bundle(self) -> PublicKeyBundle:
        return PublicKeyBundle(
            certificate_pem=self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii"),
            certificate_public_key_pem=public_key_to_pem(self.certificate.public_key()),
            transport_public_key_pem=public_key_to_pem(self.transport_public_key),
        )


class KeyMaterialProvider:
    """Generates :class:`KeyMaterial` once and serves read-only accessors.

    ``initialize()`` is idempotent. If generation fails the provider is
    marked failed and every later call raises :class:`FatalInitError`, so a
    half-initialized process can never serve an operation.
    """

    def __init__(
        self,
        key_size: int = 2048,
        common_name: str = "SealBox",
        organization: str = "SealBox Inc.",
        validity_days: int = 365,
    ):
        self.key_size = key_size
        self.common_name = common_name
        self.organization = organization
        self.validity_days = validity_days
        self._material: Optional[KeyMaterial] = None
        self._failure: Optional[FatalInitError] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "KeyMaterialProvider":
        return cls(
            key_size=settings.rsa_key_size,
            common_name=settings.cert_common_name,
            organization=settings.cert_organization,
            validity_days=settings.cert_validity_days,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self._material is not None

    def initialize(self) -> KeyMaterial:
        with self._lock:
            if self._failure is not None:
                raise self._failure
            if self._material is not None:
                return self._material
            try:
                identity_key = generate_rsa_key(self.key_size)
                certificate = generate_self_signed_certificate(
                    identity_key,
                    self.common_name,
                    self.organization,
                    self.validity_days,
                )
                material = KeyMaterial(
                    certificate=certificate,
                    identity_private_key=identity_key,
                    symmetric_key=os.urandom(SYMMETRIC_KEY_BYTES),
                    initialization_vector=os.urandom(IV_BYTES),
                    transport_private_key=generate_rsa_key(self.key_size),
                )
            except Exception as e:
                self._failure = FatalInitError(f"Key material generation failed: {e}")
                logger.critical("Key material generation failed: %s", e)
                raise self._failure from e
            self._material = material
            logger.info(
                "Key material ready (RSA-%d, subject %s)",
                self.key_size,
                certificate.subject.rfc4514_string(),
            )
            return material

    async def ainitialize(self, executor: Optional[Executor] = None) -> KeyMaterial:
        """Run :meth:`initialize` off the event loop (RSA keygen is slow)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, self.initialize)

    @property
    def material(self) -> KeyMaterial:
        if self._failure is not None:
            raise self._failure
        if self._material is None:
            raise RuntimeError("Key material not initialized; call initialize() first")
        return self._material

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def certificate(self) -> x509.Certificate:
        return self.material.certificate

    def identity_private_key(self) -> rsa.RSAPrivateKey:
        return self.material.identity_private_key

    def symmetric_key(self) -> bytes:
        return self.material.symmetric_key

    def initialization_vector(self) -> bytes:
        return self.material.initialization_vector

    def transport_public_key(self) -> rsa.RSAPublicKey:
        return self.material.transport_public_key

    def transport_private_key(self) -> rsa.RSAPrivateKey:
        return self.material.transport_private_key

    def public_bundle(self) -> PublicKeyBundle:
        return self.material.public_bundle()
