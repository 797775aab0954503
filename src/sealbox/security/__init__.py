"""Security helpers: key material and the two envelope codecs for SealBox.

This package provides:
- process-wide key material (identity certificate, transport key pair,
  legacy shared symmetric key/IV)
- certificate envelopes (PKCS#7 enveloped data for one recipient)
- symmetric envelopes (AES-256-CBC with an RSA-wrapped key and IV)
"""

from .keys import KeyMaterial, KeyMaterialProvider, PublicKeyBundle
from .cert_envelope import CertificateEnvelopeCodec
from .sym_envelope import SymmetricEnvelope, SymmetricEnvelopeCodec

__all__ = [
    "KeyMaterial",
    "KeyMaterialProvider",
    "PublicKeyBundle",
    "CertificateEnvelopeCodec",
    "SymmetricEnvelope",
    "SymmetricEnvelopeCodec",
]
