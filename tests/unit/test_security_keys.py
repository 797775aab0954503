"""Unit tests for process-wide key material."""

import asyncio
import datetime
from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from sealbox.core.exceptions import FatalInitError
from sealbox.security.keys import (
    IV_BYTES,
    SYMMETRIC_KEY_BYTES,
    KeyMaterialProvider,
    generate_rsa_key,
    generate_self_signed_certificate,
)


# ==============================================================================
# Certificate generation
# ==============================================================================

def test_self_signed_certificate_fields():
    key = generate_rsa_key(2048)
    now = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    cert = generate_self_signed_certificate(key, "SealBox", "SealBox Inc.", 365, now=now)

    cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
    org = cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value
    assert cn == "SealBox"
    assert org == "SealBox Inc."
    assert cert.issuer == cert.subject
    assert cert.not_valid_before_utc == now
    assert cert.not_valid_after_utc == now + datetime.timedelta(days=365)
    assert cert.public_key().public_numbers() == key.public_key().public_numbers()


def test_serial_numbers_differ():
    key = generate_rsa_key(2048)
    a = generate_self_signed_certificate(key, "A", "O")
    b = generate_self_signed_certificate(key, "A", "O")
    assert a.serial_number != b.serial_number


# ==============================================================================
# Provider lifecycle
# ==============================================================================

def test_uninitialized_provider_refuses_access():
    p = KeyMaterialProvider()
    assert p.ready is False
    with pytest.raises(RuntimeError):
        p.certificate()


def test_initialized_material_shapes(provider):
    assert provider.ready
    assert isinstance(provider.certificate(), x509.Certificate)
    assert isinstance(provider.identity_private_key(), rsa.RSAPrivateKey)
    assert isinstance(provider.transport_private_key(), rsa.RSAPrivateKey)
    assert len(provider.symmetric_key()) == SYMMETRIC_KEY_BYTES
    assert len(provider.initialization_vector()) == IV_BYTES
    assert provider.identity_private_key().key_size == 2048


def test_identity_and_transport_keys_are_distinct(provider):
    identity = provider.identity_private_key().public_key().public_numbers()
    transport = provider.transport_public_key().public_numbers()
    assert identity != transport


def test_initialize_is_idempotent(provider):
    first = provider.material
    assert provider.initialize() is first
    assert provider.material is first


def test_failed_initialization_is_sticky():
    p = KeyMaterialProvider()
    with patch("sealbox.security.keys.generate_rsa_key", side_effect=ValueError("no entropy")):
        with pytest.raises(FatalInitError):
            p.initialize()
    assert p.ready is False
    # Still failed even though key generation would now succeed.
    with pytest.raises(FatalInitError):
        p.initialize()
    with pytest.raises(FatalInitError):
        p.symmetric_key()


@pytest.mark.asyncio
async def test_ainitialize_runs_off_loop():
    p = KeyMaterialProvider(key_size=2048)
    material = await p.ainitialize()
    assert p.ready
    assert material is p.material


# ==============================================================================
# Public export
# ==============================================================================

def test_public_bundle_has_no_private_material(provider):
    bundle = provider.public_bundle().to_dict()
    assert set(bundle) == {"certificatePem", "certificatePublicKeyPem", "transportPublicKeyPem"}
    assert bundle["certificatePem"].startswith("-----BEGIN CERTIFICATE-----")
    assert bundle["transportPublicKeyPem"].startswith("-----BEGIN PUBLIC KEY-----")
    for value in bundle.values():
        assert "PRIVATE KEY" not in value


def test_repr_hides_secrets(provider):
    text = repr(provider.material)
    assert "SealBox Test" in text
    assert provider.symmetric_key().hex() not in text
