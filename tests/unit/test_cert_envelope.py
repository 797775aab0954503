"""Unit tests for certificate-addressed envelopes."""

import base64
import datetime
from unittest.mock import patch

import pytest
from cryptography.exceptions import UnsupportedAlgorithm

from sealbox.core.exceptions import DecodeError, EncodeError
from sealbox.security.cert_envelope import DECODE_FAILURE, PEM_HEADER, CertificateEnvelopeCodec
from sealbox.security.keys import generate_rsa_key, generate_self_signed_certificate


@pytest.fixture
def codec():
    return CertificateEnvelopeCodec()


# ==============================================================================
# Round trips
# ==============================================================================

def test_hello_round_trip(codec, provider):
    envelope = codec.encode(b"hello", provider.certificate())
    assert envelope.startswith(PEM_HEADER)
    assert b"hello" not in envelope
    plain = codec.decode(envelope, provider.identity_private_key(), provider.certificate())
    assert plain == b"hello"


@pytest.mark.parametrize("payload", [b"", bytes(range(256)) * 40])
def test_round_trip_edge_payloads(codec, provider, payload):
    envelope = codec.encode(payload, provider.certificate())
    assert codec.decode(envelope, provider.identity_private_key(), provider.certificate()) == payload


def test_decode_accepts_text_envelope(codec, provider):
    envelope = codec.encode(b"text", provider.certificate()).decode("ascii")
    assert codec.decode(envelope, provider.identity_private_key(), provider.certificate()) == b"text"


def test_each_encode_uses_fresh_content_key(codec, provider):
    a = codec.encode(b"same", provider.certificate())
    b = codec.encode(b"same", provider.certificate())
    assert a != b


# ==============================================================================
# Failures
# ==============================================================================

def test_wrong_recipient_fails(codec, provider, other_provider):
    envelope = codec.encode(b"secret", provider.certificate())
    with pytest.raises(DecodeError) as exc:
        codec.decode(envelope, other_provider.identity_private_key(), other_provider.certificate())
    assert str(exc.value) == DECODE_FAILURE


def test_fresh_key_with_recipient_certificate_fails(codec, provider):
    # right certificate, private key that does not belong to it
    envelope = codec.encode(b"hello", provider.certificate())
    with pytest.raises(DecodeError) as exc:
        codec.decode(envelope, generate_rsa_key(2048), provider.certificate())
    assert str(exc.value) == DECODE_FAILURE


def test_unsupported_content_cipher_fails(codec, provider):
    # e.g. a DES3 envelope produced by another toolkit
    envelope = codec.encode(b"hello", provider.certificate())
    with patch(
        "sealbox.security.cert_envelope.pkcs7.pkcs7_decrypt_pem",
        side_effect=UnsupportedAlgorithm("Only AES-128-CBC and AES-256-CBC are supported"),
    ):
        with pytest.raises(DecodeError) as exc:
            codec.decode(envelope, provider.identity_private_key(), provider.certificate())
    assert str(exc.value) == DECODE_FAILURE


def test_garbage_envelope_fails(codec, provider):
    with pytest.raises(DecodeError, match=DECODE_FAILURE):
        codec.decode(b"not a pkcs7 envelope", provider.identity_private_key(), provider.certificate())


def test_truncated_envelope_fails(codec, provider):
    envelope = codec.encode(b"payload" * 100, provider.certificate())
    lines = envelope.splitlines()
    truncated = b"\n".join(lines[:3] + lines[-1:])
    with pytest.raises(DecodeError):
        codec.decode(truncated, provider.identity_private_key(), provider.certificate())


def test_envelope_content_is_base64_of_plaintext(codec, provider):
    # Another producer may envelope raw text; that is not base64 and is refused.
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.serialization import pkcs7

    raw = (
        pkcs7.PKCS7EnvelopeBuilder()
        .set_data(b"not base64 !!")
        .add_recipient(provider.certificate())
        .encrypt(serialization.Encoding.PEM, [])
    )
    with pytest.raises(DecodeError):
        codec.decode(raw, provider.identity_private_key(), provider.certificate())

    wrapped = (
        pkcs7.PKCS7EnvelopeBuilder()
        .set_data(base64.b64encode(b"interop"))
        .add_recipient(provider.certificate())
        .encrypt(serialization.Encoding.PEM, [pkcs7.PKCS7Options.Binary])
    )
    assert codec.decode(wrapped, provider.identity_private_key(), provider.certificate()) == b"interop"


def test_encode_rejects_non_bytes(codec, provider):
    with pytest.raises(EncodeError):
        codec.encode("text", provider.certificate())


def test_encode_rejects_non_certificate(codec, provider):
    with pytest.raises(EncodeError):
        codec.encode(b"x", provider.identity_private_key())


# ==============================================================================
# Validity window
# ==============================================================================

@pytest.fixture
def expired_identity():
    key = generate_rsa_key(2048)
    start = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=30)
    cert = generate_self_signed_certificate(key, "Old", "Old Inc.", validity_days=1, now=start)
    return key, cert


def test_expired_certificate_ignored_by_default(codec, expired_identity):
    key, cert = expired_identity
    envelope = codec.encode(b"late", cert)
    assert codec.decode(envelope, key, cert) == b"late"


def test_expired_certificate_refused_when_enforced(expired_identity):
    key, cert = expired_identity
    envelope = CertificateEnvelopeCodec().encode(b"late", cert)
    strict = CertificateEnvelopeCodec(enforce_validity=True)
    with pytest.raises(DecodeError, match="validity"):
        strict.decode(envelope, key, cert)
