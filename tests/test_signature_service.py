"""
Signature and secret storage tests.
"""
import pytest

from playgram.services.errors import WebhookConfigurationError
from playgram.services.signature_service import (
    SecretCipher,
    find_matching_secret,
    generate_secret,
    generate_signature,
    verify_signature,
)


@pytest.mark.parametrize("payload", ["", "{}", '{"event":"qr.scanned"}', "ünïcode ✓"])
def test_signature_verifies_with_same_secret(payload):
    signature = generate_signature(payload, "abc")
    assert verify_signature(payload, signature, "abc")


def test_signature_rejected_with_other_secret():
    signature = generate_signature("payload", "secret-one")
    assert not verify_signature("payload", signature, "secret-two")


def test_signature_is_hex_sha256():
    signature = generate_signature("payload", "abc")
    assert len(signature) == 64
    int(signature, 16)


def test_bytes_and_str_payloads_sign_alike():
    assert generate_signature(b'{"a":1}', "s") == generate_signature('{"a":1}', "s")


def test_malformed_signatures_rejected():
    assert not verify_signature("payload", "", "abc")
    assert not verify_signature("payload", "deadbeef", "abc")
    assert not verify_signature("payload", "z" * 64, "abc")


def test_find_matching_secret_tries_every_candidate():
    body = b'{"cards":[]}'
    signature = generate_signature(body, "new-secret")
    candidates = [("old", "old-secret"), ("new", "new-secret")]

    assert find_matching_secret(body, signature, candidates) == "new"
    assert find_matching_secret(body, signature, [("old", "old-secret")]) is None


def test_generate_secret_is_random_hex():
    first, second = generate_secret(), generate_secret()
    assert first != second
    assert len(first) == 64


def test_cipher_round_trip(cipher):
    token = cipher.encrypt("abc")
    assert token != "abc"
    assert cipher.decrypt(token) == "abc"


def test_cipher_rejects_tampered_token(cipher):
    token = cipher.encrypt("abc")
    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")
    with pytest.raises(WebhookConfigurationError):
        cipher.decrypt(tampered)


def test_cipher_rejects_token_from_other_key(cipher):
    foreign = SecretCipher("another-app-secret").encrypt("abc")
    with pytest.raises(WebhookConfigurationError):
        cipher.decrypt(foreign)
