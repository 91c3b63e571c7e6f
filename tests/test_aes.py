import json
import os

import pytest

from medblock.crypto import aes
from medblock.errors import DecryptionError


@pytest.mark.parametrize("payload", [
    b"",
    b"Blood pressure: 140/90 mmHg",
    os.urandom(4096),
    bytes(range(256))
])
def test_round_trip(payload):
    key = aes.generate_key()
    assert aes.decrypt(aes.encrypt(payload, key), key) == payload


def test_string_input_is_utf8_encoded():
    key = aes.generate_key()
    assert aes.decrypt(aes.encrypt("Diagnose: Grippe", key), key) == "Diagnose: Grippe".encode("utf-8")


def test_wrong_key_fails():
    blob = aes.encrypt(b"lab results", aes.generate_key())
    with pytest.raises(DecryptionError):
        aes.decrypt(blob, aes.generate_key())


def test_tampered_blob_fails():
    key = aes.generate_key()
    envelope = json.loads(aes.encrypt(b"prescription: amoxicillin", key))
    envelope["ciphertext"] = envelope["ciphertext"][::-1]
    with pytest.raises(DecryptionError):
        aes.decrypt(json.dumps(envelope).encode("utf-8"), key)


def test_malformed_blob_fails():
    with pytest.raises(DecryptionError):
        aes.decrypt(b"not json at all", aes.generate_key())


def test_keys_are_random_hex():
    first, second = aes.generate_key(), aes.generate_key()
    assert first != second
    assert len(first) == 64
    bytes.fromhex(first)


def test_invalid_key_rejected():
    with pytest.raises(DecryptionError):
        aes.encrypt(b"data", "abcd")


def test_ciphertext_hides_plaintext():
    key = aes.generate_key()
    plaintext = b"patient has a penicillin allergy"
    blob = aes.encrypt(plaintext, key)
    assert plaintext not in blob
    # Same input encrypts differently each time
    assert blob != aes.encrypt(plaintext, key)
