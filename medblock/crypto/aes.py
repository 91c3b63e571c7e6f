from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend
from cryptography.exceptions import InvalidTag
import os
import base64
import binascii
import json

from medblock.errors import DecryptionError

KEY_SIZE = 32  # 256-bit key
IV_SIZE = 12  # 96 bits for GCM


def generate_key():
    """Generate a random AES key, hex encoded"""
    return os.urandom(KEY_SIZE).hex()


def _key_bytes(key):
    if isinstance(key, str):
        try:
            key = bytes.fromhex(key)
        except ValueError:
            raise DecryptionError("Encryption key is not valid hex")
    if len(key) != KEY_SIZE:
        raise DecryptionError(f"Encryption key must be {KEY_SIZE} bytes")
    return key


def encrypt(data, key):
    """Encrypt data using AES-GCM"""
    if isinstance(data, str):
        data = data.encode('utf-8')

    # Generate a random IV
    iv = os.urandom(IV_SIZE)

    # Create an encryptor
    encryptor = Cipher(
        algorithms.AES(_key_bytes(key)),
        modes.GCM(iv),
        backend=default_backend()
    ).encryptor()

    # Encrypt the data
    ciphertext = encryptor.update(data) + encryptor.finalize()

    # Return IV, ciphertext, and tag
    result = {
        'iv': base64.b64encode(iv).decode('utf-8'),
        'ciphertext': base64.b64encode(ciphertext).decode('utf-8'),
        'tag': base64.b64encode(encryptor.tag).decode('utf-8')
    }

    return json.dumps(result).encode('utf-8')


def decrypt(encrypted_data, key):
    """Decrypt data using AES-GCM, returning the plaintext bytes"""
    # Parse the encrypted data
    try:
        if isinstance(encrypted_data, bytes):
            encrypted_data = encrypted_data.decode('utf-8')
        data = json.loads(encrypted_data)
        iv = base64.b64decode(data['iv'])
        ciphertext = base64.b64decode(data['ciphertext'])
        tag = base64.b64decode(data['tag'])
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        raise DecryptionError(f"Malformed encrypted blob: {e}")

    # Create a decryptor; GCM verifies the tag on finalize
    try:
        decryptor = Cipher(
            algorithms.AES(_key_bytes(key)),
            modes.GCM(iv, tag),
            backend=default_backend()
        ).decryptor()
        return decryptor.update(ciphertext) + decryptor.finalize()
    except (InvalidTag, ValueError):
        raise DecryptionError("Authentication failed: wrong key or tampered blob")
