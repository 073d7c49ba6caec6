"""Token encryption at rest.

AES-256-GCM with a random 16-byte IV per call. Ciphertexts are stored as
three hex fields, ``iv:tag:data``.
"""
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import settings


IV_LENGTH = 16
AUTH_TAG_LENGTH = 16


def get_encryption_key() -> bytes:
    """Load the 256-bit token encryption key from settings."""
    key_hex = settings.XERO_TOKEN_ENCRYPTION_KEY
    if not key_hex:
        raise ValueError("XERO_TOKEN_ENCRYPTION_KEY not configured")
    key = bytes.fromhex(key_hex)
    if len(key) != 32:
        raise ValueError("XERO_TOKEN_ENCRYPTION_KEY must be 32 bytes (64 hex characters)")
    return key


def encrypt(plaintext: str) -> str:
    """Encrypt a string, returning ``iv:tag:data`` hex."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(get_encryption_key()).encrypt(iv, plaintext.encode("utf-8"), None)
    cipher_text, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{cipher_text.hex()}"


def decrypt(encrypted_data: str) -> str:
    """Decrypt an ``iv:tag:data`` string.

    Raises ValueError on a malformed string and
    cryptography.exceptions.InvalidTag when the data was tampered with or
    the key is wrong.
    """
    parts = encrypted_data.split(":")
    if len(parts) != 3:
        raise ValueError("Invalid encrypted data format")

    # data is empty for an empty plaintext
    iv_hex, tag_hex, data_hex = parts
    if not iv_hex or not tag_hex:
        raise ValueError("Invalid encrypted data format")
    iv = bytes.fromhex(iv_hex)
    tag = bytes.fromhex(tag_hex)
    cipher_text = bytes.fromhex(data_hex)

    plaintext = AESGCM(get_encryption_key()).decrypt(iv, cipher_text + tag, None)
    return plaintext.decode("utf-8")
