"""AES-256-GCM wrapper for API keys stored in the database.

Values are stored as base64(iv || auth tag || ciphertext) with a 16-byte IV
and a 16-byte tag, so keys written by earlier releases still decrypt.
"""
import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16


def _cipher() -> AESGCM:
    secret = os.getenv("ENCRYPTION_SECRET")
    if not secret or len(secret) != 32:
        raise RuntimeError("ENCRYPTION_SECRET is not defined or is not 32 characters long.")
    return AESGCM(secret.encode("utf-8"))


def encrypt(text: str) -> str:
    """Encrypt a plaintext string"""
    iv = os.urandom(IV_LENGTH)
    sealed = _cipher().encrypt(iv, text.encode("utf-8"), None)
    ciphertext, auth_tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
    return base64.b64encode(iv + auth_tag + ciphertext).decode("ascii")


def decrypt(encrypted_text) -> str:
    """Decrypt a stored value; empty or undecryptable input gives ''"""
    if not encrypted_text:
        return ""
    cipher = _cipher()
    try:
        data = base64.b64decode(encrypted_text)
        iv = data[:IV_LENGTH]
        auth_tag = data[IV_LENGTH:IV_LENGTH + AUTH_TAG_LENGTH]
        ciphertext = data[IV_LENGTH + AUTH_TAG_LENGTH:]
        return cipher.decrypt(iv, ciphertext + auth_tag, None).decode("utf-8")
    except (InvalidTag, ValueError, binascii.Error) as e:
        logger.error("Decryption failed: %s", type(e).__name__)
        return ""
