# encryption abstraction module

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_LEN = 12


class DecryptionError(Exception):
    """Raised when a sealed payload fails AES-GCM authentication."""


def parse_key(key_hex: str) -> bytes:
    """Decode a hex key and check it is a valid AES size."""
    key = bytes.fromhex(key_hex)
    if len(key) not in (16, 24, 32):
        raise ValueError("AES key must be 16/24/32 bytes")
    return key


def seal(key: bytes, plaintext: bytes, associated: bytes | None = None) -> bytes:
    """AEAD seal: nonce || ciphertext+tag"""
    nonce = os.urandom(NONCE_LEN)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, associated)


def open_sealed(key: bytes, sealed: bytes, associated: bytes | None = None) -> bytes:
    """AEAD open: returns plaintext or raises DecryptionError"""
    if len(sealed) < NONCE_LEN:
        raise DecryptionError("sealed payload shorter than nonce")
    nonce, ciphertext = sealed[:NONCE_LEN], sealed[NONCE_LEN:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, associated)
    except InvalidTag as exc:
        raise DecryptionError("AEAD authentication failed") from exc
