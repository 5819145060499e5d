"""Encryption of stored marketplace credentials.

Values are stored as ``hex(iv):hex(ciphertext)`` using AES-256-CBC with PKCS7
padding under the 32-byte ``ENCRYPTION_KEY``.
"""

from __future__ import annotations

import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

IV_LENGTH = 16


class CredentialError(ValueError):
    pass


def _key() -> bytes:
    key = os.environ.get("ENCRYPTION_KEY", "")
    raw = key.encode()
    if len(raw) != 32:
        raise CredentialError("ENCRYPTION_KEY must be 32 bytes")
    return raw


def is_encrypted(value: str) -> bool:
    iv_hex, sep, body = value.partition(":")
    if not sep or len(iv_hex) != IV_LENGTH * 2 or not body:
        return False
    try:
        bytes.fromhex(iv_hex)
        bytes.fromhex(body)
    except ValueError:
        return False
    return True


def encrypt(plaintext: str) -> str:
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    data = padder.update(plaintext.encode()) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_key()), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(data) + encryptor.finalize()
    return f"{iv.hex()}:{ciphertext.hex()}"


def decrypt(value: str) -> str:
    iv_hex, _, body = value.partition(":")
    try:
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(body)
        decryptor = Cipher(algorithms.AES(_key()), modes.CBC(iv)).decryptor()
        data = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(data) + unpadder.finalize()).decode()
    except ValueError as exc:
        raise CredentialError(f"Unable to decrypt credential: {exc}") from exc


def reveal(value: str) -> str:
    """Decrypt ``value`` if it is in the encrypted format, else return it as-is."""
    if is_encrypted(value):
        return decrypt(value)
    return value
