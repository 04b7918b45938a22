"""Removal of the ``V1MMWX`` encryption envelope.

Encrypted packages look like this::

    b"V1MMWX" | AES-256-CBC(head, 1024 bytes) | XOR(tail, single byte key)

The AES key is derived from the application identifier with PBKDF2 and the
single XOR byte is taken from the identifier as well. Only the first 1023
bytes of the decrypted head belong to the plaintext container.
"""

from __future__ import annotations

import os
from pathlib import Path

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from wxapkg_audit.crypto.kdf import DEFAULT_SALT, derive_key
from wxapkg_audit.errors import DecryptionFailure, IOFailure

ENCRYPTION_MARKER = b"V1MMWX"
MARKER_LEN = len(ENCRYPTION_MARKER)
DEFAULT_IV = b"the iv: 16 bytes"
HEAD_LEN = 1024
HEAD_KEEP = 1023
DEFAULT_XOR_KEY = 0x66
_BLOCK_BITS = algorithms.AES.block_size


def is_encrypted(data: bytes) -> bool:
    """Return True if ``data`` starts with the encryption marker."""

    return data[:MARKER_LEN] == ENCRYPTION_MARKER


def is_encrypted_file(path: os.PathLike[str] | str) -> bool:
    target = Path(path)
    if not target.is_file():
        return False
    try:
        with target.open("rb") as f:
            return is_encrypted(f.read(MARKER_LEN))
    except OSError as exc:
        raise IOFailure(f"Unable to read package {target}: {exc}") from exc


def xor_key_for(identifier: str) -> int:
    if len(identifier) >= 2:
        return ord(identifier[-2]) & 0xFF
    return DEFAULT_XOR_KEY


def _xor(data: bytes, key: int) -> bytes:
    return data.translate(bytes(b ^ key for b in range(256)))


def decrypt(
    identifier: str,
    data: bytes,
    *,
    iv: bytes = DEFAULT_IV,
    salt: bytes = DEFAULT_SALT,
) -> bytes:
    """Return the plaintext container wrapped in ``data``."""

    if not is_encrypted(data):
        raise DecryptionFailure("Package is not encrypted (marker V1MMWX not found)")
    if len(data) < MARKER_LEN + HEAD_LEN:
        raise DecryptionFailure("Encrypted package is shorter than its header block")

    key = derive_key(identifier, salt)
    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(data[MARKER_LEN : MARKER_LEN + HEAD_LEN]) + decryptor.finalize()
        unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
        head = unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise DecryptionFailure(f"Unable to decrypt package header: {exc}") from exc

    if len(head) < HEAD_KEEP:
        raise DecryptionFailure("Decrypted header block is too short")

    tail = _xor(data[MARKER_LEN + HEAD_LEN :], xor_key_for(identifier))
    return head[:HEAD_KEEP] + tail


def encrypt(
    identifier: str,
    plaintext: bytes,
    *,
    iv: bytes = DEFAULT_IV,
    salt: bytes = DEFAULT_SALT,
) -> bytes:
    """Wrap ``plaintext`` in the envelope understood by :func:`decrypt`."""

    if len(plaintext) < HEAD_KEEP:
        raise ValueError(f"Plaintext must be at least {HEAD_KEEP} bytes long")

    padder = padding.PKCS7(_BLOCK_BITS).padder()
    padded = padder.update(plaintext[:HEAD_KEEP]) + padder.finalize()
    encryptor = Cipher(algorithms.AES(derive_key(identifier, salt)), modes.CBC(iv)).encryptor()
    head = encryptor.update(padded) + encryptor.finalize()
    tail = _xor(plaintext[HEAD_KEEP:], xor_key_for(identifier))
    return ENCRYPTION_MARKER + head + tail


def decrypt_file(
    identifier: str,
    src: os.PathLike[str] | str,
    dst: os.PathLike[str] | str | None = None,
) -> bytes:
    """Decrypt the package at ``src`` and optionally store the result at ``dst``."""

    source = Path(src)
    try:
        data = source.read_bytes()
    except OSError as exc:
        raise IOFailure(f"Unable to read package {source}: {exc}") from exc

    plaintext = decrypt(identifier, data)

    if dst is not None:
        target = Path(dst)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(plaintext)
        except OSError as exc:
            raise IOFailure(f"Unable to write decrypted package {target}: {exc}") from exc
    return plaintext


__all__ = [
    "DEFAULT_IV",
    "DEFAULT_XOR_KEY",
    "ENCRYPTION_MARKER",
    "HEAD_KEEP",
    "HEAD_LEN",
    "decrypt",
    "decrypt_file",
    "encrypt",
    "is_encrypted",
    "is_encrypted_file",
    "xor_key_for",
]
