"""Key derivation helpers using PBKDF2-HMAC-SHA1."""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

DEFAULT_SALT = b"saltiest"
PBKDF2_ITERATIONS = 1000
DERIVED_KEY_LEN = 32


def derive_key(identifier: str, salt: bytes = DEFAULT_SALT) -> bytes:
    """Derive the 256-bit envelope key from an application identifier."""

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA1(),
        length=DERIVED_KEY_LEN,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(identifier.encode("utf-8"))
