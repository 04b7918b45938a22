"""Envelope decryption: PBKDF2 key, AES-CBC head block, XOR tail."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from wxapkg_audit.crypto.envelope import (
    DEFAULT_XOR_KEY,
    ENCRYPTION_MARKER,
    HEAD_KEEP,
    HEAD_LEN,
    decrypt,
    decrypt_file,
    encrypt,
    is_encrypted,
    is_encrypted_file,
    xor_key_for,
)
from wxapkg_audit.crypto.kdf import DEFAULT_SALT, PBKDF2_ITERATIONS, derive_key
from wxapkg_audit.errors import DecryptionFailure, IOFailure

APPID = "wx0123456789abcdef"


def test_derive_key_matches_pbkdf2_sha1() -> None:
    expected = hashlib.pbkdf2_hmac("sha1", APPID.encode(), b"saltiest", 1000, 32)

    assert DEFAULT_SALT == b"saltiest"
    assert PBKDF2_ITERATIONS == 1000
    assert derive_key(APPID) == expected


def test_xor_key_uses_second_to_last_character() -> None:
    assert xor_key_for(APPID) == ord("e")
    assert xor_key_for("ab") == ord("a")
    assert xor_key_for("a") == DEFAULT_XOR_KEY
    assert xor_key_for("") == 0x66


def test_is_encrypted() -> None:
    assert is_encrypted(ENCRYPTION_MARKER + b"rest")
    assert not is_encrypted(b"\xbe" + bytes(20))
    assert not is_encrypted(b"V1MM")


def test_roundtrip_keeps_byte_at_head_boundary() -> None:
    plaintext = bytearray(os.urandom(4096))
    plaintext[HEAD_KEEP - 1] = 0xAA
    plaintext[HEAD_KEEP] = 0x55
    plaintext = bytes(plaintext)

    wrapped = encrypt(APPID, plaintext)

    assert wrapped.startswith(ENCRYPTION_MARKER)
    assert len(wrapped) == len(ENCRYPTION_MARKER) + HEAD_LEN + len(plaintext) - HEAD_KEEP
    restored = decrypt(APPID, wrapped)
    assert restored == plaintext
    assert restored[HEAD_KEEP - 1] == 0xAA
    assert restored[HEAD_KEEP] == 0x55


def test_tail_is_single_byte_xor() -> None:
    plaintext = bytes(HEAD_KEEP) + b"tail data"

    wrapped = encrypt(APPID, plaintext)

    key = xor_key_for(APPID)
    assert wrapped[len(ENCRYPTION_MARKER) + HEAD_LEN :] == bytes(b ^ key for b in b"tail data")


def test_minimum_size_plaintext() -> None:
    plaintext = os.urandom(HEAD_KEEP)

    assert decrypt(APPID, encrypt(APPID, plaintext)) == plaintext


def test_encrypt_rejects_short_plaintext() -> None:
    with pytest.raises(ValueError):
        encrypt(APPID, b"short")


def test_decrypt_requires_marker() -> None:
    with pytest.raises(DecryptionFailure):
        decrypt(APPID, b"\xbe" + bytes(2000))


def test_decrypt_rejects_truncated_head() -> None:
    with pytest.raises(DecryptionFailure):
        decrypt(APPID, ENCRYPTION_MARKER + bytes(100))


def test_decrypt_rejects_bad_padding() -> None:
    wrapped = bytearray(encrypt(APPID, bytes(2048)))
    # Flipping the last byte of the previous CBC block turns the 0x01 pad into 0xFE.
    wrapped[len(ENCRYPTION_MARKER) + HEAD_LEN - 17] ^= 0xFF

    with pytest.raises(DecryptionFailure):
        decrypt(APPID, bytes(wrapped))


def test_decrypt_file(tmp_path: Path) -> None:
    plaintext = os.urandom(2000)
    source = tmp_path / "enc.wxapkg"
    source.write_bytes(encrypt(APPID, plaintext))
    target = tmp_path / "out" / "dec.wxapkg"

    assert decrypt_file(APPID, source, target) == plaintext
    assert target.read_bytes() == plaintext


def test_decrypt_file_missing_source(tmp_path: Path) -> None:
    with pytest.raises(IOFailure):
        decrypt_file(APPID, tmp_path / "missing.wxapkg")


def test_is_encrypted_file(tmp_path: Path) -> None:
    encrypted = tmp_path / "a.wxapkg"
    encrypted.write_bytes(encrypt(APPID, bytes(HEAD_KEEP)))
    plain = tmp_path / "b.wxapkg"
    plain.write_bytes(b"\xbe" + bytes(40))

    assert is_encrypted_file(encrypted)
    assert not is_encrypted_file(plain)
    assert not is_encrypted_file(tmp_path / "missing.wxapkg")


@settings(max_examples=20, deadline=None)
@given(
    identifier=st.text(alphabet="abcdef0123456789wx", min_size=0, max_size=18),
    plaintext=st.binary(min_size=HEAD_KEEP, max_size=HEAD_KEEP + 300),
)
def test_decrypt_inverts_encrypt(identifier: str, plaintext: bytes) -> None:
    assert decrypt(identifier, encrypt(identifier, plaintext)) == plaintext


def test_tail_xor_covers_every_byte_value() -> None:
    tail = bytes(range(256)) * 3
    plaintext = bytes(HEAD_KEEP) + tail

    wrapped = encrypt(APPID, plaintext)

    key = xor_key_for(APPID)
    assert wrapped[len(ENCRYPTION_MARKER) + HEAD_LEN :] == bytes(b ^ key for b in tail)
    assert decrypt(APPID, wrapped) == plaintext
