"""Container format helpers for plaintext wxapkg archives."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from struct import Struct
from typing import Iterable

from wxapkg_audit.errors import CorruptEntry, InvalidContainerFormat, IOFailure

FIRST_MARK = 0xBE
LAST_MARK = 0xED
LAST_MARK_OFFSET = 13
HEADER_LEN = 14
ENTRY_COUNT_OFFSET = 14
TABLE_OFFSET = 18
MAX_NAME_LEN = 10 * 1024 * 1024
MAIN_PACKAGE_NAME = "__APP__.wxapkg"

# mark, info1, index length, body length, mark
_HEADER_STRUCT = Struct(">BIIIB")
_U32 = Struct(">I")
_OFFSET_SIZE_STRUCT = Struct(">II")


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.offset + self.size


def _read_u32(data: bytes, offset: int) -> int:
    if offset + _U32.size > len(data):
        raise InvalidContainerFormat("File table runs past end of container")
    return _U32.unpack_from(data, offset)[0]


def decode_container(data: bytes) -> list[ArchiveEntry]:
    """Parse the file table of a plaintext container.

    Entries are returned in table order. Offsets and sizes are not checked
    against the buffer here; extraction skips out-of-range entries on its own.
    """

    if len(data) < HEADER_LEN or data[0] != FIRST_MARK or data[LAST_MARK_OFFSET] != LAST_MARK:
        raise InvalidContainerFormat("Not a wxapkg container (header marks do not match)")

    entry_count = _read_u32(data, ENTRY_COUNT_OFFSET)
    if entry_count <= 0:
        raise InvalidContainerFormat("Container declares no entries")

    entries: list[ArchiveEntry] = []
    cursor = TABLE_OFFSET
    for _ in range(entry_count):
        name_len = _read_u32(data, cursor)
        cursor += _U32.size
        if name_len > MAX_NAME_LEN:
            raise CorruptEntry(f"Entry name length {name_len} exceeds {MAX_NAME_LEN}")
        if cursor + name_len + _OFFSET_SIZE_STRUCT.size > len(data):
            raise InvalidContainerFormat("File table runs past end of container")
        try:
            name = data[cursor : cursor + name_len].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptEntry("Entry name is not valid UTF-8") from exc
        cursor += name_len
        offset, size = _OFFSET_SIZE_STRUCT.unpack_from(data, cursor)
        cursor += _OFFSET_SIZE_STRUCT.size
        entries.append(ArchiveEntry(name=name, offset=offset, size=size))

    return entries


def read_container(path: os.PathLike[str] | str) -> tuple[list[ArchiveEntry], bytes]:
    """Read ``path`` fully into memory and decode its file table."""

    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise IOFailure(f"Unable to read package {path}: {exc}") from exc
    return decode_container(data), data


def encode_container(members: Iterable[tuple[str, bytes]]) -> bytes:
    """Build a plaintext container from ``(name, content)`` pairs.

    Names are stored as given; the producer writes them with a leading ``/``.
    """

    items = [(name.encode("utf-8"), content) for name, content in members]
    if not items:
        raise ValueError("At least one member is required")

    index_len = _U32.size + sum(
        _U32.size + len(raw_name) + _OFFSET_SIZE_STRUCT.size for raw_name, _ in items
    )
    data_start = HEADER_LEN + index_len
    body_len = sum(len(content) for _, content in items)

    table = bytearray(_U32.pack(len(items)))
    body = bytearray()
    offset = data_start
    for raw_name, content in items:
        table += _U32.pack(len(raw_name))
        table += raw_name
        table += _OFFSET_SIZE_STRUCT.pack(offset, len(content))
        body += content
        offset += len(content)

    header = _HEADER_STRUCT.pack(FIRST_MARK, 0, index_len, body_len, LAST_MARK)
    return header + bytes(table) + bytes(body)


def package_kind(path: os.PathLike[str] | str) -> str:
    """Return ``"main"`` for the main package and ``"subpackage"`` otherwise."""

    return "main" if Path(path).name == MAIN_PACKAGE_NAME else "subpackage"


__all__ = [
    "ArchiveEntry",
    "ENTRY_COUNT_OFFSET",
    "FIRST_MARK",
    "HEADER_LEN",
    "LAST_MARK",
    "LAST_MARK_OFFSET",
    "MAIN_PACKAGE_NAME",
    "MAX_NAME_LEN",
    "TABLE_OFFSET",
    "decode_container",
    "encode_container",
    "package_kind",
    "read_container",
]
