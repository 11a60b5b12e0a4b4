"""Structural reader for native PHAR archives.

Only the native PHAR container is understood (not the zip or tar based
variants). Opening an archive parses the stub, the manifest and every entry
record, checks that the entry data fills the file exactly, verifies the
trailing hash signature and the CRC32 of every entry. Nothing inside the
archive is executed or extracted.

Layout, all integers little-endian unless noted::

    stub ... __HALT_COMPILER(); [" ?>" [\\r]\\n]
    uint32  manifest length
    uint32  entry count
    uint16  API version (big-endian nibbles, e.g. 0x1110 = 1.1.1)
    uint32  global flags
    uint32  alias length, alias
    uint32  metadata length, metadata
    entries: uint32 name length, name, uint32 size, uint32 mtime,
             uint32 compressed size, uint32 crc32, uint32 flags,
             uint32 metadata length, metadata
    entry data
    signature, [uint32 signature length (OpenSSL only)], uint32 type, "GBMB"
"""

from __future__ import annotations

import bz2
import hashlib
import hmac
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path


PHAR_EXTENSION = ".phar"

HALT_TOKEN = b"__HALT_COMPILER();"
SIGNATURE_MAGIC = b"GBMB"

MANIFEST_MIN_LENGTH = 18
MANIFEST_MAX_LENGTH = 100 * 1024 * 1024

API_VERSION_MASK = 0xFFF0
API_MIN_READ = 0x1000

FLAG_SIGNATURE = 0x00010000

ENTRY_COMPRESSED_GZ = 0x00001000
ENTRY_COMPRESSED_BZ2 = 0x00002000
ENTRY_COMPRESSION_MASK = 0x0000F000

HASH_SIGNATURES = {
    0x0001: ("md5", 16),
    0x0002: ("sha1", 20),
    0x0003: ("sha256", 32),
    0x0004: ("sha512", 64),
}
OPENSSL_SIGNATURES = {
    0x0010: "openssl",
    0x0011: "openssl_sha256",
    0x0012: "openssl_sha512",
}


class PharFormatError(ValueError):
    """The file is not a well-formed PHAR archive."""


def has_phar_extension(path: Path) -> bool:
    """Whether the reader accepts ``path`` by name (``.phar`` among its suffixes)."""
    return PHAR_EXTENSION in path.suffixes


@dataclass(frozen=True)
class PharEntry:
    name: str
    size: int
    timestamp: int
    compressed_size: int
    crc32: int
    flags: int
    offset: int

    @property
    def compression(self) -> str | None:
        if self.flags & ENTRY_COMPRESSED_GZ:
            return "gz"
        if self.flags & ENTRY_COMPRESSED_BZ2:
            return "bz2"
        return None


@dataclass(frozen=True)
class PharArchive:
    path: Path
    api_version: str
    flags: int
    alias: str
    entries: tuple[PharEntry, ...]
    signature_type: str | None

    @classmethod
    def open(cls, path: Path, *, require_signature: bool = True) -> "PharArchive":
        if not has_phar_extension(path):
            raise ValueError(f"Cannot open phar {path}: file extension must contain {PHAR_EXTENSION}")
        return _parse(path, path.read_bytes(), require_signature)

    def names(self) -> list[str]:
        return [entry.name for entry in self.entries]


class _Cursor:
    def __init__(self, data: bytes, start: int, end: int, label: str) -> None:
        self.data = data
        self.pos = start
        self.end = end
        self.label = label

    def take(self, size: int, what: str) -> bytes:
        if size < 0 or self.pos + size > self.end:
            raise PharFormatError(f"internal corruption of phar {self.label} (truncated {what})")
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def u32(self, what: str) -> int:
        return struct.unpack("<I", self.take(4, what))[0]

    def u16_be(self, what: str) -> int:
        return struct.unpack(">H", self.take(2, what))[0]


def _manifest_offset(data: bytes, label: str) -> int:
    idx = data.find(HALT_TOKEN)
    if idx < 0:
        raise PharFormatError(f"internal corruption of phar {label} (__HALT_COMPILER(); not found)")

    offset = idx + len(HALT_TOKEN)
    tail = data[offset:offset + 3]
    if len(tail) < 3:
        raise PharFormatError(f"internal corruption of phar {label} (truncated manifest at stub end)")

    if tail[:1] in (b" ", b"\n") and tail[1:] == b"?>":
        offset += 3
        nextchar = data[offset:offset + 1]
        if not nextchar:
            raise PharFormatError(f"internal corruption of phar {label} (truncated manifest at stub end)")
        if nextchar == b"\r":
            if data[offset + 1:offset + 2] != b"\n":
                raise PharFormatError(f"internal corruption of phar {label} (stub ends with \\r without \\n)")
            offset += 2
        elif nextchar == b"\n":
            offset += 1
    return offset


def _signature(data: bytes, label: str) -> tuple[int, str]:
    """Verify the trailing signature; returns the end of the entry data."""
    if len(data) < 8 or data[-4:] != SIGNATURE_MAGIC:
        raise PharFormatError(f"phar {label} has a broken signature")

    sig_type = struct.unpack("<I", data[-8:-4])[0]

    if sig_type in HASH_SIGNATURES:
        algorithm, size = HASH_SIGNATURES[sig_type]
        end = len(data) - 8 - size
        if end < 0:
            raise PharFormatError(f"phar {label} has a broken signature")
        expected = data[end:len(data) - 8]
        actual = hashlib.new(algorithm, data[:end]).digest()
        if not hmac.compare_digest(expected, actual):
            raise PharFormatError(f"phar {label} has a broken signature ({algorithm} mismatch)")
        return end, algorithm

    if sig_type in OPENSSL_SIGNATURES:
        if len(data) < 12:
            raise PharFormatError(f"phar {label} has a broken signature")
        size = struct.unpack("<I", data[-12:-8])[0]
        end = len(data) - 12 - size
        if size == 0 or end < 0:
            raise PharFormatError(f"phar {label} has a broken openssl signature")
        return end, OPENSSL_SIGNATURES[sig_type]

    raise PharFormatError(f"phar {label} has a broken or unsupported signature (type 0x{sig_type:x})")


def _api_version(raw: int) -> str:
    return f"{raw >> 12}.{(raw >> 8) & 0xF}.{(raw >> 4) & 0xF}"


def _read_entry(cursor: _Cursor, offset: int, label: str) -> PharEntry:
    name_len = cursor.u32("entry name length")
    if name_len == 0:
        raise PharFormatError(f"internal corruption of phar {label} (zero-length filename encountered)")
    raw_name = cursor.take(name_len, "entry name")
    size = cursor.u32("entry size")
    timestamp = cursor.u32("entry timestamp")
    compressed_size = cursor.u32("entry compressed size")
    crc = cursor.u32("entry crc32")
    flags = cursor.u32("entry flags")
    cursor.take(cursor.u32("entry metadata length"), "entry metadata")

    if flags & ENTRY_COMPRESSED_GZ and flags & ENTRY_COMPRESSED_BZ2:
        raise PharFormatError(f"phar {label} entry has conflicting compression flags")
    if flags & ENTRY_COMPRESSION_MASK and not flags & (ENTRY_COMPRESSED_GZ | ENTRY_COMPRESSED_BZ2):
        raise PharFormatError(f"phar {label} entry uses an unknown compression")
    if not flags & ENTRY_COMPRESSION_MASK and compressed_size != size:
        raise PharFormatError(f"internal corruption of phar {label} (uncompressed entry size mismatch)")

    try:
        name = raw_name.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PharFormatError(f"phar {label} entry name is not valid UTF-8") from exc

    return PharEntry(
        name=name,
        size=size,
        timestamp=timestamp,
        compressed_size=compressed_size,
        crc32=crc,
        flags=flags,
        offset=offset,
    )


def _check_entry_data(entry: PharEntry, raw: bytes, label: str) -> None:
    try:
        if entry.compression == "gz":
            content = zlib.decompress(raw, -zlib.MAX_WBITS)
        elif entry.compression == "bz2":
            content = bz2.decompress(raw)
        else:
            content = raw
    except (zlib.error, OSError, ValueError, EOFError) as exc:
        raise PharFormatError(f"phar {label} entry {entry.name} cannot be decompressed: {exc}") from exc

    if len(content) != entry.size:
        raise PharFormatError(f"phar {label} entry {entry.name} has the wrong size")
    if zlib.crc32(content) & 0xFFFFFFFF != entry.crc32:
        raise PharFormatError(f"phar {label} entry {entry.name} failed the crc32 check")


def _parse(path: Path, data: bytes, require_signature: bool) -> PharArchive:
    label = f'"{path}"'
    offset = _manifest_offset(data, label)

    header = _Cursor(data, offset, len(data), label)
    manifest_len = header.u32("manifest at manifest length")
    if manifest_len > MANIFEST_MAX_LENGTH:
        raise PharFormatError(f"manifest cannot be larger than 100 MB in phar {label}")
    if manifest_len < MANIFEST_MIN_LENGTH:
        raise PharFormatError(f"internal corruption of phar {label} (too short manifest)")

    manifest_start = header.pos
    manifest_end = manifest_start + manifest_len
    if manifest_end > len(data):
        raise PharFormatError(f"internal corruption of phar {label} (truncated manifest)")

    cursor = _Cursor(data, manifest_start, manifest_end, label)
    count = cursor.u32("manifest entry count")
    raw_api = cursor.u16_be("manifest api version")
    if raw_api & API_VERSION_MASK < API_MIN_READ:
        raise PharFormatError(f"phar {label} is API version {_api_version(raw_api)}, and cannot be processed")
    flags = cursor.u32("manifest flags")
    raw_alias = cursor.take(cursor.u32("alias length"), "alias")
    cursor.take(cursor.u32("metadata length"), "metadata")

    if flags & FLAG_SIGNATURE:
        data_end, signature_type = _signature(data, label)
    elif require_signature:
        raise PharFormatError(f"phar {label} does not have a signature")
    else:
        data_end, signature_type = len(data), None

    entries: list[PharEntry] = []
    entry_offset = manifest_end
    for _ in range(count):
        entry = _read_entry(cursor, entry_offset, label)
        entries.append(entry)
        entry_offset += entry.compressed_size

    if entry_offset > data_end:
        raise PharFormatError(f"internal corruption of phar {label} (truncated entry data)")
    if entry_offset != data_end:
        raise PharFormatError(f"internal corruption of phar {label} (unexpected data after the last entry)")

    for entry in entries:
        _check_entry_data(entry, data[entry.offset:entry.offset + entry.compressed_size], label)

    return PharArchive(
        path=path,
        api_version=_api_version(raw_api),
        flags=flags,
        alias=raw_alias.decode("utf-8", errors="replace"),
        entries=tuple(entries),
        signature_type=signature_type,
    )
