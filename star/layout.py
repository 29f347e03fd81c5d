from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple

from .constants import (
    FILENAME_FIELD_SIZE,
    INT32_MAX,
    MAX_FILENAME_BYTES,
    MAX_FREE_SPACES,
    STATUS_ACTIVE,
    STATUS_DELETED,
)
from .errors import CapacityExceeded, CorruptHeader, TruncatedArchive


# Container header (little endian, fixed size)
#  - free_count i32 (legacy, ignored on read)
#  - FreeSpaceSlot[MAX_FREE_SPACES] each {start_position i32, size i32}
#  - ArchiveMetadata {num_files i32, total_size i32}
_FREE_COUNT_STRUCT = struct.Struct("<i")
_SLOT_TABLE_STRUCT = struct.Struct("<" + "ii" * MAX_FREE_SPACES)
_METADATA_STRUCT = struct.Struct("<ii")

# FileInfo record header: filename[255], 1 pad byte (alignment of the
# following int), file_size i32, start_position i32, status i32
_FILE_INFO_STRUCT = struct.Struct("<%dsxiii" % FILENAME_FIELD_SIZE)

FREE_COUNT_OFFSET = 0
FREE_TABLE_OFFSET = _FREE_COUNT_STRUCT.size
METADATA_OFFSET = FREE_TABLE_OFFSET + _SLOT_TABLE_STRUCT.size
ENTRY_REGION_OFFSET = METADATA_OFFSET + _METADATA_STRUCT.size
HEADER_SIZE = ENTRY_REGION_OFFSET

FILE_INFO_SIZE = _FILE_INFO_STRUCT.size


@dataclass
class FreeSpaceSlot:
    start_position: int
    size: int

    @property
    def end(self) -> int:
        return self.start_position + self.size

    @property
    def is_empty(self) -> bool:
        return self.size == 0


@dataclass
class ArchiveMetadata:
    num_files: int = 0
    total_size: int = 0

    def pack(self) -> bytes:
        _check_int32("num_files", self.num_files)
        _check_int32("total_size", self.total_size)
        return _METADATA_STRUCT.pack(self.num_files, self.total_size)


@dataclass
class FileInfo:
    """Fixed-size record header; ``start_position`` is the offset of the content."""

    filename: str
    file_size: int
    start_position: int
    status: int = STATUS_ACTIVE

    @property
    def offset(self) -> int:
        return self.start_position - FILE_INFO_SIZE

    @property
    def end(self) -> int:
        return self.start_position + self.file_size

    @property
    def span(self) -> int:
        return FILE_INFO_SIZE + self.file_size

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def moved_to(self, offset: int) -> "FileInfo":
        return FileInfo(self.filename, self.file_size, offset + FILE_INFO_SIZE, self.status)

    def pack(self) -> bytes:
        _check_int32("file_size", self.file_size)
        _check_int32("start_position", self.start_position)
        return _FILE_INFO_STRUCT.pack(encode_name(self.filename), self.file_size, self.start_position, self.status)

    @classmethod
    def unpack(cls, raw: bytes, offset: int) -> "FileInfo":
        name_field, file_size, start_position, status = _FILE_INFO_STRUCT.unpack(raw)
        if status not in (STATUS_ACTIVE, STATUS_DELETED):
            raise CorruptHeader(f"Record at offset {offset} has invalid status {status}")
        if file_size < 0:
            raise CorruptHeader(f"Record at offset {offset} has negative size {file_size}")
        if start_position != offset + FILE_INFO_SIZE:
            raise CorruptHeader(
                f"Record at offset {offset} points its content at {start_position}, expected {offset + FILE_INFO_SIZE}"
            )
        return cls(decode_name(name_field), file_size, start_position, status)


def encode_name(name: str) -> bytes:
    """Encode a member name the way it is stored: UTF-8, truncated to 254 bytes."""
    return name.encode("utf-8", "surrogateescape")[:MAX_FILENAME_BYTES]


def decode_name(field: bytes) -> str:
    nul = field.find(b"\x00")
    if nul >= 0:
        field = field[:nul]
    return field.decode("utf-8", "surrogateescape")


def _check_int32(label: str, value: int) -> None:
    if not 0 <= value <= INT32_MAX:
        raise CapacityExceeded(f"{label}={value} does not fit the 32-bit field of the star format")


def read_exact(f: BinaryIO, n: int) -> bytes:
    b = f.read(n)
    if len(b) != n:
        raise TruncatedArchive("Unexpected EOF")
    return b


def read_header(f: BinaryIO) -> Tuple[int, List[FreeSpaceSlot], ArchiveMetadata]:
    f.seek(0)
    raw = f.read(HEADER_SIZE)
    if len(raw) != HEADER_SIZE:
        raise TruncatedArchive(f"Container header too short ({len(raw)} of {HEADER_SIZE} bytes)")
    (free_count,) = _FREE_COUNT_STRUCT.unpack_from(raw, FREE_COUNT_OFFSET)
    flat = _SLOT_TABLE_STRUCT.unpack_from(raw, FREE_TABLE_OFFSET)
    slots = [FreeSpaceSlot(flat[i], flat[i + 1]) for i in range(0, len(flat), 2)]
    for idx, slot in enumerate(slots):
        if slot.size < 0 or (slot.size and slot.start_position < ENTRY_REGION_OFFSET):
            raise CorruptHeader(f"Free slot {idx} holds an invalid range {slot.start_position}+{slot.size}")
    num_files, total_size = _METADATA_STRUCT.unpack_from(raw, METADATA_OFFSET)
    if num_files < 0:
        raise CorruptHeader(f"Negative record count {num_files}")
    return free_count, slots, ArchiveMetadata(num_files=num_files, total_size=total_size)


def write_free_table(f: BinaryIO, slots: List[FreeSpaceSlot]) -> None:
    if len(slots) != MAX_FREE_SPACES:
        raise ValueError(f"Free table must hold exactly {MAX_FREE_SPACES} slots")
    flat: List[int] = []
    for slot in slots:
        _check_int32("free slot start", slot.start_position)
        _check_int32("free slot size", slot.size)
        flat.extend((slot.start_position, slot.size))
    in_use = sum(1 for s in slots if not s.is_empty)
    f.seek(FREE_COUNT_OFFSET)
    f.write(_FREE_COUNT_STRUCT.pack(in_use))
    f.write(_SLOT_TABLE_STRUCT.pack(*flat))


def write_metadata(f: BinaryIO, metadata: ArchiveMetadata) -> None:
    f.seek(METADATA_OFFSET)
    f.write(metadata.pack())


def write_empty_header(f: BinaryIO, num_files: int) -> None:
    write_free_table(f, [FreeSpaceSlot(0, 0) for _ in range(MAX_FREE_SPACES)])
    write_metadata(f, ArchiveMetadata(num_files=num_files, total_size=0))


def read_file_info(f: BinaryIO, offset: int) -> FileInfo:
    f.seek(offset)
    return FileInfo.unpack(read_exact(f, FILE_INFO_SIZE), offset)


def try_read_file_info(f: BinaryIO, offset: int) -> Optional[FileInfo]:
    """Decode a record header at ``offset`` or return None if the bytes are not one."""
    f.seek(offset)
    raw = f.read(FILE_INFO_SIZE)
    if len(raw) != FILE_INFO_SIZE:
        return None
    try:
        return FileInfo.unpack(raw, offset)
    except CorruptHeader:
        return None


def write_file_info(f: BinaryIO, info: FileInfo) -> None:
    f.seek(info.offset)
    f.write(info.pack())
