from __future__ import annotations

import logging
from typing import BinaryIO, Iterator, Optional, Tuple

from .errors import AlreadyDeleted, RecordNotFound, TruncatedArchive
from .freespace import FreeSpaceTable
from .layout import (
    ENTRY_REGION_OFFSET,
    FILE_INFO_SIZE,
    FileInfo,
    encode_name,
    read_file_info,
    try_read_file_info,
)


logger = logging.getLogger(__name__)


def iter_records(f: BinaryIO, free: FreeSpaceTable, region_end: int) -> Iterator[FileInfo]:
    """Walk the entry region and yield every record header in file order.

    Outside free ranges the region is tiled by records, so a header must
    decode at each position. Inside a free range only Deleted records that
    fit the range are reported; the remainder of a range is skipped (a
    reused range leaves zero padding where the next header would be).
    """
    pos = ENTRY_REGION_OFFSET
    while pos < region_end:
        slot = free.slot_at(pos)
        if slot is not None:
            info = try_read_file_info(f, pos) if pos + FILE_INFO_SIZE <= slot.end else None
            if info is not None and not info.is_active and info.end <= slot.end:
                yield info
                pos = info.end
            else:
                pos = slot.end
            continue
        if pos + FILE_INFO_SIZE > region_end:
            raise TruncatedArchive(f"Record header at offset {pos} runs past end of archive ({region_end})")
        info = read_file_info(f, pos)
        if info.end > region_end:
            raise TruncatedArchive(
                f"Content of {info.filename!r} ({info.file_size} bytes at {info.start_position}) runs past end of archive"
            )
        yield info
        pos = info.end


def iter_active(f: BinaryIO, free: FreeSpaceTable, region_end: int) -> Iterator[FileInfo]:
    for info in iter_records(f, free, region_end):
        if info.is_active:
            yield info


def lookup(f: BinaryIO, free: FreeSpaceTable, region_end: int, name: str) -> Tuple[Optional[FileInfo], bool]:
    """Return (active record or None, whether a Deleted record had the name)."""
    key = encode_name(name)
    seen_deleted = False
    for info in iter_records(f, free, region_end):
        if encode_name(info.filename) != key:
            continue
        if info.is_active:
            return info, seen_deleted
        seen_deleted = True
    return None, seen_deleted


def find(f: BinaryIO, free: FreeSpaceTable, region_end: int, name: str) -> FileInfo:
    """Resolve ``name`` to its Active record.

    Names compare exactly and case-sensitively after truncation to the stored
    254 bytes. A name held only by Deleted records raises AlreadyDeleted.
    """
    info, seen_deleted = lookup(f, free, region_end, name)
    if info is not None:
        logger.debug("Found %r at offset %d (%d bytes)", info.filename, info.offset, info.file_size)
        return info
    if seen_deleted:
        raise AlreadyDeleted(f"Member {name!r} is marked as deleted")
    raise RecordNotFound(f"Member {name!r} not found")
