from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .constants import DEFAULT_COPY_CHUNK
from .freespace import FreeSpaceTable
from .layout import ENTRY_REGION_OFFSET, read_exact
from .archive import StarArchive


logger = logging.getLogger(__name__)


@dataclass
class PackReport:
    records: int
    dropped: int
    size_before: int
    size_after: int

    @property
    def reclaimed(self) -> int:
        return self.size_before - self.size_after


def _move_bytes(f: BinaryIO, src: int, dst: int, length: int, chunk_size: int = DEFAULT_COPY_CHUNK) -> None:
    # dst <= src, so copying front to back never clobbers unread bytes
    done = 0
    while done < length:
        n = min(chunk_size, length - done)
        f.seek(src + done)
        buf = read_exact(f, n)
        f.seek(dst + done)
        f.write(buf)
        done += n


def defragment_open(ar: StarArchive) -> PackReport:
    """Rewrite the Active records of an open, writable archive contiguously."""
    f = ar._require_writable()
    size_before = ar.region_end
    written = ar.metadata.num_files
    records = ar.records()
    write_pos = ENTRY_REGION_OFFSET
    kept = 0
    for info in records:
        if not info.is_active:
            continue
        moved = info.moved_to(write_pos)
        if info.offset != write_pos:
            _move_bytes(f, info.start_position, moved.start_position, info.file_size)
            ar.log.debug("Moved %s from %d to %d", info.filename, info.offset, write_pos)
        # header rewritten unconditionally so padding and stale name bytes are normalized
        f.seek(write_pos)
        f.write(moved.pack())
        write_pos = moved.end
        kept += 1

    f.truncate(write_pos)
    ar.region_end = write_pos
    ar.free = FreeSpaceTable()
    ar.metadata.num_files = kept
    ar._save_header()
    # num_files counts every record written since the last pack
    report = PackReport(records=kept, dropped=max(written - kept, 0), size_before=size_before, size_after=write_pos)
    ar.log.info(
        "Packed %s: %d member(s) kept, %d deleted record(s) dropped, %d bytes reclaimed",
        ar.path,
        report.records,
        report.dropped,
        report.reclaimed,
    )
    return report


def defragment(path: str, *, log: Optional[logging.Logger] = None) -> PackReport:
    """Compact ``path``: drop Deleted records and free ranges, truncate the file.

    Active records keep their relative order; each one's ``start_position``
    is rewritten for its new location. Running it on an already packed
    archive leaves the file byte-identical.
    """
    with StarArchive(path, writable=True, log=log or logger) as ar:
        return defragment_open(ar)


pack = defragment
