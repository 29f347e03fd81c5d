from __future__ import annotations

import logging
import os
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import BinaryIO, Iterable, List, Optional, Tuple, Union

from .constants import DEFAULT_COPY_CHUNK, FILENAME_FIELD_SIZE, INT32_MAX, STATUS_DELETED
from .errors import (
    AlreadyDeleted,
    ArchiveIOError,
    CapacityExceeded,
    CorruptHeader,
    DuplicateMember,
    RecordNotFound,
    StarError,
    TruncatedArchive,
)
from .freespace import FreeSpaceTable
from .layout import (
    ENTRY_REGION_OFFSET,
    FILE_INFO_SIZE,
    ArchiveMetadata,
    FileInfo,
    FreeSpaceSlot,
    encode_name,
    read_exact,
    read_header,
    write_empty_header,
    write_file_info,
    write_free_table,
    write_metadata,
)
from .locator import find, iter_active, iter_records, lookup
from .locking import locked
from .pathutil import safe_output_path


logger = logging.getLogger(__name__)

Source = Union[bytes, bytearray, memoryview, str, "os.PathLike[str]"]


@dataclass
class CreateReport:
    """Outcome of :func:`create`: records written and inputs skipped as unreadable."""

    path: str
    written: List[FileInfo] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.skipped


def _check_name(name: str) -> None:
    if not isinstance(name, str):
        raise TypeError("Member name must be str")
    if not name or "\x00" in name:
        raise ValueError("Member name must be non-empty and may not contain NUL")
    if len(name.encode("utf-8", "surrogateescape")) > FILENAME_FIELD_SIZE - 1:
        logger.debug("Member name %r truncated to %d bytes", name, FILENAME_FIELD_SIZE - 1)


def _check_size(name: str, n: int) -> None:
    if n > INT32_MAX - FILE_INFO_SIZE:
        raise CapacityExceeded(f"Member {name!r} is too large for the star format ({n} bytes)")


def _check_end(name: str, end: int) -> None:
    if end > INT32_MAX:
        raise CapacityExceeded(f"Placing {name!r} at the end would grow the archive past {INT32_MAX} bytes")


def _read_source(source: Source) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    with open(source, "rb") as fh:
        return fh.read()


def _open_container(path: str, mode: str) -> BinaryIO:
    try:
        if mode == "create":
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o666)
            return os.fdopen(fd, "r+b")
        return open(path, mode)
    except OSError as exc:
        raise ArchiveIOError(f"Cannot open archive {path}: {exc.strerror or exc}") from exc


class StarArchive:
    """An open star container.

    One instance corresponds to one operation session: the file is opened and
    locked on ``open()`` (exclusively when ``writable``) and released on
    ``close()``. Mutations update the in-memory free table and metadata and
    persist them before returning.
    """

    def __init__(self, path: str, *, writable: bool = False, log: Optional[logging.Logger] = None):
        self.path = os.fspath(path)
        self.writable = writable
        self.log = log or logger
        self.f: Optional[BinaryIO] = None
        self.free = FreeSpaceTable()
        self.metadata = ArchiveMetadata()
        self.region_end: int = ENTRY_REGION_OFFSET
        self._stack: Optional[ExitStack] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = _open_container(self.path, "r+b" if self.writable else "rb")
        self._stack = ExitStack()
        try:
            self._stack.enter_context(locked(self.f, exclusive=self.writable))
            self.log.info("Archive %s opened%s", self.path, " for writing" if self.writable else "")
            self._load_header()
        except (StarError, OSError) as exc:
            # Ensure file handle is closed on failure to avoid leaks
            self.close()
            raise exc

    def close(self):
        if self._stack is not None:
            self._stack.close()
            self._stack = None
        if self.f is not None:
            self.f.close()
            self.f = None

    def _load_header(self) -> None:
        _free_count, slots, self.metadata = read_header(self.f)
        self.region_end = os.fstat(self.f.fileno()).st_size
        if self.region_end < self.metadata.total_size:
            # records past the cut would otherwise just look absent
            raise TruncatedArchive(
                f"Archive is {self.region_end} bytes but its metadata records {self.metadata.total_size}"
            )
        self.free = FreeSpaceTable.from_slots(slots)
        for slot in self.free:
            if slot.end > self.region_end:
                raise CorruptHeader(
                    f"Free range {slot.start_position}+{slot.size} extends past end of archive ({self.region_end})"
                )
        self.log.debug(
            "Metadata: %d record slot(s), total size %d; %d free range(s), %d free bytes",
            self.metadata.num_files,
            self.metadata.total_size,
            len(self.free),
            self.free.total_free,
        )

    def _require_open(self) -> BinaryIO:
        if self.f is None:
            raise RuntimeError("Archive not open")
        return self.f

    def _require_writable(self) -> BinaryIO:
        f = self._require_open()
        if not self.writable:
            raise RuntimeError("Archive opened read-only")
        return f

    def _save_header(self) -> None:
        self.metadata.total_size = self.region_end
        write_free_table(self.f, self.free.to_slots())
        write_metadata(self.f, self.metadata)

    # Read-only traversal

    def records(self) -> List[FileInfo]:
        """Every record header in file order, Deleted ones included."""
        return list(iter_records(self._require_open(), self.free, self.region_end))

    def members(self) -> List[FileInfo]:
        return list(iter_active(self._require_open(), self.free, self.region_end))

    def find(self, name: str) -> FileInfo:
        return find(self._require_open(), self.free, self.region_end, name)

    def free_spaces(self) -> List[FreeSpaceSlot]:
        return list(self.free)

    def read(self, name: str) -> bytes:
        info = self.find(name)
        return self.read_info(info)

    def read_info(self, info: FileInfo) -> bytes:
        f = self._require_open()
        f.seek(info.start_position)
        return read_exact(f, info.file_size)

    def extract_member(self, info: FileInfo, outdir: str = ".") -> str:
        f = self._require_open()
        out_path = safe_output_path(outdir, info.filename)
        os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
        f.seek(info.start_position)
        remaining = info.file_size
        with open(out_path, "wb") as wf:
            while remaining > 0:
                chunk = read_exact(f, min(remaining, DEFAULT_COPY_CHUNK))
                wf.write(chunk)
                remaining -= len(chunk)
        self.log.info("Extracted %s", info.filename)
        self.log.debug("%s: %d bytes from offset %d -> %s", info.filename, info.file_size, info.start_position, out_path)
        return out_path

    def extract_all(self, outdir: str = ".") -> List[str]:
        return [self.extract_member(info, outdir) for info in self.members()]

    # Mutations

    def append(self, name: str, data: bytes, *, prefer: Optional[int] = None) -> FileInfo:
        """Add a new Active member, reusing the first free range that fits."""
        f = self._require_writable()
        _check_name(name)
        _check_size(name, len(data))
        existing, _ = lookup(f, self.free, self.region_end, name)
        if existing is not None:
            raise DuplicateMember(f"Member {name!r} already exists; use update to replace it")

        span = FILE_INFO_SIZE + len(data)
        offset = self.free.allocate(span, prefer=prefer)
        reused = offset is not None
        if offset is None:
            offset = self.region_end
            _check_end(name, offset + span)
        info = FileInfo(name, len(data), offset + FILE_INFO_SIZE)
        header = info.pack()

        f.seek(offset)
        f.write(header)
        f.write(data)
        if reused:
            rest = self.free.slot_at(info.end)
            if rest is not None and rest.start_position == info.end:
                # no stale header may remain where the next record would be read
                f.write(b"\x00" * min(rest.size, FILE_INFO_SIZE))
        self.region_end = max(self.region_end, info.end)
        self.metadata.num_files += 1
        self._save_header()
        self.log.info("Appended %s (%d bytes)", info.filename, info.file_size)
        self.log.debug(
            "%s placed at %d (%s), content at %d",
            info.filename,
            offset,
            "reused free range" if reused else "end of archive",
            info.start_position,
        )
        return info

    def delete(self, name: str) -> FileInfo:
        """Mark a member Deleted and return its span to the free table."""
        f = self._require_writable()
        info, seen_deleted = lookup(f, self.free, self.region_end, name)
        if info is None:
            if seen_deleted:
                raise AlreadyDeleted(f"Member {name!r} is already marked as deleted")
            raise RecordNotFound(f"Member {name!r} not found")
        # Reserve the slot first so a full table leaves the archive untouched
        self.free.release(info.offset, info.span)
        info.status = STATUS_DELETED
        write_file_info(f, info)
        self._save_header()
        self.log.info("Deleted %s", info.filename)
        self.log.debug("Freed %d bytes at %d", info.span, info.offset)
        return info

    def update(self, name: str, data: bytes) -> FileInfo:
        """Replace a member: delete it, then append the new content.

        The new record goes into the range just freed when it fits there,
        otherwise the normal first-fit placement applies.
        """
        self._require_writable()
        _check_size(name, len(data))
        current = self.find(name)
        span = FILE_INFO_SIZE + len(data)
        if span > current.span:
            # may not fit the freed range; the end of the archive must then hold it
            _check_end(name, self.region_end + span)
        old = self.delete(name)
        return self.append(name, data, prefer=old.offset)

    def defragment(self):
        from .compactor import defragment_open

        return defragment_open(self)


def create(
    path: str,
    members: Iterable[Tuple[str, Source]],
    *,
    skip_unreadable: bool = False,
    log: Optional[logging.Logger] = None,
) -> CreateReport:
    """Write a new container holding ``members`` back to back.

    Each member is ``(name, source)`` where source is bytes or a file path.
    Sources are read before the container is touched: an unreadable one
    aborts with ArchiveIOError unless ``skip_unreadable`` is set, in which
    case it is left out and listed in the report. ``num_files`` always
    equals the number of records written.
    """
    log = log or logger
    path = os.fspath(path)
    report = CreateReport(path=path)
    loaded: List[Tuple[str, bytes]] = []
    seen = set()
    for name, source in members:
        _check_name(name)
        key = encode_name(name)
        if key in seen:
            raise DuplicateMember(f"Member {name!r} given more than once")
        seen.add(key)
        try:
            data = _read_source(source)
        except OSError as exc:
            if not skip_unreadable:
                raise ArchiveIOError(f"Cannot read member {name!r}: {exc}") from exc
            log.warning("Skipping %s: %s", name, exc)
            report.skipped.append((name, str(exc)))
            continue
        _check_size(name, len(data))
        loaded.append((name, data))

    f = _open_container(path, "create")
    try:
        with locked(f, exclusive=True):
            f.truncate(0)
            log.info("Archive %s opened for writing", path)
            write_empty_header(f, len(loaded))
            pos = ENTRY_REGION_OFFSET
            for name, data in loaded:
                info = FileInfo(name, len(data), pos + FILE_INFO_SIZE)
                f.seek(pos)
                f.write(info.pack())
                f.write(data)
                report.written.append(info)
                log.info("Added %s (%d bytes)", name, len(data))
                log.debug("%s header at %d, content at %d", name, pos, info.start_position)
                pos = info.end
            write_metadata(f, ArchiveMetadata(num_files=len(loaded), total_size=pos))
    finally:
        f.close()
    log.info("Archive %s written: %d member(s), %d skipped", path, len(report.written), len(report.skipped))
    return report


def append(path: str, name: str, data: bytes, *, log: Optional[logging.Logger] = None) -> FileInfo:
    with StarArchive(path, writable=True, log=log) as ar:
        return ar.append(name, data)


def delete(path: str, name: str, *, log: Optional[logging.Logger] = None) -> FileInfo:
    with StarArchive(path, writable=True, log=log) as ar:
        return ar.delete(name)


def update(path: str, name: str, data: bytes, *, log: Optional[logging.Logger] = None) -> FileInfo:
    with StarArchive(path, writable=True, log=log) as ar:
        return ar.update(name, data)


def list_members(path: str, *, log: Optional[logging.Logger] = None) -> List[FileInfo]:
    with StarArchive(path, log=log) as ar:
        return ar.members()


def find_member(path: str, name: str, *, log: Optional[logging.Logger] = None) -> FileInfo:
    with StarArchive(path, log=log) as ar:
        return ar.find(name)


def extract(path: str, name: str, *, log: Optional[logging.Logger] = None) -> bytes:
    with StarArchive(path, log=log) as ar:
        return ar.read(name)


def extract_all(path: str, outdir: str = ".", *, log: Optional[logging.Logger] = None) -> List[str]:
    with StarArchive(path, log=log) as ar:
        return ar.extract_all(outdir)


def free_spaces(path: str, *, log: Optional[logging.Logger] = None) -> List[FreeSpaceSlot]:
    with StarArchive(path, log=log) as ar:
        return ar.free_spaces()
