from __future__ import annotations

from contextlib import contextmanager
from typing import BinaryIO, Iterator

try:  # pragma: no cover - availability depends on platform
    import fcntl as _fcntl  # type: ignore
    _HAS_FLOCK = True
except ImportError:  # pragma: no cover - non-POSIX platforms
    _fcntl = None  # type: ignore
    _HAS_FLOCK = False


@contextmanager
def locked(f: BinaryIO, *, exclusive: bool) -> Iterator[BinaryIO]:
    """Hold an advisory lock on ``f`` for the duration of the block.

    Mutating operations take the exclusive lock, readers the shared one.
    Without flock support the caller is responsible for exclusive access.
    """
    if not _HAS_FLOCK:
        yield f
        return
    _fcntl.flock(f.fileno(), _fcntl.LOCK_EX if exclusive else _fcntl.LOCK_SH)
    try:
        yield f
    finally:
        try:
            f.flush()
        finally:
            _fcntl.flock(f.fileno(), _fcntl.LOCK_UN)
