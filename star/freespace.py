from __future__ import annotations

import bisect
import logging
from typing import Iterable, Iterator, List, Optional

from .constants import MAX_FREE_SPACES
from .errors import CapacityExceeded, CorruptHeader
from .layout import FreeSpaceSlot


logger = logging.getLogger(__name__)


class FreeSpaceTable:
    """Byte ranges of the entry region that no record occupies.

    Ranges are kept sorted by start position and never touch each other, so
    adjacency is checked against the two neighbours of an insertion point.
    On disk the table is a fixed array of ``capacity`` slots written in the
    same order, which makes first-fit by address identical to first-fit by
    slot index.
    """

    def __init__(self, ranges: Optional[Iterable[FreeSpaceSlot]] = None, *, capacity: int = MAX_FREE_SPACES):
        self.capacity = capacity
        self._starts: List[int] = []
        self._sizes: List[int] = []
        for r in ranges or ():
            if not r.is_empty:
                self._insert_raw(r.start_position, r.size)
        self.coalesce()

    @classmethod
    def from_slots(cls, slots: Iterable[FreeSpaceSlot], *, capacity: int = MAX_FREE_SPACES) -> "FreeSpaceTable":
        return cls(slots, capacity=capacity)

    def to_slots(self) -> List[FreeSpaceSlot]:
        if len(self._starts) > self.capacity:
            raise CapacityExceeded(f"{len(self._starts)} free ranges do not fit {self.capacity} slots")
        slots = [FreeSpaceSlot(s, n) for s, n in zip(self._starts, self._sizes)]
        slots.extend(FreeSpaceSlot(0, 0) for _ in range(self.capacity - len(slots)))
        return slots

    def __len__(self) -> int:
        return len(self._starts)

    def __iter__(self) -> Iterator[FreeSpaceSlot]:
        for s, n in zip(self._starts, self._sizes):
            yield FreeSpaceSlot(s, n)

    def __repr__(self) -> str:
        ranges = ", ".join(f"{s}+{n}" for s, n in zip(self._starts, self._sizes))
        return f"FreeSpaceTable([{ranges}])"

    @property
    def total_free(self) -> int:
        return sum(self._sizes)

    def slot_at(self, pos: int) -> Optional[FreeSpaceSlot]:
        """Return the range containing ``pos``, if any."""
        i = bisect.bisect_right(self._starts, pos) - 1
        if i >= 0 and pos < self._starts[i] + self._sizes[i]:
            return FreeSpaceSlot(self._starts[i], self._sizes[i])
        return None

    def allocate(self, n: int, *, prefer: Optional[int] = None) -> Optional[int]:
        """Reserve ``n`` bytes; return their offset, or None to place at end of file.

        First-fit: the lowest range with ``size >= n`` is shrunk from its start.
        With ``prefer``, the range containing that position is tried first.
        """
        if n <= 0:
            raise ValueError("Allocation size must be positive")
        idx = None
        if prefer is not None:
            i = bisect.bisect_right(self._starts, prefer) - 1
            if i >= 0 and prefer < self._starts[i] + self._sizes[i] and self._sizes[i] >= n:
                idx = i
        if idx is None:
            for i, size in enumerate(self._sizes):
                if size >= n:
                    idx = i
                    break
        if idx is None:
            logger.debug("No free range holds %d bytes; placing at end of file", n)
            return None
        start = self._starts[idx]
        remaining = self._sizes[idx] - n
        if remaining == 0:
            del self._starts[idx]
            del self._sizes[idx]
        else:
            self._starts[idx] = start + n
            self._sizes[idx] = remaining
        logger.debug("Allocated %d bytes at %d (%d bytes left in range)", n, start, remaining)
        return start

    def release(self, start: int, size: int) -> None:
        """Record ``[start, start + size)`` as free and merge it with touching ranges.

        Raises CapacityExceeded, leaving the table unchanged, when the result
        would need more slots than the on-disk table holds.
        """
        if size <= 0:
            raise ValueError("Released range must have a positive size")
        i = bisect.bisect_right(self._starts, start)
        prev_touch = False
        next_touch = False
        if i > 0:
            prev_end = self._starts[i - 1] + self._sizes[i - 1]
            if prev_end > start:
                raise CorruptHeader(f"Range {start}+{size} overlaps free range {self._starts[i - 1]}+{self._sizes[i - 1]}")
            prev_touch = prev_end == start
        if i < len(self._starts):
            if start + size > self._starts[i]:
                raise CorruptHeader(f"Range {start}+{size} overlaps free range {self._starts[i]}+{self._sizes[i]}")
            next_touch = start + size == self._starts[i]

        if not (prev_touch or next_touch) and len(self._starts) >= self.capacity:
            raise CapacityExceeded(
                f"Free-space table is full ({self.capacity} slots); cannot record range {start}+{size}"
            )

        if prev_touch and next_touch:
            self._sizes[i - 1] += size + self._sizes[i]
            del self._starts[i]
            del self._sizes[i]
        elif prev_touch:
            self._sizes[i - 1] += size
        elif next_touch:
            self._starts[i] = start
            self._sizes[i] += size
        else:
            self._starts.insert(i, start)
            self._sizes.insert(i, size)
        logger.debug("Released %d bytes at %d; %d free range(s)", size, start, len(self._starts))

    def coalesce(self) -> None:
        """Merge every pair of touching ranges."""
        if not self._starts:
            return
        starts = [self._starts[0]]
        sizes = [self._sizes[0]]
        for s, n in zip(self._starts[1:], self._sizes[1:]):
            if starts[-1] + sizes[-1] == s:
                sizes[-1] += n
            else:
                starts.append(s)
                sizes.append(n)
        self._starts = starts
        self._sizes = sizes

    def _insert_raw(self, start: int, size: int) -> None:
        i = bisect.bisect_right(self._starts, start)
        if i > 0 and self._starts[i - 1] + self._sizes[i - 1] > start:
            raise CorruptHeader(f"Free ranges overlap at {start}")
        if i < len(self._starts) and start + size > self._starts[i]:
            raise CorruptHeader(f"Free ranges overlap at {self._starts[i]}")
        self._starts.insert(i, start)
        self._sizes.insert(i, size)
