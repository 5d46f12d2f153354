from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Iterable, Union

from .errors import InvalidRange, OverlappingRange, RangeIndexError, ValidationError
from .media import FrameInfo, SegmentRange


@dataclass(frozen=True)
class CoveredRun:
    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


FrameEntry = Union[FrameInfo, CoveredRun]


class SegmentSelection:
    """Confirmed frame ranges for the active task plus one open range.

    Ranges are inclusive, ordered by start and never share a frame. Adjacent
    ranges stay separate.
    """

    def __init__(self, frame_count: int | None = None) -> None:
        self.frame_count = frame_count
        self._ranges: list[tuple[int, int]] = []
        self._open: tuple[int, int] | None = None

    @property
    def ranges(self) -> list[tuple[int, int]]:
        return list(self._ranges)

    @property
    def open_range(self) -> tuple[int, int] | None:
        return self._open

    def __len__(self) -> int:
        return len(self._ranges)

    def __bool__(self) -> bool:
        return bool(self._ranges)

    def select_frame(self, frame: int) -> tuple[int, int]:
        self._check_bounds(frame)
        existing = self.range_containing(frame)
        if existing is not None:
            raise OverlappingRange(frame, frame, existing)
        if self._open is None:
            self._open = (frame, frame)
        else:
            start, end = self._open
            self._open = (min(start, frame), max(end, frame))
        return self._open

    def confirm_range(self) -> tuple[int, int]:
        if self._open is None:
            raise InvalidRange("No range in progress")
        start, end = self._open
        if start >= end:
            raise InvalidRange(f"Range needs at least two frames (got {start}-{end})")
        for existing in self._ranges:
            if start <= existing[1] and existing[0] <= end:
                raise OverlappingRange(start, end, existing)
        bisect.insort(self._ranges, (start, end))
        self._open = None
        return (start, end)

    def cancel_open_range(self) -> None:
        self._open = None

    def remove_range(self, index: int) -> tuple[int, int]:
        if not 0 <= index < len(self._ranges):
            raise RangeIndexError(f"No range at position {index}")
        return self._ranges.pop(index)

    def clear(self, frame_count: int | None = None) -> None:
        self._ranges = []
        self._open = None
        self.frame_count = frame_count

    def is_frame_covered(self, frame: int) -> bool:
        return self.range_containing(frame) is not None

    def range_containing(self, frame: int) -> tuple[int, int] | None:
        index = self.index_containing(frame)
        return self._ranges[index] if index is not None else None

    def index_containing(self, frame: int) -> int | None:
        position = bisect.bisect_right(self._ranges, (frame, float("inf"))) - 1
        if position >= 0:
            start, end = self._ranges[position]
            if start <= frame <= end:
                return position
        return None

    def segments(self) -> list[SegmentRange]:
        return [SegmentRange(start, end) for start, end in self._ranges]

    def collapse(self, frames: Iterable[FrameInfo]) -> list[FrameEntry]:
        entries: list[FrameEntry] = []
        last_index: int | None = None
        for frame in frames:
            index = self.index_containing(frame.frame_number)
            if index is None:
                entries.append(frame)
                last_index = None
                continue
            if index != last_index:
                start, end = self._ranges[index]
                entries.append(CoveredRun(index=index, start=start, end=end))
                last_index = index
        return entries

    def _check_bounds(self, frame: int) -> None:
        if frame < 0:
            raise ValidationError(f"Frame {frame} is out of range")
        if self.frame_count is not None and frame >= self.frame_count:
            raise ValidationError(f"Frame {frame} is out of range (0-{self.frame_count - 1})")
