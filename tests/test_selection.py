from __future__ import annotations

import pytest

from conftest import make_prepared
from segtui.errors import InvalidRange, OverlappingRange, RangeIndexError, ValidationError
from segtui.media import SegmentRange
from segtui.selection import CoveredRun, SegmentSelection


def test_select_frames_grow_open_range() -> None:
    selection = SegmentSelection(frame_count=100)
    assert selection.select_frame(10) == (10, 10)
    assert selection.select_frame(50) == (10, 50)
    assert selection.select_frame(5) == (5, 50)


def test_confirm_range_commits_sorted() -> None:
    selection = SegmentSelection(frame_count=100)
    selection.select_frame(60)
    selection.select_frame(70)
    selection.confirm_range()
    selection.select_frame(10)
    selection.select_frame(20)
    selection.confirm_range()
    assert selection.ranges == [(10, 20), (60, 70)]
    assert selection.open_range is None
    assert selection.segments() == [SegmentRange(10, 20), SegmentRange(60, 70)]


def test_single_frame_range_is_invalid() -> None:
    selection = SegmentSelection()
    selection.select_frame(10)
    with pytest.raises(InvalidRange):
        selection.confirm_range()


def test_confirm_without_open_range_is_invalid() -> None:
    with pytest.raises(InvalidRange):
        SegmentSelection().confirm_range()


def test_selecting_covered_frame_is_rejected() -> None:
    selection = SegmentSelection()
    selection.select_frame(10)
    selection.select_frame(20)
    selection.confirm_range()
    with pytest.raises(OverlappingRange):
        selection.select_frame(15)


def test_overlapping_range_is_rejected_on_confirm() -> None:
    selection = SegmentSelection()
    selection.select_frame(10)
    selection.select_frame(20)
    selection.confirm_range()
    selection.select_frame(5)
    selection.select_frame(25)
    with pytest.raises(OverlappingRange) as excinfo:
        selection.confirm_range()
    assert excinfo.value.existing == (10, 20)
    assert selection.ranges == [(10, 20)]


def test_adjacent_ranges_stay_separate() -> None:
    selection = SegmentSelection()
    selection.select_frame(10)
    selection.select_frame(20)
    selection.confirm_range()
    selection.select_frame(21)
    selection.select_frame(30)
    selection.confirm_range()
    assert selection.ranges == [(10, 20), (21, 30)]


def test_out_of_bounds_frame() -> None:
    selection = SegmentSelection(frame_count=10)
    with pytest.raises(ValidationError):
        selection.select_frame(10)
    with pytest.raises(ValidationError):
        selection.select_frame(-1)


def test_remove_range() -> None:
    selection = SegmentSelection()
    selection.select_frame(1)
    selection.select_frame(3)
    selection.confirm_range()
    assert selection.remove_range(0) == (1, 3)
    assert not selection
    with pytest.raises(RangeIndexError):
        selection.remove_range(0)


def test_collapse_folds_confirmed_ranges() -> None:
    prepared = make_prepared(10)
    selection = SegmentSelection(frame_count=10)
    selection.select_frame(2)
    selection.select_frame(4)
    selection.confirm_range()
    selection.select_frame(5)
    selection.select_frame(6)
    selection.confirm_range()
    entries = selection.collapse(prepared.frames)
    assert len(entries) == 10 - 5 + 2
    assert entries[2] == CoveredRun(index=0, start=2, end=4)
    assert entries[3] == CoveredRun(index=1, start=5, end=6)
    assert entries[3].length == 2
    assert entries[4].frame_number == 7


def test_clear_resets_everything() -> None:
    selection = SegmentSelection(frame_count=10)
    selection.select_frame(1)
    selection.select_frame(2)
    selection.confirm_range()
    selection.select_frame(5)
    selection.clear(frame_count=50)
    assert selection.ranges == []
    assert selection.open_range is None
    assert selection.frame_count == 50
