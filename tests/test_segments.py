"""Tests for SegmentTracker."""

import pytest

from zipcodec import SegmentTracker, ZipFormatError, ZipOverlapError


def test_new_tracker_has_one_free_range() -> None:
    tracker = SegmentTracker(100)
    assert tracker.unclaimed == [(0, 100)]
    assert len(tracker) == 1


def test_empty_buffer_has_nothing_to_claim() -> None:
    tracker = SegmentTracker(0)
    assert tracker.unclaimed == []
    with pytest.raises(ZipOverlapError):
        tracker.claim(0, 1)


def test_claim_splits_free_range() -> None:
    tracker = SegmentTracker(100)
    tracker.claim(10, 20)
    assert tracker.unclaimed == [(0, 10), (20, 100)]


def test_claims_at_the_edges() -> None:
    tracker = SegmentTracker(100)
    tracker.claim(0, 10)
    tracker.claim(90, 100)
    assert tracker.unclaimed == [(10, 90)]
    tracker.claim(10, 90)
    assert tracker.unclaimed == []


def test_adjacent_claims_are_allowed() -> None:
    tracker = SegmentTracker(30)
    tracker.claim(0, 10)
    tracker.claim(10, 20)
    tracker.claim(20, 30)
    assert len(tracker) == 0


@pytest.mark.parametrize(
    "start, end",
    [
        (15, 25),  # same range
        (10, 16),  # overlaps the start
        (24, 30),  # overlaps the end
        (18, 20),  # inside
        (5, 40),  # contains
    ],
)
def test_overlapping_claim_raises(start: int, end: int) -> None:
    tracker = SegmentTracker(100)
    tracker.claim(15, 25)
    with pytest.raises(ZipOverlapError) as excinfo:
        tracker.claim(start, end)
    assert (excinfo.value.start, excinfo.value.end) == (start, end)
    # A failed claim leaves the tracker untouched
    assert tracker.unclaimed == [(0, 15), (25, 100)]


def test_claim_beyond_buffer_raises() -> None:
    tracker = SegmentTracker(10)
    with pytest.raises(ZipOverlapError):
        tracker.claim(5, 11)


def test_overlap_is_a_format_error() -> None:
    tracker = SegmentTracker(10)
    tracker.claim(0, 5)
    with pytest.raises(ZipFormatError):
        tracker.claim(4, 6)


@pytest.mark.parametrize("start, end", [(5, 5), (6, 5)])
def test_empty_or_reversed_claim_is_a_value_error(start: int, end: int) -> None:
    with pytest.raises(ValueError):
        SegmentTracker(10).claim(start, end)


def test_is_unclaimed() -> None:
    tracker = SegmentTracker(50)
    tracker.claim(10, 20)
    assert tracker.is_unclaimed(0, 10)
    assert tracker.is_unclaimed(20, 50)
    assert not tracker.is_unclaimed(5, 15)
    assert not tracker.is_unclaimed(40, 60)
