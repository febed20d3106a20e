"""
Copyright 2025 DNAi inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

"""
Tracking of which bytes of an archive buffer have been attributed to a record.

Every record the reader accepts (end records, directory headers, local headers
with their data) claims its byte range here. A crafted archive that tries to
make one region serve as two records fails its second claim.
"""

import bisect

from .errors import ZipOverlapError


class SegmentTracker:
    """Set of the still unclaimed half-open ranges of a buffer.

    The ranges are kept sorted by start and are pairwise disjoint and
    non-empty, so a requested range is contained in at most one of them.

    Example:
        tracker = SegmentTracker(100)
        tracker.claim(0, 30)
        tracker.claim(10, 20)  # raises ZipOverlapError
    """

    def __init__(self, size: int):
        """Start with the whole buffer ``[0, size)`` unclaimed.

        Args:
            size: Length of the tracked buffer.
        """
        if size < 0:
            raise ValueError(f"Buffer size cannot be negative: {size}")

        self._starts: list[int] = []
        self._ends: list[int] = []
        if size > 0:
            self._starts.append(0)
            self._ends.append(size)

    def claim(self, start: int, end: int) -> None:
        """Mark ``[start, end)`` as belonging to a record.

        Args:
            start: First byte of the range.
            end: One past the last byte of the range.

        Raises:
            ValueError: If the range is empty or reversed.
            ZipOverlapError: If any byte of the range is already claimed or
                lies outside the buffer.
        """
        if start >= end:
            raise ValueError(f"Invalid segment [{start}, {end}): start must be below end")

        # Only the last free range starting at or before `start` can contain it
        pos = bisect.bisect_right(self._starts, start) - 1
        if pos < 0 or self._ends[pos] < end:
            raise ZipOverlapError(start, end)

        free_start = self._starts[pos]
        free_end = self._ends[pos]

        del self._starts[pos]
        del self._ends[pos]

        if end < free_end:
            self._starts.insert(pos, end)
            self._ends.insert(pos, free_end)
        if free_start < start:
            self._starts.insert(pos, free_start)
            self._ends.insert(pos, start)

    def is_unclaimed(self, start: int, end: int) -> bool:
        """Check whether ``[start, end)`` could still be claimed."""
        pos = bisect.bisect_right(self._starts, start) - 1
        return pos >= 0 and start < end <= self._ends[pos]

    @property
    def unclaimed(self) -> list[tuple[int, int]]:
        """The unclaimed ranges, in ascending order."""
        return list(zip(self._starts, self._ends))

    def __len__(self) -> int:
        return len(self._starts)

    def __repr__(self) -> str:
        ranges = ", ".join(f"[{s}, {e})" for s, e in self.unclaimed)
        return f"SegmentTracker({ranges})"
