"""Unit tests for MonotonicProgress."""

import pytest

from flasher.utils.progress import MonotonicProgress


@pytest.mark.unit
class TestMonotonicProgress:
    def test_forwards_increasing_values(self):
        seen = []
        progress = MonotonicProgress(seen.append)

        for value in (0, 10, 55.9, 100):
            progress(value)

        assert seen == [0, 10, 55, 100]

    def test_drops_lower_and_repeated_values(self):
        seen = []
        progress = MonotonicProgress(seen.append)

        for value in (20, 20, 5, 30, 29.9):
            progress(value)

        assert seen == [20, 30]

    def test_clamps_to_range(self):
        seen = []
        progress = MonotonicProgress(seen.append)

        progress(-5)
        progress(250)

        assert seen == [0, 100]

    def test_complete_once(self):
        seen = []
        progress = MonotonicProgress(seen.append)

        progress.complete()
        progress.complete()

        assert seen == [100]

    def test_without_callback(self):
        progress = MonotonicProgress()

        progress(42)

        assert progress.value == 42
