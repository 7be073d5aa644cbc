"""Tests for progress reporting, cancellation and resource release."""

import threading

import pytest

from reelforge.errors import RenderCancelled
from reelforge.models import Segment
from reelforge.progress import PROGRESS_CAP, ProgressTracker, ResourceStack


class TestProgressTracker:
    def test_segment_shares(self):
        seen = []
        tracker = ProgressTracker(2, seen.append)
        tracker.begin_segment(0, Segment(3.0, 6.0))
        tracker.update(4.5)
        tracker.begin_segment(1, Segment(0.0, 3.0))
        tracker.update(1.5)
        assert seen == [0.0, 25.0, 50.0, 75.0]

    def test_never_decreases(self):
        seen = []
        tracker = ProgressTracker(1, seen.append)
        tracker.begin_segment(0, Segment(0.0, 10.0))
        tracker.update(6.0)
        tracker.update(2.0)
        assert tracker.progress == 60.0
        assert seen == [0.0, 60.0]

    def test_capped_until_complete(self):
        seen = []
        tracker = ProgressTracker(1, seen.append)
        tracker.begin_segment(0, Segment(0.0, 1.0))
        tracker.update(1.0)
        assert tracker.progress == PROGRESS_CAP
        tracker.complete()
        assert seen[-1] == 100.0
        assert max(seen[:-1]) < 100.0

    def test_update_before_segment_is_ignored(self):
        tracker = ProgressTracker(3)
        assert tracker.update(2.0) == 0.0

    def test_cancel_flag(self):
        tracker = ProgressTracker(1)
        tracker.check_cancelled()
        tracker.cancel()
        assert tracker.cancelled
        with pytest.raises(RenderCancelled):
            tracker.check_cancelled()

    def test_shared_cancel_event(self):
        event = threading.Event()
        tracker = ProgressTracker(1, cancel_event=event)
        event.set()
        assert tracker.cancelled


class TestResourceStack:
    def test_releases_newest_first(self):
        order = []
        with ResourceStack() as stack:
            stack.push("a", lambda: order.append("a"))
            stack.push("b", lambda: order.append("b"))
        assert order == ["b", "a"]

    def test_releases_exactly_once(self):
        calls = []
        stack = ResourceStack()
        stack.push("a", lambda: calls.append(1))
        stack.release_all()
        stack.release_all()
        assert calls == [1]

    def test_failing_release_does_not_stop_others(self):
        calls = []

        def boom():
            raise RuntimeError("boom")

        stack = ResourceStack()
        stack.push("a", lambda: calls.append("a"))
        stack.push("b", boom)
        stack.release_all()
        assert calls == ["a"]

    def test_releases_on_error(self):
        calls = []
        with pytest.raises(ValueError):
            with ResourceStack() as stack:
                stack.push("a", lambda: calls.append("a"))
                raise ValueError("fail")
        assert calls == ["a"]
