"""Progress reporting, cancellation and resource release for a run."""

import logging
import threading
from typing import Callable

from reelforge.errors import RenderCancelled
from reelforge.models import Segment

logger = logging.getLogger(__name__)

# Progress stays below this until the container is finalized
PROGRESS_CAP = 99.0


class ProgressTracker:
    """Turns the compositor's source-time cursor into a monotonic percentage.

    ``progress = index * 100/n + fraction * 100/n`` where *fraction* is how far
    the cursor is through the active segment. Also carries the run's shared
    cancellation flag.
    """

    def __init__(
        self,
        segment_count: int,
        on_progress: Callable[[float], None] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.segment_count = max(1, segment_count)
        self.on_progress = on_progress
        self.cancel_event = cancel_event or threading.Event()
        self.progress = 0.0
        self.segment_index = 0
        self.segment: Segment | None = None
        self.cursor = 0.0

    def begin_segment(self, index: int, segment: Segment) -> None:
        self.segment_index = index
        self.segment = segment
        self.cursor = segment.start
        self._report(index * 100.0 / self.segment_count)

    def update(self, cursor: float) -> float:
        """Record the source-time cursor and report the new percentage."""
        self.cursor = cursor
        if self.segment is None:
            return self.progress
        fraction = (cursor - self.segment.start) / self.segment.duration
        fraction = min(max(fraction, 0.0), 1.0)
        share = 100.0 / self.segment_count
        self._report(self.segment_index * share + fraction * share)
        return self.progress

    def complete(self) -> None:
        self.progress = 100.0
        if self.on_progress:
            self.on_progress(100.0)

    def _report(self, value: float) -> None:
        value = min(value, PROGRESS_CAP)
        if value < self.progress:
            return
        self.progress = value
        if self.on_progress:
            self.on_progress(value)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise RenderCancelled("Render cancelled")


class ResourceStack:
    """Release callbacks run exactly once, newest first, however the run ends."""

    def __init__(self):
        self._callbacks: list[tuple[str, Callable[[], None]]] = []
        self._lock = threading.Lock()

    def push(self, name: str, release: Callable[[], None]) -> None:
        with self._lock:
            self._callbacks.append((name, release))

    def release_all(self) -> None:
        with self._lock:
            callbacks, self._callbacks = self._callbacks, []
        for name, release in reversed(callbacks):
            try:
                release()
            except Exception:
                logger.exception("Failed to release %s", name)

    def __enter__(self) -> "ResourceStack":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release_all()
