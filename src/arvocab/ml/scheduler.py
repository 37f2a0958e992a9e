"""Recognition scheduler: throttles camera frames into recognition work.

Frames arrive much faster than the encoder can run. The scheduler lets at most
one recognition run at a time, enforces a minimum interval between accepted
frames, and drops (never queues) everything else. Once a confident, new label
is recognized it pauses until :meth:`RecognitionScheduler.reset` is called, so
the same object does not re-trigger on every frame.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import StrEnum
from typing import TYPE_CHECKING

from arvocab.ml.similarity import is_confident

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Executor

    from arvocab.ml.similarity import RecognitionResult

logger = logging.getLogger(__name__)


class SchedulerState(StrEnum):
    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"


class RecognitionScheduler:
    """Gatekeeper between frame delivery and the recognizer."""

    def __init__(
        self,
        *,
        min_interval: float = 1.0,
        confidence_threshold: float = 0.1,
        on_recognized: Callable[[RecognitionResult], None] | None = None,
        executor: Executor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval = min_interval
        self._threshold = confidence_threshold
        self._on_recognized = on_recognized
        self._clock = clock

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="recognition")

        # Exclusive "processing" flag: only ever acquired without blocking.
        self._busy = threading.Lock()
        self._state_lock = threading.Lock()
        self._last_processed: float | None = None
        self._paused = False
        self._current_label: str | None = None

    # -- Public API ---------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            if self._paused:
                return SchedulerState.PAUSED
        return SchedulerState.PROCESSING if self._busy.locked() else SchedulerState.IDLE

    @property
    def current_label(self) -> str | None:
        """The last emitted label, cleared by :meth:`reset`."""
        with self._state_lock:
            return self._current_label

    def submit(self, work: Callable[[], RecognitionResult | None]) -> bool:
        """Start ``work`` in the background if the scheduler accepts a frame now.

        ``work`` performs one end-to-end recognition and returns its result, or
        ``None`` if the frame could not be used.

        Returns:
            Whether the frame was accepted. Rejected frames are simply dropped.
        """
        with self._state_lock:
            if self._paused:
                return False
            now = self._clock()
            if self._last_processed is not None and now - self._last_processed < self._min_interval:
                return False
            if not self._busy.acquire(blocking=False):
                return False
            self._last_processed = now

        try:
            self._executor.submit(self._run, work)
        except RuntimeError:
            self._busy.release()
            logger.exception("Recognition executor rejected work")
            return False
        return True

    def reset(self) -> None:
        """Resume after a pause and forget the last emitted label."""
        with self._state_lock:
            self._paused = False
            self._current_label = None
            self._last_processed = None
        logger.info("Recognition resumed")

    def shutdown(self) -> None:
        """Stop the background pool if the scheduler created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    # -- Internal -----------------------------------------------------------

    def _run(self, work: Callable[[], RecognitionResult | None]) -> None:
        try:
            result = work()
            if result is not None:
                self._handle(result)
        except Exception:
            logger.exception("Error during recognition")
        finally:
            self._busy.release()

    def _handle(self, result: RecognitionResult) -> None:
        if not is_confident(result, self._threshold):
            logger.debug("No confident match (%s, %.3f)", result.label, result.score)
            return

        with self._state_lock:
            if self._paused or result.label == self._current_label:
                return
            self._current_label = result.label
            self._paused = True

        logger.info("Recognized %s (score=%.3f); pausing recognition", result.label, result.score)
        if self._on_recognized is not None:
            self._on_recognized(result)
