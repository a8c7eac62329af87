"""Progress Tracker - thread-safe job_id -> percent store."""
import logging
import math
import threading
from typing import Dict

logger = logging.getLogger(__name__)


class ProgressTracker:
    """
    Concurrent mapping from job id to completion percentage.

    Entries are created on first update and removed by clear(). Values are
    clamped to [0, 100] and never move backwards while the entry exists, so a
    poller never observes a negative, NaN or decreasing value.
    """

    def __init__(self):
        self._progress: Dict[str, float] = {}
        self._lock = threading.Lock()

    def update(self, job_id: str, percent: float) -> None:
        if percent is None or math.isnan(percent):
            logger.debug(f"Ignoring invalid progress for {job_id}: {percent}")
            return
        value = min(max(float(percent), 0.0), 100.0)
        with self._lock:
            if value >= self._progress.get(job_id, 0.0):
                self._progress[job_id] = value

    def get(self, job_id: str) -> float:
        with self._lock:
            return self._progress.get(job_id, 0.0)

    def clear(self, job_id: str) -> None:
        with self._lock:
            self._progress.pop(job_id, None)

    def snapshot(self) -> Dict[str, float]:
        """Copy of all active entries."""
        with self._lock:
            return dict(self._progress)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._progress
