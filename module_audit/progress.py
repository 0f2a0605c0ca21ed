"""
Thread-safe progress tracking for the parallel pipeline stages.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class ProgressTracker:
    """
    Completion counter shared by the workers of one stage.

    Attributes:
        total: Number of units the stage will process
        _lock: Threading lock for thread-safe updates
        _completed: Units finished so far
        _callbacks: Callbacks invoked as (completed, total, item) after each unit
    """
    total: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _completed: int = 0
    _callbacks: list[Callable[[int, int, str], None]] = field(default_factory=list)

    def register_callback(self, callback: Callable[[int, int, str], None]) -> None:
        """Register a callback for progress updates."""
        with self._lock:
            self._callbacks.append(callback)

    def advance(self, item: str = "") -> int:
        """
        Record one finished unit of work.

        Args:
            item: Optional label of the finished unit (archive or file name)

        Returns:
            Number of completed units including this one
        """
        with self._lock:
            self._completed += 1
            current = self._completed
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(current, self.total, item)
        return current

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    def percentage(self, current: int | None = None) -> float:
        """Completion percentage (100.0 for an empty stage)."""
        if current is None:
            current = self.completed
        if self.total <= 0:
            return 100.0
        return current / self.total * 100
