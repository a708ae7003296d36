from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)

COUNTERS = (
    "trials",
    "empty_children",
    "sanity_discards",
    "fitness_evaluations",
    "local_optimizations",
    "pool_acceptances",
    "pool_rejections",
)


class SearchStatistics:
    """Monotonic, thread-safe counters shared by all workers of a run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = {name: 0 for name in COUNTERS}

    def increment(self, name: str, by: int = 1) -> None:
        if name not in self._counts:
            raise KeyError(f"Unknown statistics counter '{name}'.")
        with self._lock:
            self._counts[name] += by

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def log_summary(self, label: str) -> None:
        counts = self.snapshot()
        logger.info(
            "%s: %s",
            label,
            ", ".join(f"{name}={value}" for name, value in counts.items()),
        )
