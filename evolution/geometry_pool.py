from __future__ import annotations

import bisect
import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, Iterator

import numpy as np

from geomutils.geometry import NONCONVERGED_ENERGY, Geometry
from geomutils.niches import Niche

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolEntry:
    geometry: Geometry
    niche: Niche | None = None

    @property
    def fitness(self) -> float:
        return float(self.geometry.fitness)


class GeometryPool:
    """
    Best-first population of evaluated geometries.

    ``offer`` is the only way in and is atomic: a candidate is admitted when
    it is evaluated, not within ``diversity_threshold`` of an entry already in
    the pool, and better than the worst member of a full niche (when
    ``niche_capacity`` is set) and of a full pool. Rejection is a normal
    outcome, not an error.
    """

    def __init__(
        self,
        size: int,
        niche_capacity: int | None = None,
        diversity_threshold: float = 1e-5,
    ) -> None:
        if size < 1:
            raise ValueError(f"Pool size must be at least 1, got {size}.")
        if niche_capacity is not None and niche_capacity < 1:
            raise ValueError(f"Niche capacity must be at least 1, got {niche_capacity}.")
        self.size = size
        self.niche_capacity = niche_capacity
        self.diversity_threshold = diversity_threshold
        self._lock = threading.RLock()
        self._entries: list[PoolEntry] = []
        self._keys: list[float] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[PoolEntry]:
        return iter(self.entries)

    @property
    def entries(self) -> list[PoolEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def geometries(self) -> list[Geometry]:
        return [entry.geometry for entry in self.entries]

    def best(self) -> Geometry | None:
        with self._lock:
            return self._entries[0].geometry if self._entries else None

    def worst(self) -> Geometry | None:
        with self._lock:
            return self._entries[-1].geometry if self._entries else None

    def offer(self, candidate: Geometry, niche: Niche | None = None) -> bool:
        fitness = candidate.fitness
        if fitness is None or not math.isfinite(fitness) or fitness >= NONCONVERGED_ENERGY:
            logger.debug("Geometry %d rejected, no usable fitness.", candidate.id)
            return False
        with self._lock:
            if self._too_similar(fitness):
                logger.debug("Geometry %d rejected, fitness %.6f already present.", candidate.id, fitness)
                return False
            if niche is not None and self.niche_capacity is not None:
                members = [i for i, e in enumerate(self._entries) if e.niche == niche]
                if len(members) >= self.niche_capacity:
                    worst = members[-1]
                    if fitness >= self._keys[worst]:
                        logger.debug("Geometry %d rejected, niche %s is full.", candidate.id, niche)
                        return False
                    self._remove(worst)
            if len(self._entries) >= self.size:
                if fitness >= self._keys[-1]:
                    return False
                self._remove(len(self._entries) - 1)
            self._insert(PoolEntry(candidate, niche))
            return True

    def _too_similar(self, fitness: float) -> bool:
        if not self._keys:
            return False
        pos = bisect.bisect_left(self._keys, fitness)
        for idx in (pos - 1, pos):
            if 0 <= idx < len(self._keys) and abs(self._keys[idx] - fitness) <= self.diversity_threshold:
                return True
        return False

    def _insert(self, entry: PoolEntry) -> None:
        # equal fitness keeps insertion order
        pos = bisect.bisect_right(self._keys, entry.fitness)
        self._keys.insert(pos, entry.fitness)
        self._entries.insert(pos, entry)

    def _remove(self, idx: int) -> None:
        del self._keys[idx]
        del self._entries[idx]

    def select_parents(self, rng: np.random.Generator) -> tuple[Geometry, Geometry]:
        """
        Two parents drawn by linear rank weights, best ranked highest.
        Distinct whenever the pool holds more than one geometry. Callers
        must duplicate before modifying them.
        """
        with self._lock:
            n = len(self._entries)
            if n == 0:
                raise ValueError("Cannot select parents from an empty pool.")
            if n == 1:
                only = self._entries[0].geometry
                return only, only
            weights = np.arange(n, 0, -1, dtype=float)
            weights /= weights.sum()
            first, second = rng.choice(n, size=2, replace=False, p=weights)
            return self._entries[int(first)].geometry, self._entries[int(second)].geometry

    def niche_report(self) -> dict[str, int]:
        report: dict[str, int] = {}
        for entry in self.entries:
            key = "" if entry.niche is None else str(entry.niche)
            report[key] = report.get(key, 0) + 1
        return report

    def clear(self) -> list[PoolEntry]:
        with self._lock:
            removed = self._entries
            self._entries = []
            self._keys = []
            return removed

    def filter(self, fn: Callable[[PoolEntry], bool]) -> "GeometryPool":
        pool = GeometryPool(self.size, self.niche_capacity, self.diversity_threshold)
        for entry in self.entries:
            if fn(entry):
                pool.offer(entry.geometry, entry.niche)
        return pool
