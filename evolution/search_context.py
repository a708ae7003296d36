from __future__ import annotations

import os
import shutil
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from ase.optimize.optimize import Optimizer

from evolution.calculators import CalculatorFactory
from geomutils.collision_detection import CollisionDetection
from geomutils.geometry import Geometry, MoleculeConfig
from geomutils.niches import NicheComputer
from geomutils.statistics import SearchStatistics


@dataclass
class SearchContext:
    definition: "SearchDefinition"
    molecules: dict[str, MoleculeConfig]
    template: Geometry
    calculator_factory: CalculatorFactory
    optimizer_factory: type[Optimizer]
    niche_computer: NicheComputer | None
    _pool: "GeometryPool"
    statistics: SearchStatistics
    seed_sequence: np.random.SeedSequence
    collision: CollisionDetection
    workdir: str
    _id_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _last_id: int = 0

    @property
    def pool(self) -> "GeometryPool":
        return self._pool

    @pool.setter
    def pool(self, value: "GeometryPool") -> None:
        self._pool = value

    @property
    def settings(self) -> "SearchSettings":
        return self.definition.settings

    def mount(self) -> None:
        if os.path.exists(self.workdir):
            shutil.rmtree(self.workdir)
        os.makedirs(self.workdir, exist_ok=True)

    def stage_dir(self, stage_id: str) -> str:
        path = os.path.join(self.workdir, stage_id)
        if os.path.exists(path):
            shutil.rmtree(path)
        os.makedirs(path, exist_ok=True)
        return path

    def next_id(self) -> int:
        """Unique geometry ids across all workers, starting at 1."""
        with self._id_lock:
            self._last_id += 1
            return self._last_id

    def spawn_rngs(self, n: int) -> list[np.random.Generator]:
        """Independent generators, reproducible for a fixed seed and stage order."""
        return [np.random.default_rng(child) for child in self.seed_sequence.spawn(n)]

    def niche_of(self, geometry: Geometry) -> "Niche | None":
        if self.niche_computer is None:
            return None
        return self.niche_computer.compute_niche(geometry)


if TYPE_CHECKING:
    from evolution.geometry_pool import GeometryPool
    from evolution.search_parser import SearchDefinition, SearchSettings
    from geomutils.niches import Niche
