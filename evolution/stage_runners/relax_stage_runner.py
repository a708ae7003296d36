from __future__ import annotations

from evolution.geometry_pool import GeometryPool
from evolution.operators import WorkerOperators
from evolution.stage_runners.base_stage_runner import StageRunner, split_work
from geomutils.geometry import Geometry


class RelaxStageRunner(StageRunner):
    """Re-optimizes every pool member, usually with a tighter fmax, and rebuilds the pool."""

    def run(self) -> None:
        if self.context.calculator_factory(None) is None:
            raise ValueError("Relax stage must have a calculator attached")
        geometries = self.context.pool.geometries
        old = self.context.pool
        self.context.pool = GeometryPool(
            old.size, old.niche_capacity, old.diversity_threshold
        )
        chunks: list[list[Geometry]] = []
        start = 0
        for count in split_work(len(geometries), self.workers):
            chunks.append(geometries[start:start + count])
            start += count
        self.run_workers(chunks, self._relax)

    def _relax(self, ops: WorkerOperators, geometries: list[Geometry]) -> None:
        for geometry in geometries:
            relaxed = ops.newton.optimize_geometry(geometry)
            self.context.statistics.increment("local_optimizations")
            self.offer(relaxed)
