from __future__ import annotations

import logging

from evolution.operators import WorkerOperators
from evolution.stage_runners.base_stage_runner import StageRunner, split_work

logger = logging.getLogger(__name__)


class InitStageRunner(StageRunner):
    """
    Seeds the pool: ``iterations`` geometries are initialized, sanity
    checked, locally optimized and offered.
    """

    def run(self) -> None:
        if self.stage.iterations < 1:
            raise ValueError(f"Init stage '{self.stage.id}' needs at least one iteration.")
        self.run_workers(split_work(self.stage.iterations, self.workers), self._seed)
        if len(self.context.pool) == 0:
            logger.warning("Init stage '%s' left the pool empty.", self.stage.id)

    def _seed(self, ops: WorkerOperators, count: int) -> None:
        for _ in range(count):
            self.context.statistics.increment("trials")
            geometry = ops.initializer.initialize(self.context.next_id())
            if not ops.sanity_check.is_sane(geometry):
                self.context.statistics.increment("sanity_discards")
                continue
            self.offer(ops.fitness.fitness(geometry, False))
