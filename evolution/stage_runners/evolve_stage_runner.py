from __future__ import annotations

import logging

from evolution.operators import WorkerOperators
from evolution.stage_runners.base_stage_runner import StageRunner, split_work

logger = logging.getLogger(__name__)


class EvolveStageRunner(StageRunner):
    """``iterations`` global optimization steps spread over the workers."""

    def run(self) -> None:
        if len(self.context.pool) == 0:
            raise ValueError(
                f"Evolve stage '{self.stage.id}' needs a seeded pool, run an init stage first."
            )
        self.run_workers(split_work(self.stage.iterations, self.workers), self._evolve)

    def _evolve(self, ops: WorkerOperators, count: int) -> None:
        log_every = int(self.stage.kwargs.get("log_every", 0) or 0)
        for step in range(count):
            mother, father = self.context.pool.select_parents(ops.rng)
            child = ops.globopt.global_optimization(self.context.next_id(), mother, father)
            if child is not None:
                self.offer(child)
            if log_every and (step + 1) % log_every == 0:
                best = self.context.pool.best()
                logger.info(
                    "Stage '%s': %d steps on this worker, best fitness %s.",
                    self.stage.id,
                    step + 1,
                    None if best is None else best.fitness,
                )
