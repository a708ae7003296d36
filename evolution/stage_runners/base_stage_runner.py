from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Sequence, TypeVar

from evolution.operators import WorkerOperators, build_worker_operators
from evolution.search_context import SearchContext
from evolution.search_parser import StageSettings
from geomutils.geometry import Geometry
from geomutils.geometry_writer import GeometryWriter

logger = logging.getLogger(__name__)

POOL_SUMMARY_FILE = "pool.txt"

T = TypeVar("T")


def split_work(total: int, workers: int) -> list[int]:
    """Item counts per worker, as even as possible, in worker order."""
    base, extra = divmod(total, workers)
    return [base + (1 if w < extra else 0) for w in range(workers)]


class StageRunner(ABC):
    def __init__(
        self,
        stage: StageSettings,
        context: SearchContext,
    ) -> None:
        self.stage = stage
        self.context = context
        self.dir: str = context.stage_dir(stage.id)

    @abstractmethod
    def run(self) -> None:
        raise NotImplementedError

    def offer(self, geometry: Geometry) -> bool:
        niche = self.context.niche_of(geometry)
        accepted = self.context.pool.offer(geometry, niche)
        self.context.statistics.increment(
            "pool_acceptances" if accepted else "pool_rejections"
        )
        logger.debug(
            "Geometry %d (fitness %s, niche %s) %s.",
            geometry.id,
            geometry.fitness,
            niche,
            "accepted" if accepted else "rejected",
        )
        return accepted

    @property
    def workers(self) -> int:
        return self.context.definition.search.workers

    def run_workers(
        self,
        work: Sequence[T],
        task: Callable[[WorkerOperators, T], None],
    ) -> None:
        """
        Runs ``task(operators, work[w])`` for every worker w on its own thread.
        Each worker owns a generator spawned from the run seed and operators
        built on it. Exceptions raised by a worker propagate.
        """
        workers = len(work)
        rngs = self.context.spawn_rngs(workers)
        operators = [
            build_worker_operators(self.context, rng, self.stage.fmax, self.stage.steps)
            for rng in rngs
        ]
        if workers == 1:
            task(operators[0], work[0])
            return
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futures = {
                ex.submit(task, ops, payload): idx
                for idx, (ops, payload) in enumerate(zip(operators, work))
            }
            for fut in as_completed(futures):
                fut.result()
                logger.debug("Worker %d of stage '%s' finished.", futures[fut], self.stage.id)

    def write_stage(self) -> None:
        """Writes the pool best-first plus a summary of fitnesses and niches."""
        writer = GeometryWriter(self.dir)
        for rank, entry in enumerate(self.context.pool.entries):
            writer.write_geometry(entry.geometry, rank)
        best = self.context.pool.best()
        writer.write_properties(
            os.path.join(self.dir, POOL_SUMMARY_FILE),
            {
                "stage": self.stage.id,
                "pool size": len(self.context.pool),
                "best fitness": None if best is None else best.fitness,
                "fitnesses": [entry.fitness for entry in self.context.pool.entries],
                "niches": self.context.pool.niche_report(),
                "statistics": self.context.statistics.snapshot(),
            },
        )

    def end(self) -> None:
        self.write_stage()
        self.context.statistics.log_summary(f"Stage '{self.stage.id}'")
        best = self.context.pool.best()
        if best is not None:
            logger.info(
                "Stage '%s' done: %d geometries, best fitness %.6f (geometry %d).",
                self.stage.id,
                len(self.context.pool),
                best.fitness,
                best.id,
            )
