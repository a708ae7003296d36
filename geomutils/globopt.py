from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Protocol, Sequence

import numpy as np

from geomutils.crossover import GeometryCrossover
from geomutils.errors import GeometryError
from geomutils.geometry import Geometry
from geomutils.mutation import GeometryMutation
from geomutils.sanity_check import GeometrySanityCheck
from geomutils.statistics import SearchStatistics

logger = logging.getLogger(__name__)


class FitnessFunction(Protocol):
    def fitness(self, geometry: Geometry, force_one_eval: bool = False) -> Geometry: ...


class GlobalOptimization(ABC):
    @abstractmethod
    def global_optimization(
        self, future_id: int, mother: Geometry, father: Geometry
    ) -> Geometry | None:
        """One offspring of the two parents, or None when every try failed."""
        raise NotImplementedError


class GeometryDarwin(GlobalOptimization):
    """
    Crossover with probability ``crossover_probability``; mutation with
    ``mutation_probability``, and always when no crossover happened. Children
    that pass the sanity check are locally optimized. Up to two children are
    collected over at most ``tries`` attempts and the fitter one is returned.
    """

    def __init__(
        self,
        crossover: GeometryCrossover,
        mutation: GeometryMutation,
        sanity_check: GeometrySanityCheck,
        fitness: FitnessFunction,
        rng: np.random.Generator,
        crossover_probability: float = 1.0,
        mutation_probability: float = 0.05,
        tries: int = 10,
        environment_mutation_probability: float = 0.5,
        statistics: SearchStatistics | None = None,
    ) -> None:
        for name, value in (
            ("crossover", crossover_probability),
            ("mutation", mutation_probability),
            ("environment mutation", environment_mutation_probability),
        ):
            if not 0.0 <= value <= 1.0:
                raise GeometryError(f"{name} probability must lie in [0, 1], got {value}.")
        if tries < 1:
            raise GeometryError(f"Darwin needs at least one try, got {tries}.")
        self.crossover = crossover
        self.mutation = mutation
        self.sanity_check = sanity_check
        self.fitness = fitness
        self.rng = rng
        self.crossover_probability = crossover_probability
        self.mutation_probability = mutation_probability
        self.tries = tries
        self.environment_mutation_probability = environment_mutation_probability
        self.statistics = statistics

    def _count(self, name: str) -> None:
        if self.statistics is not None:
            self.statistics.increment(name)

    def _mutate(self, child: Geometry) -> Geometry:
        mutated = self.mutation.mutate(child)
        if (
            mutated.environment is not None
            and self.rng.random() < self.environment_mutation_probability
        ):
            mutated.environment = mutated.environment.mutate()
        return mutated

    def _evaluate(self, child: Geometry | None) -> Geometry | None:
        if child is None:
            return None
        if not self.sanity_check.is_sane(child):
            self._count("sanity_discards")
            return None
        return self.fitness.fitness(child, False)

    def global_optimization(
        self, future_id: int, mother: Geometry, father: Geometry
    ) -> Geometry | None:
        collected: list[Geometry] = []
        for attempt in range(self.tries):
            self._count("trials")
            crossed = self.rng.random() <= self.crossover_probability
            if crossed:
                child1, child2 = self.crossover.crossover(mother, father, future_id)
                if child1 is None:
                    continue
            else:
                child1 = mother.copy(self.rng)
                child2 = father.copy(self.rng)
            child1.id = future_id
            child2.id = future_id

            if not crossed or self.rng.random() <= self.mutation_probability:
                child1 = self._mutate(child1)
                child2 = self._mutate(child2)

            children = [self._evaluate(child1), self._evaluate(child2)]
            for child in children:
                if child is not None:
                    child.id = future_id
                    child.father_id = father.id
                    child.mother_id = mother.id

            priority = self.crossover.priority
            first_is_first = priority == 0 if priority >= 0 else bool(self.rng.random() < 0.5)
            if not first_is_first:
                children.reverse()
            for child in children:
                if child is not None and len(collected) < 2:
                    collected.append(child)
            if len(collected) >= 2:
                break
            logger.debug("Geometry %d: try %d collected %d children.", future_id, attempt, len(collected))

        if not collected:
            self._count("empty_children")
            return None
        return min(collected, key=lambda g: g.fitness)


class WeightedGlobOpt(GlobalOptimization):
    """
    Picks one of several global optimizations per call. ``percentages`` are
    integers summing to exactly 100; a draw in [1, 100] selects the first
    strategy whose running percentage sum reaches it.
    """

    def __init__(
        self,
        strategies: Sequence[GlobalOptimization],
        percentages: Sequence[int],
        rng: np.random.Generator,
    ) -> None:
        if not strategies:
            raise GeometryError("At least one global optimization is required.")
        if len(strategies) != len(percentages):
            raise GeometryError(
                f"{len(strategies)} global optimizations but {len(percentages)} percentages."
            )
        if any(int(p) != p or p < 0 for p in percentages):
            raise GeometryError(f"Percentages must be non-negative integers, got {list(percentages)}.")
        if sum(percentages) != 100:
            raise GeometryError(
                f"Global optimization percentages must add up to 100, got {sum(percentages)}."
            )
        self.strategies = list(strategies)
        self.boundaries = np.cumsum([int(p) for p in percentages])
        self.rng = rng

    def select(self) -> int:
        draw = int(self.rng.integers(1, 101))
        return int(np.searchsorted(self.boundaries, draw, side="left"))

    def global_optimization(
        self, future_id: int, mother: Geometry, father: Geometry
    ) -> Geometry | None:
        return self.strategies[self.select()].global_optimization(future_id, mother, father)
