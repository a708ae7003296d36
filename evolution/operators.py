"""
Assembly of the per-worker operator set from the search settings.

Every worker gets its own generator and its own operator instances, so no
random source or mutable operator state is shared between threads. The
pool, statistics and calculator factory are the only shared pieces.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np

from evolution.search_context import SearchContext
from evolution.search_context_builder import build_space
from evolution.search_parser import (
    CrossoverSettings,
    HeatSettings,
    MutationSettings,
)
from geomutils.crossover import GeometryCrossover, MoleculeCrossover, OrientationCrossover
from geomutils.globopt import GeometryDarwin, WeightedGlobOpt
from geomutils.initializers import PackingInitializer, RandomizedGeometryInitializer
from geomutils.local_heat import (
    FitnessFunction,
    HeatConfig,
    LocalHeatLocOpt,
    LocalHeatMutation,
    LocalHeatPulses,
)
from geomutils.mutation import GeometryMutation, MonteCarloMutation, NoMutation
from geomutils.newton import AseNewton, NewtonAdaptor
from geomutils.sanity_check import GeometrySanityCheck

GeometryInitializer = Union[RandomizedGeometryInitializer, PackingInitializer]


@dataclass
class WorkerOperators:
    rng: np.random.Generator
    newton: AseNewton
    fitness: FitnessFunction
    initializer: GeometryInitializer
    sanity_check: GeometrySanityCheck
    globopt: WeightedGlobOpt


def heat_config(settings: HeatSettings) -> HeatConfig:
    return HeatConfig(
        iterations=settings.iterations,
        eq_iterations=settings.eq_iterations,
        scale_factor=settings.scale_factor,
        temperature=settings.temperature,
        metropolis=settings.metropolis,
        start_amplitude=settings.amplitude,
        euler_strength=settings.euler_strength,
        sigmas=settings.sigmas,
        choose_mode=settings.choose_mode,
        move_mode=settings.move_mode,
        check_sanity=settings.check_sanity,
        reset_after_no_progress=settings.reset_after_no_progress,
        reset_iterations=settings.reset_iterations,
        reset_to_random=settings.reset_to_random,
    )


def build_newton(
    context: SearchContext, fmax: float | None = None, steps: int | None = None
) -> AseNewton:
    localopt = context.settings.localopt
    return AseNewton(
        context.calculator_factory,
        optimizer_factory=context.optimizer_factory,
        fmax=localopt.fmax if fmax is None else fmax,
        steps=localopt.steps if steps is None else steps,
    )


def build_initializer(
    context: SearchContext, rng: np.random.Generator
) -> GeometryInitializer:
    init = context.settings.init
    blow = context.settings.blow
    if init.kind == "packing":
        return PackingInitializer(
            context.template,
            rng,
            cell=init.cell,
            blow_collision=blow.collision,
            blow_dissociation=blow.dissociation,
            mode=init.packing_mode,
            dims=init.dims,
            collision=context.collision,
        )
    return RandomizedGeometryInitializer(
        context.template,
        build_space(init.space, rng),
        rng,
        blow_collision=blow.collision,
        blow_dissociation=blow.dissociation,
        collision=context.collision,
        max_to_emergency=init.max_to_emergency,
    )


def _heat_pulses(
    context: SearchContext,
    settings: HeatSettings,
    fitness: FitnessFunction,
    rng: np.random.Generator,
) -> LocalHeatPulses:
    blow = context.settings.blow
    return LocalHeatPulses(
        fitness,
        heat_config(settings),
        rng,
        blow_collision=blow.collision,
        blow_dissociation=blow.dissociation,
        acceptable_fitness=context.settings.acceptable_fitness,
        collision=context.collision,
    )


def build_crossover(
    settings: CrossoverSettings, rng: np.random.Generator
) -> GeometryCrossover:
    if settings.kind == "molecule":
        return MoleculeCrossover(settings.cuts, rng)
    return OrientationCrossover(settings.cuts, rng)


def build_mutation(
    context: SearchContext,
    settings: MutationSettings,
    newton_fitness: FitnessFunction,
    rng: np.random.Generator,
) -> GeometryMutation:
    blow = context.settings.blow
    if settings.kind == "packing":
        return PackingInitializer(
            context.template,
            rng,
            cell=context.settings.init.cell,
            blow_collision=blow.collision,
            blow_dissociation=blow.dissociation,
            mode=settings.packing_mode,
            dims=settings.dims,
            collision=context.collision,
        )
    if settings.kind == "localheat":
        heat = settings.heat if settings.heat is not None else HeatSettings()
        return LocalHeatMutation(_heat_pulses(context, heat, newton_fitness, rng))
    if settings.kind == "none":
        return NoMutation()
    return MonteCarloMutation(settings.mode, settings.max_move, rng)


def build_worker_operators(
    context: SearchContext,
    rng: np.random.Generator,
    fmax: float | None = None,
    steps: int | None = None,
) -> WorkerOperators:
    settings = context.settings
    newton = build_newton(context, fmax, steps)
    newton_fitness = NewtonAdaptor(newton, context.statistics)

    initializer_holder: list[GeometryInitializer] = []
    fitness: FitnessFunction = newton_fitness
    if settings.localopt.kind == "localheat":
        heat = settings.localopt.heat if settings.localopt.heat is not None else HeatSettings()
        # the initializer is looked up when a reset needs it
        fitness = LocalHeatLocOpt(
            _heat_pulses(context, heat, newton_fitness, rng),
            initializer_factory=lambda: initializer_holder[0],
        )

    initializer = build_initializer(context, rng)
    initializer_holder.append(initializer)

    sanity_check = GeometrySanityCheck(
        settings.blow.collision,
        settings.blow.dissociation,
        n_particles=context.template.n_particles,
        collision=context.collision,
    )
    strategies = [
        GeometryDarwin(
            build_crossover(item.crossover, rng),
            build_mutation(context, item.mutation, newton_fitness, rng),
            sanity_check,
            fitness,
            rng,
            crossover_probability=item.crossover_probability,
            mutation_probability=item.mutation_probability,
            tries=item.tries,
            statistics=context.statistics,
        )
        for item in settings.globopt
    ]
    globopt = WeightedGlobOpt(strategies, [item.percent for item in settings.globopt], rng)
    return WorkerOperators(
        rng=rng,
        newton=newton,
        fitness=fitness,
        initializer=initializer,
        sanity_check=sanity_check,
        globopt=globopt,
    )
