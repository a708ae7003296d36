import numpy as np
import pytest

from geomutils.errors import GeometryError
from geomutils.geometry import NONCONVERGED_ENERGY
from geomutils.local_heat import (
    HeatConfig,
    LocalHeatLocOpt,
    LocalHeatMutation,
    LocalHeatPulses,
)
from geomutils.newton import AseNewton, NewtonAdaptor


class ConstantFitness:
    def __init__(self, value=-1.0):
        self.value = value
        self.calls = []

    def fitness(self, geometry, force_one_eval=False):
        self.calls.append(force_one_eval)
        result = geometry.copy()
        result.fitness = self.value
        return result


class RecordingInitializer:
    def __init__(self, template):
        self.template = template
        self.ids = []

    def initialize(self, future_id):
        self.ids.append(future_id)
        geometry = self.template.copy()
        geometry.id = future_id
        return geometry


@pytest.mark.parametrize(
    "kwargs",
    [
        {"choose_mode": "everywhere"},
        {"move_mode": "dihedral"},
        {"scale_factor": 0.0},
        {"iterations": 0},
        {"sigmas": (0.1, 0.1)},
        {"temperature": -1.0},
    ],
)
def test_config_rejects_bad_values(kwargs):
    with pytest.raises(GeometryError):
        HeatConfig(**kwargs)


@pytest.mark.parametrize("choose_mode", ["pick5", "upto10percent", "incenter", "insphere"])
def test_cycle_never_ends_worse_than_first_relaxation(argon_geometry, lj_factory, rng, choose_mode):
    adaptor = NewtonAdaptor(AseNewton(lj_factory, fmax=1e-2, steps=100))
    start = argon_geometry(6)
    reference = adaptor.fitness(start)
    config = HeatConfig(iterations=4, eq_iterations=1, choose_mode=choose_mode, start_amplitude=0.5)
    pulses = LocalHeatPulses(adaptor, config, rng, blow_collision=0.8, blow_dissociation=3.0)
    result = pulses.cycle(start)
    assert result.fitness <= reference.fitness + 1e-8
    assert result.id == start.id


def test_cartesian_pulses_keep_rigid_water_intact(water_geometry, rng):
    fitness = ConstantFitness()
    config = HeatConfig(iterations=3, move_mode="cartesian", start_amplitude=0.3)
    start = water_geometry(5)
    result = LocalHeatPulses(fitness, config, rng, 0.8, 3.0).cycle(start)
    for before, after in zip(start.molecules, result.molecules):
        assert np.allclose(before.reference, after.reference)


def test_acceptable_fitness_stops_early(argon_geometry, rng):
    fitness = ConstantFitness(-5.0)
    pulses = LocalHeatPulses(
        fitness, HeatConfig(iterations=10), rng, 0.8, 3.0, acceptable_fitness=-1.0
    )
    pulses.cycle(argon_geometry(4))
    assert len(fitness.calls) == 1


def test_no_progress_resets_to_fresh_geometry(argon_geometry, rng):
    start = argon_geometry(4, geometry_id=12)
    initializer = RecordingInitializer(start)
    config = HeatConfig(
        iterations=3,
        metropolis=False,
        reset_after_no_progress=True,
        reset_iterations=1,
        reset_to_random=True,
    )
    LocalHeatPulses(ConstantFitness(), config, rng, 0.8, 3.0).cycle(start, initializer)
    assert initializer.ids and set(initializer.ids) == {12}


def test_locopt_looks_up_initializer_per_call(argon_geometry, rng):
    created = []

    def factory():
        created.append(RecordingInitializer(argon_geometry(4)))
        return created[-1]

    config = HeatConfig(iterations=2, reset_to_random=True)
    locopt = LocalHeatLocOpt(LocalHeatPulses(ConstantFitness(), config, rng, 0.8, 3.0), factory)
    assert created == []
    locopt.fitness(argon_geometry(4), force_one_eval=True)
    assert created == []
    locopt.fitness(argon_geometry(4))
    locopt.fitness(argon_geometry(4))
    assert len(created) == 2


def test_force_one_eval_bypasses_pulses(argon_geometry, rng):
    fitness = ConstantFitness(-2.0)
    locopt = LocalHeatLocOpt(LocalHeatPulses(fitness, HeatConfig(iterations=5), rng, 0.8, 3.0))
    result = locopt.fitness(argon_geometry(3), force_one_eval=True)
    assert result.fitness == -2.0
    assert fitness.calls == [True]


def test_mutation_never_resets_to_random(argon_geometry, rng):
    config = HeatConfig(iterations=2, reset_to_random=True)
    mutation = LocalHeatMutation(LocalHeatPulses(ConstantFitness(), config, rng, 0.8, 3.0))
    assert mutation.pulses.config.reset_to_random is False
    result = mutation.mutate(argon_geometry(3))
    assert result.fitness != NONCONVERGED_ENERGY
