import numpy as np
import pytest
from ase import Atoms
from ase.optimize import BFGS

from geomutils.geometry import NONCONVERGED_ENERGY, MoleculeConfig
from geomutils.newton import AseNewton, NewtonAdaptor
from geomutils.statistics import SearchStatistics

LJ_MINIMUM = 2.0 ** (1.0 / 6.0) * 3.4


def broken_factory(overrides=None):
    raise RuntimeError("calculator exploded")


def test_argon_dimer_relaxes_to_lj_minimum(argon_geometry, lj_factory):
    newton = AseNewton(lj_factory, optimizer_factory=BFGS, fmax=1e-4, steps=500)
    relaxed = newton.optimize_geometry(argon_geometry(2))
    distance = np.linalg.norm(np.diff(relaxed.cartesians(), axis=0))
    assert distance == pytest.approx(LJ_MINIMUM, abs=1e-2)
    assert relaxed.fitness == pytest.approx(newton.energy(relaxed))
    assert newton.n_geometry_local_opts == 1


def test_optimization_leaves_input_alone(argon_geometry, lj_factory):
    geometry = argon_geometry(2)
    before = geometry.cartesians()
    AseNewton(lj_factory).optimize_geometry(geometry)
    assert np.allclose(geometry.cartesians(), before)
    assert geometry.fitness is None


def test_constricted_molecule_stays_put(argon_geometry, lj_factory):
    geometry = argon_geometry(3)
    geometry.molecules[0].constricted = True
    relaxed = AseNewton(lj_factory, fmax=1e-3).optimize_geometry(geometry)
    assert np.allclose(relaxed.molecules[0].position, geometry.molecules[0].position)


def test_rigid_water_keeps_its_shape(water_geometry, lj_factory):
    geometry = water_geometry(2, spacing=3.4)
    relaxed = AseNewton(lj_factory, steps=50).optimize_geometry(geometry)
    assert np.allclose(relaxed.molecules[1].reference, geometry.molecules[1].reference)


def test_failing_calculator_gives_nonconverged_energy(argon_geometry):
    newton = AseNewton(broken_factory)
    result = newton.optimize_geometry(argon_geometry(2))
    assert result.fitness == NONCONVERGED_ENERGY
    assert newton.energy(argon_geometry(2)) == NONCONVERGED_ENERGY


def test_missing_calculator_is_reported(argon_geometry):
    newton = AseNewton(lambda overrides: None)
    assert newton.optimize_geometry(argon_geometry(2)).fitness == NONCONVERGED_ENERGY


def test_adaptor_counts_evaluations_and_optimizations(argon_geometry, lj_factory):
    stats = SearchStatistics()
    adaptor = NewtonAdaptor(AseNewton(lj_factory, steps=20), stats)
    geometry = argon_geometry(2)
    single = adaptor.fitness(geometry, force_one_eval=True)
    assert np.allclose(single.cartesians(), geometry.cartesians())
    assert single.fitness is not None
    adaptor.fitness(geometry)
    adaptor.fitness(geometry)
    assert adaptor.n_fitness_evals == 1
    assert adaptor.n_local_opts == 2
    assert stats.get("fitness_evaluations") == 1
    assert stats.get("local_optimizations") == 2


def test_cartes_to_cartes_respects_mask(lj_factory):
    atoms = Atoms("Ar3", positions=[[0, 0, 0], [0, 0, 4.5], [0, 4.5, 0]])
    start = atoms.get_positions()
    newton = AseNewton(lj_factory, fmax=1e-3)
    relaxed = newton.cartes_to_cartes(7, atoms.copy(), np.array([True, False, False]))
    assert np.allclose(relaxed.get_positions()[0], start[0])
    assert not np.allclose(relaxed.get_positions()[1:], start[1:])
    assert relaxed.constraints == []


def test_cartes_to_cartes_rejects_bad_mask(lj_factory):
    atoms = Atoms("Ar2", positions=[[0, 0, 0], [0, 0, 4.0]])
    with pytest.raises(ValueError):
        AseNewton(lj_factory).cartes_to_cartes(1, atoms, np.array([True]))


def test_molecule_optimization_reshapes_copy(lj_factory):
    atoms = Atoms("Ar2", positions=[[0, 0, 0], [0, 0, 4.0]])
    molecule = MoleculeConfig.from_atoms("ar2", atoms, flexible=True)
    newton = AseNewton(lj_factory, optimizer_factory=BFGS, fmax=1e-4, steps=500)
    relaxed = newton.optimize_molecule(molecule)
    distance = np.linalg.norm(np.diff(relaxed.cartesians(), axis=0))
    assert distance == pytest.approx(LJ_MINIMUM, abs=1e-2)
    assert np.allclose(np.linalg.norm(np.diff(molecule.cartesians(), axis=0)), 4.0)
    assert newton.n_molecule_local_opts == 1
    assert newton.n_geometry_local_opts == 0
