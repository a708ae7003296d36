from collections import Counter

import numpy as np
import pytest

from geomutils.coord_transform import random_eulers
from geomutils.crossover import MoleculeCrossover, OrientationCrossover, swap_flags
from geomutils.errors import GeometryError


def _parents(water_geometry, rng, n=5):
    mother = water_geometry(n, geometry_id=1)
    father = water_geometry(n, geometry_id=2)
    for mol in mother.molecules + father.molecules:
        mol.orientation = random_eulers(rng)
    return mother, father


def _orientation_multiset(*geometries):
    return Counter(tuple(np.round(m.orientation, 12)) for g in geometries for m in g.molecules)


def test_swap_flags_toggle_at_cuts():
    assert swap_flags(5, [1, 3]) == [False, True, True, False, False]
    assert swap_flags(4, [0]) == [True, True, True, True]


def test_too_many_cuts_is_not_an_error(water_geometry, rng):
    mother, father = _parents(water_geometry, rng, n=3)
    before = [m.orientation.copy() for m in mother.molecules]
    crossover = OrientationCrossover(3, rng)
    assert crossover.crossover(mother, father, 10) == (None, None)
    assert all(np.array_equal(a, m.orientation) for a, m in zip(before, mother.molecules))


@pytest.mark.parametrize("cuts", [[0], [2], [1, 3], [0, 2, 4]])
def test_orientation_crossover_permutes_orientations(water_geometry, rng, cuts):
    mother, father = _parents(water_geometry, rng)
    expected = _orientation_multiset(mother, father)
    mother_before = [m.orientation.copy() for m in mother.molecules]
    child1, child2 = OrientationCrossover(len(cuts), rng).crossover_at(mother, father, 42, cuts)
    assert _orientation_multiset(child1, child2) == expected
    assert child1.id == child2.id == 42
    assert child1.fitness is None and child2.fitness is None
    assert all(np.array_equal(a, m.orientation) for a, m in zip(mother_before, mother.molecules))
    for mol, swap in enumerate(swap_flags(5, cuts)):
        source = father if swap else mother
        assert np.array_equal(child1.molecules[mol].orientation, source.molecules[mol].orientation)
        # positions always stay with the first child
        assert np.array_equal(child1.molecules[mol].position, mother.molecules[mol].position)


def test_random_cuts_produce_independent_children(water_geometry, rng):
    mother, father = _parents(water_geometry, rng)
    child1, child2 = OrientationCrossover(2, rng).crossover(mother, father, 7)
    child1.molecules[0].orientation[0] += 1.0
    assert _orientation_multiset(mother, father) != _orientation_multiset(child1, child2)
    assert not any(child1.molecules[0] is m for m in mother.molecules + father.molecules)


def test_molecule_crossover_swaps_whole_configurations(water_geometry, rng):
    mother, father = _parents(water_geometry, rng, n=4)
    for mol in father.molecules:
        mol.position = mol.position + 10.0
    child1, child2 = MoleculeCrossover(1, rng).crossover_at(mother, father, 3, [2])
    assert np.array_equal(child1.molecules[1].position, mother.molecules[1].position)
    assert np.array_equal(child1.molecules[2].position, father.molecules[2].position)
    assert np.array_equal(child2.molecules[3].orientation, mother.molecules[3].orientation)


def test_molecule_crossover_needs_matching_species(water_geometry, argon_geometry, rng):
    mother = water_geometry(2)
    father = water_geometry(2)
    father.molecules[1].sid = "other"
    with pytest.raises(GeometryError):
        MoleculeCrossover(1, rng).crossover_at(mother, father, 3, [1])


def test_zero_cuts_rejected(rng):
    with pytest.raises(GeometryError):
        OrientationCrossover(0, rng)
