import numpy as np
import pytest
from ase import Atoms

from geomutils.allowed_space import HalfSphereSpace
from geomutils.bond_info import SimpleBondInfo
from geomutils.environment import GENOME_SIZE, SimpleEnvironment
from geomutils.errors import GeometryError


def _surface():
    grid = [(x * 2.5, y * 2.5, 0.0) for x in range(-2, 3) for y in range(-2, 3)]
    return Atoms(f"Cu{len(grid)}", positions=grid)


def _environment(rng, flexible=False):
    space = HalfSphereSpace(np.array([0.0, 0.0, 4.0]), 1.0, rng)
    env = SimpleEnvironment(_surface(), space, rng, blow=1.0, flexible=flexible)
    env.put_genome(np.array([0.0, 0.0, 5.0, 0.0, 0.0, 0.0]))
    return env


def test_genome_accessors(rng):
    env = _environment(rng)
    genome = env.get_genome()
    genome[0] = 99.0
    assert env.get_genome()[0] == 0.0
    with pytest.raises(GeometryError):
        env.put_genome(np.zeros(GENOME_SIZE + 1))


def test_fit_only_counts_cluster_environment_contacts(rng, argon_geometry):
    env = _environment(rng)
    cluster = Atoms("Ar2", positions=np.zeros((2, 3)))
    # overlapping cluster atoms do not matter for the fit test
    assert env.does_it_fit(cluster)
    env.put_genome(np.array([0.0, 0.0, 0.5, 0.0, 0.0, 0.0]))
    assert not env.does_it_fit(cluster)


def test_merge_and_split(rng, argon_geometry):
    env = _environment(rng, flexible=True)
    cluster = argon_geometry(3).to_atoms()
    bonds = SimpleBondInfo(3)
    bonds.set_bond(0, 1, 1)
    merged, merged_bonds = env.merge_with_bonds(cluster, bonds)
    assert len(merged) == 3 + env.n_atoms
    assert merged_bonds.n_atoms == len(merged)
    assert merged_bonds.has_bond(0, 1)
    assert merged.info["n_cluster_atoms"] == 3

    shifted = merged.copy()
    shifted.positions[:3] += np.array([0.0, 0.0, 1.0])
    shifted.positions[3:] += np.array([0.1, 0.0, 0.0])
    recovered = env.split(shifted, 3)
    com = recovered.get_positions().mean(axis=0)
    assert np.allclose(com, 0.0, atol=1e-8)
    assert np.allclose(env.get_genome()[:3], [0.0, 0.0, 6.0])
    assert np.allclose(env.atoms.get_positions(), _surface().get_positions() + [0.1, 0.0, 0.0])


def test_split_wrong_size_raises(rng):
    env = _environment(rng)
    with pytest.raises(GeometryError):
        env.split(Atoms("Ar"), 3)


def test_operators_return_new_environments(rng):
    env = _environment(rng)
    fresh = env.initialize()
    assert fresh is not env
    assert env.space.contains(fresh.get_genome()[:3])
    mutated = env.mutate()
    assert not np.array_equal(mutated.get_genome(), env.get_genome())
    other = _environment(rng)
    other.put_genome(np.arange(1.0, 7.0))
    child1, child2 = env.crossover(other)
    for gene in range(GENOME_SIZE):
        pair = {child1.get_genome()[gene], child2.get_genome()[gene]}
        assert pair == {env.get_genome()[gene], other.get_genome()[gene]}
