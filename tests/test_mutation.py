import numpy as np
import pytest
from ase import Atoms

from geomutils.bond_info import SimpleBondInfo
from geomutils.collision_detection import CollisionDetection
from geomutils.collision_info import SingleCollisionInfo
from geomutils.errors import GeometryError
from geomutils.geometry import Geometry, MoleculeConfig
from geomutils.initializers import PackingInitializer, RandomizedGeometryInitializer
from geomutils.allowed_space import SphereSpace
from geomutils.mutation import MonteCarloMutation, NoMutation


def _flexible_chain(n_atoms=6):
    atoms = Atoms(f"Ar{n_atoms}", positions=[[3.8 * i, 0.0, 0.0] for i in range(n_atoms)])
    mol = MoleculeConfig.from_atoms("chain", atoms, flexible=True)
    return Geometry(id=1, molecules=[mol], bonds=SimpleBondInfo(n_atoms))


def _moved(before, after):
    return int(np.sum(np.linalg.norm(after - before, axis=1) > 1e-12))


def test_mode_one_moves_exactly_one_atom(rng):
    geometry = _flexible_chain()
    mutated = MonteCarloMutation(0, 0.5, rng).mutate(geometry)
    moved = _moved(geometry.cartesians(), mutated.cartesians())
    assert moved <= 1
    assert mutated.fitness is None


def test_mode_all_moves_every_atom_within_max_move(rng):
    geometry = _flexible_chain()
    mutated = MonteCarloMutation(1, 0.5, rng).mutate(geometry)
    step = np.linalg.norm(mutated.cartesians() - geometry.cartesians(), axis=1)
    assert np.all(step <= 0.5 + 1e-12)
    assert np.count_nonzero(step) >= 5


def test_mode_some_moves_subset(rng):
    geometry = _flexible_chain(20)
    counts = {
        _moved(geometry.cartesians(), MonteCarloMutation(2, 0.5, rng).mutate(geometry).cartesians())
        for _ in range(30)
    }
    assert max(counts) <= 20
    assert len(counts) > 1


def test_parent_is_untouched(rng, argon_geometry):
    geometry = argon_geometry(4)
    before = geometry.cartesians()
    MonteCarloMutation(1, 1.0, rng).mutate(geometry)
    assert np.array_equal(geometry.cartesians(), before)


def test_constricted_molecules_never_move(rng, argon_geometry):
    geometry = argon_geometry(4)
    for mol in geometry.molecules[:3]:
        mol.constricted = True
    mutation = MonteCarloMutation(1, 1.0, rng)
    for _ in range(20):
        mutated = mutation.mutate(geometry)
        assert np.array_equal(mutated.cartesians()[:3], geometry.cartesians()[:3])


@pytest.mark.parametrize("mode, max_move", [(3, 0.5), (-1, 0.5), (0, 0.0)])
def test_bad_parameters_raise(rng, mode, max_move):
    with pytest.raises(GeometryError):
        MonteCarloMutation(mode, max_move, rng)


def test_no_mutation_returns_unevaluated_copy(argon_geometry):
    geometry = argon_geometry(2)
    geometry.fitness = -1.0
    mutated = NoMutation().mutate(geometry)
    assert mutated is not geometry
    assert mutated.fitness is None
    assert np.array_equal(mutated.cartesians(), geometry.cartesians())


def _is_valid(geometry, blow_collision=0.8, blow_dissociation=3.0):
    detection = CollisionDetection()
    atoms = geometry.to_atoms()
    return not detection.check_only_for_collision(
        atoms, blow_collision, geometry.bonds
    ) and not detection.check_for_dissociation(atoms, blow_dissociation, geometry.bonds)


@pytest.mark.parametrize("mode", ["ascending", "random", "bysize"])
def test_packing_gives_valid_clusters(rng, water_geometry, mode):
    template = water_geometry(4)
    packer = PackingInitializer(template, rng, [4.0, 4.0, 4.0], 0.8, 3.0, mode=mode)
    for future_id in range(3):
        geometry = packer.initialize(future_id)
        assert geometry.id == future_id
        assert _is_valid(geometry)


def test_two_dimensional_packing_stays_in_plane(rng, argon_geometry):
    packer = PackingInitializer(argon_geometry(5), rng, [5.0, 5.0, 5.0], 0.8, 3.0, dims=2)
    geometry = packer.initialize(1)
    assert np.allclose(geometry.coms()[:, 2], 0.0)
    assert _is_valid(geometry)


def test_packing_as_mutation_keeps_identity(rng, argon_geometry):
    parent = argon_geometry(4)
    parent.fitness = -0.1
    packer = PackingInitializer(parent, rng, [5.0, 5.0, 5.0], 0.8, 3.0)
    child = packer.mutate(parent)
    assert child.id == parent.id
    assert child.fitness is None
    assert _is_valid(child)


@pytest.mark.parametrize("kwargs", [{"mode": "spiral"}, {"dims": 4}])
def test_packing_rejects_bad_settings(rng, argon_geometry, kwargs):
    with pytest.raises(GeometryError):
        PackingInitializer(argon_geometry(3), rng, [5.0, 5.0, 5.0], 0.8, 3.0, **kwargs)


def test_randomized_initializer_is_valid_and_reproducible(argon_geometry):
    template = argon_geometry(6)

    def build(seed):
        gen = np.random.default_rng(seed)
        return RandomizedGeometryInitializer(
            template, SphereSpace(np.zeros(3), 4.0, gen), gen, 0.8, 3.0
        )

    first = build(7).initialize(11)
    second = build(7).initialize(11)
    assert first.id == 11
    assert np.array_equal(first.cartesians(), second.cartesians())
    assert _is_valid(first)


def _count_collision_records(monkeypatch):
    created = []
    original = SingleCollisionInfo.__init__

    def counting_init(self):
        created.append(self)
        original(self)

    monkeypatch.setattr(SingleCollisionInfo, "__init__", counting_init)
    return created


def test_packing_reuses_one_collision_record(rng, argon_geometry, monkeypatch):
    created = _count_collision_records(monkeypatch)
    packer = PackingInitializer(argon_geometry(13), rng, [5.0, 5.0, 5.0], 0.8, 3.0)
    for future_id in range(2):
        packer.initialize(future_id)
    assert len(created) == 1


def test_randomized_placement_reuses_one_collision_record(rng, argon_geometry, monkeypatch):
    created = _count_collision_records(monkeypatch)
    init = RandomizedGeometryInitializer(
        argon_geometry(8), SphereSpace(np.zeros(3), 4.0, rng), rng, 0.8, 3.0
    )
    init.initialize(1)
    init.initialize(2)
    assert len(created) == 1
