"""Pytest configuration for geomevolve tests.

Puts the repository root on sys.path so the flat ``geomutils`` and
``evolution`` packages import without installation.
"""
import sys
from pathlib import Path

import numpy as np
import pytest
from ase import Atoms
from ase.calculators.lj import LennardJones

_root_dir = Path(__file__).resolve().parent.parent
if str(_root_dir) not in sys.path:
    sys.path.insert(0, str(_root_dir))

from geomutils.bond_info import SimpleBondInfo, detect_bonds  # noqa: E402
from geomutils.geometry import Geometry, MoleculeConfig  # noqa: E402

AR_SIGMA = 3.4
AR_EPSILON = 0.0104
AR_SPACING = 3.8

WATER_POSITIONS = [
    [0.0, 0.0, 0.117],
    [0.0, 0.757, -0.469],
    [0.0, -0.757, -0.469],
]


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def lj_factory():
    def factory(overrides=None):
        return LennardJones(sigma=AR_SIGMA, epsilon=AR_EPSILON, rc=10.0)

    return factory


def make_argon_geometry(n, spacing=AR_SPACING, geometry_id=1):
    """n argon atoms on a line (n <= 3) or a simple cubic grid."""
    side = max(1, int(np.ceil(n ** (1.0 / 3.0))))
    points = [
        (i * spacing, j * spacing, k * spacing)
        for i in range(side)
        for j in range(side)
        for k in range(side)
    ][:n]
    molecules = [
        MoleculeConfig.from_atoms("ar", Atoms("Ar", positions=[p])) for p in points
    ]
    return Geometry(id=geometry_id, molecules=molecules, bonds=SimpleBondInfo(n))


def make_water_geometry(n, spacing=3.0, geometry_id=1, flexible=False):
    molecules = []
    for i in range(n):
        atoms = Atoms("OH2", positions=WATER_POSITIONS)
        atoms.translate([i * spacing, 0.0, 0.0])
        molecules.append(MoleculeConfig.from_atoms("water", atoms, flexible=flexible))
    geometry = Geometry(id=geometry_id, molecules=molecules, bonds=SimpleBondInfo(0))
    geometry.bonds = detect_bonds(geometry.to_atoms(), 1.2, geometry.atom_ranges())
    return geometry


@pytest.fixture
def argon_geometry():
    return make_argon_geometry


@pytest.fixture
def water_geometry():
    return make_water_geometry
