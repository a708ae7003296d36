from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from ase import Atoms

from geomutils.bond_info import BondInfo
from geomutils.coord_transform import (
    align,
    center_of_mass,
    euler_to_matrix,
    matrix_to_euler,
)
from geomutils.errors import GeometryError

if TYPE_CHECKING:
    from geomutils.environment import SimpleEnvironment

logger = logging.getLogger(__name__)

# fitness given to candidates whose evaluation failed, the pool ranks them last
NONCONVERGED_ENERGY = 1.0e10


@dataclass
class MoleculeConfig:
    """
    One building block of a geometry. ``reference`` holds body-frame
    coordinates centered on the center of mass; the lab frame is
    ``reference @ R(orientation).T + position``.
    """

    sid: str
    numbers: np.ndarray
    reference: np.ndarray
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    flexible: bool = False
    constricted: bool = False
    charge: int = 0
    spin: int = 0

    @classmethod
    def from_atoms(
        cls,
        sid: str,
        atoms: Atoms,
        flexible: bool = False,
        constricted: bool = False,
        charge: int = 0,
        spin: int = 0,
    ) -> "MoleculeConfig":
        numbers = atoms.get_atomic_numbers().copy()
        positions = atoms.get_positions()
        com = center_of_mass(positions, numbers)
        return cls(
            sid=sid,
            numbers=numbers,
            reference=positions - com,
            position=com,
            orientation=np.zeros(3),
            flexible=flexible,
            constricted=constricted,
            charge=charge,
            spin=spin,
        )

    @property
    def n_atoms(self) -> int:
        return len(self.numbers)

    def cartesians(self) -> np.ndarray:
        rot = euler_to_matrix(self.orientation)
        return self.reference @ rot.T + self.position

    def to_atoms(self) -> Atoms:
        atoms = Atoms(numbers=self.numbers, positions=self.cartesians())
        atoms.info["charge"] = self.charge
        atoms.info["spin"] = self.spin
        return atoms

    def reshape(self, xyz: np.ndarray) -> None:
        """Take ``xyz`` as the new internal structure, orientation unchanged."""
        xyz = np.asarray(xyz, dtype=float)
        com = center_of_mass(xyz, self.numbers)
        rot = euler_to_matrix(self.orientation)
        self.reference = (xyz - com) @ rot
        self.position = com

    def set_cartesians(self, xyz: np.ndarray) -> None:
        """
        Rigid molecules are fitted onto ``xyz`` (position and orientation
        only), flexible ones take the new shape.
        """
        xyz = np.asarray(xyz, dtype=float)
        if xyz.shape != self.reference.shape:
            raise GeometryError(
                f"Molecule '{self.sid}' expects {self.n_atoms} atoms, got {xyz.shape}."
            )
        if self.flexible:
            self.reshape(xyz)
            return
        try:
            rot, com, _ = align(self.reference, xyz, self.numbers)
        except np.linalg.LinAlgError:
            logger.warning(
                "Rigid fit of molecule '%s' failed, keeping orientation unaligned.",
                self.sid,
            )
            self.position = center_of_mass(xyz, self.numbers)
            return
        self.position = com
        self.orientation = matrix_to_euler(rot)

    def copy(self) -> "MoleculeConfig":
        return MoleculeConfig(
            sid=self.sid,
            numbers=self.numbers.copy(),
            reference=self.reference.copy(),
            position=self.position.copy(),
            orientation=self.orientation.copy(),
            flexible=self.flexible,
            constricted=self.constricted,
            charge=self.charge,
            spin=self.spin,
        )


@dataclass
class Geometry:
    """A candidate cluster: molecules, bonds, optional environment, fitness."""

    id: int
    molecules: list[MoleculeConfig]
    bonds: BondInfo
    father_id: int = 0
    mother_id: int = 0
    fitness: float | None = None
    environment: "SimpleEnvironment | None" = None

    @property
    def n_particles(self) -> int:
        return len(self.molecules)

    @property
    def n_atoms(self) -> int:
        return sum(mol.n_atoms for mol in self.molecules)

    @property
    def total_charge(self) -> int:
        return sum(mol.charge for mol in self.molecules)

    @property
    def total_spin(self) -> int:
        return sum(mol.spin for mol in self.molecules)

    def atom_ranges(self) -> list[tuple[int, int]]:
        ranges = []
        start = 0
        for mol in self.molecules:
            ranges.append((start, start + mol.n_atoms))
            start += mol.n_atoms
        return ranges

    def numbers(self) -> np.ndarray:
        if not self.molecules:
            return np.zeros(0, dtype=int)
        return np.concatenate([mol.numbers for mol in self.molecules])

    def cartesians(self) -> np.ndarray:
        if not self.molecules:
            return np.zeros((0, 3))
        return np.vstack([mol.cartesians() for mol in self.molecules])

    def coms(self) -> np.ndarray:
        return np.array([mol.position for mol in self.molecules])

    def constricted_mask(self) -> np.ndarray:
        return np.concatenate(
            [np.full(mol.n_atoms, mol.constricted) for mol in self.molecules]
        )

    def to_atoms(self, with_environment: bool = False) -> Atoms:
        atoms = Atoms(numbers=self.numbers(), positions=self.cartesians())
        atoms.info["geometry_id"] = self.id
        atoms.info["charge"] = self.total_charge
        atoms.info["spin"] = self.total_spin
        if self.fitness is not None:
            atoms.info["fitness"] = self.fitness
        if with_environment and self.environment is not None:
            return self.environment.merge(atoms)
        return atoms

    def update_cartesians(self, xyz: np.ndarray) -> None:
        xyz = np.asarray(xyz, dtype=float)
        if xyz.shape != (self.n_atoms, 3):
            raise GeometryError(
                f"Geometry {self.id} has {self.n_atoms} atoms, got coordinates {xyz.shape}."
            )
        for mol, (start, end) in zip(self.molecules, self.atom_ranges()):
            mol.set_cartesians(xyz[start:end])

    def update_from_atoms(self, atoms: Atoms) -> None:
        """Inverse of ``to_atoms``, accepts cluster-only or merged atoms."""
        if self.environment is not None and len(atoms) != self.n_atoms:
            atoms = self.environment.split(atoms, self.n_atoms)
        self.update_cartesians(atoms.get_positions())

    def validate(self, n_particles: int | None = None) -> None:
        if n_particles is not None and n_particles != self.n_particles:
            raise GeometryError(
                f"Geometry {self.id} has {self.n_particles} molecules, expected {n_particles}."
            )
        if self.bonds.n_atoms != self.n_atoms:
            raise GeometryError(
                f"Geometry {self.id} bond table covers {self.bonds.n_atoms} atoms, "
                f"geometry has {self.n_atoms}."
            )
        for idx, mol in enumerate(self.molecules):
            if mol.flexible and mol.constricted:
                raise GeometryError(
                    f"Geometry {self.id} molecule {idx} ('{mol.sid}') is both flexible and constricted."
                )

    def copy(self, rng: np.random.Generator | None = None) -> "Geometry":
        """Independent duplicate. ``rng`` rebinds the environment random source."""
        return Geometry(
            id=self.id,
            molecules=[mol.copy() for mol in self.molecules],
            bonds=self.bonds.copy(),
            father_id=self.father_id,
            mother_id=self.mother_id,
            fitness=self.fitness,
            environment=(
                None if self.environment is None else self.environment.copy(rng)
            ),
        )
