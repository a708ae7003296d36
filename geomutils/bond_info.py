from __future__ import annotations

from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Iterable, Sequence

import numpy as np
from ase import Atoms
from ase.data import covalent_radii

from geomutils.errors import GeometryError


class BondType(IntEnum):
    NONE = 0
    SINGLE = 1
    DOUBLE = 2
    TRIPLE = 3
    AROMATIC = 4
    VDW = 5
    UNCERTAIN = 99


class BondInfo(ABC):
    """
    Symmetric bond-type table over atom indices. The diagonal is always
    BondType.NONE.

    Check ``bond_matrix_fast`` before calling ``full_bond_matrix`` in hot
    loops; sparse storage has to materialise the matrix on every call.
    """

    bond_matrix_fast: bool = False

    def __init__(self, n_atoms: int) -> None:
        if n_atoms < 0:
            raise GeometryError(f"Bond table size must be non-negative, got {n_atoms}.")
        self._n_atoms = int(n_atoms)

    @property
    def n_atoms(self) -> int:
        return self._n_atoms

    def _check(self, a: int, b: int) -> None:
        if not (0 <= a < self._n_atoms and 0 <= b < self._n_atoms):
            raise GeometryError(
                f"Bond index pair ({a}, {b}) outside table of {self._n_atoms} atoms."
            )

    @abstractmethod
    def bond_type(self, a: int, b: int) -> BondType:
        raise NotImplementedError

    @abstractmethod
    def _store(self, a: int, b: int, bond: BondType) -> None:
        raise NotImplementedError

    def set_bond(self, a: int, b: int, bond: BondType | int) -> None:
        self._check(a, b)
        if a == b:
            return
        self._store(a, b, BondType(bond))

    def has_bond(self, a: int, b: int) -> bool:
        return self.bond_type(a, b) != BondType.NONE

    def full_bond_matrix(self) -> np.ndarray:
        """Boolean n x n matrix, True where a bond of any type exists."""
        return self.full_type_matrix() != BondType.NONE

    @abstractmethod
    def full_type_matrix(self) -> np.ndarray:
        raise NotImplementedError

    def bonded_pairs(self) -> list[tuple[int, int]]:
        mat = self.full_bond_matrix()
        ii, jj = np.nonzero(np.triu(mat, k=1))
        return [(int(i), int(j)) for i, j in zip(ii, jj)]

    def subset(self, indices: Sequence[int]) -> "BondInfo":
        """Bond table restricted to ``indices``, renumbered 0..len-1."""
        sub = self.__class__(len(indices))
        for new_a, old_a in enumerate(indices):
            for new_b in range(new_a + 1, len(indices)):
                bond = self.bond_type(old_a, indices[new_b])
                if bond != BondType.NONE:
                    sub.set_bond(new_a, new_b, bond)
        return sub

    def merged_with(self, other: "BondInfo") -> "BondInfo":
        """Block-diagonal union, ``other`` indices shifted by this table's size."""
        merged = self.__class__(self.n_atoms + other.n_atoms)
        for a, b in self.bonded_pairs():
            merged.set_bond(a, b, self.bond_type(a, b))
        for a, b in other.bonded_pairs():
            merged.set_bond(a + self.n_atoms, b + self.n_atoms, other.bond_type(a, b))
        return merged

    @abstractmethod
    def copy(self) -> "BondInfo":
        raise NotImplementedError


class SimpleBondInfo(BondInfo):
    bond_matrix_fast = True

    def __init__(self, n_atoms: int) -> None:
        super().__init__(n_atoms)
        self._types = np.zeros((self._n_atoms, self._n_atoms), dtype=np.int16)

    def bond_type(self, a: int, b: int) -> BondType:
        self._check(a, b)
        return BondType(int(self._types[a, b]))

    def _store(self, a: int, b: int, bond: BondType) -> None:
        self._types[a, b] = int(bond)
        self._types[b, a] = int(bond)

    def full_bond_matrix(self) -> np.ndarray:
        return self._types != BondType.NONE

    def full_type_matrix(self) -> np.ndarray:
        return self._types.copy()

    def copy(self) -> "SimpleBondInfo":
        dup = SimpleBondInfo(self._n_atoms)
        dup._types = self._types.copy()
        return dup


class SparseBondInfo(BondInfo):
    bond_matrix_fast = False

    def __init__(self, n_atoms: int) -> None:
        super().__init__(n_atoms)
        self._types: dict[tuple[int, int], BondType] = {}

    @staticmethod
    def _key(a: int, b: int) -> tuple[int, int]:
        return (a, b) if a < b else (b, a)

    def bond_type(self, a: int, b: int) -> BondType:
        self._check(a, b)
        return self._types.get(self._key(a, b), BondType.NONE)

    def _store(self, a: int, b: int, bond: BondType) -> None:
        key = self._key(a, b)
        if bond == BondType.NONE:
            self._types.pop(key, None)
        else:
            self._types[key] = bond

    def full_type_matrix(self) -> np.ndarray:
        mat = np.zeros((self._n_atoms, self._n_atoms), dtype=np.int16)
        for (a, b), bond in self._types.items():
            mat[a, b] = int(bond)
            mat[b, a] = int(bond)
        return mat

    def bonded_pairs(self) -> list[tuple[int, int]]:
        return sorted(self._types)

    def copy(self) -> "SparseBondInfo":
        dup = SparseBondInfo(self._n_atoms)
        dup._types = dict(self._types)
        return dup


def detect_bonds(
    atoms: Atoms,
    blow: float,
    ranges: Iterable[tuple[int, int]] | None = None,
    bond_info_cls: type[BondInfo] = SimpleBondInfo,
) -> BondInfo:
    """
    Single bonds between atoms closer than blow * (r_i + r_j), covalent radii.

    ``ranges`` limits detection to within each [start, end) block, e.g. one
    block per molecule so intermolecular contacts never count as bonds.
    """
    n = len(atoms)
    bonds = bond_info_cls(n)
    if n == 0:
        return bonds
    positions = atoms.get_positions()
    radii = covalent_radii[atoms.get_atomic_numbers()]
    blocks = list(ranges) if ranges is not None else [(0, n)]
    for start, end in blocks:
        block = positions[start:end]
        diff = block[:, None, :] - block[None, :, :]
        dists = np.linalg.norm(diff, axis=-1)
        cutoff = blow * (radii[start:end, None] + radii[None, start:end])
        ii, jj = np.nonzero(np.triu(dists <= cutoff, k=1))
        for i, j in zip(ii, jj):
            bonds.set_bond(int(i) + start, int(j) + start, BondType.SINGLE)
    return bonds
