from __future__ import annotations

import logging

import numpy as np
from ase import Atoms
from ase.data import covalent_radii
from scipy.sparse.csgraph import connected_components

from geomutils.bond_info import BondInfo
from geomutils.collision_info import (
    CollisionInfo,
    MultiCollisionInfo,
    SingleCollisionInfo,
    pairwise_distances,
)
from geomutils.errors import GeometryError

logger = logging.getLogger(__name__)


class CollisionDetection:
    """
    Collision and dissociation tests on an ase.Atoms coordinate set.

    Two non-bonded atoms collide when closer than blow * (r_i + r_j). Bonded
    pairs never collide. With ``exit_on_first`` the scan stops at the first
    hit and reports into a SingleCollisionInfo.
    """

    def __init__(
        self, exit_on_first: bool = True, radii: np.ndarray | None = None
    ) -> None:
        self.exit_on_first = exit_on_first
        self.radii_table = covalent_radii if radii is None else np.asarray(radii)
        self._warned_slow = False

    def new_info(self) -> CollisionInfo:
        return SingleCollisionInfo() if self.exit_on_first else MultiCollisionInfo()

    def _radii(self, atoms: Atoms) -> np.ndarray:
        return self.radii_table[atoms.get_atomic_numbers()]

    def _bond_matrix(self, bonds: BondInfo | None, n_atoms: int) -> np.ndarray:
        if bonds is None:
            return np.zeros((n_atoms, n_atoms), dtype=bool)
        if bonds.n_atoms != n_atoms:
            raise GeometryError(
                f"Bond table covers {bonds.n_atoms} atoms but coordinates have {n_atoms}."
            )
        if not bonds.bond_matrix_fast and not self._warned_slow:
            logger.warning(
                "%s has no fast full bond matrix, collision checks will be slow.",
                type(bonds).__name__,
            )
            self._warned_slow = True
        return bonds.full_bond_matrix()

    def check_for_collision(
        self,
        atoms: Atoms,
        blow: float,
        bonds: BondInfo | None,
        info: CollisionInfo | None = None,
    ) -> CollisionInfo:
        """Full scan. The pairwise distances are cached on the returned info."""
        n = len(atoms)
        bond_mat = self._bond_matrix(bonds, n)
        if info is None:
            info = self.new_info()
        info.resize_dists_and_clear_state(n)
        if n == 0:
            return info
        dists = info.fill_pairwise_distances(atoms.get_positions())
        radii = self._radii(atoms)
        cutoff = blow * (radii[:, None] + radii[None, :])
        hits = np.triu((dists < cutoff) & ~bond_mat, k=1)
        ii, jj = np.nonzero(hits)
        for i, j in zip(ii, jj):
            info.report_collision(
                int(i), int(j), float(cutoff[i, j] - dists[i, j]), float(dists[i, j])
            )
            if self.exit_on_first:
                break
        return info

    def check_for_collision_range(
        self,
        atoms: Atoms,
        blow: float,
        bonds: BondInfo | None,
        offset: int,
        endset: int | None = None,
        info: CollisionInfo | None = None,
    ) -> CollisionInfo:
        """
        Incremental scan: pairs with at least one atom in [offset, endset)
        against all atoms. Only that band of the buffer is filled, so the
        full distance matrix is not marked as cached.
        """
        n = len(atoms)
        endset = n if endset is None else endset
        if not 0 <= offset <= endset <= n:
            raise GeometryError(
                f"Collision range [{offset}, {endset}) invalid for {n} atoms."
            )
        bond_mat = self._bond_matrix(bonds, n)
        if info is None:
            info = self.new_info()
        info.resize_dists_and_clear_state(n)
        if offset == endset:
            return info
        dists = info.fill_distance_rows(atoms.get_positions(), offset, endset)
        radii = self._radii(atoms)
        cutoff = blow * (radii[offset:endset, None] + radii[None, :])
        rows = np.arange(offset, endset)[:, None]
        cols = np.arange(n)[None, :]
        # inside the band only count each pair once
        outside = (cols < offset) | (cols >= endset)
        mask = outside | (cols > rows)
        hits = (dists < cutoff) & ~bond_mat[offset:endset] & mask
        ii, jj = np.nonzero(hits)
        for i, j in zip(ii, jj):
            a, b = sorted((int(i) + offset, int(j)))
            info.report_collision(
                a, b, float(cutoff[i, j] - dists[i, j]), float(dists[i, j])
            )
            if self.exit_on_first:
                break
        return info

    def check_only_for_collision(
        self,
        atoms: Atoms,
        blow: float,
        bonds: BondInfo | None,
        offset: int = 0,
        endset: int | None = None,
        info: CollisionInfo | None = None,
    ) -> bool:
        if info is None:
            info = SingleCollisionInfo()
        if offset == 0 and (endset is None or endset == len(atoms)):
            info = self.check_for_collision(atoms, blow, bonds, info)
        else:
            info = self.check_for_collision_range(
                atoms, blow, bonds, offset, endset, info
            )
        return info.has_collision()

    def check_for_collision_between(
        self, atoms_a: Atoms, atoms_b: Atoms, blow: float
    ) -> bool:
        """Only pairs with one atom in each set, no bonds across the sets."""
        if len(atoms_a) == 0 or len(atoms_b) == 0:
            return False
        dists = pairwise_distances(atoms_a.get_positions(), atoms_b.get_positions())
        cutoff = blow * (self._radii(atoms_a)[:, None] + self._radii(atoms_b)[None, :])
        return bool(np.any(dists < cutoff))

    def check_for_dissociation(
        self,
        atoms: Atoms,
        blow: float,
        bonds: BondInfo | None = None,
        dists: np.ndarray | None = None,
        info: CollisionInfo | None = None,
    ) -> bool:
        """
        True when the atoms fall apart: either the graph of atoms closer than
        blow * (r_i + r_j) is disconnected or a bonded pair is stretched past
        that limit. ``dists`` may be a cached distance matrix; otherwise the
        distances are computed into ``info``'s buffer when one is given.
        """
        n = len(atoms)
        if n < 2:
            return False
        if dists is None or dists.shape != (n, n):
            if info is None:
                dists = pairwise_distances(atoms.get_positions())
            else:
                info.resize_dists_and_clear_state(n)
                dists = info.fill_pairwise_distances(atoms.get_positions())
        radii = self._radii(atoms)
        limit = blow * (radii[:, None] + radii[None, :])
        adjacent = dists <= limit
        if bonds is not None:
            bond_mat = self._bond_matrix(bonds, n)
            if np.any(bond_mat & ~adjacent):
                return True
        n_components, _ = connected_components(adjacent, directed=False)
        return n_components != 1
