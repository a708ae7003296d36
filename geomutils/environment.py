"""
Environment docking: a fixed (or flexible) set of atoms, e.g. a surface,
and the rigid placement of the cluster relative to it.

The placement is a six-number genome, the cluster center of mass followed
by the cluster z-x-z Euler angles in the environment frame.
"""

from __future__ import annotations

import logging

import numpy as np
from ase import Atoms

from geomutils.allowed_space import AllowedSpace
from geomutils.bond_info import BondInfo, SimpleBondInfo
from geomutils.collision_detection import CollisionDetection
from geomutils.coord_transform import (
    center_of_mass,
    euler_to_matrix,
    random_euler_increments,
    random_eulers,
)
from geomutils.errors import GeometryError

logger = logging.getLogger(__name__)

GENOME_SIZE = 6


class SimpleEnvironment:
    def __init__(
        self,
        atoms: Atoms,
        space: AllowedSpace,
        rng: np.random.Generator,
        blow: float = 1.0,
        flexible: bool = False,
        bonds: BondInfo | None = None,
        collision: CollisionDetection | None = None,
        genome: np.ndarray | None = None,
    ) -> None:
        self.atoms = atoms
        self.space = space
        self.rng = rng
        self.blow = blow
        self.flexible = flexible
        self.bonds = bonds if bonds is not None else SimpleBondInfo(len(atoms))
        if self.bonds.n_atoms != len(atoms):
            raise GeometryError(
                f"Environment bond table covers {self.bonds.n_atoms} atoms, "
                f"environment has {len(atoms)}."
            )
        self.collision = collision or CollisionDetection()
        self._genome = np.zeros(GENOME_SIZE)
        if genome is not None:
            self.put_genome(genome)

    @property
    def n_atoms(self) -> int:
        return len(self.atoms)

    def get_genome(self) -> np.ndarray:
        return self._genome.copy()

    def put_genome(self, genome: np.ndarray) -> None:
        genome = np.asarray(genome, dtype=float)
        if genome.shape != (GENOME_SIZE,):
            raise GeometryError(
                f"Environment genome must have {GENOME_SIZE} entries, got {genome.shape}."
            )
        self._genome = genome.copy()

    def _place(self, cluster: Atoms) -> np.ndarray:
        xyz = cluster.get_positions()
        com = center_of_mass(xyz, cluster.get_atomic_numbers())
        rot = euler_to_matrix(self._genome[3:])
        return (xyz - com) @ rot.T + self._genome[:3]

    def placed_cluster(self, cluster: Atoms) -> Atoms:
        placed = cluster.copy()
        placed.set_positions(self._place(cluster))
        return placed

    def does_it_fit(self, cluster: Atoms) -> bool:
        """Only cluster-environment contacts count, not contacts inside either."""
        return not self.collision.check_for_collision_between(
            self.placed_cluster(cluster), self.atoms, self.blow
        )

    def merge(self, cluster: Atoms) -> Atoms:
        merged = self.placed_cluster(cluster) + self.atoms
        merged.info.update(cluster.info)
        merged.info["n_cluster_atoms"] = len(cluster)
        return merged

    def merge_with_bonds(
        self, cluster: Atoms, cluster_bonds: BondInfo
    ) -> tuple[Atoms, BondInfo]:
        if cluster_bonds.n_atoms != len(cluster):
            raise GeometryError(
                f"Cluster bond table covers {cluster_bonds.n_atoms} atoms, "
                f"cluster has {len(cluster)}."
            )
        return self.merge(cluster), cluster_bonds.merged_with(self.bonds)

    def split(self, merged: Atoms, n_cluster: int) -> Atoms:
        """
        Recover the cluster from merged atoms in its own center of mass frame.
        Updates the genome position from the merged cluster and, for a flexible
        environment, the environment coordinates.
        """
        if len(merged) != n_cluster + self.n_atoms:
            raise GeometryError(
                f"Merged set has {len(merged)} atoms, expected {n_cluster} + {self.n_atoms}."
            )
        cluster = merged[:n_cluster]
        xyz = cluster.get_positions()
        com = center_of_mass(xyz, cluster.get_atomic_numbers())
        rot = euler_to_matrix(self._genome[3:])
        cluster.set_positions((xyz - com) @ rot)
        self._genome[:3] = com
        if self.flexible:
            self.atoms.set_positions(merged.get_positions()[n_cluster:])
        return cluster

    def initialize(self) -> "SimpleEnvironment":
        fresh = self.copy()
        fresh.put_genome(np.concatenate([self.space.sample(), random_eulers(self.rng)]))
        return fresh

    def mutate(self) -> "SimpleEnvironment":
        mutated = self.copy()
        genome = mutated.get_genome()
        if self.rng.random() < 0.5:
            genome[:3] = self.space.sample()
        else:
            eulers = genome[3:].copy()
            random_euler_increments(eulers, 0.5, self.rng)
            genome[3:] = eulers
        mutated.put_genome(genome)
        return mutated

    def crossover(
        self, other: "SimpleEnvironment"
    ) -> tuple["SimpleEnvironment", "SimpleEnvironment"]:
        """One-point crossover of the placement genomes."""
        cut = int(self.rng.integers(1, GENOME_SIZE))
        mine, theirs = self.get_genome(), other.get_genome()
        child1, child2 = self.copy(), other.copy()
        child1.put_genome(np.concatenate([mine[:cut], theirs[cut:]]))
        child2.put_genome(np.concatenate([theirs[:cut], mine[cut:]]))
        return child1, child2

    def copy(self, rng: np.random.Generator | None = None) -> "SimpleEnvironment":
        rng = rng or self.rng
        return SimpleEnvironment(
            atoms=self.atoms.copy(),
            space=self.space.copy(rng),
            rng=rng,
            blow=self.blow,
            flexible=self.flexible,
            bonds=self.bonds.copy(),
            collision=self.collision,
            genome=self._genome,
        )
