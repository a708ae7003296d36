"""
Collision reports plus the pairwise-distance cache the detection engine fills.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


def pairwise_distances(
    positions: np.ndarray,
    others: np.ndarray | None = None,
    out: np.ndarray | None = None,
) -> np.ndarray:
    """Euclidean distance matrix, written into ``out`` when given."""
    positions = np.asarray(positions, dtype=float)
    others = positions if others is None else np.asarray(others, dtype=float)
    diff = positions[:, None, :] - others[None, :, :]
    dists = np.einsum("ijk,ijk->ij", diff, diff, out=out)
    return np.sqrt(dists, out=dists)


@dataclass(frozen=True)
class Collision:
    atom_a: int
    atom_b: int
    strength: float
    distance: float


class CollisionInfo(ABC):
    def __init__(self) -> None:
        self._buffer = np.zeros((0, 0))
        self._n_atoms = 0
        self._dists_valid = False

    # distance cache

    def resize_dists_and_clear_state(self, n_atoms: int) -> None:
        """
        Make room for ``n_atoms`` and drop all collisions. The backing buffer
        only grows; smaller sizes reuse a view of it.
        """
        if n_atoms > self._buffer.shape[0]:
            self._buffer = np.zeros((n_atoms, n_atoms))
        self._n_atoms = n_atoms
        self._dists_valid = False
        self.clean_state()

    def set_pairwise_distances(self, dists: np.ndarray) -> None:
        n = dists.shape[0]
        if n != self._n_atoms:
            self.resize_dists_and_clear_state(n)
        self._buffer[:n, :n] = dists
        self._dists_valid = True

    def fill_pairwise_distances(self, positions: np.ndarray) -> np.ndarray:
        """Compute the full matrix straight into the buffer for the current size."""
        n = self._n_atoms
        if len(positions) != n:
            raise ValueError(f"Expected {n} positions, got {len(positions)}.")
        dists = pairwise_distances(positions, out=self._buffer[:n, :n])
        self._dists_valid = True
        return dists

    def fill_distance_rows(
        self, positions: np.ndarray, start: int, stop: int
    ) -> np.ndarray:
        """Rows [start, stop) against all atoms. The full matrix stays invalid."""
        n = self._n_atoms
        self._dists_valid = False
        return pairwise_distances(
            positions[start:stop], positions, out=self._buffer[start:stop, :n]
        )

    def pairwise_distances(self) -> np.ndarray | None:
        if not self._dists_valid:
            return None
        return self._buffer[: self._n_atoms, : self._n_atoms]

    def invalidate_distances(self) -> None:
        self._dists_valid = False

    @property
    def buffer(self) -> np.ndarray:
        return self._buffer

    @property
    def n_atoms(self) -> int:
        return self._n_atoms

    # collisions

    def has_collision(self) -> bool:
        return self.n_stored_collisions() > 0

    @abstractmethod
    def report_collision(
        self, atom_a: int, atom_b: int, strength: float, distance: float = 0.0
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    def n_stored_collisions(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def collisions(self) -> list[Collision]:
        raise NotImplementedError

    @abstractmethod
    def clean_state(self) -> None:
        raise NotImplementedError


class SingleCollisionInfo(CollisionInfo):
    def __init__(self) -> None:
        self._collision: Collision | None = None
        super().__init__()

    def report_collision(
        self, atom_a: int, atom_b: int, strength: float, distance: float = 0.0
    ) -> bool:
        if self._collision is not None:
            logger.warning(
                "Single collision record already holds (%d, %d), ignoring (%d, %d).",
                self._collision.atom_a,
                self._collision.atom_b,
                atom_a,
                atom_b,
            )
            return False
        self._collision = Collision(atom_a, atom_b, strength, distance)
        return True

    def n_stored_collisions(self) -> int:
        return 0 if self._collision is None else 1

    def collisions(self) -> list[Collision]:
        return [] if self._collision is None else [self._collision]

    def clean_state(self) -> None:
        self._collision = None


class MultiCollisionInfo(CollisionInfo):
    def __init__(self) -> None:
        self._collisions: list[Collision] = []
        super().__init__()

    def report_collision(
        self, atom_a: int, atom_b: int, strength: float, distance: float = 0.0
    ) -> bool:
        self._collisions.append(Collision(atom_a, atom_b, strength, distance))
        return True

    def n_stored_collisions(self) -> int:
        return len(self._collisions)

    def collisions(self) -> list[Collision]:
        return list(self._collisions)

    def clean_state(self) -> None:
        self._collisions = []
