"""
Local optimization backends ("Newtons") and the fitness adaptor on top.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from itertools import combinations
from typing import Any, Callable, Optional

import numpy as np
from ase import Atoms
from ase.calculators.calculator import BaseCalculator
from ase.constraints import FixAtoms, FixBondLengths
from ase.optimize import LBFGS
from ase.optimize.optimize import Optimizer

from geomutils.geometry import NONCONVERGED_ENERGY, Geometry, MoleculeConfig
from geomutils.statistics import SearchStatistics

logger = logging.getLogger(__name__)

CalculatorFactory = Callable[[Optional[dict[str, Any]]], Optional[BaseCalculator]]


class Newton(ABC):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._geometry_opts = 0
        self._molecule_opts = 0

    @property
    def n_geometry_local_opts(self) -> int:
        with self._lock:
            return self._geometry_opts

    @property
    def n_molecule_local_opts(self) -> int:
        with self._lock:
            return self._molecule_opts

    def optimize_geometry(self, geometry: Geometry) -> Geometry:
        with self._lock:
            self._geometry_opts += 1
        return self._optimize_geometry(geometry)

    def optimize_molecule(self, molecule: MoleculeConfig) -> MoleculeConfig:
        with self._lock:
            self._molecule_opts += 1
        return self._optimize_molecule(molecule)

    @abstractmethod
    def _optimize_geometry(self, geometry: Geometry) -> Geometry:
        raise NotImplementedError

    @abstractmethod
    def _optimize_molecule(self, molecule: MoleculeConfig) -> MoleculeConfig:
        raise NotImplementedError

    @abstractmethod
    def cartes_to_cartes(
        self, geometry_id: int, atoms: Atoms, constraints: np.ndarray | None = None
    ) -> Atoms:
        raise NotImplementedError

    @abstractmethod
    def energy(self, geometry: Geometry) -> float:
        raise NotImplementedError


class AseNewton(Newton):
    """
    Relaxes with an ase.optimize optimizer on a fresh calculator per call.
    Environment atoms (unless flexible) and constricted molecules are held
    by FixAtoms, rigid molecules by FixBondLengths over all their atom pairs.
    """

    def __init__(
        self,
        calculator_factory: CalculatorFactory,
        optimizer_factory: type[Optimizer] = LBFGS,
        fmax: float = 0.05,
        steps: int = 200,
    ) -> None:
        super().__init__()
        self.calculator_factory = calculator_factory
        self.optimizer_factory = optimizer_factory
        self.fmax = fmax
        self.steps = steps

    def _attach(self, atoms: Atoms) -> None:
        calculator = self.calculator_factory(None)
        if calculator is None:
            raise ValueError("Local optimization must have a calculator attached")
        atoms.calc = calculator

    def _relax(self, atoms: Atoms) -> None:
        self._attach(atoms)
        opt = self.optimizer_factory(atoms, logfile=None)
        opt.run(fmax=self.fmax, steps=self.steps)

    def _constraints(self, geometry: Geometry) -> list:
        fixed = [i for i, flag in enumerate(geometry.constricted_mask()) if flag]
        env = geometry.environment
        if env is not None and not env.flexible:
            fixed.extend(range(geometry.n_atoms, geometry.n_atoms + env.n_atoms))
        pairs = []
        for mol, (start, end) in zip(geometry.molecules, geometry.atom_ranges()):
            if mol.flexible or mol.constricted or mol.n_atoms < 2:
                continue
            pairs.extend(combinations(range(start, end), 2))
        constraints: list = []
        if fixed:
            constraints.append(FixAtoms(indices=fixed))
        if pairs:
            constraints.append(FixBondLengths(pairs))
        return constraints

    def _optimize_geometry(self, geometry: Geometry) -> Geometry:
        result = geometry.copy()
        atoms = result.to_atoms(with_environment=True)
        atoms.set_constraint(self._constraints(result))
        try:
            self._relax(atoms)
            energy = float(atoms.get_potential_energy())
        except Exception as exc:
            logger.warning("Local optimization of geometry %d failed: %s", geometry.id, exc)
            result.fitness = NONCONVERGED_ENERGY
            return result
        atoms.set_constraint([])
        result.update_from_atoms(atoms)
        if any(not m.flexible and m.n_atoms > 1 for m in result.molecules):
            # refitting rigid bodies moves atoms slightly
            energy = self.energy(result)
        result.fitness = energy
        return result

    def _optimize_molecule(self, molecule: MoleculeConfig) -> MoleculeConfig:
        result = molecule.copy()
        atoms = molecule.to_atoms()
        try:
            self._relax(atoms)
        except Exception as exc:
            logger.warning("Local optimization of molecule '%s' failed: %s", molecule.sid, exc)
            return result
        result.reshape(atoms.get_positions())
        return result

    def cartes_to_cartes(
        self, geometry_id: int, atoms: Atoms, constraints: np.ndarray | None = None
    ) -> Atoms:
        """
        Relax raw coordinates, ``constraints`` is a per-atom mask of atoms to
        hold fixed. Whether ``atoms`` is modified in place is not part of the
        contract: callers must pass a copy if they need the input afterwards.
        """
        if constraints is not None:
            mask = np.asarray(constraints, dtype=bool)
            if mask.shape != (len(atoms),):
                raise ValueError(
                    f"Constraint mask for geometry {geometry_id} has shape {mask.shape}, "
                    f"expected ({len(atoms)},)."
                )
            if mask.any():
                atoms.set_constraint(FixAtoms(mask=mask))
        self._relax(atoms)
        atoms.set_constraint([])
        logger.debug(
            "Geometry %d relaxed to %.6f eV.", geometry_id, atoms.get_potential_energy()
        )
        return atoms

    def energy(self, geometry: Geometry) -> float:
        atoms = geometry.to_atoms(with_environment=True)
        try:
            self._attach(atoms)
            return float(atoms.get_potential_energy())
        except Exception as exc:
            logger.warning("Energy of geometry %d failed: %s", geometry.id, exc)
            return NONCONVERGED_ENERGY


class NewtonAdaptor:
    """Exposes a Newton as the fitness function of the search."""

    def __init__(
        self, newton: Newton, statistics: SearchStatistics | None = None
    ) -> None:
        self.newton = newton
        self.statistics = statistics
        self._lock = threading.Lock()
        self._fitness_evals = 0
        self._local_opts = 0

    @property
    def n_fitness_evals(self) -> int:
        with self._lock:
            return self._fitness_evals

    @property
    def n_local_opts(self) -> int:
        with self._lock:
            return self._local_opts

    def _count(self, attr: str, counter: str) -> None:
        with self._lock:
            setattr(self, attr, getattr(self, attr) + 1)
        if self.statistics is not None:
            self.statistics.increment(counter)

    def fitness(self, geometry: Geometry, force_one_eval: bool = False) -> Geometry:
        """
        With ``force_one_eval`` a single energy evaluation, otherwise a full
        local optimization. Returns a duplicate carrying the fitness.
        """
        if force_one_eval:
            self._count("_fitness_evals", "fitness_evaluations")
            result = geometry.copy()
            result.fitness = self.newton.energy(result)
            return result
        self._count("_local_opts", "local_optimizations")
        return self.newton.optimize_geometry(geometry)
