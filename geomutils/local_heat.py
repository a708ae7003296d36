"""
Local heat pulses: repeated localized kicks followed by local optimization,
accepted greedily or by a Metropolis criterion with annealing.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

import numpy as np
from ase import units

from geomutils.collision_detection import CollisionDetection
from geomutils.coord_transform import (
    cartesian_to_spherical,
    center_of_mass,
    list_of_points,
    random_euler_increments,
    random_vector,
)
from geomutils.errors import GeometryError
from geomutils.geometry import NONCONVERGED_ENERGY, Geometry
from geomutils.mutation import GeometryMutation

logger = logging.getLogger(__name__)

CHOOSE_MODES = (
    "pick5",
    "percent10",
    "upto5",
    "upto10percent",
    "incenter",
    "onsphere",
    "insphere",
)
SPATIAL_CHOOSE_MODES = ("incenter", "onsphere", "insphere")
MOVE_MODES = ("coms", "cartesian")

# molar gas constant in kJ/(mol K)
GAS_CONSTANT_KJ = 8.31447215 / 1000.0
# pulses weaker than this leave a molecule or atom alone
PULSE_CUTOFF = 1e-2
SURFACE_ANGLE = 0.1745


class FitnessFunction(Protocol):
    def fitness(self, geometry: Geometry, force_one_eval: bool = False) -> Geometry: ...


class Initializer(Protocol):
    def initialize(self, future_id: int) -> Geometry: ...


@dataclass(frozen=True)
class HeatConfig:
    iterations: int = 10
    eq_iterations: int = 3
    scale_factor: float = 0.9
    temperature: float = 50.0
    metropolis: bool = True
    start_amplitude: float = 2.0
    euler_strength: float = 0.5
    sigmas: tuple[float, float, float] = (0.1, 0.1, 0.1)
    choose_mode: str = "pick5"
    move_mode: str = "coms"
    check_sanity: bool = False
    reset_after_no_progress: bool = False
    reset_iterations: int = 1000
    reset_to_random: bool = False

    def __post_init__(self) -> None:
        if self.choose_mode not in CHOOSE_MODES:
            raise GeometryError(
                f"Unknown heat pulse choose mode '{self.choose_mode}', expected one of {CHOOSE_MODES}."
            )
        if self.move_mode not in MOVE_MODES:
            raise GeometryError(
                f"Unknown heat pulse move mode '{self.move_mode}', expected one of {MOVE_MODES}."
            )
        if self.iterations < 1 or self.eq_iterations < 0:
            raise GeometryError("Heat pulse iteration counts must be positive.")
        if not 0.0 < self.scale_factor <= 1.0:
            raise GeometryError(f"Heat pulse scale factor must lie in (0, 1], got {self.scale_factor}.")
        if len(self.sigmas) != 3 or min(self.sigmas) <= 0.0:
            raise GeometryError("Heat pulse sigmas must be three positive numbers.")
        if self.temperature <= 0.0 or self.start_amplitude <= 0.0:
            raise GeometryError("Heat pulse temperature and amplitude must be positive.")


class LocalHeatPulses:
    def __init__(
        self,
        fitness: FitnessFunction,
        config: HeatConfig,
        rng: np.random.Generator,
        blow_collision: float,
        blow_dissociation: float,
        acceptable_fitness: float = -np.inf,
        collision: CollisionDetection | None = None,
    ) -> None:
        self.fitness = fitness
        self.config = config
        self.rng = rng
        self.blow_collision = blow_collision
        self.blow_dissociation = blow_dissociation
        self.acceptable_fitness = acceptable_fitness
        self.collision = collision or CollisionDetection()
        self._collision_info = self.collision.new_info()

    def cycle(self, initial: Geometry, initializer: Initializer | None = None) -> Geometry:
        cfg = self.config
        work = initial.copy(self.rng)
        rad_cluster = 0.0
        if cfg.choose_mode in ("insphere", "onsphere"):
            xyz = work.cartesians()
            rel = xyz - center_of_mass(xyz, work.numbers())
            rad_cluster = float(np.max(np.linalg.norm(rel, axis=1)))

        best: Geometry | None = None
        best_e = np.inf
        amplitude = cfg.start_amplitude
        temperature = cfg.temperature
        euler = cfg.euler_strength
        no_progress = 0
        for it in range(cfg.iterations):
            if best_e <= self.acceptable_fitness:
                logger.info(
                    "Acceptable fitness %.6f reached after %d heat pulses.",
                    self.acceptable_fitness,
                    it,
                )
                break
            prev = work.copy()
            if it > 0:
                self._pulse(work, amplitude, euler, rad_cluster)
                if cfg.check_sanity and self._is_insane(work):
                    logger.debug("Heat pulse %d gave an insane geometry, reverting.", it)
                    work = prev
                    continue

            work = self.fitness.fitness(work, False)
            prev_e = np.inf if prev.fitness is None else prev.fitness
            if work.fitness > prev_e and not self._accept_uphill(
                work.fitness - prev_e, temperature
            ):
                work = prev
                continue

            if work.fitness < best_e:
                best_e = work.fitness
                best = work.copy()
                no_progress = 0
            else:
                no_progress += 1

            if cfg.reset_after_no_progress and no_progress >= cfg.reset_iterations:
                if cfg.reset_to_random and initializer is not None:
                    work = initializer.initialize(initial.id)
                    work.father_id = initial.father_id
                    work.mother_id = initial.mother_id
                    work.fitness = NONCONVERGED_ENERGY
                else:
                    work = initial.copy(self.rng)
                no_progress = 0

            if it > cfg.eq_iterations:
                amplitude *= cfg.scale_factor
                temperature *= cfg.scale_factor
                euler *= cfg.scale_factor

        return work if best is None else best

    def _accept_uphill(self, delta: float, temperature: float) -> bool:
        if not self.config.metropolis:
            return False
        beta = 1.0 / (GAS_CONSTANT_KJ * temperature)
        delta_kj = delta / (units.kJ / units.mol)
        return float(np.exp(-beta * delta_kj)) >= self.rng.random()

    def _is_insane(self, geometry: Geometry) -> bool:
        atoms = geometry.to_atoms()
        info = self.collision.check_for_collision(
            atoms, self.blow_collision, geometry.bonds, self._collision_info
        )
        if info.has_collision():
            return True
        return self.collision.check_for_dissociation(
            atoms,
            self.blow_dissociation,
            geometry.bonds,
            info.pairwise_distances(),
            self._collision_info,
        )

    def _gauss(self, delta: np.ndarray, amplitude: float) -> np.ndarray:
        sigmas = np.asarray(self.config.sigmas)
        return amplitude * np.exp(-np.sum(delta * delta / sigmas, axis=-1))

    def _pulse_point(self, rel_xyz: np.ndarray, rad_cluster: float) -> np.ndarray:
        mode = self.config.choose_mode
        if mode == "insphere":
            return random_vector(self.rng, norm=rad_cluster * self.rng.random() ** (1.0 / 3.0))
        if mode == "onsphere":
            return self._pulse_point_on_surface(rel_xyz)
        return np.zeros(3)

    def _pulse_point_on_surface(self, rel_xyz: np.ndarray) -> np.ndarray:
        direction = random_vector(self.rng)
        sph = cartesian_to_spherical(rel_xyz)
        cosines = (rel_xyz @ direction) / np.where(sph[:, 0] > 0.0, sph[:, 0], 1.0)
        angles = np.arccos(np.clip(cosines, -1.0, 1.0))
        close = angles < SURFACE_ANGLE
        radius = sph[close, 0].max() if close.any() else sph[int(np.argmin(angles)), 0]
        return direction * radius

    def _how_many(self, n: int) -> int:
        mode = self.config.choose_mode
        if mode == "percent10":
            count = int(round(0.1 * n))
        elif mode == "upto5":
            count = int(self.rng.integers(5))
        elif mode == "upto10percent":
            count = int(round(self.rng.random() * 0.1 * n))
        else:
            count = 5
        return min(count, n)

    def _pulse(self, work: Geometry, amplitude: float, euler: float, rad_cluster: float) -> None:
        cfg = self.config
        xyz = work.cartesians()
        cluster_com = center_of_mass(xyz, work.numbers())
        fixed_atoms = work.constricted_mask()
        if cfg.choose_mode in SPATIAL_CHOOSE_MODES:
            point = self._pulse_point(xyz - cluster_com, rad_cluster)
            if cfg.move_mode == "coms":
                gauss = self._gauss(work.coms() - cluster_com - point, amplitude)
                moved = 0
                for mol, strength in zip(work.molecules, gauss):
                    if strength > PULSE_CUTOFF and not mol.constricted:
                        mol.position = mol.position + random_vector(self.rng, norm=strength)
                        random_euler_increments(
                            mol.orientation, min(euler * strength, 1.0), self.rng
                        )
                        moved += 1
            else:
                gauss = self._gauss(xyz - cluster_com - point, amplitude)
                moved = 0
                for atom, strength in enumerate(gauss):
                    if strength > PULSE_CUTOFF and not fixed_atoms[atom]:
                        xyz[atom] += random_vector(self.rng, norm=strength)
                        moved += 1
                work.update_cartesians(xyz)
            logger.debug("Spatial heat pulse moved %d targets.", moved)
            return

        if cfg.move_mode == "coms":
            n = work.n_particles
            for which in list_of_points(self._how_many(n), n, self.rng):
                mol = work.molecules[which]
                if mol.constricted:
                    continue
                mol.position = mol.position + random_vector(self.rng, norm=amplitude)
                random_euler_increments(mol.orientation, min(euler, 1.0), self.rng)
        else:
            n = len(xyz)
            for atom in list_of_points(self._how_many(n), n, self.rng):
                if not fixed_atoms[atom]:
                    xyz[atom] += random_vector(self.rng, norm=amplitude)
            work.update_cartesians(xyz)


class LocalHeatLocOpt:
    """
    Heat pulses used as the local optimization of the search. The fallback
    initializer for random resets is requested from ``initializer_factory``
    on every call, never at construction.
    """

    def __init__(
        self,
        pulses: LocalHeatPulses,
        initializer_factory: Callable[[], Initializer] | None = None,
    ) -> None:
        self.pulses = pulses
        self.initializer_factory = initializer_factory

    def fitness(self, geometry: Geometry, force_one_eval: bool = False) -> Geometry:
        if force_one_eval:
            return self.pulses.fitness.fitness(geometry, True)
        initializer = None
        if self.pulses.config.reset_to_random and self.initializer_factory is not None:
            initializer = self.initializer_factory()
        return self.pulses.cycle(geometry, initializer)


class LocalHeatMutation(GeometryMutation):
    """Heat pulses as a mutation; resets always return to the parent."""

    def __init__(self, pulses: LocalHeatPulses) -> None:
        if pulses.config.reset_to_random:
            pulses = LocalHeatPulses(
                fitness=pulses.fitness,
                config=dataclasses.replace(pulses.config, reset_to_random=False),
                rng=pulses.rng,
                blow_collision=pulses.blow_collision,
                blow_dissociation=pulses.blow_dissociation,
                acceptable_fitness=pulses.acceptable_fitness,
                collision=pulses.collision,
            )
        self.pulses = pulses

    def mutate(self, geometry: Geometry) -> Geometry:
        return self.pulses.cycle(geometry)
