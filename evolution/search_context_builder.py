from __future__ import annotations

import logging
from typing import Mapping

import numpy as np

from evolution.calculators import (
    DEFAULT_CALCULATOR_REGISTRY,
    CalculatorBuilder,
    build_calculator_factory,
)
from evolution.geometry_pool import GeometryPool
from evolution.search_context import SearchContext
from evolution.search_parser import (
    NicheSettings,
    SearchDefinition,
    SpaceSettings,
    ValidationError,
)
from geomutils.allowed_space import (
    AllowedSpace,
    BoxSpace,
    HalfSphereSpace,
    OrbitSpace,
    SphereSpace,
)
from geomutils.bond_info import SimpleBondInfo, detect_bonds
from geomutils.collision_detection import CollisionDetection
from geomutils.environment import SimpleEnvironment
from geomutils.geometry import Geometry, MoleculeConfig
from geomutils.niches import (
    ChainedNicheComputer,
    GyrationNicheComputer,
    InteriorMoleculeNicheComputer,
    NicheComputer,
    RadialSurfaceDetector,
)
from geomutils.statistics import SearchStatistics

logger = logging.getLogger(__name__)


def build_space(settings: SpaceSettings, rng: np.random.Generator) -> AllowedSpace:
    center = np.array(settings.center, dtype=float)
    if settings.kind == "orbit":
        return OrbitSpace(center, settings.inner_radius, settings.radius, rng)
    if settings.kind == "halfsphere":
        return HalfSphereSpace(center, settings.radius, rng)
    if settings.kind == "box":
        return BoxSpace(center, np.array(settings.cell, dtype=float), rng)
    return SphereSpace(center, settings.radius, rng)


def build_niche_computer(settings: NicheSettings | None) -> NicheComputer | None:
    if settings is None:
        return None
    if settings.kind == "chained":
        return ChainedNicheComputer(
            [build_niche_computer(sub) for sub in settings.nichers]
        )
    if settings.kind == "gyration":
        return GyrationNicheComputer(settings.bin_width)
    return InteriorMoleculeNicheComputer(RadialSurfaceDetector(settings.shell_fraction))


def build_molecules(definition: SearchDefinition) -> dict[str, MoleculeConfig]:
    return {
        spec.id: MoleculeConfig.from_atoms(
            spec.id,
            spec.atoms,
            flexible=spec.flexible,
            constricted=spec.constricted,
            charge=spec.charge,
            spin=spec.spin,
        )
        for spec in definition.molecules
    }


def assemble_template(
    definition: SearchDefinition,
    molecules: Mapping[str, MoleculeConfig],
    rng: np.random.Generator,
    collision: CollisionDetection | None = None,
) -> Geometry:
    """
    The geometry every initializer copies: each molecule repeated ``count``
    times in declaration order, intramolecular bonds detected from the
    template coordinates, and the environment if one is configured.
    """
    configs = [
        molecules[spec.id].copy()
        for spec in definition.molecules
        for _ in range(spec.count)
    ]
    geometry = Geometry(id=0, molecules=configs, bonds=SimpleBondInfo(0))
    blow = definition.settings.blow.bond_detection
    geometry.bonds = detect_bonds(geometry.to_atoms(), blow, geometry.atom_ranges())

    env_settings = definition.environment
    if env_settings is not None:
        env_atoms = env_settings.atoms.copy()
        geometry.environment = SimpleEnvironment(
            atoms=env_atoms,
            space=build_space(env_settings.space, rng),
            rng=rng,
            blow=env_settings.blow,
            flexible=env_settings.flexible,
            bonds=detect_bonds(env_atoms, blow),
            collision=collision,
        )
    geometry.validate()
    return geometry


class SearchContextBuilder:
    def __init__(
        self,
        definition: SearchDefinition,
        calculator_registry: Mapping[str, CalculatorBuilder] | None = None,
    ) -> None:
        self.definition = definition
        self.calculator_registry = calculator_registry or DEFAULT_CALCULATOR_REGISTRY

    def build(self) -> SearchContext:
        settings = self.definition.settings
        try:
            calculator_factory = build_calculator_factory(
                settings.calculator.name,
                settings.calculator.options,
                self.calculator_registry,
            )
        except ValueError as exc:
            raise ValidationError(f"settings.calculator.name: {exc}") from exc

        seed_sequence = np.random.SeedSequence(self.definition.search.seed)
        logger.info(
            "Search '%s' uses seed entropy %s.",
            self.definition.search.name,
            seed_sequence.entropy,
        )
        collision = CollisionDetection()
        molecules = build_molecules(self.definition)
        template_rng = np.random.default_rng(seed_sequence.spawn(1)[0])
        template = assemble_template(self.definition, molecules, template_rng, collision)
        pool = GeometryPool(
            settings.pool.size,
            niche_capacity=settings.pool.niche_capacity,
            diversity_threshold=settings.pool.diversity_threshold,
        )
        context = SearchContext(
            definition=self.definition,
            molecules=molecules,
            template=template,
            calculator_factory=calculator_factory,
            optimizer_factory=settings.localopt.optimizer,
            niche_computer=build_niche_computer(settings.niche),
            _pool=pool,
            statistics=SearchStatistics(),
            seed_sequence=seed_sequence,
            collision=collision,
            workdir=self.definition.workdir,
        )
        context.mount()
        return context
