from __future__ import annotations

import importlib
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import yaml
from ase import Atoms
from ase.io import read as ase_read
from ase.optimize.optimize import Optimizer


def _default_optimizer() -> type[Optimizer]:
    return getattr(importlib.import_module("ase.optimize"), "LBFGS")


class ValidationError(ValueError):
    """Raised when the YAML structure is missing required fields or is invalid."""


class SpaceKind(str, Enum):
    SPHERE = "sphere"
    ORBIT = "orbit"
    HALFSPHERE = "halfsphere"
    BOX = "box"


class CrossoverKind(str, Enum):
    ORIENTATION = "orientation"
    MOLECULE = "molecule"


class MutationKind(str, Enum):
    MONTECARLO = "montecarlo"
    PACKING = "packing"
    LOCALHEAT = "localheat"
    NONE = "none"


class NicheKind(str, Enum):
    INTERIOR = "interior"
    GYRATION = "gyration"
    CHAINED = "chained"


SPACE_KINDS = {item.value for item in SpaceKind}
CROSSOVER_KINDS = {item.value for item in CrossoverKind}
MUTATION_KINDS = {item.value for item in MutationKind}
NICHE_KINDS = {item.value for item in NicheKind}
INIT_KINDS = {"random", "packing"}
GLOBOPT_KINDS = {"darwin"}
LOCALOPT_KINDS = {"newton", "localheat"}
PACKING_MODES = {"ascending", "random", "bysize"}
HEAT_CHOOSE_MODES = {
    "pick5",
    "percent10",
    "upto5",
    "upto10percent",
    "incenter",
    "onsphere",
    "insphere",
}
HEAT_MOVE_MODES = {"coms", "cartesian"}


@dataclass(frozen=True)
class SearchInfo:
    name: str
    seed: Optional[int] = None
    workers: int = 1


@dataclass(frozen=True)
class MoleculeSpec:
    id: str
    atoms: Atoms
    count: int = 1
    xyz_path: Optional[str] = None
    flexible: bool = False
    constricted: bool = False
    charge: int = 0
    spin: int = 0


@dataclass(frozen=True)
class BlowFactors:
    collision: float = 0.8
    dissociation: float = 3.0
    bond_detection: float = 1.2


@dataclass(frozen=True)
class SpaceSettings:
    kind: str = SpaceKind.SPHERE.value
    center: tuple[float, float, float] = (0.0, 0.0, 0.0)
    radius: float = 5.0
    inner_radius: float = 0.0
    cell: tuple[float, float, float] = (10.0, 10.0, 10.0)


@dataclass(frozen=True)
class PoolSettings:
    size: int = 20
    niche_capacity: Optional[int] = None
    diversity_threshold: float = 1e-5


@dataclass(frozen=True)
class InitSettings:
    kind: str = "random"
    space: SpaceSettings = field(default_factory=SpaceSettings)
    packing_mode: str = "ascending"
    dims: int = 3
    cell: tuple[float, float, float] = (6.0, 6.0, 6.0)
    max_to_emergency: int = 100


@dataclass(frozen=True)
class HeatSettings:
    iterations: int = 10
    eq_iterations: int = 3
    scale_factor: float = 0.9
    temperature: float = 50.0
    metropolis: bool = True
    amplitude: float = 2.0
    euler_strength: float = 0.5
    sigmas: tuple[float, float, float] = (0.1, 0.1, 0.1)
    choose_mode: str = "pick5"
    move_mode: str = "coms"
    check_sanity: bool = False
    reset_after_no_progress: bool = False
    reset_iterations: int = 1000
    reset_to_random: bool = False


@dataclass(frozen=True)
class CrossoverSettings:
    kind: str = CrossoverKind.ORIENTATION.value
    cuts: int = 1


@dataclass(frozen=True)
class MutationSettings:
    kind: str = MutationKind.MONTECARLO.value
    mode: int = 0
    max_move: float = 0.5
    packing_mode: str = "ascending"
    dims: int = 3
    heat: Optional[HeatSettings] = None


@dataclass(frozen=True)
class GlobOptSettings:
    kind: str = "darwin"
    percent: int = 100
    crossover: CrossoverSettings = field(default_factory=CrossoverSettings)
    mutation: MutationSettings = field(default_factory=MutationSettings)
    crossover_probability: float = 1.0
    mutation_probability: float = 0.05
    tries: int = 10


@dataclass(frozen=True)
class LocalOptSettings:
    kind: str = "newton"
    optimizer: type[Optimizer] = field(default_factory=_default_optimizer)
    optimizer_name: str = "LBFGS"
    optimizer_module: Optional[str] = None
    fmax: float = 0.05
    steps: int = 200
    heat: Optional[HeatSettings] = None


@dataclass(frozen=True)
class CalculatorSettings:
    name: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EnvironmentSettings:
    atoms: Atoms
    xyz_path: str
    space: SpaceSettings = field(default_factory=SpaceSettings)
    flexible: bool = False
    blow: float = 1.0


@dataclass(frozen=True)
class NicheSettings:
    kind: str = NicheKind.INTERIOR.value
    shell_fraction: float = 0.75
    bin_width: float = 0.5
    nichers: list["NicheSettings"] = field(default_factory=list)


@dataclass(frozen=True)
class StageSettings:
    id: str
    action: str
    iterations: int = 1
    fmax: Optional[float] = None
    steps: Optional[int] = None
    kwargs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchSettings:
    calculator: CalculatorSettings
    blow: BlowFactors = field(default_factory=BlowFactors)
    localopt: LocalOptSettings = field(default_factory=LocalOptSettings)
    pool: PoolSettings = field(default_factory=PoolSettings)
    init: InitSettings = field(default_factory=InitSettings)
    niche: Optional[NicheSettings] = None
    globopt: list[GlobOptSettings] = field(default_factory=lambda: [GlobOptSettings()])
    acceptable_fitness: float = float("-inf")


@dataclass(frozen=True)
class SearchDefinition:
    search: SearchInfo
    molecules: list[MoleculeSpec]
    workdir: str
    settings: SearchSettings
    environment: Optional[EnvironmentSettings] = None
    pipeline: list[StageSettings] = field(default_factory=list)


def load_search_from_file(path: str) -> SearchDefinition:
    """Load and validate a search definition from a YAML file."""

    with open(path, "r", encoding="utf-8") as handle:
        base_dir = os.path.dirname(os.path.abspath(path))
        return load_search_from_str(handle.read(), base_dir=base_dir)


def load_search_from_str(
    yaml_str: str, *, base_dir: Optional[str] = None
) -> SearchDefinition:
    """Load and validate a search definition from a YAML string."""

    data = yaml.safe_load(yaml_str)
    return parse_search_dict(data, base_dir=base_dir)


def parse_search_dict(
    data: object, *, base_dir: Optional[str] = None
) -> SearchDefinition:
    if not isinstance(data, dict):
        raise ValidationError("Top-level YAML must be a mapping.")

    search = _parse_search_info(_require_mapping(data, "search"))
    workdir = _resolve_path(_require_str(data, "workdir", "workdir"), base_dir)
    molecules = _parse_molecules(_require_list(data, "molecules"), base_dir)
    settings = _parse_settings(_require_mapping(data, "settings"))
    environment = _parse_environment(data.get("environment"), base_dir)
    pipeline = _parse_pipeline(data.get("pipeline"))

    return SearchDefinition(
        search=search,
        molecules=molecules,
        workdir=workdir,
        settings=settings,
        environment=environment,
        pipeline=pipeline,
    )


def _parse_search_info(data: dict) -> SearchInfo:
    name = _require_str(data, "name", "search.name")
    _validate_no_spaces(name, "search.name")
    seed = _optional_int(data.get("seed"), "search.seed")
    workers = _optional_int(data.get("workers"), "search.workers")
    workers = 1 if workers is None else workers
    if workers < 1:
        raise ValidationError("search.workers must be at least 1.")
    return SearchInfo(name=name, seed=seed, workers=workers)


def _parse_molecules(data: list, base_dir: Optional[str]) -> list[MoleculeSpec]:
    if not data:
        raise ValidationError("molecules must not be empty.")
    molecules: list[MoleculeSpec] = []
    seen: set[str] = set()
    for idx, entry in enumerate(data):
        path = f"molecules[{idx}]"
        if not isinstance(entry, dict):
            raise ValidationError(f"{path} must be a mapping.")
        mol_id = _require_str(entry, "id", f"{path}.id")
        if mol_id in seen:
            raise ValidationError(f"{path}.id '{mol_id}' is used twice.")
        seen.add(mol_id)
        count = _optional_int(entry.get("count"), f"{path}.count")
        count = 1 if count is None else count
        if count < 1:
            raise ValidationError(f"{path}.count must be at least 1.")
        xyz_path = _optional_str(entry.get("xyz"), f"{path}.xyz")
        if xyz_path is not None:
            atoms = _parse_xyz_atoms(xyz_path, base_dir, f"{path}.xyz")
        elif "symbols" in entry:
            atoms = _parse_inline_atoms(entry, path)
        else:
            raise ValidationError(f"{path} needs either xyz or symbols.")
        flexible = _optional_bool(entry.get("flexible"), f"{path}.flexible")
        constricted = _optional_bool(entry.get("constricted"), f"{path}.constricted")
        if flexible and constricted:
            raise ValidationError(f"{path} cannot be both flexible and constricted.")
        molecules.append(
            MoleculeSpec(
                id=mol_id,
                atoms=atoms,
                count=count,
                xyz_path=xyz_path,
                flexible=flexible,
                constricted=constricted,
                charge=_optional_int(entry.get("charge"), f"{path}.charge") or 0,
                spin=_optional_int(entry.get("spin"), f"{path}.spin") or 0,
            )
        )
    return molecules


def _parse_inline_atoms(entry: dict, path: str) -> Atoms:
    symbols = _optional_str_list(entry.get("symbols"), f"{path}.symbols")
    if not symbols:
        raise ValidationError(f"{path}.symbols must not be empty.")
    positions_raw = entry.get("positions")
    if positions_raw is None:
        if len(symbols) != 1:
            raise ValidationError(f"{path}.positions is required for more than one atom.")
        positions = [(0.0, 0.0, 0.0)]
    else:
        if not isinstance(positions_raw, list) or len(positions_raw) != len(symbols):
            raise ValidationError(
                f"{path}.positions must be a list with one entry per symbol."
            )
        positions = [
            _ensure_vector(item, f"{path}.positions[{idx}]")
            for idx, item in enumerate(positions_raw)
        ]
    try:
        return Atoms(symbols=symbols, positions=positions)
    except (KeyError, ValueError) as exc:
        raise ValidationError(f"{path}.symbols: {exc}") from exc


def _parse_settings(data: dict) -> SearchSettings:
    calculator = _parse_calculator(_require_mapping(data, "calculator"))
    blow = _parse_blow(data.get("blow"))
    localopt = _parse_localopt(data.get("localopt"))
    pool = _parse_pool(data.get("pool"))
    init = _parse_init(data.get("init"))
    niche = (
        _parse_niche(data.get("niche"), "settings.niche")
        if data.get("niche") is not None
        else None
    )
    globopt = _parse_globopts(data.get("globopt"))
    acceptable = _optional_float(
        data.get("acceptable_fitness"), "settings.acceptable_fitness"
    )
    return SearchSettings(
        calculator=calculator,
        blow=blow,
        localopt=localopt,
        pool=pool,
        init=init,
        niche=niche,
        globopt=globopt,
        acceptable_fitness=float("-inf") if acceptable is None else acceptable,
    )


def _parse_calculator(data: dict) -> CalculatorSettings:
    name = _require_str(data, "name", "settings.calculator.name")
    _validate_no_spaces(name, "settings.calculator.name")
    options = data.get("options", {})
    if options is None:
        options = {}
    if not isinstance(options, dict):
        raise ValidationError("settings.calculator.options must be a mapping.")
    return CalculatorSettings(name=name.strip().lower(), options=options)


def _parse_blow(data: object) -> BlowFactors:
    if data is None:
        return BlowFactors()
    if not isinstance(data, dict):
        raise ValidationError("settings.blow must be a mapping.")
    defaults = BlowFactors()
    values = {}
    for key in ("collision", "dissociation", "bond_detection"):
        value = _optional_float(data.get(key), f"settings.blow.{key}")
        value = getattr(defaults, key) if value is None else value
        if value <= 0.0:
            raise ValidationError(f"settings.blow.{key} must be positive.")
        values[key] = value
    if values["dissociation"] < values["collision"]:
        raise ValidationError(
            "settings.blow.dissociation must not be smaller than settings.blow.collision."
        )
    return BlowFactors(**values)


def _parse_space(data: object, path: str) -> SpaceSettings:
    if data is None:
        return SpaceSettings()
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must be a mapping.")
    kind = _optional_str(data.get("kind"), f"{path}.kind") or SpaceKind.SPHERE.value
    _validate_enum(kind, SPACE_KINDS, f"{path}.kind")
    defaults = SpaceSettings()
    center = (
        _ensure_vector(data["center"], f"{path}.center")
        if data.get("center") is not None
        else defaults.center
    )
    radius = _optional_float(data.get("radius"), f"{path}.radius")
    radius = defaults.radius if radius is None else radius
    inner = _optional_float(data.get("inner_radius"), f"{path}.inner_radius") or 0.0
    cell = (
        _ensure_vector(data["cell"], f"{path}.cell")
        if data.get("cell") is not None
        else defaults.cell
    )
    if radius <= 0.0:
        raise ValidationError(f"{path}.radius must be positive.")
    if kind == SpaceKind.ORBIT.value and not 0.0 <= inner < radius:
        raise ValidationError(f"{path}.inner_radius must lie in [0, radius).")
    if kind == SpaceKind.BOX.value and min(cell) <= 0.0:
        raise ValidationError(f"{path}.cell must have positive edges.")
    return SpaceSettings(
        kind=kind, center=center, radius=radius, inner_radius=inner, cell=cell
    )


def _parse_pool(data: object) -> PoolSettings:
    if data is None:
        return PoolSettings()
    if not isinstance(data, dict):
        raise ValidationError("settings.pool must be a mapping.")
    size = _optional_int(data.get("size"), "settings.pool.size")
    size = PoolSettings().size if size is None else size
    if size < 1:
        raise ValidationError("settings.pool.size must be at least 1.")
    capacity = _optional_int(data.get("niche_capacity"), "settings.pool.niche_capacity")
    if capacity is not None and capacity < 1:
        raise ValidationError("settings.pool.niche_capacity must be at least 1.")
    threshold = _optional_float(
        data.get("diversity_threshold"), "settings.pool.diversity_threshold"
    )
    threshold = PoolSettings().diversity_threshold if threshold is None else threshold
    if threshold < 0.0:
        raise ValidationError("settings.pool.diversity_threshold must not be negative.")
    return PoolSettings(size=size, niche_capacity=capacity, diversity_threshold=threshold)


def _parse_init(data: object) -> InitSettings:
    if data is None:
        return InitSettings()
    if not isinstance(data, dict):
        raise ValidationError("settings.init must be a mapping.")
    defaults = InitSettings()
    kind = _optional_str(data.get("kind"), "settings.init.kind") or defaults.kind
    _validate_enum(kind, INIT_KINDS, "settings.init.kind")
    packing_mode = (
        _optional_str(data.get("packing_mode"), "settings.init.packing_mode")
        or defaults.packing_mode
    )
    _validate_enum(packing_mode, PACKING_MODES, "settings.init.packing_mode")
    dims = _parse_dims(data.get("dims"), "settings.init.dims")
    cell = (
        _ensure_vector(data["cell"], "settings.init.cell")
        if data.get("cell") is not None
        else defaults.cell
    )
    if min(cell) <= 0.0:
        raise ValidationError("settings.init.cell must have positive edges.")
    emergency = _optional_int(data.get("max_to_emergency"), "settings.init.max_to_emergency")
    emergency = defaults.max_to_emergency if emergency is None else emergency
    if emergency < 1:
        raise ValidationError("settings.init.max_to_emergency must be at least 1.")
    return InitSettings(
        kind=kind,
        space=_parse_space(data.get("space"), "settings.init.space"),
        packing_mode=packing_mode,
        dims=dims,
        cell=cell,
        max_to_emergency=emergency,
    )


def _parse_dims(value: object, path: str) -> int:
    dims = _optional_int(value, path)
    if dims is None:
        return 3
    if dims not in (2, 3):
        raise ValidationError(f"{path} must be 2 or 3.")
    return dims


def _parse_heat(data: object, path: str) -> HeatSettings:
    if data is None:
        return HeatSettings()
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must be a mapping.")
    defaults = HeatSettings()
    values: dict[str, Any] = {}
    for key in ("iterations", "eq_iterations", "reset_iterations"):
        value = _optional_int(data.get(key), f"{path}.{key}")
        values[key] = getattr(defaults, key) if value is None else value
    for key in ("scale_factor", "temperature", "amplitude", "euler_strength"):
        value = _optional_float(data.get(key), f"{path}.{key}")
        values[key] = getattr(defaults, key) if value is None else value
    for key in ("metropolis", "check_sanity", "reset_after_no_progress", "reset_to_random"):
        values[key] = (
            getattr(defaults, key)
            if data.get(key) is None
            else _optional_bool(data.get(key), f"{path}.{key}")
        )
    choose = _optional_str(data.get("choose_mode"), f"{path}.choose_mode") or defaults.choose_mode
    _validate_enum(choose, HEAT_CHOOSE_MODES, f"{path}.choose_mode")
    move = _optional_str(data.get("move_mode"), f"{path}.move_mode") or defaults.move_mode
    _validate_enum(move, HEAT_MOVE_MODES, f"{path}.move_mode")
    sigmas = (
        _ensure_vector(data["sigmas"], f"{path}.sigmas")
        if data.get("sigmas") is not None
        else defaults.sigmas
    )
    if values["iterations"] < 1:
        raise ValidationError(f"{path}.iterations must be at least 1.")
    if not 0.0 < values["scale_factor"] <= 1.0:
        raise ValidationError(f"{path}.scale_factor must lie in (0, 1].")
    if not 0.0 <= values["euler_strength"] <= 1.0:
        raise ValidationError(f"{path}.euler_strength must lie in [0, 1].")
    if min(sigmas) <= 0.0:
        raise ValidationError(f"{path}.sigmas must be positive.")
    return HeatSettings(choose_mode=choose, move_mode=move, sigmas=sigmas, **values)


def _parse_localopt(data: object) -> LocalOptSettings:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("settings.localopt must be a mapping.")
    path = "settings.localopt"
    kind = _optional_str(data.get("kind"), f"{path}.kind") or "newton"
    _validate_enum(kind, LOCALOPT_KINDS, f"{path}.kind")

    optimizer_name = "LBFGS"
    optimizer_module = None
    optimizer_data = data.get("optimizer")
    if optimizer_data is not None:
        if isinstance(optimizer_data, str):
            optimizer_name = _ensure_str(optimizer_data, f"{path}.optimizer")
        elif isinstance(optimizer_data, dict):
            optimizer_name = _require_str(optimizer_data, "name", f"{path}.optimizer.name")
            optimizer_module = _optional_str(
                optimizer_data.get("module"), f"{path}.optimizer.module"
            )
        else:
            raise ValidationError(f"{path}.optimizer must be a string or mapping.")
    optimizer = _load_optimizer(optimizer_name, optimizer_module, f"{path}.optimizer")

    fmax = _optional_float(data.get("fmax"), f"{path}.fmax") or 0.05
    steps = _optional_int(data.get("steps"), f"{path}.steps") or 200
    heat = _parse_heat(data.get("heat"), f"{path}.heat") if kind == "localheat" else None
    return LocalOptSettings(
        kind=kind,
        optimizer=optimizer,
        optimizer_name=optimizer_name,
        optimizer_module=optimizer_module,
        fmax=fmax,
        steps=steps,
        heat=heat,
    )


def _parse_niche(data: object, path: str) -> NicheSettings:
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must be a mapping.")
    kind = _require_str(data, "kind", f"{path}.kind")
    _validate_enum(kind, NICHE_KINDS, f"{path}.kind")
    shell = _optional_float(data.get("shell_fraction"), f"{path}.shell_fraction")
    shell = 0.75 if shell is None else shell
    if not 0.0 <= shell <= 1.0:
        raise ValidationError(f"{path}.shell_fraction must lie in [0, 1].")
    width = _optional_float(data.get("bin_width"), f"{path}.bin_width")
    width = 0.5 if width is None else width
    if width <= 0.0:
        raise ValidationError(f"{path}.bin_width must be positive.")
    nichers: list[NicheSettings] = []
    if kind == NicheKind.CHAINED.value:
        raw = data.get("nichers")
        if not isinstance(raw, list) or not raw:
            raise ValidationError(f"{path}.nichers must be a non-empty list.")
        nichers = [
            _parse_niche(item, f"{path}.nichers[{idx}]") for idx, item in enumerate(raw)
        ]
    return NicheSettings(kind=kind, shell_fraction=shell, bin_width=width, nichers=nichers)


def _parse_crossover(data: object, path: str) -> CrossoverSettings:
    if data is None:
        return CrossoverSettings()
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must be a mapping.")
    kind = _optional_str(data.get("kind"), f"{path}.kind") or CrossoverKind.ORIENTATION.value
    _validate_enum(kind, CROSSOVER_KINDS, f"{path}.kind")
    cuts = _optional_int(data.get("cuts"), f"{path}.cuts")
    cuts = 1 if cuts is None else cuts
    if cuts < 1:
        raise ValidationError(f"{path}.cuts must be at least 1.")
    return CrossoverSettings(kind=kind, cuts=cuts)


def _parse_mutation(data: object, path: str) -> MutationSettings:
    if data is None:
        return MutationSettings()
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must be a mapping.")
    kind = _optional_str(data.get("kind"), f"{path}.kind") or MutationKind.MONTECARLO.value
    _validate_enum(kind, MUTATION_KINDS, f"{path}.kind")
    mode = _optional_int(data.get("mode"), f"{path}.mode")
    mode = 0 if mode is None else mode
    if mode not in (0, 1, 2):
        raise ValidationError(f"{path}.mode must be 0, 1 or 2.")
    max_move = _optional_float(data.get("max_move"), f"{path}.max_move")
    max_move = 0.5 if max_move is None else max_move
    if max_move <= 0.0:
        raise ValidationError(f"{path}.max_move must be positive.")
    packing_mode = _optional_str(data.get("packing_mode"), f"{path}.packing_mode") or "ascending"
    _validate_enum(packing_mode, PACKING_MODES, f"{path}.packing_mode")
    heat = (
        _parse_heat(data.get("heat"), f"{path}.heat")
        if kind == MutationKind.LOCALHEAT.value
        else None
    )
    return MutationSettings(
        kind=kind,
        mode=mode,
        max_move=max_move,
        packing_mode=packing_mode,
        dims=_parse_dims(data.get("dims"), f"{path}.dims"),
        heat=heat,
    )


def _parse_globopts(data: object) -> list[GlobOptSettings]:
    if data is None:
        return [GlobOptSettings()]
    if not isinstance(data, list) or not data:
        raise ValidationError("settings.globopt must be a non-empty list.")
    globopts: list[GlobOptSettings] = []
    for idx, entry in enumerate(data):
        path = f"settings.globopt[{idx}]"
        if not isinstance(entry, dict):
            raise ValidationError(f"{path} must be a mapping.")
        kind = _optional_str(entry.get("kind"), f"{path}.kind") or "darwin"
        _validate_enum(kind, GLOBOPT_KINDS, f"{path}.kind")
        percent = _optional_int(entry.get("percent"), f"{path}.percent")
        if percent is None:
            if len(data) > 1:
                raise ValidationError(f"Missing required field: {path}.percent")
            percent = 100
        if not 0 <= percent <= 100:
            raise ValidationError(f"{path}.percent must lie in [0, 100].")
        probabilities = {}
        for key, default in (("crossover_probability", 1.0), ("mutation_probability", 0.05)):
            value = _optional_float(entry.get(key), f"{path}.{key}")
            value = default if value is None else value
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"{path}.{key} must lie in [0, 1].")
            probabilities[key] = value
        tries = _optional_int(entry.get("tries"), f"{path}.tries")
        tries = 10 if tries is None else tries
        if tries < 1:
            raise ValidationError(f"{path}.tries must be at least 1.")
        globopts.append(
            GlobOptSettings(
                kind=kind,
                percent=percent,
                crossover=_parse_crossover(entry.get("crossover"), f"{path}.crossover"),
                mutation=_parse_mutation(entry.get("mutation"), f"{path}.mutation"),
                tries=tries,
                **probabilities,
            )
        )
    total = sum(item.percent for item in globopts)
    if total != 100:
        raise ValidationError(
            f"settings.globopt percentages must add up to 100, got {total}."
        )
    return globopts


def _parse_environment(
    data: object, base_dir: Optional[str]
) -> Optional[EnvironmentSettings]:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValidationError("environment must be a mapping.")
    xyz_path = _require_str(data, "xyz", "environment.xyz")
    atoms = _parse_xyz_atoms(xyz_path, base_dir, "environment.xyz")
    blow = _optional_float(data.get("blow"), "environment.blow")
    blow = 1.0 if blow is None else blow
    if blow <= 0.0:
        raise ValidationError("environment.blow must be positive.")
    return EnvironmentSettings(
        atoms=atoms,
        xyz_path=xyz_path,
        space=_parse_space(data.get("space"), "environment.space"),
        flexible=_optional_bool(data.get("flexible"), "environment.flexible"),
        blow=blow,
    )


def _parse_pipeline(data: object) -> list[StageSettings]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValidationError("pipeline must be a list.")

    stages: list[StageSettings] = []
    seen: set[str] = set()
    for idx, entry in enumerate(data):
        entry_path = f"pipeline[{idx}]"
        if not isinstance(entry, dict):
            raise ValidationError(f"{entry_path} must be a mapping.")
        action = _require_str(entry, "action", f"{entry_path}.action")
        _validate_no_spaces(action, f"{entry_path}.action")
        stage_id = _optional_str(entry.get("id"), f"{entry_path}.id") or action
        _validate_no_spaces(stage_id, f"{entry_path}.id")
        if stage_id in seen:
            raise ValidationError(f"{entry_path}.id '{stage_id}' is used twice.")
        seen.add(stage_id)
        iterations = _optional_int(entry.get("iterations"), f"{entry_path}.iterations")
        iterations = 1 if iterations is None else iterations
        if iterations < 0:
            raise ValidationError(f"{entry_path}.iterations must not be negative.")
        kwargs = entry.get("kwargs", {})
        if kwargs is None:
            kwargs = {}
        if not isinstance(kwargs, dict):
            raise ValidationError(f"{entry_path}.kwargs must be a mapping.")
        stages.append(
            StageSettings(
                id=stage_id,
                action=action.strip().lower(),
                iterations=iterations,
                fmax=_optional_float(entry.get("fmax"), f"{entry_path}.fmax"),
                steps=_optional_int(entry.get("steps"), f"{entry_path}.steps"),
                kwargs=kwargs,
            )
        )
    return stages


def _load_optimizer(
    name: str,
    module: Optional[str],
    path: str,
) -> type[Optimizer]:
    module_name = module or "ase.optimize"
    try:
        optimizer_module = importlib.import_module(module_name)
    except Exception as exc:
        raise ValidationError(
            f"Failed to import optimizer module '{module_name}' for {path}: {exc}"
        ) from exc
    try:
        return getattr(optimizer_module, name)
    except AttributeError as exc:
        raise ValidationError(
            f"Optimizer '{name}' not found in module '{module_name}' for {path}."
        ) from exc


def _parse_xyz_atoms(
    xyz_path: str,
    base_dir: Optional[str],
    path: str,
) -> Atoms:
    resolved_path = _resolve_path(xyz_path, base_dir)
    if not os.path.exists(resolved_path):
        raise ValidationError(f"{path} file not found: {resolved_path}")
    try:
        atoms = ase_read(resolved_path, index=0)
    except Exception as exc:  # pragma: no cover - ASE error formats vary
        raise ValidationError(f"Failed to read {path}: {exc}") from exc
    if isinstance(atoms, list):
        raise ValidationError(f"{path} must contain a single structure.")
    return atoms


def _resolve_path(value: str, base_dir: Optional[str]) -> str:
    if base_dir and not os.path.isabs(value):
        return os.path.join(base_dir, value)
    return value


def _require_mapping(data: dict, key: str) -> dict:
    if key not in data:
        raise ValidationError(f"Missing required field: {key}")
    value = data[key]
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be a mapping.")
    return value


def _require_list(data: dict, key: str) -> list:
    if key not in data:
        raise ValidationError(f"Missing required field: {key}")
    value = data[key]
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list.")
    return value


def _require_str(data: dict, key: str, path: str) -> str:
    if key not in data:
        raise ValidationError(f"Missing required field: {path}")
    return _ensure_str(data[key], path)


def _optional_str(value: object, path: str) -> Optional[str]:
    if value is None:
        return None
    return _ensure_str(value, path)


def _optional_int(value: object, path: str) -> Optional[int]:
    if value is None:
        return None
    return _ensure_int(value, path)


def _optional_float(value: object, path: str) -> Optional[float]:
    if value is None:
        return None
    return _ensure_float(value, path)


def _optional_bool(value: object, path: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"{path} must be a boolean.")
    return value


def _optional_str_list(value: object, path: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{path} must be a list.")
    return [_ensure_str(item, f"{path}[{idx}]") for idx, item in enumerate(value)]


def _ensure_vector(value: object, path: str) -> tuple[float, float, float]:
    if not isinstance(value, list) or len(value) != 3:
        raise ValidationError(f"{path} must be a 3-item list.")
    x, y, z = (_ensure_float(item, f"{path}[{idx}]") for idx, item in enumerate(value))
    return (x, y, z)


def _ensure_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{path} must be a string.")
    return value


def _ensure_int(value: object, path: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{path} must be an integer.")
    return value


def _ensure_float(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{path} must be a number.")
    return float(value)


def _validate_enum(value: str, allowed: set[str], path: str) -> None:
    if value not in allowed:
        allowed_list = ", ".join(sorted(allowed))
        raise ValidationError(
            f"Invalid value for {path}: '{value}'. Allowed: {allowed_list}"
        )


def _validate_no_spaces(value: str, path: str) -> None:
    if any(ch.isspace() for ch in value):
        raise ValidationError(f"{path} must not contain spaces.")
