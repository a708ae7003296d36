import textwrap

import pytest
from ase.io import write
from ase.optimize import FIRE, LBFGS

from evolution.search_parser import (
    ValidationError,
    load_search_from_file,
    load_search_from_str,
)

MINIMAL = """
search:
  name: argon
  seed: 11
workdir: out
molecules:
  - id: ar
    count: 4
    symbols: [Ar]
settings:
  calculator:
    name: LJ
    options: {sigma: 3.4, epsilon: 0.0104}
pipeline:
  - action: init
    iterations: 5
  - id: main
    action: evolve
    iterations: 20
"""


def with_settings(extra):
    return MINIMAL.replace(
        "settings:\n", "settings:\n" + textwrap.indent(textwrap.dedent(extra), "  ")
    )


def test_minimal_definition_gets_defaults():
    definition = load_search_from_str(MINIMAL, base_dir="/tmp/runs")
    assert definition.search.name == "argon"
    assert definition.search.seed == 11
    assert definition.search.workers == 1
    assert definition.workdir == "/tmp/runs/out"
    assert definition.molecules[0].count == 4
    assert definition.molecules[0].atoms.get_chemical_symbols() == ["Ar"]
    settings = definition.settings
    assert settings.calculator.name == "lj"
    assert settings.localopt.optimizer is LBFGS
    assert settings.blow.collision == 0.8
    assert settings.pool.size == 20
    assert settings.niche is None
    assert len(settings.globopt) == 1 and settings.globopt[0].percent == 100
    assert [s.id for s in definition.pipeline] == ["init", "main"]
    assert definition.pipeline[1].iterations == 20


def test_full_settings():
    definition = load_search_from_str(
        with_settings(
            """
            blow: {collision: 0.7, dissociation: 2.5}
            localopt:
              kind: localheat
              optimizer: FIRE
              fmax: 0.02
              heat: {iterations: 5, amplitude: 1.0, choose_mode: insphere}
            pool: {size: 8, niche_capacity: 2}
            init:
              kind: packing
              packing_mode: bysize
              cell: [8, 8, 8]
            niche:
              kind: chained
              nichers:
                - {kind: interior, shell_fraction: 0.6}
                - {kind: gyration, bin_width: 0.25}
            globopt:
              - percent: 70
                crossover: {kind: molecule, cuts: 2}
              - percent: 30
                mutation: {kind: packing, dims: 2}
            """
        )
    )
    settings = definition.settings
    assert settings.blow.dissociation == 2.5
    assert settings.localopt.optimizer is FIRE
    assert settings.localopt.heat.amplitude == 1.0
    assert settings.localopt.heat.choose_mode == "insphere"
    assert settings.pool.niche_capacity == 2
    assert settings.init.kind == "packing"
    assert settings.init.cell == (8.0, 8.0, 8.0)
    assert [n.kind for n in settings.niche.nichers] == ["interior", "gyration"]
    assert settings.globopt[0].crossover.cuts == 2
    assert settings.globopt[1].mutation.kind == "packing"
    assert settings.globopt[1].mutation.dims == 2


def test_molecule_from_xyz_file(tmp_path):
    from conftest import WATER_POSITIONS
    from ase import Atoms

    write(str(tmp_path / "water.xyz"), Atoms("OH2", positions=WATER_POSITIONS))
    config = MINIMAL.replace(
        "    symbols: [Ar]", "    xyz: water.xyz\n    flexible: true\n    charge: -1"
    )
    path = tmp_path / "search.yaml"
    path.write_text(config)
    definition = load_search_from_file(str(path))
    spec = definition.molecules[0]
    assert len(spec.atoms) == 3
    assert spec.flexible is True
    assert spec.charge == -1
    assert definition.workdir == str(tmp_path / "out")


@pytest.mark.parametrize(
    "extra, message",
    [
        ("globopt:\n  - percent: 50\n  - percent: 40\n", "add up to 100"),
        ("globopt:\n  - percent: 60\n  - {}\n", "settings.globopt[1].percent"),
        ("globopt:\n  - crossover: {cuts: 0}\n", "settings.globopt[0].crossover.cuts"),
        ("globopt:\n  - mutation: {kind: swirl}\n", "settings.globopt[0].mutation.kind"),
        ("localopt: {optimizer: NoSuchOptimizer}\n", "settings.localopt.optimizer"),
        ("localopt: {optimizer: {name: BFGS, module: no.such.module}}\n", "no.such.module"),
        ("localopt: {kind: localheat, heat: {move_mode: wiggle}}\n", "settings.localopt.heat.move_mode"),
        ("blow: {collision: 2.0, dissociation: 1.0}\n", "settings.blow.dissociation"),
        ("pool: {size: 0}\n", "settings.pool.size"),
        ("init: {space: {kind: orbit, radius: 3, inner_radius: 4}}\n", "settings.init.space.inner_radius"),
        ("init: {kind: lattice}\n", "settings.init.kind"),
        ("niche: {kind: chained}\n", "settings.niche.nichers"),
        ("acceptable_fitness: low\n", "settings.acceptable_fitness"),
    ],
)
def test_invalid_settings_name_their_path(extra, message):
    with pytest.raises(ValidationError, match=message.replace("[", r"\[").replace("]", r"\]")):
        load_search_from_str(with_settings(extra))


@pytest.mark.parametrize(
    "old, new, message",
    [
        ("  name: argon\n", "", "search.name"),
        ("  seed: 11\n", "  seed: 11\n  workers: 0\n", "search.workers"),
        ("    count: 4\n", "    count: 0\n", r"molecules\[0\].count"),
        ("    symbols: [Ar]\n", "    symbols: [Ar, Ar]\n", r"molecules\[0\].positions"),
        ("    symbols: [Ar]\n", "    symbols: [Xx]\n", r"molecules\[0\].symbols"),
        ("    symbols: [Ar]\n", "", "either xyz or symbols"),
        ("    symbols: [Ar]\n", "    xyz: missing.xyz\n", "file not found"),
        ("    count: 4\n", "    count: 4\n    flexible: true\n    constricted: true\n", "both flexible"),
        ("  - id: main\n", "  - id: init\n", r"pipeline\[1\].id"),
        ("    iterations: 5\n", "    iterations: -1\n", r"pipeline\[0\].iterations"),
        ("  - action: init\n", "  - action: in it\n", "must not contain spaces"),
    ],
)
def test_invalid_structure(old, new, message):
    assert old in MINIMAL
    with pytest.raises(ValidationError, match=message):
        load_search_from_str(MINIMAL.replace(old, new, 1))


def test_duplicate_molecule_ids():
    config = MINIMAL.replace(
        "    symbols: [Ar]\n", "    symbols: [Ar]\n  - id: ar\n    symbols: [Ne]\n"
    )
    with pytest.raises(ValidationError, match="used twice"):
        load_search_from_str(config)


def test_top_level_must_be_mapping():
    with pytest.raises(ValidationError):
        load_search_from_str("- just\n- a list\n")


def test_missing_settings():
    with pytest.raises(ValidationError, match="settings"):
        load_search_from_str(MINIMAL.split("settings:")[0])
