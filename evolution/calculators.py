from __future__ import annotations

import importlib
from typing import Any, Callable, Mapping, Optional

from ase.calculators.calculator import BaseCalculator
from ase.calculators.emt import EMT
from ase.calculators.lj import LennardJones

CalculatorBuilder = Callable[[dict[str, Any]], BaseCalculator]
CalculatorFactory = Callable[[Optional[dict[str, Any]]], Optional[BaseCalculator]]


def _lennard_jones(options: dict[str, Any]) -> BaseCalculator:
    return LennardJones(**options)


def _emt(options: dict[str, Any]) -> BaseCalculator:
    return EMT(**options)


def _dxtb(options: dict[str, Any]) -> BaseCalculator:
    # torch and dxtb are an optional extra, only imported when selected
    module = importlib.import_module("geomutils.dxtb_calculator")
    return module.DXTBCalculator(**options)


DEFAULT_CALCULATOR_REGISTRY: dict[str, CalculatorBuilder] = {
    "lj": _lennard_jones,
    "emt": _emt,
    "dxtb": _dxtb,
}


def build_calculator_factory(
    name: str,
    options: dict[str, Any],
    registry: Mapping[str, CalculatorBuilder],
) -> CalculatorFactory:
    """
    A fresh calculator per call, so concurrent local optimizations never
    share calculator state. ``overrides`` update the configured options.
    """
    if name not in registry:
        allowed = ", ".join(sorted(registry))
        raise ValueError(f"Unknown calculator '{name}'. Allowed: {allowed}")
    builder = registry[name]

    def factory(overrides: Optional[dict[str, Any]] = None) -> Optional[BaseCalculator]:
        merged = dict(options)
        if overrides:
            merged.update(overrides)
        return builder(merged)

    return factory
