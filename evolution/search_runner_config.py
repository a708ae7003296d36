from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Type, TYPE_CHECKING

from evolution.calculators import CalculatorBuilder
from evolution.stage_runners.evolve_stage_runner import EvolveStageRunner
from evolution.stage_runners.init_stage_runner import InitStageRunner
from evolution.stage_runners.relax_molecules_stage_runner import (
    RelaxMoleculesStageRunner,
)
from evolution.stage_runners.relax_stage_runner import RelaxStageRunner

if TYPE_CHECKING:
    from evolution.stage_runners.base_stage_runner import StageRunner

DEFAULT_ACTION_REGISTRY: dict[str, Type["StageRunner"]] = {
    "relax-molecules": RelaxMoleculesStageRunner,
    "init": InitStageRunner,
    "evolve": EvolveStageRunner,
    "relax": RelaxStageRunner,
}


@dataclass(frozen=True)
class SearchRunnerConfig:
    action_registry: dict[str, Type["StageRunner"]] = field(default_factory=dict)
    calculator_registry: dict[str, CalculatorBuilder] = field(default_factory=dict)

    def merged_action_registry(
        self,
        defaults: Mapping[str, Type["StageRunner"]],
    ) -> dict[str, Type["StageRunner"]]:
        merged = dict(defaults)
        merged.update(self.action_registry)
        return merged

    def merged_calculator_registry(
        self,
        defaults: Mapping[str, CalculatorBuilder],
    ) -> dict[str, CalculatorBuilder]:
        merged = dict(defaults)
        merged.update(self.calculator_registry)
        return merged
