from __future__ import annotations

import logging
from typing import Mapping, Type

from evolution.calculators import DEFAULT_CALCULATOR_REGISTRY
from evolution.search_context_builder import SearchContextBuilder
from evolution.search_parser import SearchDefinition
from evolution.search_runner_config import (
    DEFAULT_ACTION_REGISTRY,
    SearchRunnerConfig,
)
from evolution.stage_runners.base_stage_runner import StageRunner

logger = logging.getLogger(__name__)


class SearchRunner:
    def __init__(
        self,
        definition: SearchDefinition,
        config: SearchRunnerConfig | None = None,
        action_registry: Mapping[str, Type["StageRunner"]] | None = None,
    ) -> None:
        self.definition = definition
        self.config = config or SearchRunnerConfig()
        defaults = action_registry or DEFAULT_ACTION_REGISTRY
        self.action_registry = self.config.merged_action_registry(defaults)
        self.calculator_registry = self.config.merged_calculator_registry(
            DEFAULT_CALCULATOR_REGISTRY
        )
        for stage in definition.pipeline:
            if stage.action not in self.action_registry:
                allowed = ", ".join(sorted(self.action_registry))
                raise ValueError(
                    f"Unknown action '{stage.action}' for stage '{stage.id}'. Allowed: {allowed}"
                )
        self.context = SearchContextBuilder(
            definition, self.calculator_registry
        ).build()

    def run(self) -> None:
        logger.info(
            "Running search '%s' with %d stage(s) on %d worker(s).",
            self.definition.search.name,
            len(self.definition.pipeline),
            self.definition.search.workers,
        )
        for stage in self.definition.pipeline:
            logger.info("Stage '%s' (%s) started.", stage.id, stage.action)
            runner_cls = self.action_registry[stage.action]
            runner = runner_cls(stage, self.context)
            runner.run()
            runner.end()
