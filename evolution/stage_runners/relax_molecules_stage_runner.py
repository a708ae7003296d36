from __future__ import annotations

import logging

from ase.io import write

from evolution.operators import build_newton
from evolution.search_context_builder import assemble_template
from evolution.stage_runners.base_stage_runner import StageRunner

logger = logging.getLogger(__name__)


class RelaxMoleculesStageRunner(StageRunner):
    """
    Pre-optimizes the molecule templates before any cluster is built. Only
    flexible molecules are relaxed unless ``kwargs: {all: true}``; constricted
    and single-atom molecules are always left alone.
    """

    def run(self) -> None:
        if self.context.calculator_factory(None) is None:
            raise ValueError("Relax molecules stage must have a calculator attached")
        relax_all = bool(self.stage.kwargs.get("all", False))
        newton = build_newton(self.context, self.stage.fmax, self.stage.steps)
        for sid, molecule in self.context.molecules.items():
            if molecule.constricted or molecule.n_atoms < 2:
                continue
            if not (molecule.flexible or relax_all):
                continue
            self.context.molecules[sid] = newton.optimize_molecule(molecule)
            logger.info("Relaxed molecule template '%s'.", sid)
        self.context.template = assemble_template(
            self.context.definition,
            self.context.molecules,
            self.context.spawn_rngs(1)[0],
            self.context.collision,
        )

    def write_stage(self) -> None:
        for sid, molecule in self.context.molecules.items():
            write(f"{self.dir}/{sid}.xyz", molecule.to_atoms(), format="xyz")
