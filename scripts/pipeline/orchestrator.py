"""
Fix Pipeline - Drives one violation through the fix stages.

``PARSE -> ANALYZE -> GENERATE_FIXES -> VALIDATE -> DONE``

The pipeline is linear and never aborts early: every stage is total, stage
problems are collected on the state and folded into the final explanation,
and every violation submitted yields exactly one ``Fix``. Instances hold no
per-run state, so one pipeline can serve concurrent callers.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional

from controls import Framework
from hybrid.models import Fix, TrustLevel, Violation

from .base_stage import BaseStage
from .protocol import FixPipelineState, FixStep
from .stages import build_default_stages

logger = logging.getLogger(__name__)


class FixPipeline:
    """Compose fix stages by step and run them.

    Parameters
    ----------
    stages : list[BaseStage] | None
        One stage per non-terminal ``FixStep``. Defaults to
        ``build_default_stages()``.

    Example
    -------
    ::

        pipeline = FixPipeline()
        fix = pipeline.run(violation, source, "app/views.py", "django")
    """

    def __init__(self, stages: Optional[List[BaseStage]] = None):
        stages = stages if stages is not None else build_default_stages()
        self.stages: Dict[FixStep, BaseStage] = {stage.step: stage for stage in stages}
        self._validate_stages()

    def _validate_stages(self) -> None:
        """Verify that every non-terminal step has a stage.

        Raises
        ------
        ValueError
            If a step has no registered stage.
        """
        missing = [s.value for s in FixStep if s is not FixStep.DONE and s not in self.stages]
        if missing:
            raise ValueError(
                f"Fix pipeline is missing stages for {missing}. "
                f"Registered: {sorted(s.value for s in self.stages)}"
            )

    def step(self, state: FixPipelineState) -> FixPipelineState:
        """Run the stage for ``state.step`` and advance to the next step.

        A state already at ``DONE`` is returned unchanged.
        """
        if state.done:
            return state
        stage = self.stages[state.step]
        result = stage.execute(state)
        if result.success:
            logger.debug("Fix stage %s completed in %.3fs", stage.name, result.duration_seconds)
        else:
            logger.warning("Fix stage %s for %s: %s", stage.name, state.violation.id, result.error)
        state.step = state.step.next
        return state

    def run(
        self,
        violation: Violation,
        code: str,
        file_path: Optional[str] = None,
        framework=None,
    ) -> Fix:
        """Drive one violation to ``DONE`` and build its ``Fix``."""
        start = time.time()
        state = FixPipelineState(
            violation=violation,
            code=code or "",
            file_path=file_path if file_path is not None else violation.file_path,
            framework=Framework.from_name(framework),
        )
        while not state.done:
            self.step(state)

        fix = self._build_fix(state)
        logger.info(
            "Generated %s fix for %s (%s) in %.2fs",
            fix.trust_level.value,
            violation.id or violation.control_id,
            violation.file_path,
            time.time() - start,
        )
        return fix

    @staticmethod
    def _build_fix(state: FixPipelineState) -> Fix:
        violation = state.violation
        explanation = state.explanation or "No automatic fix could be generated."
        if state.notes:
            explanation += "\n\n" + "\n".join(f"- {note}" for note in state.notes)
        if state.errors:
            explanation += "\n\nIncomplete: " + "; ".join(state.errors)

        trust = state.trust_level
        if not state.fixed_code.strip() or state.fixed_code == state.original_code:
            trust = TrustLevel.MANUAL

        return Fix(
            violation_id=violation.id or violation.compute_id(),
            original_code=state.original_code or violation.code_snippet,
            fixed_code=state.fixed_code,
            explanation=explanation,
            trust_level=trust,
        )


__all__ = ["FixPipeline"]
