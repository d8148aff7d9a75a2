"""
Base Stage - Convenience base class for fix stages.

Wraps ``_execute`` with timing and error capture so every stage is total:
an exception becomes an entry in ``state.errors`` and a failed
``StageResult``, and the pipeline keeps going.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict

from .protocol import FixPipelineState, FixStep, StageResult

logger = logging.getLogger(__name__)


class BaseStage(ABC):
    """Abstract base class that satisfies the ``FixStage`` protocol.

    Subclasses must implement:
    - ``name`` and ``step`` (as properties or class attrs)
    - ``_execute(state)`` -- the core logic
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def step(self) -> FixStep:
        ...

    @abstractmethod
    def _execute(self, state: FixPipelineState) -> Dict[str, Any]:
        """Core stage logic.

        Mutate ``state`` and return a dict of stage-specific metadata.
        Expected problems are appended to ``state.errors``; anything raised
        is caught by ``execute()``.
        """
        ...

    def execute(self, state: FixPipelineState) -> StageResult:
        errors_before = len(state.errors)
        start = time.time()

        try:
            metadata = self._execute(state) or {}
        except Exception as exc:
            logger.error("%s stage failed: %s", self.name, exc, exc_info=True)
            state.errors.append(f"{self.name}: {type(exc).__name__}: {exc}")
            metadata = {}

        new_errors = state.errors[errors_before:]
        result = StageResult(
            success=not new_errors,
            stage_name=self.name,
            duration_seconds=time.time() - start,
            error="; ".join(new_errors) if new_errors else None,
            metadata=metadata,
        )
        state.stage_results.append(result)
        return result
