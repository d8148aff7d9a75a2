"""
Pipeline Protocol - Defines the fix stage interface and shared state.

Every fix stage implements the ``FixStage`` protocol. Stages are composed
into the linear ``PARSE -> ANALYZE -> GENERATE_FIXES -> VALIDATE -> DONE``
pipeline by ``FixPipeline``.

The ``FixPipelineState`` dataclass holds all mutable state for one violation.
Stages read what they need, write their contributions and record problems in
``errors`` instead of raising across the chain.

The ``StageResult`` dataclass captures the outcome of a single stage
execution for logging and error reporting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from controls import Framework, Language
from hybrid.models import TrustLevel, Violation


class FixStep(str, Enum):
    PARSE = "parse"
    ANALYZE = "analyze"
    GENERATE_FIXES = "generate_fixes"
    VALIDATE = "validate"
    DONE = "done"

    @property
    def next(self) -> "FixStep":
        order = list(FixStep)
        position = order.index(self)
        return order[min(position + 1, len(order) - 1)]


@dataclass
class FixPipelineState:
    """State for one violation flowing through the fix pipeline.

    Attributes
    ----------
    violation : Violation
        The violation being remediated.
    code : str
        Source the violation was found in, usually the whole file.
    file_path : str
        Path of the file, used for language inference.
    framework : Framework
        Framework hint; inferred from the extension by the parse stage when
        unknown.
    step : FixStep
        Next stage to run.
    language : Language | None
        Pattern family, set by the parse stage.
    target_line : int | None
        0-based index of the offending line in ``code``.
    confirmed : bool | None
        Whether the analyze stage re-detected the control near the line.
    original_code : str
        Verbatim region of ``code`` the fix replaces.
    fixed_code : str
        Replacement for ``original_code``.
    explanation : str
        Human-readable description of the change.
    trust_level : TrustLevel
        ``review`` by default, ``manual`` when no usable fix was produced.
    notes : list
        Informational messages (consistency check, verification).
    errors : list
        Stage problems, carried into the final explanation.
    stage_results : list
        One ``StageResult`` per executed stage.
    """

    violation: Violation
    code: str = ""
    file_path: str = ""
    framework: Framework = Framework.UNKNOWN
    step: FixStep = FixStep.PARSE

    language: Optional[Language] = None
    target_line: Optional[int] = None
    confirmed: Optional[bool] = None

    original_code: str = ""
    fixed_code: str = ""
    explanation: str = ""
    trust_level: TrustLevel = TrustLevel.REVIEW

    notes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    stage_results: List["StageResult"] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return "; ".join(self.errors) if self.errors else None

    @property
    def done(self) -> bool:
        return self.step is FixStep.DONE

    @property
    def lines(self) -> List[str]:
        return self.code.splitlines()


@dataclass
class StageResult:
    """Outcome returned by each fix stage.

    Attributes
    ----------
    success : bool
        Whether the stage completed without recording an error.
    stage_name : str
        Identifier matching ``FixStage.name``.
    duration_seconds : float
        Wall-clock execution time.
    error : str | None
        Human-readable error message if the stage failed.
    metadata : dict
        Stage-specific metadata.
    """

    success: bool
    stage_name: str
    duration_seconds: float = 0.0
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class FixStage(Protocol):
    """Protocol that every fix stage must implement.

    Stages are total: ``execute`` always returns a ``StageResult`` and
    records problems on the state rather than raising.
    """

    @property
    def name(self) -> str:
        ...

    @property
    def step(self) -> FixStep:
        """The pipeline step this stage handles."""
        ...

    def execute(self, state: FixPipelineState) -> StageResult:
        ...
