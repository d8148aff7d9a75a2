"""
Fix pipeline for Ryn.

Converts one violation into one ``Fix`` through four linear stages.

Key components:
- ``FixStep`` -- Explicit step enum, ``PARSE`` through ``DONE``
- ``FixPipelineState`` -- Mutable state for one violation
- ``StageResult`` -- Outcome returned by each stage
- ``FixPipeline`` -- ``step(state)`` and ``run(...) -> Fix``
- ``BaseStage`` -- Convenience ABC for implementing stages
- ``build_default_stages`` -- Factory for the standard four stages
- ``AIFixGenerator`` -- Optional reasoning-service fix generation
"""

from .protocol import FixPipelineState, FixStage, FixStep, StageResult
from .orchestrator import FixPipeline
from .base_stage import BaseStage
from .ai_fix_generator import AIFixGenerator
from .stages import (
    AnalyzeStage,
    GenerateFixesStage,
    ParseStage,
    ValidateStage,
    build_default_stages,
)

__all__ = [
    # Core protocol
    "FixStep",
    "FixStage",
    "FixPipelineState",
    "StageResult",
    # Driver
    "FixPipeline",
    # Base class
    "BaseStage",
    # Concrete stages
    "ParseStage",
    "AnalyzeStage",
    "GenerateFixesStage",
    "ValidateStage",
    # Factory
    "build_default_stages",
    # AI fix generation
    "AIFixGenerator",
]
