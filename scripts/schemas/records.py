"""
Record Schemas - Typed models for rows written to the violation store.

The in-memory pipeline works on the dataclasses in ``hybrid.models``; these
models sit at the storage boundary and reject rows that would break the
provenance contract other tooling filters on:

- ``hybrid`` requires a confidence score and both reasonings
- ``regex`` never carries a confidence score
- ``llm`` requires a confidence score

Hierarchy:
    ViolationRecord  - one persisted violation
    FixRecord        - one persisted fix
    ScanCostRecord   - per-scan AI spend
    ScanRecord       - scan row with severity counts
    AuditEventRecord - audit trail entry
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from controls import CONTROLS

SeverityLiteral = Literal["critical", "high", "medium", "low"]
DetectionLiteral = Literal["regex", "llm", "hybrid"]
StatusLiteral = Literal["open", "fixed", "dismissed"]
TrustLiteral = Literal["auto", "review", "manual"]


# ---------------------------------------------------------------------------
# Violations
# ---------------------------------------------------------------------------


class ViolationRecord(BaseModel):
    """Persisted form of a ``Violation``."""

    id: str = Field(min_length=1)
    scan_id: str = Field(min_length=1)
    control_id: str
    severity: SeverityLiteral
    description: str
    file_path: str = Field(min_length=1)
    line_number: int = Field(ge=1)
    code_snippet: str = ""
    status: StatusLiteral = "open"
    detection_method: DetectionLiteral = "regex"
    confidence_score: Optional[int] = Field(default=None, gt=0, le=100)
    llm_reasoning: Optional[str] = None
    regex_reasoning: Optional[str] = None
    detected_at: str

    model_config = {"use_enum_values": True}

    @field_validator("control_id")
    @classmethod
    def validate_control_id(cls, v: str) -> str:
        """Ensure the control is in the catalog."""
        if v not in CONTROLS:
            raise ValueError(f"control_id must be one of {sorted(CONTROLS)}, got '{v}'")
        return v

    @model_validator(mode="after")
    def validate_provenance(self) -> "ViolationRecord":
        method = self.detection_method
        if method == "regex" and self.confidence_score is not None:
            raise ValueError("regex violations cannot carry a confidence score")
        if method in ("llm", "hybrid") and self.confidence_score is None:
            raise ValueError(f"{method} violations require a confidence score")
        if method == "hybrid" and not (self.llm_reasoning and self.regex_reasoning):
            raise ValueError("hybrid violations require both regex and llm reasoning")
        return self

    @classmethod
    def from_violation(cls, violation: Any) -> "ViolationRecord":
        return cls(**violation.to_dict())


# ---------------------------------------------------------------------------
# Fixes
# ---------------------------------------------------------------------------


class FixRecord(BaseModel):
    id: str = Field(min_length=1)
    violation_id: str = Field(min_length=1)
    original_code: str
    fixed_code: str
    explanation: str
    trust_level: TrustLiteral = "review"
    applied_at: Optional[str] = None
    applied_by: str = ""
    git_commit_sha: Optional[str] = None

    model_config = {"use_enum_values": True}

    @model_validator(mode="after")
    def validate_applied(self) -> "FixRecord":
        if self.git_commit_sha and not self.applied_at:
            raise ValueError("git_commit_sha requires applied_at")
        return self

    @classmethod
    def from_fix(cls, fix: Any) -> "FixRecord":
        return cls(**fix.to_dict())


# ---------------------------------------------------------------------------
# Cost and scans
# ---------------------------------------------------------------------------


class ScanCostRecord(BaseModel):
    scan_id: str = Field(min_length=1)
    files_analyzed_with_llm: int = Field(default=0, ge=0)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cache_read_tokens: int = Field(default=0, ge=0)
    cache_write_tokens: int = Field(default=0, ge=0)
    total_cost_usd: float = Field(default=0.0, ge=0.0)


class ScanRecord(BaseModel):
    id: str = Field(min_length=1)
    project_path: str
    mode: Literal["regex_only", "smart", "analyze_all"]
    state: str
    started_at: str
    completed_at: Optional[str] = None
    files_scanned: int = Field(default=0, ge=0)
    total_files: int = Field(default=0, ge=0)
    violations_found: int = Field(default=0, ge=0)
    critical_count: int = Field(default=0, ge=0)
    high_count: int = Field(default=0, ge=0)
    medium_count: int = Field(default=0, ge=0)
    low_count: int = Field(default=0, ge=0)
    error: Optional[str] = None

    model_config = {"use_enum_values": True}


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

AuditEventLiteral = Literal[
    "scan_completed",
    "scan_failed",
    "scan_cancelled",
    "fix_generated",
    "fix_applied",
    "violation_dismissed",
    "violation_fixed",
    "data_cleared",
]


class AuditEventRecord(BaseModel):
    """One entry of the append-only audit trail."""

    event_type: AuditEventLiteral
    scan_id: Optional[str] = None
    violation_id: Optional[str] = None
    fix_id: Optional[str] = None
    description: str = Field(min_length=1)
    metadata: Optional[str] = None
    created_at: str
