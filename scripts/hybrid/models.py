"""
Hybrid Compliance Analysis Data Models.

This module contains the core dataclass definitions used across the hybrid
(regex + AI) compliance pipeline.

Classes:
    Violation: A single control violation from regex, AI, or both
    Fix: A proposed code patch for one violation
    TokenUsage: Token and dollar usage of one reasoning-service call
    ScanCost: Aggregate AI spend for a scan
    ScanProgress: Ephemeral progress snapshot
    FileMeta: A file handed to the scanner
    ScanResult: Aggregated outcome of one scan
"""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value, default: "Severity" = None) -> "Severity":
        """Lenient conversion used for reasoning-service output."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            if default is None:
                raise
            return default

    @classmethod
    def max(cls, a: "Severity", b: "Severity") -> "Severity":
        return a if cls(a).rank >= cls(b).rank else b


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class DetectionMethod(str, Enum):
    REGEX = "regex"
    LLM = "llm"
    HYBRID = "hybrid"


class ViolationStatus(str, Enum):
    OPEN = "open"
    FIXED = "fixed"
    DISMISSED = "dismissed"


class TrustLevel(str, Enum):
    AUTO = "auto"
    REVIEW = "review"
    MANUAL = "manual"


class ScanMode(str, Enum):
    REGEX_ONLY = "regex_only"
    SMART = "smart"
    ANALYZE_ALL = "analyze_all"

    @classmethod
    def parse(cls, value) -> "ScanMode":
        if isinstance(value, ScanMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid scan mode {value!r}. Must be one of {[m.value for m in cls]}."
            ) from None

    @property
    def uses_ai(self) -> bool:
        return self is not ScanMode.REGEX_ONLY


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Violation:
    """A compliance violation.

    ``confidence_score`` and ``llm_reasoning`` are only set for ``llm`` and
    ``hybrid`` detections. ``components`` keeps the raw regex/llm detections a
    hybrid was merged from; it is not persisted.
    """

    control_id: str
    severity: Severity
    description: str
    file_path: str
    line_number: int
    code_snippet: str
    detection_method: DetectionMethod = DetectionMethod.REGEX
    confidence_score: Optional[int] = None
    llm_reasoning: Optional[str] = None
    regex_reasoning: Optional[str] = None
    status: ViolationStatus = ViolationStatus.OPEN
    scan_id: Optional[str] = None
    id: str = ""
    detected_at: Optional[str] = None
    components: tuple = field(default=(), repr=False, compare=False)

    def __post_init__(self):
        self.severity = Severity(self.severity)
        self.detection_method = DetectionMethod(self.detection_method)
        self.status = ViolationStatus(self.status)

    @property
    def is_open(self) -> bool:
        return self.status is ViolationStatus.OPEN

    def compute_id(self) -> str:
        """Deterministic id derived from where and how the violation was found."""
        combined = "|".join(
            [
                self.scan_id or "",
                self.file_path,
                str(self.line_number),
                self.control_id,
                self.detection_method.value,
                self.description,
            ]
        )
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:16]

    def dismiss(self) -> None:
        self.status = ViolationStatus.DISMISSED

    def mark_fixed(self) -> None:
        self.status = ViolationStatus.FIXED

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("components", None)
        data["severity"] = self.severity.value
        data["detection_method"] = self.detection_method.value
        data["status"] = self.status.value
        return data


@dataclass
class Fix:
    """A proposed patch for one violation."""

    violation_id: str
    original_code: str
    fixed_code: str
    explanation: str
    trust_level: TrustLevel = TrustLevel.REVIEW
    applied_at: Optional[str] = None
    applied_by: str = ""
    git_commit_sha: Optional[str] = None
    id: str = ""

    def __post_init__(self):
        self.trust_level = TrustLevel(self.trust_level)
        if not self.id:
            digest = hashlib.sha256(
                f"{self.violation_id}|{self.fixed_code}".encode("utf-8")
            ).hexdigest()
            self.id = digest[:16]

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["trust_level"] = self.trust_level.value
        return data


@dataclass(frozen=True)
class TokenUsage:
    """Usage reported by one reasoning-service call."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    cost_usd: float = 0.0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
            cost_usd=self.cost_usd + other.cost_usd,
        )


@dataclass(frozen=True)
class ScanCost:
    """Aggregate AI spend for one scan."""

    files_analyzed_with_llm: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    total_cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ScanProgress:
    files_scanned: int
    total_files: int
    current_file: str = ""

    @property
    def percentage(self) -> float:
        if self.total_files <= 0:
            return 100.0
        return round(100.0 * self.files_scanned / self.total_files, 1)


@dataclass
class FileMeta:
    """A file handed to the scanner. ``content`` is read lazily when ``None``."""

    path: str
    size: int = 0
    content: Optional[str] = None


@dataclass
class ScanResult:
    """Results from a compliance scan"""

    scan_id: str
    project_path: str
    mode: ScanMode
    state: str
    violations: list[Violation]
    cost: ScanCost
    severity_counts: dict[str, int]
    files_scanned: int
    total_files: int
    started_at: str
    completed_at: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    @property
    def violations_found(self) -> int:
        return len(self.violations)

    @property
    def succeeded(self) -> bool:
        return self.state == "completed"


def count_by_severity(violations: list[Violation]) -> dict[str, int]:
    counts = {s.value: 0 for s in Severity}
    for violation in violations:
        counts[Severity(violation.severity).value] += 1
    return counts


def count_by_method(violations: list[Violation]) -> dict[str, int]:
    counts = {m.value: 0 for m in DetectionMethod}
    for violation in violations:
        counts[DetectionMethod(violation.detection_method).value] += 1
    return counts


__all__ = [
    "DetectionMethod",
    "FileMeta",
    "Fix",
    "ScanCost",
    "ScanMode",
    "ScanProgress",
    "ScanResult",
    "Severity",
    "TokenUsage",
    "TrustLevel",
    "Violation",
    "ViolationStatus",
    "count_by_method",
    "count_by_severity",
    "utc_now",
]
