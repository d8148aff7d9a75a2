"""Hybrid (regex + AI) compliance analysis package."""

from hybrid.models import (
    DetectionMethod,
    FileMeta,
    Fix,
    ScanCost,
    ScanMode,
    ScanProgress,
    ScanResult,
    Severity,
    TokenUsage,
    TrustLevel,
    Violation,
    ViolationStatus,
    count_by_method,
    count_by_severity,
)

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
]
