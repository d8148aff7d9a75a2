"""
Scan orchestration for Ryn.

Drives the regex, file-selection, AI and dedup phases of a scan, enforces
the per-scan cost limit and the shared request rate.
"""

from orchestrator.cost_tracker import CostGovernor, LimitCheck, LimitExceeded, WithinLimit
from orchestrator.llm_manager import LLMManager
from orchestrator.rate_limiter import RateLimiter
from orchestrator.scan_orchestrator import (
    CostGateEvent,
    ScanEvent,
    ScanOrchestrator,
    ScanProgressEvent,
    ScanRegistry,
    ScanState,
    ScanStateEvent,
)

__all__ = [
    "CostGateEvent",
    "CostGovernor",
    "LLMManager",
    "LimitCheck",
    "LimitExceeded",
    "RateLimiter",
    "ScanEvent",
    "ScanOrchestrator",
    "ScanProgressEvent",
    "ScanRegistry",
    "ScanState",
    "ScanStateEvent",
    "WithinLimit",
]
