"""
Compliance rules: one line-oriented detector per control.

    CC6.1  AccessControlDetector
    CC6.7  SecretsDetector
    CC7.2  AuditLoggingDetector
    A1.2   ResilienceDetector
"""

from .access_control import AccessControlDetector
from .audit_logging import AuditLoggingDetector
from .base import Detector
from .engine import FRAMEWORK_FAMILIES, RuleEngine, families_for
from .resilience import ResilienceDetector
from .secrets import SecretsDetector, redact

__all__ = [
    "AccessControlDetector",
    "AuditLoggingDetector",
    "Detector",
    "FRAMEWORK_FAMILIES",
    "ResilienceDetector",
    "RuleEngine",
    "SecretsDetector",
    "families_for",
    "redact",
]
