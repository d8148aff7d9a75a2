"""
Rule Engine

Runs one detector per enabled control over a single file. Pure and
deterministic: no I/O, identical input always yields identical output.

Usage:
    from rules import RuleEngine

    engine = RuleEngine()
    violations = engine.analyze(code, "app/views.py", "django")
"""

import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from controls import (
    ALL_CONTROL_IDS,
    Framework,
    Language,
    language_for_path,
    normalize_control_ids,
)
from exceptions import DetectorError
from hybrid.models import Severity, Violation
from rules.access_control import AccessControlDetector
from rules.audit_logging import AuditLoggingDetector
from rules.base import Detector
from rules.resilience import ResilienceDetector
from rules.secrets import SecretsDetector

logger = logging.getLogger(__name__)

# Framework -> pattern families. UNKNOWN is resolved per file extension.
FRAMEWORK_FAMILIES: Mapping[Framework, tuple[Language, ...]] = MappingProxyType({
    Framework.DJANGO: (Language.PYTHON,),
    Framework.FLASK: (Language.PYTHON,),
    Framework.EXPRESS: (Language.JAVASCRIPT,),
    Framework.NEXT_REACT: (Language.JAVASCRIPT,),
})

ALL_FAMILIES = (Language.PYTHON, Language.JAVASCRIPT)


def families_for(framework: Union[Framework, str, None], file_path: str) -> tuple[Language, ...]:
    """Pick the pattern families for a file.

    A known framework wins. Otherwise the file extension decides, and a file
    with an unrecognized extension gets every family.
    """
    variant = Framework.from_name(framework)
    if variant in FRAMEWORK_FAMILIES:
        return FRAMEWORK_FAMILIES[variant]
    language = language_for_path(file_path)
    return (language,) if language else ALL_FAMILIES


def default_detectors() -> dict[str, Detector]:
    detectors = (
        AccessControlDetector(),
        SecretsDetector(),
        AuditLoggingDetector(),
        ResilienceDetector(),
    )
    return {d.control_id: d for d in detectors}


class RuleEngine:
    """Deterministic pattern-rule engine over the control catalog."""

    def __init__(
        self,
        enabled_controls: Optional[Iterable[str]] = None,
        detectors: Optional[Mapping[str, Detector]] = None,
    ):
        self.enabled_controls = normalize_control_ids(enabled_controls)
        self.detectors = dict(detectors) if detectors is not None else default_detectors()

    def analyze(self, code: str, file_path: str, framework=None) -> list[Violation]:
        violations, _ = self.analyze_with_errors(code, file_path, framework)
        return violations

    def analyze_with_errors(
        self, code: str, file_path: str, framework=None
    ) -> tuple[list[Violation], list[DetectorError]]:
        """Run every enabled detector, isolating failures per detector.

        Returns:
            ``(violations, errors)``. A detector that raises contributes no
            violations for this file and one ``DetectorError``.
        """
        families = families_for(framework, file_path)
        violations: list[Violation] = []
        errors: list[DetectorError] = []

        for control_id in ALL_CONTROL_IDS:
            if control_id not in self.enabled_controls:
                continue
            detector = self.detectors.get(control_id)
            if detector is None:
                continue
            try:
                found = detector.detect(code, file_path, families)
            except Exception as e:
                error = DetectorError(detector.name or control_id, file_path, str(e))
                logger.warning("%s", error)
                errors.append(error)
                continue
            violations.extend(collapse_by_line(found))

        return violations, errors


def collapse_by_line(violations: list[Violation]) -> list[Violation]:
    """Keep one violation per line: the most severe, first on ties."""
    best: dict[int, Violation] = {}
    for violation in violations:
        current = best.get(violation.line_number)
        if current is None or Severity(violation.severity).rank > Severity(current.severity).rank:
            best[violation.line_number] = violation
    return [best[line] for line in sorted(best)]


__all__ = [
    "ALL_FAMILIES",
    "FRAMEWORK_FAMILIES",
    "RuleEngine",
    "collapse_by_line",
    "default_detectors",
    "families_for",
]
