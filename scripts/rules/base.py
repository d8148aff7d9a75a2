"""
Detector base class and shared line helpers.

Every detector is line oriented: it walks the file once and looks at a few
neighbouring lines for context (decorators above a definition, a logging call
after a mutation, an enclosing ``try`` block). Patterns are grouped per
``Language`` family so a single detector can carry Python and JavaScript
variants side by side.
"""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Iterable, Optional

from controls import Language
from hybrid.models import DetectionMethod, Severity, Violation

logger = logging.getLogger(__name__)

_TEST_FILE = re.compile(
    r"(^test_.*\.py$|.*_test\.py$|.*\.(test|spec)\.(js|jsx|ts|tsx)$|^conftest\.py$)",
    re.IGNORECASE,
)

MAX_SNIPPET_LENGTH = 200


def is_comment(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith("#") or stripped.startswith("//") or stripped.startswith("*")


def is_test_file(file_path: str) -> bool:
    return bool(_TEST_FILE.match(PurePath(file_path).name))


def indentation(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def window(lines: list[str], start: int, end: int) -> str:
    """Join ``lines[start:end]`` with bounds clamped to the file."""
    return " ".join(lines[max(start, 0):min(end, len(lines))])


def decorators_above(lines: list[str], idx: int, limit: int = 5) -> list[str]:
    """Return the decorator lines stacked directly above ``lines[idx]``.

    Blank lines are skipped; the walk stops at the first line that is not a
    decorator or after ``limit`` lines.
    """
    found = []
    for prev in range(idx - 1, max(idx - 1 - limit, -1), -1):
        stripped = lines[prev].strip()
        if not stripped:
            continue
        if not stripped.startswith("@"):
            break
        found.append(stripped)
    return found


class Detector(ABC):
    """One detector per control.

    Subclasses implement ``_detect`` for the families they support and
    return an empty list for the rest.
    """

    control_id: str = ""
    name: str = ""

    def detect(
        self, code: str, file_path: str, families: Iterable[Language]
    ) -> list[Violation]:
        lines = code.splitlines()
        violations: list[Violation] = []
        for family in families:
            violations.extend(self._detect(lines, file_path, family))
        violations.sort(key=lambda v: v.line_number)
        return violations

    @abstractmethod
    def _detect(
        self, lines: list[str], file_path: str, family: Language
    ) -> list[Violation]:
        """Scan ``lines`` with the pattern set of ``family``."""

    def violation(
        self,
        severity: Severity,
        description: str,
        file_path: str,
        line_number: int,
        snippet: str,
        reasoning: Optional[str] = None,
    ) -> Violation:
        snippet = snippet.strip()
        if len(snippet) > MAX_SNIPPET_LENGTH:
            snippet = snippet[: MAX_SNIPPET_LENGTH - 3] + "..."
        return Violation(
            control_id=self.control_id,
            severity=severity,
            description=description,
            file_path=file_path,
            line_number=line_number,
            code_snippet=snippet,
            detection_method=DetectionMethod.REGEX,
            regex_reasoning=reasoning or f"Pattern match at line {line_number}: {description}",
        )


__all__ = [
    "Detector",
    "decorators_above",
    "indentation",
    "is_comment",
    "is_test_file",
    "window",
]
