"""
A1.2 - Resilience and error handling.

Flags outbound network and database calls that are not enclosed in an
error-handling region and HTTP requests issued without a timeout. Python
regions are found by walking outward through indentation, JavaScript regions
by walking outward through braces.
"""

import logging
import re

from controls import RESILIENCE, Language
from hybrid.models import Severity
from rules.base import Detector, indentation, is_comment, window

logger = logging.getLogger(__name__)

_PY_EXTERNAL_CALL = re.compile(
    r"\b(requests\.(get|post|put|delete|patch|head|request)\s*\(|urllib\.request\.urlopen\(|"
    r"urlopen\(|httpx\.(get|post|put|delete|patch|request)\s*\(|aiohttp\.request\(|"
    r"session\.(get|post|put|delete|patch)\s*\(|\.execute\(|\.executemany\(|\.query\()"
)
_PY_SCOPE_BOUNDARY = re.compile(r"^\s*(?:async\s+)?(def|class)\s")
_PY_TRY = re.compile(r"^\s*try\s*:")
_PY_TIMEOUT_CALL = re.compile(
    r"\b(requests|httpx)\.(get|post|put|delete|patch|head|request)\s*\("
)

_JS_EXTERNAL_CALL = re.compile(
    r"(\bfetch\s*\(|\baxios(\.(get|post|put|delete|patch|request))?\s*\(|\.query\s*\(|"
    r"\.execute\s*\(|\bhttps?\.request\s*\()"
)
_JS_TRY_HEAD = re.compile(r"\btry\s*$")
_JS_CATCH_CHAIN = re.compile(r"\.catch\s*\(")
_JS_TIMEOUT_CALL = re.compile(r"\baxios(\.(get|post|put|delete|patch|request))?\s*\(|\bfetch\s*\(")

_TIMEOUT = re.compile(r"(timeout\s*[=:,]|\.timeout\(|\bsignal\s*[:,]|AbortSignal\.timeout)")


def inside_python_try(lines: list[str], idx: int) -> bool:
    """True when ``lines[idx]`` sits in the body of an enclosing ``try:``."""
    current = indentation(lines[idx])
    for prev in range(idx - 1, -1, -1):
        text = lines[prev]
        if not text.strip() or is_comment(text):
            continue
        level = indentation(text)
        if level >= current:
            continue
        if _PY_TRY.match(text):
            return True
        if _PY_SCOPE_BOUNDARY.match(text) or level == 0:
            return False
        current = level
    return False


def inside_js_try(lines: list[str], idx: int, column: int) -> bool:
    """True when the call at ``lines[idx][column]`` sits in an enclosing ``try {``."""
    depth = 0
    row, text = idx, lines[idx][:column]
    while row >= 0:
        for pos in range(len(text) - 1, -1, -1):
            char = text[pos]
            if char == "}":
                depth += 1
            elif char == "{":
                if depth:
                    depth -= 1
                    continue
                head = text[:pos]
                if not head.strip() and row > 0:
                    head = lines[row - 1]
                if _JS_TRY_HEAD.search(head):
                    return True
        row -= 1
        text = lines[row] if row >= 0 else ""
    return False


class ResilienceDetector(Detector):
    control_id = RESILIENCE
    name = "resilience"

    def _detect(self, lines, file_path, family):
        if family is Language.PYTHON:
            return self._python(lines, file_path)
        if family is Language.JAVASCRIPT:
            return self._javascript(lines, file_path)
        return []

    def _python(self, lines, file_path):
        violations = []
        for idx, line in enumerate(lines):
            if is_comment(line):
                continue
            if _PY_EXTERNAL_CALL.search(line) and not (
                line.lstrip().startswith("with ") or inside_python_try(lines, idx)
            ):
                violations.append(
                    self.violation(
                        Severity.HIGH,
                        "External service call without error handling",
                        file_path,
                        idx + 1,
                        line,
                    )
                )
            elif _PY_TIMEOUT_CALL.search(line) and not _TIMEOUT.search(window(lines, idx, idx + 3)):
                violations.append(
                    self.violation(
                        Severity.MEDIUM,
                        "External request without timeout configuration",
                        file_path,
                        idx + 1,
                        line,
                    )
                )
        return violations

    def _javascript(self, lines, file_path):
        violations = []
        for idx, line in enumerate(lines):
            if is_comment(line):
                continue
            match = _JS_EXTERNAL_CALL.search(line)
            if not match:
                continue
            handled = _JS_CATCH_CHAIN.search(window(lines, idx, idx + 4)) or inside_js_try(
                lines, idx, match.start()
            )
            if not handled:
                violations.append(
                    self.violation(
                        Severity.HIGH,
                        "External service call without error handling",
                        file_path,
                        idx + 1,
                        line,
                    )
                )
            elif _JS_TIMEOUT_CALL.search(line) and not _TIMEOUT.search(window(lines, idx, idx + 3)):
                violations.append(
                    self.violation(
                        Severity.MEDIUM,
                        "External request without timeout configuration",
                        file_path,
                        idx + 1,
                        line,
                    )
                )
        return violations


__all__ = ["ResilienceDetector", "inside_js_try", "inside_python_try"]
