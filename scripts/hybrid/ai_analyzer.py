"""
AI-assisted compliance analysis of a single file.

Builds a control-catalog system prompt and a per-file user prompt listing the
pattern detections already made, calls the reasoning service under the
classified tenacity retry policy, and parses the JSON array it returns into
``llm`` violations.

Functions:
    build_system_prompt: Control catalog + response contract
    build_analysis_prompt: File content + regex detections
    parse_response: Lenient JSON array parsing into violations

Usage:
    analyzer = AIAnalyzer(llm_manager.call_reasoning_service, max_retries=2)
    result = analyzer.analyze(code, "app/views.py", Framework.DJANGO, regex_violations)
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from controls import CONTROLS, Framework, get_control, normalize_control_ids
from error_classifier import DEFAULT_MAX_WAIT, classified_retry_predicate, classified_wait
from exceptions import AnalyzerError, ValidationError
from hybrid.models import DetectionMethod, Severity, TokenUsage, Violation

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_CONFIDENCE = 50

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


@dataclass
class AnalysisResult:
    """Violations found in one file plus the usage of every attempt made."""

    violations: list[Violation]
    usage: TokenUsage = field(default_factory=TokenUsage)
    attempts: int = 1


def build_system_prompt(control_ids: Iterable[str]) -> str:
    sections = [
        "You are a SOC 2 compliance expert analyzing application code for security violations.\n\n"
        "Your task is to identify violations of the following SOC 2 controls:\n"
    ]
    for control_id in control_ids:
        control = CONTROLS[control_id]
        sections.append(
            f"## {control.id} - {control.name}\n"
            f"**Description**: {control.description}\n"
            f"**Requirement**: {control.requirement}\n"
            f"**Category**: {control.category}\n"
        )
    sections.append(
        "**Analysis Guidelines**:\n"
        "1. Focus on semantic violations that regex patterns might miss\n"
        "2. Consider context and intent, not just keywords\n"
        "3. Assign confidence scores (1-100) based on certainty\n"
        "4. Provide clear, actionable reasoning\n"
        "5. Report a regex detection again only if you confirm it, on the same line\n\n"
        "**Response Format**:\n"
        "Respond with a JSON array of violations only, no explanation:\n"
        "```json\n"
        "[\n"
        "  {\n"
        '    "control_id": "CC6.1",\n'
        '    "severity": "high",\n'
        '    "description": "Brief description",\n'
        '    "line_number": 42,\n'
        '    "code_snippet": "relevant code",\n'
        '    "confidence_score": 85,\n'
        '    "reasoning": "Why this is a violation"\n'
        "  }\n"
        "]\n"
        "```\n"
        "If no violations found, respond with: []"
    )
    return "\n".join(sections)


def build_analysis_prompt(
    code: str,
    file_path: str,
    framework: Framework,
    regex_violations: Iterable[Violation] = (),
) -> str:
    numbered = "\n".join(f"{i}: {line}" for i, line in enumerate(code.splitlines(), start=1))
    prompt = (
        "Analyze this file for SOC 2 compliance violations:\n\n"
        f"**File**: {file_path}\n"
        f"**Framework**: {framework.value}\n\n"
        f"**Code** (line-numbered):\n```\n{numbered}\n```\n\n"
    )
    regex_violations = list(regex_violations)
    if regex_violations:
        prompt += "**Regex Pattern Detections** (already found):\n"
        for v in regex_violations:
            prompt += f"- Line {v.line_number}: {v.description} ({v.control_id})\n"
        prompt += "\nFocus on finding violations that regex patterns missed.\n\n"
    prompt += (
        "Respond with JSON array of violations (or [] if none found). "
        "Consider semantic issues, not just keyword matching."
    )
    return prompt


def _clamp_int(value, low: int, high: int, default: int) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def parse_response(
    text: str,
    file_path: str,
    code: str,
    allowed_controls: Iterable[str],
) -> list[Violation]:
    """Parse a reasoning-service reply into ``llm`` violations.

    Tolerates code fences and prose around the array. Items with unknown
    control ids are dropped, severities fall back to ``medium`` and line
    numbers are clamped to the file.

    Raises:
        ValidationError: If no JSON array can be recovered.
    """
    cleaned = _FENCE.sub("", (text or "").strip()).strip()
    if not cleaned:
        raise ValidationError("malformed response: empty reply")
    if cleaned == "[]":
        return []

    match = _JSON_ARRAY.search(cleaned)
    candidate = match.group(0) if match else cleaned
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValidationError(f"malformed response: invalid JSON ({e})") from e

    if isinstance(data, dict) and isinstance(data.get("violations"), list):
        data = data["violations"]
    if not isinstance(data, list):
        raise ValidationError("malformed response: expected a JSON array")

    allowed = set(allowed_controls)
    lines = code.splitlines()
    last_line = max(len(lines), 1)
    violations = []
    for item in data:
        if not isinstance(item, dict):
            logger.debug("Skipping non-object item in AI response for %s", file_path)
            continue
        control_id = str(item.get("control_id", "")).strip()
        if control_id not in allowed:
            logger.debug("Dropping AI finding with control %r for %s", control_id, file_path)
            continue

        line_number = _clamp_int(item.get("line_number"), 1, last_line, 1)
        description = str(item.get("description") or "").strip() or (
            f"{get_control(control_id).name} violation"
        )
        reasoning = str(item.get("reasoning") or "").strip() or description
        snippet = str(item.get("code_snippet") or "").strip()
        if not snippet and lines:
            snippet = lines[line_number - 1].strip()

        violations.append(
            Violation(
                control_id=control_id,
                severity=Severity.parse(item.get("severity"), default=Severity.MEDIUM),
                description=description,
                file_path=file_path,
                line_number=line_number,
                code_snippet=snippet,
                detection_method=DetectionMethod.LLM,
                confidence_score=_clamp_int(item.get("confidence_score"), 1, 100, DEFAULT_CONFIDENCE),
                llm_reasoning=reasoning,
            )
        )
    return violations


class AIAnalyzer:
    """Analyze one file with the reasoning service.

    Args:
        call_reasoning_service: ``(prompt, system) -> (text, TokenUsage)``.
        max_retries: Retries after the first attempt for retryable failures.
        max_wait: Upper bound (seconds) for a single backoff delay.
        provider: Provider name, used for error classification and logs.
        enabled_controls: Controls the model may report.
        sleep: Sleep function used between retries (tests pass a no-op).
    """

    def __init__(
        self,
        call_reasoning_service: Callable[..., tuple[str, TokenUsage]],
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_wait: float = DEFAULT_MAX_WAIT,
        provider: str = "",
        enabled_controls: Optional[Iterable[str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.call_reasoning_service = call_reasoning_service
        self.max_retries = max_retries
        self.max_wait = max_wait
        self.provider = provider
        self.enabled_controls = normalize_control_ids(enabled_controls)
        self.sleep = sleep
        self.system_prompt = build_system_prompt(self.enabled_controls)

    def analyze(
        self,
        code: str,
        file_path: str,
        framework=None,
        control_context: Iterable[Violation] = (),
    ) -> AnalysisResult:
        """Return llm violations for one file.

        Raises:
            AnalyzerError: Once retries are exhausted or on a non-retryable
                failure. ``error.usage`` carries the tokens already spent.
        """
        variant = Framework.from_name(framework)
        if variant is Framework.UNKNOWN:
            variant = Framework.default_for_path(file_path)
        prompt = build_analysis_prompt(code, file_path, variant, control_context)

        spent = TokenUsage()
        attempts = 0
        retryer = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=classified_wait(self.provider, self.max_wait),
            retry=retry_if_exception(classified_retry_predicate(self.provider)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )
        try:
            for attempt in retryer:
                with attempt:
                    attempts += 1
                    text, usage = self.call_reasoning_service(prompt, system=self.system_prompt)
                    spent = spent + usage
                    violations = parse_response(text, file_path, code, self.enabled_controls)
        except Exception as e:
            logger.warning(
                "AI analysis of %s failed after %d attempt(s): %s", file_path, attempts, e
            )
            raise AnalyzerError(file_path, str(e), usage=spent) from e

        logger.debug("AI analysis of %s: %d violation(s)", file_path, len(violations))
        return AnalysisResult(violations=violations, usage=spent, attempts=attempts)


__all__ = [
    "AIAnalyzer",
    "AnalysisResult",
    "build_analysis_prompt",
    "build_system_prompt",
    "parse_response",
]
