"""
AI-backed fix generation.

Asks the reasoning service to rewrite the region a template fix would
replace, using a per-control prompt. The generate-fixes stage falls back to
the template transformations whenever the service fails or returns nothing
usable, and AI fixes are never trusted beyond ``review``.

Usage:
    generator = AIFixGenerator(llm_manager.call_reasoning_service, provider="anthropic")
    stages = build_default_stages(ai_generator=generator)
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt

from controls import ACCESS_CONTROL, AUDIT_LOGGING, RESILIENCE, SECRETS
from error_classifier import DEFAULT_MAX_WAIT, classified_retry_predicate, classified_wait
from exceptions import AnalyzerError
from hybrid.models import TokenUsage

logger = logging.getLogger(__name__)

FIX_SYSTEM_PROMPT = (
    "You are a security-focused code fixer for SOC 2 compliance. "
    "Your task is to fix compliance violations in code without breaking functionality. "
    "Always follow the framework's best practices."
)

_CONTROL_INSTRUCTIONS = {
    ACCESS_CONTROL: ("access control", ""),
    SECRETS: ("secrets/cryptography", "Move hardcoded secrets to environment variables. "),
    AUDIT_LOGGING: ("logging", "Add proper audit logging without logging sensitive data. "),
    RESILIENCE: ("resilience", "Add error handling, timeouts, and retry logic. "),
}

_FENCED_BLOCK = re.compile(r"```[\w+-]*[ \t]*\n(.*?)\n?```", re.DOTALL)


def build_fix_prompt(control_id: str, description: str, code: str, framework: str) -> str:
    """Per-control instruction asking for the fixed code only."""
    if control_id not in _CONTROL_INSTRUCTIONS:
        return (
            "Fix the following compliance violation:\n\n"
            f"Violation: {description}\n\n"
            f"Original code:\n```\n{code}\n```"
        )
    kind, guidance = _CONTROL_INSTRUCTIONS[control_id]
    return (
        f"Fix the following {kind} violation in {framework} code:\n\n"
        f"Violation: {description}\n\n"
        f"Original code:\n```\n{code}\n```\n\n"
        f"{guidance}Keep the original indentation. "
        "Provide the fixed code only, no explanation."
    )


def extract_code(text: str) -> str:
    """Return the first fenced block of a reply, or the bare reply."""
    text = (text or "").strip("\n")
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).rstrip()
    return text.rstrip()


@dataclass
class GeneratedFix:
    fixed_code: str
    usage: TokenUsage = field(default_factory=TokenUsage)


class AIFixGenerator:
    """Generate replacement code for one region with the reasoning service.

    Args:
        call_reasoning_service: ``(prompt, system) -> (text, TokenUsage)``.
        max_retries: Retries after the first attempt for retryable failures.
        max_wait: Upper bound (seconds) for a single backoff delay.
        provider: Provider name, used for error classification.
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        call_reasoning_service: Callable[..., Tuple[str, TokenUsage]],
        max_retries: int = 1,
        max_wait: float = DEFAULT_MAX_WAIT,
        provider: str = "",
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.call_reasoning_service = call_reasoning_service
        self.max_retries = max_retries
        self.max_wait = max_wait
        self.provider = provider
        self.sleep = sleep

    def generate(
        self, control_id: str, description: str, original_code: str, framework: str
    ) -> Optional[GeneratedFix]:
        """Return the generated fix, or None when the reply holds no code.

        Raises:
            AnalyzerError: Once retries are exhausted or on a non-retryable
                failure.
        """
        prompt = build_fix_prompt(control_id, description, original_code, framework)
        spent = TokenUsage()
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
                    text, usage = self.call_reasoning_service(prompt, system=FIX_SYSTEM_PROMPT)
                    spent = spent + usage
        except Exception as e:
            raise AnalyzerError(control_id, f"fix generation: {e}", usage=spent) from e

        fixed = extract_code(text)
        if not fixed.strip():
            return None
        return GeneratedFix(fixed_code=fixed, usage=spent)


__all__ = ["AIFixGenerator", "FIX_SYSTEM_PROMPT", "GeneratedFix", "build_fix_prompt", "extract_code"]
