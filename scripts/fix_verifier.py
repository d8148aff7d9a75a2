#!/usr/bin/env python3
"""
Fix Verification for Ryn
Check that a generated fix addresses the control it was generated for.

Two verification strategies:
1. Static analysis: the control's safe patterns appear in the fixed code and
   its vulnerable patterns no longer do
2. Pattern match: fallback diff of original vs fixed lines

Verification is informational. It is reported in the fix explanation and
never raises the trust level of a fix.

Usage:
    from fix_verifier import FixVerifier

    verifier = FixVerifier()
    result = verifier.verify_fix("CC6.7", original_code, fixed_code)
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from controls import ACCESS_CONTROL, AUDIT_LOGGING, RESILIENCE, SECRETS, get_control

logger = logging.getLogger(__name__)


# ============================================================================
# Data classes
# ============================================================================


@dataclass
class FixVerificationResult:
    """Result of verifying a generated fix.

    Attributes:
        control_id: Control the fix targets.
        original_vulnerable: Did a vulnerable pattern match the original code?
        fix_resolves: Does the fix appear to resolve the violation?
        verification_method: "static_analysis" or "pattern_match".
        confidence: 0.0-1.0 confidence score.
        details: Human-readable explanation.
        execution_time_ms: Time taken for verification in milliseconds.
        error: Error message if verification could not run.
    """

    control_id: str
    original_vulnerable: bool
    fix_resolves: bool
    verification_method: str
    confidence: float
    details: str
    execution_time_ms: int = 0
    error: Optional[str] = None


# ============================================================================
# FixVerifier
# ============================================================================


class FixVerifier:
    """Verify generated fixes against per-control patterns."""

    # Safe patterns should appear in fixed code, vulnerable patterns should be
    # absent from it.
    CONTROL_PATTERNS: Dict[str, Dict[str, Any]] = {
        ACCESS_CONTROL: {
            "safe_patterns": [
                r"@\w*login_required",
                r"@user_passes_test",
                r"@\w*permission_required",
                r"@\w*auth\w*",
                r"Depends\(",
                r"\bauthenticate\b",
                r"\brequireAuth\b",
                r"getServerSession\(",
                r"is_authenticated",
            ],
            "vuln_patterns": [
                r"(?:user_id|userId)\s*=\s*['\"]?\d+",
            ],
        },
        SECRETS: {
            "safe_patterns": [
                r"os\.getenv\(",
                r"os\.environ",
                r"process\.env\.",
                r"secrets_manager",
            ],
            "vuln_patterns": [
                r"(?:password|passwd|pwd|secret|api_?key|token)\w*\s*[:=]\s*['\"][^'\"]{4,}['\"]",
                r"AKIA[0-9A-Z]{16}",
                r"sk_live_[0-9a-zA-Z]{10,}",
                r"gh[pousr]_[0-9a-zA-Z]{20,}",
                r"-----BEGIN (?:RSA |EC )?PRIVATE KEY-----",
            ],
        },
        AUDIT_LOGGING: {
            "safe_patterns": [
                r"logger\.(?:info|warning|error|debug)\(",
                r"logging\.(?:info|warning|error)\(",
                r"audit_log\(",
                r"console\.(?:info|log|warn)\(",
            ],
            "vuln_patterns": [
                r"\b(?:logger|logging|log|console)(?:\.\w+)?\s*\(.*\b(?:password|token|secret|api_?key)\b",
            ],
        },
        RESILIENCE: {
            "safe_patterns": [
                r"^\s*try\s*:",
                r"^\s*try\s*\{",
                r"\bexcept\b",
                r"\bcatch\s*\(",
                r"\.catch\(",
            ],
            "vuln_patterns": [],
        },
    }

    def verify_fix(self, control_id: str, original_code: str, fixed_code: str) -> FixVerificationResult:
        """Verify one fix, preferring the control's static patterns."""
        start = time.time()
        try:
            if control_id in self.CONTROL_PATTERNS and original_code and fixed_code:
                result = self._verify_via_static(control_id, original_code, fixed_code)
            else:
                result = self._verify_via_pattern(control_id, original_code, fixed_code)
        except re.error as e:
            logger.warning("Fix verification failed for %s: %s", control_id, e)
            result = FixVerificationResult(
                control_id=control_id,
                original_vulnerable=False,
                fix_resolves=False,
                verification_method="static_analysis",
                confidence=0.0,
                details="Verification could not run.",
                error=str(e),
            )
        result.execution_time_ms = self._elapsed_ms(start)
        logger.debug("Verified fix for %s: %s", control_id, result.details)
        return result

    def _verify_via_static(self, control_id: str, original_code: str, fixed_code: str) -> FixVerificationResult:
        config = self.CONTROL_PATTERNS[control_id]
        name = self._control_name(control_id)

        safe_found = [p for p in config["safe_patterns"] if re.search(p, fixed_code, re.IGNORECASE | re.MULTILINE)]
        vuln_remaining = [p for p in config["vuln_patterns"] if re.search(p, fixed_code, re.IGNORECASE)]
        vuln_in_original = [p for p in config["vuln_patterns"] if re.search(p, original_code, re.IGNORECASE)]

        has_safe_patterns = bool(safe_found)
        no_vuln_remaining = not vuln_remaining
        had_vuln_originally = bool(vuln_in_original)

        if has_safe_patterns and no_vuln_remaining:
            fix_resolves, confidence = True, 0.85
            details = f"Static check confirms fix for {name} ({control_id}): safe pattern present, no vulnerable pattern remains."
        elif has_safe_patterns:
            fix_resolves, confidence = False, 0.6
            details = f"Partial fix for {name} ({control_id}): safe pattern added but vulnerable pattern still present."
        elif had_vuln_originally and no_vuln_remaining:
            fix_resolves, confidence = True, 0.7
            details = f"Vulnerable pattern for {name} ({control_id}) removed, but no recognized safe pattern detected."
        else:
            fix_resolves, confidence = False, 0.4
            details = f"Unable to confirm fix for {name} ({control_id}): no safe pattern found."

        return FixVerificationResult(
            control_id=control_id,
            original_vulnerable=had_vuln_originally,
            fix_resolves=fix_resolves,
            verification_method="static_analysis",
            confidence=confidence,
            details=details,
        )

    def _verify_via_pattern(self, control_id: str, original_code: str, fixed_code: str) -> FixVerificationResult:
        """Fallback: compare original and fixed lines."""
        if not original_code or not fixed_code:
            return FixVerificationResult(
                control_id=control_id,
                original_vulnerable=False,
                fix_resolves=False,
                verification_method="pattern_match",
                confidence=0.2,
                details="Insufficient code to perform pattern comparison.",
                error="missing_code",
            )

        original_lines = {line.strip() for line in original_code.splitlines() if line.strip()}
        fixed_lines = {line.strip() for line in fixed_code.splitlines() if line.strip()}
        removed = original_lines - fixed_lines
        added = fixed_lines - original_lines

        if not removed and not added:
            return FixVerificationResult(
                control_id=control_id,
                original_vulnerable=True,
                fix_resolves=False,
                verification_method="pattern_match",
                confidence=0.3,
                details="Fixed code is identical to original code.",
            )
        return FixVerificationResult(
            control_id=control_id,
            original_vulnerable=True,
            fix_resolves=True,
            verification_method="pattern_match",
            confidence=0.5 if added else 0.4,
            details=(
                f"Pattern match: {len(removed)} line(s) removed, {len(added)} line(s) added. "
                "Semantic correctness cannot be confirmed."
            ),
        )

    @staticmethod
    def _control_name(control_id: str) -> str:
        control = get_control(control_id)
        return control.name if control else control_id

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.time() - start_time) * 1000)


__all__ = ["FixVerificationResult", "FixVerifier"]
