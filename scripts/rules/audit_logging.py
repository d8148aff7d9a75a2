"""
CC7.2 - Monitoring and audit logging.

Flags state-mutating calls with no logging call between the previous line
and the next two lines, authentication entry points that never log, and
logging calls that write credentials or payment data.
"""

import logging
import re

from controls import AUDIT_LOGGING, Language
from hybrid.models import Severity
from rules.base import Detector, is_comment, window

logger = logging.getLogger(__name__)

_MUTATION = re.compile(
    r"(\.save\(\)|\.delete\(\)|\.create\(|\.update\(|\.remove\(|\.destroy\(|"
    r"\.bulk_create\(|\.insert_one\(|\.delete_many\(|\.update_one\(|"
    r"\bUPDATE\s+\w+\s+SET\b|\bINSERT\s+INTO\b|\bDELETE\s+FROM\b)"
)
_LOGGING_CALL = re.compile(
    r"(logger\.|logging\.|\blog\(|\blog\.\w+\(|console\.(log|info|warn|error)|print\(|audit)",
    re.IGNORECASE,
)
_LOG_STATEMENT = re.compile(r"\b(logger|logging|print|console|log)\s*(\.\w+)?\s*\(")
_SENSITIVE_TERMS = (
    ("password", "password"),
    ("passwd", "password"),
    ("secret", "secret"),
    ("api_key", "API key"),
    ("apikey", "API key"),
    ("token", "token"),
    ("ssn", "SSN"),
    ("card_number", "credit card"),
    ("credit_card", "credit card"),
    ("cvv", "CVV"),
)
_PY_AUTH_ENTRY = re.compile(
    r"^\s*(?:async\s+)?def\s+(login|authenticate|verify_token|verify_password|validate_credentials)\b"
)
_JS_AUTH_ENTRY = re.compile(
    r"^\s*(?:export\s+)?(?:async\s+)?function\s+(login|authenticate|verifyToken|verifyPassword)\b"
)


class AuditLoggingDetector(Detector):
    control_id = AUDIT_LOGGING
    name = "audit_logging"

    def _detect(self, lines, file_path, family):
        auth_entry = _PY_AUTH_ENTRY if family is Language.PYTHON else _JS_AUTH_ENTRY
        violations = []
        for idx, line in enumerate(lines):
            if is_comment(line):
                continue

            leaked = self._sensitive_term(line)
            if leaked:
                violations.append(
                    self.violation(
                        Severity.CRITICAL,
                        f"Sensitive data ({leaked}) in logging statement",
                        file_path,
                        idx + 1,
                        line,
                    )
                )
                continue

            if _MUTATION.search(line) and not _LOGGING_CALL.search(window(lines, idx - 1, idx + 3)):
                violations.append(
                    self.violation(
                        Severity.MEDIUM,
                        "Sensitive operation without audit logging",
                        file_path,
                        idx + 1,
                        line,
                    )
                )
            elif auth_entry.match(line) and not _LOGGING_CALL.search(window(lines, idx + 1, idx + 4)):
                violations.append(
                    self.violation(
                        Severity.HIGH,
                        "Authentication event without logging",
                        file_path,
                        idx + 1,
                        line,
                    )
                )
        return violations

    @staticmethod
    def _sensitive_term(line: str):
        if not _LOG_STATEMENT.search(line):
            return None
        lowered = line.lower()
        for term, label in _SENSITIVE_TERMS:
            if term in lowered:
                return label
        return None


__all__ = ["AuditLoggingDetector"]
