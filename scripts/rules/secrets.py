"""
CC6.7 - Secrets and transport encryption.

Flags string literals bound to credential-like names, recognizable provider
key prefixes, database URLs with inline credentials and plaintext HTTP to
non-local hosts. Environment lookups are never flagged and every snippet is
redacted before it leaves the detector.
"""

import logging
import re

from controls import SECRETS
from hybrid.models import Severity
from rules.base import Detector, is_comment

logger = logging.getLogger(__name__)

_CREDENTIAL_ASSIGNMENT = re.compile(
    r"""(?i)\b([\w.]*?(password|passwd|pwd|secret|api_?key|apikey|token|passphrase|"""
    r"""private_?key|client_?secret)\w*)['"]?\s*(?::|=)(?!=)\s*(['"])([^'"]+)\3"""
)
_ENV_LOOKUP = re.compile(r"(os\.getenv|os\.environ|process\.env|ENV\[|import\.meta\.env|config\()")
_PLACEHOLDER = re.compile(
    r"(?i)^(your_|<|\$\{|\{\{|changeme|change_?this|put_?your|placeholder|xxx+|\*+$)"
)

_PROVIDER_KEYS = (
    (re.compile(r"AKIA[0-9A-Z]{16}"), Severity.CRITICAL, "Hardcoded AWS Access Key ID"),
    (re.compile(r"\b(ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9_]{20,}"), Severity.CRITICAL, "Hardcoded GitHub token"),
    (re.compile(r"\b(sk|rk|pk)_live_[0-9A-Za-z]{10,}"), Severity.CRITICAL, "Hardcoded live payment API key"),
    (re.compile(r"\bsk_test_[0-9A-Za-z]{10,}"), Severity.HIGH, "Hardcoded test payment API key"),
    (re.compile(r"\bxox[baprs]-[0-9A-Za-z-]{10,}"), Severity.CRITICAL, "Hardcoded Slack token"),
    (re.compile(r"-----BEGIN (RSA |EC |OPENSSH )?PRIVATE KEY-----"), Severity.CRITICAL, "Embedded private key"),
)

_DATABASE_URL = re.compile(
    r"""(postgresql|postgres|mysql|mongodb(?:\+srv)?|oracle|mssql|redis)://(\w+):([^@\s'"]+)@"""
)
_PLAIN_HTTP = re.compile(r"""http://([^/\s'"`:]+)""")
_LOCAL_HOSTS = re.compile(
    r"^(localhost|127\.\d+\.\d+\.\d+|0\.0\.0\.0|10\.\d+\.\d+\.\d+|192\.168\.\d+\.\d+|"
    r"172\.(1[6-9]|2\d|3[01])\.\d+\.\d+|\[::1\]|[\w-]+\.local|example\.(com|org))$"
)

_REDACTIONS = (
    (re.compile(r"(AKIA)[0-9A-Z]{16}"), r"\1****************"),
    (re.compile(r"\b((?:ghp|gho|ghu|ghs|ghr)_)[A-Za-z0-9_]{20,}"), r"\1***"),
    (re.compile(r"\b((?:sk|rk|pk)_(?:live|test)_)[0-9A-Za-z]{10,}"), r"\1***"),
    (re.compile(r"\b(xox[baprs]-)[0-9A-Za-z-]{10,}"), r"\1***"),
    (re.compile(r"(://\w+:)[^@\s'\"]+(@)"), r"\1***\2"),
)


def redact(line: str) -> str:
    """Mask secret material in a source line."""
    result = line
    for pattern, replacement in _REDACTIONS:
        result = pattern.sub(replacement, result)

    def _mask(match):
        quote = match.group(3)
        return match.group(0)[: match.start(4) - match.start(0)] + "***" + quote

    return _CREDENTIAL_ASSIGNMENT.sub(_mask, result)


class SecretsDetector(Detector):
    """Pattern families share one rule set; the literal syntax is common."""

    control_id = SECRETS
    name = "secrets"

    def _detect(self, lines, file_path, family):
        violations = []
        for idx, line in enumerate(lines):
            if is_comment(line):
                continue
            finding = self._classify(line)
            if finding:
                severity, description = finding
                violations.append(
                    self.violation(severity, description, file_path, idx + 1, redact(line))
                )
        return violations

    def _classify(self, line: str):
        """Return ``(severity, description)`` for the strongest hit on a line."""
        for pattern, severity, description in _PROVIDER_KEYS:
            if pattern.search(line):
                return severity, description

        url = _DATABASE_URL.search(line)
        if url and not _ENV_LOOKUP.search(line) and not url.group(3).startswith("$"):
            return Severity.CRITICAL, "Database credentials in connection string"

        if not _ENV_LOOKUP.search(line):
            for match in _CREDENTIAL_ASSIGNMENT.finditer(line):
                value = match.group(4)
                if _PLACEHOLDER.match(value):
                    continue
                return Severity.CRITICAL, "Hardcoded password or secret in code"

        for match in _PLAIN_HTTP.finditer(line):
            if not _LOCAL_HOSTS.match(match.group(1)):
                return Severity.HIGH, "Insecure HTTP connection (use HTTPS)"
        return None


__all__ = ["SecretsDetector", "redact"]
