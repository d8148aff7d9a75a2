"""
CC6.1 - Logical access controls.

Flags request handlers that are reachable without an authentication
decorator, middleware or inline identity check, admin-style operations
without a permission check and hard-coded user identifiers.
"""

import logging
import re

from controls import ACCESS_CONTROL, Language
from hybrid.models import Severity
from rules.base import Detector, decorators_above, is_comment, is_test_file, window

logger = logging.getLogger(__name__)

# Python ---------------------------------------------------------------------

_PY_VIEW = re.compile(r"^\s*(?:async\s+)?def\s+\w+\s*\(\s*(?:self\s*,\s*)?request\b")
_PY_AUTH_DECORATOR = re.compile(
    r"@(?:\w+\.)?(login_required|permission_required|user_passes_test|staff_member_required|"
    r"require_permission|auth_required|requires_auth|jwt_required|method_decorator\(\s*login_required)"
)
_PY_INLINE_AUTH = re.compile(
    r"(is_authenticated|current_user|if not request\.user|has_perm|check_permission)"
)
_PY_ADMIN_OP = re.compile(
    r"^\s*(?:async\s+)?def\s+\w*(delete|remove|ban|suspend|promote|demote|admin|moderate|"
    r"grant|revoke|archive|purge)\w*\s*\("
)
_PY_PERMISSION = re.compile(
    r"(is_staff|is_superuser|is_admin|permission|role|authorize|check_permission|require_role)"
)
_FLASK_ROUTE = re.compile(r"""@(?:app|blueprint|bp|\w+_bp)\s*\.\s*route\s*\(\s*['"]([^'"]*)['"]""")
_FASTAPI_ROUTE = re.compile(
    r"""@(?:app|router)\.(get|post|put|delete|patch)\s*\(\s*['"]([^'"]*)['"]"""
)
_FASTAPI_DEPENDS = re.compile(r"Depends\(")
_FLASK_INLINE_AUTH = re.compile(
    r"""(request\.headers\.get\s*\(\s*['"](Authorization|auth|token)['"]|verify_jwt|"""
    r"""verify_token|check_auth|is_authenticated|current_user)"""
)

# JavaScript -----------------------------------------------------------------

_EXPRESS_ROUTE = re.compile(
    r"""\b(?:router|app)\.(get|post|put|delete|patch)\s*\(\s*['"`]([^'"`]*)['"`]\s*,\s*"""
    r"""(?:async\s+)?(?:\(\s*req\b|function\s*\w*\s*\(\s*req\b|req\s*=>)"""
)
_JS_AUTH_MIDDLEWARE = re.compile(
    r"(authMiddleware|isAuthenticated|ensureAuthenticated|verifyToken|requireAuth|"
    r"authenticate|passport\.authenticate|auth\()"
)
_NEXT_HANDLER = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:async\s+)?function\s+(GET|POST|PUT|DELETE|PATCH|handler)\s*\(\s*req\b"
)
_NEXT_SESSION = re.compile(
    r"(getServerSession|getSession|getToken|auth\(\)|withAuth|currentUser|requireAuth)"
)

# Shared ---------------------------------------------------------------------

_PUBLIC_ROUTE = re.compile(
    r"""['"`]/(login|logout|register|signup|public|health|healthz|ping|static|favicon)"""
    r"""|['"`]/['"`]"""
)
_HARDCODED_USER_ID = re.compile(
    r"""(?i)\b(user_?id|account_?id)\s*[:=]\s*(\d+|['"]\d+['"])"""
)


class AccessControlDetector(Detector):
    control_id = ACCESS_CONTROL
    name = "access_control"

    def _detect(self, lines, file_path, family):
        if family is Language.PYTHON:
            found = (
                self._django_views(lines, file_path)
                + self._admin_operations(lines, file_path)
                + self._flask_routes(lines, file_path)
                + self._fastapi_routes(lines, file_path)
            )
        elif family is Language.JAVASCRIPT:
            found = self._express_routes(lines, file_path) + self._next_handlers(lines, file_path)
        else:
            found = []
        return found + self._hardcoded_user_ids(lines, file_path)

    def _django_views(self, lines, file_path):
        violations = []
        for idx, line in enumerate(lines):
            if not _PY_VIEW.match(line):
                continue
            if any(_PY_AUTH_DECORATOR.search(d) for d in decorators_above(lines, idx)):
                continue
            if _PY_INLINE_AUTH.search(window(lines, idx, idx + 5)):
                continue
            violations.append(
                self.violation(
                    Severity.HIGH,
                    "View function missing authentication decorator or check",
                    file_path,
                    idx + 1,
                    line,
                )
            )
        return violations

    def _admin_operations(self, lines, file_path):
        if is_test_file(file_path):
            return []
        violations = []
        for idx, line in enumerate(lines):
            if not _PY_ADMIN_OP.match(line):
                continue
            context = "\n".join(decorators_above(lines, idx)) + window(lines, idx, idx + 10)
            if _PY_PERMISSION.search(context):
                continue
            violations.append(
                self.violation(
                    Severity.CRITICAL,
                    "Admin/sensitive operation missing permission check",
                    file_path,
                    idx + 1,
                    line,
                )
            )
        return violations

    def _flask_routes(self, lines, file_path):
        violations = []
        for idx, line in enumerate(lines):
            match = _FLASK_ROUTE.search(line)
            if not match or _PUBLIC_ROUTE.search(line):
                continue
            # Decorators may sit above or below the route decorator
            stacked = decorators_above(lines, idx) + [
                l.strip() for l in lines[idx + 1:idx + 6] if l.strip().startswith("@")
            ]
            if any(_PY_AUTH_DECORATOR.search(d) for d in stacked):
                continue
            if _FLASK_INLINE_AUTH.search(window(lines, idx, idx + 10)):
                continue
            mutating = any(verb in line for verb in ("POST", "PUT", "DELETE"))
            violations.append(
                self.violation(
                    Severity.CRITICAL if mutating else Severity.HIGH,
                    f"Flask route '{match.group(1)}' missing authentication decorator or check",
                    file_path,
                    idx + 1,
                    line,
                )
            )
        return violations

    def _fastapi_routes(self, lines, file_path):
        violations = []
        for idx, line in enumerate(lines):
            match = _FASTAPI_ROUTE.search(line)
            if not match or _PUBLIC_ROUTE.search(line):
                continue
            if _FASTAPI_DEPENDS.search(window(lines, idx, idx + 4)):
                continue
            violations.append(
                self.violation(
                    Severity.HIGH,
                    f"FastAPI endpoint '{match.group(2)}' missing Depends() authentication",
                    file_path,
                    idx + 1,
                    line,
                )
            )
        return violations

    def _express_routes(self, lines, file_path):
        violations = []
        for idx, line in enumerate(lines):
            if is_comment(line):
                continue
            match = _EXPRESS_ROUTE.search(line)
            if not match or _PUBLIC_ROUTE.search(line):
                continue
            # Middleware chained on the previous or next line (router.use / multi-line)
            if _JS_AUTH_MIDDLEWARE.search(window(lines, idx - 1, idx + 2)):
                continue
            verb = match.group(1)
            violations.append(
                self.violation(
                    Severity.CRITICAL if verb == "delete" else Severity.HIGH,
                    "Express route missing authentication middleware",
                    file_path,
                    idx + 1,
                    line,
                )
            )
        return violations

    def _next_handlers(self, lines, file_path):
        violations = []
        for idx, line in enumerate(lines):
            if not _NEXT_HANDLER.match(line):
                continue
            if _NEXT_SESSION.search(window(lines, idx, idx + 10)):
                continue
            violations.append(
                self.violation(
                    Severity.HIGH,
                    "API route handler missing session or token check",
                    file_path,
                    idx + 1,
                    line,
                )
            )
        return violations

    def _hardcoded_user_ids(self, lines, file_path):
        if is_test_file(file_path):
            return []
        violations = []
        for idx, line in enumerate(lines):
            if is_comment(line) or "def " in line or "function " in line:
                continue
            if _HARDCODED_USER_ID.search(line):
                violations.append(
                    self.violation(
                        Severity.HIGH,
                        "Hardcoded user ID should use the authenticated user",
                        file_path,
                        idx + 1,
                        line,
                    )
                )
        return violations


__all__ = ["AccessControlDetector"]
