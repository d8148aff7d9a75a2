"""
Concrete fix stages.

Each stage wraps one step of the fix pipeline:

- ``ParseStage``          -- validate input, infer framework, locate the line
- ``AnalyzeStage``        -- re-run the rule engine as a consistency check
- ``GenerateFixesStage``  -- per-control code transformation, optionally AI-generated
- ``ValidateStage``       -- usable-fix check, trust level, verification

Generated fixes are textual and line oriented. They replace a verbatim region
of the source so the patch applicator can match it exactly.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from controls import (
    ACCESS_CONTROL,
    AUDIT_LOGGING,
    RESILIENCE,
    SECRETS,
    Framework,
    Language,
    language_for_path,
)
from exceptions import AnalyzerError
from fix_verifier import FixVerifier
from hybrid.models import TrustLevel
from rules.base import decorators_above
from rules.engine import RuleEngine

from .ai_fix_generator import AIFixGenerator
from .base_stage import BaseStage
from .protocol import FixPipelineState, FixStep

logger = logging.getLogger(__name__)

# Line distance within which a re-detection confirms the violation
CONFIRM_WINDOW = 3

_OPENERS = "([{"
_CLOSERS = ")]}"
_MAX_STATEMENT_LINES = 20

_PY_DEF = re.compile(r"^\s*(?:async\s+)?def\s+\w+\s*\(")
_FASTAPI_ROUTE = re.compile(r"@(?:app|router)\.(?:get|post|put|delete|patch)\s*\(")
_PY_DEF_SIGNATURE = re.compile(r"^(?P<head>.*?\()(?P<params>.*)(?P<tail>\)\s*(?:->[^:]*)?:\s*)$")
_HARDCODED_USER_ID = re.compile(r"(?i)\b(user_?id|account_?id)(\s*[:=]\s*)(\d+|['\"]\d+['\"])")
_EXPRESS_ROUTE_HEAD = re.compile(
    r"""\b(?:router|app)\.(?:get|post|put|delete|patch)\s*\(\s*(['"`])[^'"`]*\1\s*,\s*"""
)
_JS_FUNCTION = re.compile(r"\bfunction\b")
_JS_HANDLER_OPEN = re.compile(r"(?:\bfunction\b[^(]*\([^)]*\)\s*(?::[^{]*)?|=>\s*)\{")
_JS_ARROW_PARAMS = re.compile(r"(?:\([^()]*\)|\b\w+)\s*=>")
_MAX_HANDLER_LOOKBACK = 30

_CREDENTIAL_LITERAL = re.compile(
    r"""(?i)\b([\w.]*?(?:password|passwd|pwd|secret|api_?key|apikey|token|passphrase|"""
    r"""private_?key|client_?secret)\w*)['"]?\s*(?::|=)(?!=)\s*(['"])([^'"]+)\2"""
)
_ASSIGNMENT_TARGET = re.compile(
    r"^\s*(?:export\s+)?(?:const\s+|let\s+|var\s+)?([A-Za-z_][\w.]*)\s*(?::\s*[\w\[\]]+\s*)?=(?!=)"
)
_QUOTED = re.compile(r"""(['"`])((?:(?!\1).)+)\1""")
_SECRET_VALUE = re.compile(
    r"(AKIA[0-9A-Z]{16}|gh[pousr]_\w{20,}|(?:sk|rk|pk)_(?:live|test)_\w{10,}|xox[baprs]-[\w-]{10,}|"
    r"://\w+:[^@\s]+@|PRIVATE KEY)"
)
_ENV_NAME_BY_DESCRIPTION = (
    ("aws", "AWS_ACCESS_KEY_ID"),
    ("github", "GITHUB_TOKEN"),
    ("payment", "PAYMENT_API_KEY"),
    ("slack", "SLACK_TOKEN"),
    ("database", "DATABASE_URL"),
    ("private key", "PRIVATE_KEY"),
)

_SENSITIVE_NAME = r"[\w.]*(?:password|passwd|secret|api_?key|apikey|token|ssn|card_number|credit_card|cvv)\w*"
_LOG_REDACTION = re.compile(
    r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|`(?:[^`\\]|\\.)*`)|\b(""" + _SENSITIVE_NAME + r""")\b""",
    re.IGNORECASE,
)
_INTERPOLATION = re.compile(r"\$?\{[^{}]*?" + _SENSITIVE_NAME + r"[^{}]*\}", re.IGNORECASE)

_PY_TIMEOUT_CALL = re.compile(r"\b(?:requests|httpx)\.(?:get|post|put|delete|patch|head|request)\s*\(")
_JS_FETCH_CALL = re.compile(r"\bfetch\s*\(")
_JS_AXIOS_CALL = re.compile(r"\baxios(?:\.(?:get|delete|head))?\s*\(")

DEFAULT_TIMEOUT_SECONDS = 10


# ---------------------------------------------------------------------------
# Source helpers
# ---------------------------------------------------------------------------


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip(" \t"))]


def _bracket_delta(line: str, comment: str = "#") -> int:
    """Net bracket depth change of a line, ignoring quoted text and comments."""
    depth = 0
    quote = None
    escaped = False
    for i, char in enumerate(line):
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "'\"`":
            quote = char
        elif line.startswith(comment, i):
            break
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth -= 1
    return depth


def statement_bounds(lines: List[str], idx: int, comment: str = "#") -> Tuple[int, int]:
    """Return ``(start, end)`` line indexes of the statement containing ``idx``."""
    depth = 0
    start = 0
    for j in range(idx + 1):
        if depth <= 0:
            start = j
            depth = 0
        depth += _bracket_delta(lines[j], comment)

    end = idx
    while depth > 0 and end + 1 < len(lines) and end - start < _MAX_STATEMENT_LINES:
        end += 1
        depth += _bracket_delta(lines[end], comment)
    return start, end


def _python_block_end(lines: List[str], header_end: int, header_indent: int) -> int:
    """Last line of the indented block following a compound statement header."""
    end = header_end
    for j in range(header_end + 1, len(lines)):
        if not lines[j].strip():
            continue
        if len(_indent_of(lines[j])) <= header_indent:
            break
        end = j
    return end


def _matching_paren(text: str, open_idx: int) -> int:
    depth = 0
    quote = None
    for i in range(open_idx, len(text)):
        char = text[i]
        if quote:
            if char == quote and text[i - 1] != "\\":
                quote = None
            continue
        if char in "'\"`":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _top_level_args(args: str) -> int:
    """Number of top-level comma separated arguments in ``args``."""
    if not args.strip():
        return 0
    count = 1
    depth = 0
    quote = None
    for char in args:
        if quote:
            if char == quote:
                quote = None
            continue
        if char in "'\"`":
            quote = char
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth -= 1
        elif char == "," and depth == 0:
            count += 1
    return count


def _comment_token(language: Optional[Language]) -> str:
    return "//" if language is Language.JAVASCRIPT else "#"


def _env_name(name: str) -> str:
    name = name.rsplit(".", 1)[-1]
    name = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name)
    return re.sub(r"\W+", "_", name).strip("_").upper() or "SECRET_VALUE"


def _env_lookup(name: str, language: Language) -> str:
    if language is Language.JAVASCRIPT:
        return f"process.env.{name}"
    return f'os.getenv("{name}")'


def _summary(text: str, limit: int = 60) -> str:
    summary = " ".join(text.split())
    summary = summary.replace("\\", "").replace('"', "'")
    return summary if len(summary) <= limit else summary[: limit - 3] + "..."


def _reindent(code: str, indent: str) -> str:
    """Restore the region's base indentation when a reply drops it."""
    if not indent or code.startswith(indent):
        return code
    return "\n".join(indent + l if l.strip() else l for l in code.splitlines())


# ---------------------------------------------------------------------------
# Per-control generators
# ---------------------------------------------------------------------------
#
# Each generator returns (original_code, fixed_code, explanation) or records
# an error on the state and returns None.

FixOutput = Optional[Tuple[str, str, str]]


def _enclosing_def(lines: List[str], idx: int) -> Optional[int]:
    """Nearest ``def`` whose body contains line ``idx``."""
    indent = len(_indent_of(lines[idx]))
    for j in range(idx - 1, -1, -1):
        if indent == 0:
            break
        if not lines[j].strip():
            continue
        j_indent = len(_indent_of(lines[j]))
        if j_indent < indent:
            if _PY_DEF.match(lines[j]):
                return j
            indent = j_indent
    return None


def _python_def_for(lines: List[str], idx: int) -> Optional[int]:
    if _PY_DEF.match(lines[idx]):
        return idx
    if not lines[idx].lstrip().startswith("@"):
        enclosing = _enclosing_def(lines, idx)
        if enclosing is not None:
            return enclosing
    return next((j for j in range(idx, min(idx + 7, len(lines))) if _PY_DEF.match(lines[j])), None)


def _js_handler_for(lines: List[str], idx: int) -> Optional[int]:
    """The flagged line when it opens a block, else the nearest handler above it."""
    if lines[idx].rstrip().endswith("{") or _JS_HANDLER_OPEN.search(lines[idx]):
        return idx
    for j in range(idx - 1, max(idx - _MAX_HANDLER_LOOKBACK, -1), -1):
        if _JS_HANDLER_OPEN.search(lines[j]):
            return j
    return None


def _make_async(line: str) -> str:
    if re.search(r"\basync\b", line):
        return line
    if _JS_FUNCTION.search(line):
        return _JS_FUNCTION.sub("async function", line, count=1)
    return _JS_ARROW_PARAMS.sub(lambda m: "async " + m.group(0), line, count=1)


def _fix_access_control(state: FixPipelineState, lines: List[str], idx: int) -> FixOutput:
    line = lines[idx]
    language = state.language

    user_id = _HARDCODED_USER_ID.search(line)
    if user_id and not _PY_DEF.match(line) and not _JS_FUNCTION.search(line):
        identity = "req.user.id" if language is Language.JAVASCRIPT else "request.user.id"
        fixed = _HARDCODED_USER_ID.sub(lambda m: m.group(1) + m.group(2) + identity, line, count=1)
        return line, fixed, f"Replaced the hardcoded user id with the authenticated user ({identity})."

    if language is Language.JAVASCRIPT:
        route = _EXPRESS_ROUTE_HEAD.search(line)
        if route:
            fixed = line[: route.end()] + "authenticate, " + line[route.end():]
            return line, fixed, (
                "Added the authenticate middleware to the route. "
                "Ensure it is imported from your auth module."
            )
        handler_idx = _js_handler_for(lines, idx)
        if handler_idx is None:
            state.errors.append("no route or handler definition found to protect")
            return None
        handler = lines[handler_idx]
        head = _make_async(handler)
        why = "Added a session check that rejects unauthenticated requests with 401."
        if handler.rstrip().endswith("{"):
            inner = _indent_of(handler) + "  "
            fixed = (
                f"{head}\n"
                f"{inner}const session = await getServerSession();\n"
                f"{inner}if (!session) {{\n"
                f"{inner}  return new Response('Unauthorized', {{ status: 401 }});\n"
                f"{inner}}}"
            )
            return handler, fixed, why
        # Handler body on the same line as its signature
        opening = _JS_HANDLER_OPEN.search(head)
        fixed = (
            head[: opening.end()]
            + " const session = await getServerSession();"
            + " if (!session) { return new Response('Unauthorized', { status: 401 }); }"
            + head[opening.end():]
        )
        return handler, fixed, why

    def_idx = _python_def_for(lines, idx)
    if def_idx is None:
        state.errors.append("no function definition found around the flagged line")
        return None
    def_line = lines[def_idx]
    indent = _indent_of(def_line)

    if any(_FASTAPI_ROUTE.search(d) for d in decorators_above(lines, def_idx)):
        signature = _PY_DEF_SIGNATURE.match(def_line)
        if signature:
            params = signature.group("params").strip()
            dependency = "current_user=Depends(get_current_user)"
            joined = f"{params}, {dependency}" if params else dependency
            fixed = signature.group("head") + joined + signature.group("tail")
            return def_line, fixed, (
                "Added an authenticated-user dependency to the endpoint. "
                "Ensure Depends and get_current_user are imported."
            )

    if state.violation.description.startswith("Admin"):
        decorator = "@user_passes_test(lambda u: u.is_staff)"
        why = "Restricted the operation to staff users with user_passes_test."
    else:
        decorator = "@login_required"
        why = "Added @login_required so unauthenticated requests are redirected to login."
    return def_line, f"{indent}{decorator}\n{def_line}", why + " Ensure the decorator is imported."


def _fix_secrets(state: FixPipelineState, lines: List[str], idx: int) -> FixOutput:
    line = lines[idx]
    language = state.language or Language.PYTHON
    description = state.violation.description.lower()

    if "http" in description and "http://" in line:
        return line, line.replace("http://", "https://"), "Switched the connection to HTTPS."

    credential = _CREDENTIAL_LITERAL.search(line)
    if credential:
        name = _env_name(credential.group(1))
        fixed = line[: credential.start(2)] + _env_lookup(name, language) + line[credential.end():]
        return line, fixed, f"Moved the secret to the {name} environment variable."

    literal = next((m for m in _QUOTED.finditer(line) if _SECRET_VALUE.search(m.group(2))), None)
    if literal is None:
        literal = next((m for m in _QUOTED.finditer(line) if len(m.group(2)) >= 8), None)
    if literal is None:
        state.errors.append("no secret literal found on the flagged line")
        return None

    target = _ASSIGNMENT_TARGET.match(line)
    if target:
        name = _env_name(target.group(1))
    else:
        name = next((env for key, env in _ENV_NAME_BY_DESCRIPTION if key in description), "SECRET_VALUE")
    fixed = line[: literal.start()] + _env_lookup(name, language) + line[literal.end():]
    return line, fixed, f"Moved the secret to the {name} environment variable and rotate the exposed value."


def _fix_audit_logging(state: FixPipelineState, lines: List[str], idx: int) -> FixOutput:
    language = state.language or Language.PYTHON
    description = state.violation.description

    if description.startswith("Sensitive data"):
        line = lines[idx]

        def _redact(match):
            if match.group(1):
                return _INTERPOLATION.sub("[REDACTED]", match.group(1))
            return '"[REDACTED]"'

        fixed = _LOG_REDACTION.sub(_redact, line)
        if fixed == line:
            state.errors.append("could not isolate the sensitive value in the logging call")
            return None
        return line, fixed, "Removed sensitive values from the log message."

    start, end = statement_bounds(lines, idx, _comment_token(language))
    original = "\n".join(lines[start:end + 1])
    header = lines[start]

    if description.startswith("Authentication"):
        base = len(_indent_of(header))
        body_indent = next(
            (_indent_of(l) for l in lines[end + 1:] if l.strip() and len(_indent_of(l)) > base),
            _indent_of(header) + ("  " if language is Language.JAVASCRIPT else "    "),
        )
        if language is Language.JAVASCRIPT:
            log_line = f'{body_indent}console.info("[audit] authentication attempt");'
        else:
            log_line = f'{body_indent}logger.info("Authentication attempt")'
        return original, f"{original}\n{log_line}", "Logged the authentication attempt for the audit trail."

    indent = _indent_of(header)
    summary = _summary(header)
    if language is Language.JAVASCRIPT:
        log_line = f'{indent}console.info("[audit] {summary}");'
    else:
        log_line = f'{indent}logger.info("Audit: {summary}")'
    return original, f"{log_line}\n{original}", (
        "Logged the state change before it runs. Include the acting user in the message."
    )


def _fix_resilience(state: FixPipelineState, lines: List[str], idx: int) -> FixOutput:
    language = state.language or Language.PYTHON
    start, end = statement_bounds(lines, idx, _comment_token(language))
    header = lines[start]
    indent = _indent_of(header)

    if "timeout" in state.violation.description.lower():
        return _add_timeout(state, lines, start, end, language)

    if language is Language.PYTHON and lines[end].rstrip().endswith(":"):
        end = _python_block_end(lines, end, len(indent))
    original = "\n".join(lines[start:end + 1])

    if language is Language.JAVASCRIPT:
        body = "\n".join("  " + l if l.strip() else l for l in lines[start:end + 1])
        fixed = (
            f"{indent}try {{\n{body}\n"
            f"{indent}}} catch (err) {{\n"
            f"{indent}  console.error('External call failed', err);\n"
            f"{indent}  throw err;\n"
            f"{indent}}}"
        )
        return original, fixed, (
            "Wrapped the call in try/catch with a logged error path. "
            "Declarations inside the block may need to move above it."
        )

    body = "\n".join("    " + l if l.strip() else l for l in lines[start:end + 1])
    fixed = (
        f"{indent}try:\n{body}\n"
        f"{indent}except Exception as e:\n"
        f'{indent}    logger.error("External call failed: %s", e)\n'
        f"{indent}    raise"
    )
    return original, fixed, "Wrapped the call in try/except with a logged error path."


def _add_timeout(state, lines, start, end, language) -> FixOutput:
    original = "\n".join(lines[start:end + 1])
    if language is Language.JAVASCRIPT:
        call = _JS_FETCH_CALL.search(original) or _JS_AXIOS_CALL.search(original)
        option = (
            "{ signal: AbortSignal.timeout(10000) }"
            if call and "fetch" in call.group(0)
            else "{ timeout: 10000 }"
        )
    else:
        call = _PY_TIMEOUT_CALL.search(original)
        option = f"timeout={DEFAULT_TIMEOUT_SECONDS}"
    if call is None:
        state.errors.append("no request call found to add a timeout to")
        return None

    close = _matching_paren(original, call.end() - 1)
    if close < 0:
        state.errors.append("request call is not closed on the flagged statement")
        return None
    args = original[call.end():close]
    if language is Language.JAVASCRIPT and _top_level_args(args) != 1:
        state.errors.append("request already has an options argument; add the timeout manually")
        return None

    separator = ", " if args.strip() else ""
    fixed = original[:close].rstrip() + separator + option + original[close:]
    return original, fixed, "Added an explicit request timeout."


GENERATORS: Dict[str, Callable[[FixPipelineState, List[str], int], FixOutput]] = {
    ACCESS_CONTROL: _fix_access_control,
    SECRETS: _fix_secrets,
    AUDIT_LOGGING: _fix_audit_logging,
    RESILIENCE: _fix_resilience,
}


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


class ParseStage(BaseStage):
    name = "parse"
    step = FixStep.PARSE

    def _execute(self, state: FixPipelineState) -> Dict[str, Any]:
        if not state.code.strip():
            state.errors.append("code is empty")
        if not state.file_path.strip():
            state.errors.append("file path is empty")

        state.framework = Framework.from_name(state.framework)
        if state.framework is Framework.UNKNOWN:
            state.framework = Framework.default_for_path(state.file_path)
        state.language = state.framework.language or language_for_path(state.file_path)
        if state.language is None:
            state.errors.append(f"unsupported language for {state.file_path or 'unnamed file'}")

        state.target_line = self._locate(state)
        return {"framework": state.framework.value, "target_line": state.target_line}

    @staticmethod
    def _locate(state: FixPipelineState) -> Optional[int]:
        lines = state.lines
        if not lines:
            return None
        idx = state.violation.line_number - 1
        if 0 <= idx < len(lines) and lines[idx].strip():
            return idx

        snippet = state.violation.code_snippet.strip()
        if snippet and "***" not in snippet:
            for j, line in enumerate(lines):
                if snippet in line or (line.strip() and line.strip() in snippet):
                    return j
        if len(lines) == 1:
            return 0
        state.errors.append(f"line {state.violation.line_number} not found in the supplied code")
        return None


class AnalyzeStage(BaseStage):
    """Confirms the control near the flagged line. Never blocks the fix."""

    name = "analyze"
    step = FixStep.ANALYZE

    def __init__(self, rule_engine_factory: Callable[[List[str]], RuleEngine] = RuleEngine):
        self._rule_engine_factory = rule_engine_factory

    def _execute(self, state: FixPipelineState) -> Dict[str, Any]:
        if state.target_line is None or not state.code:
            state.confirmed = False
            return {"confirmed": False}

        violation = state.violation
        found = self._rule_engine_factory([violation.control_id]).analyze(
            state.code, state.file_path, state.framework
        )
        target = state.target_line + 1
        state.confirmed = any(
            v.control_id == violation.control_id and abs(v.line_number - target) <= CONFIRM_WINDOW
            for v in found
        )
        if not state.confirmed:
            state.notes.append(
                f"Pattern rules did not re-detect {violation.control_id} near line {target}"
            )
        logger.debug("Consistency check for %s: confirmed=%s", violation.id, state.confirmed)
        return {"confirmed": state.confirmed, "detections": len(found)}


class GenerateFixesStage(BaseStage):
    """Template fix per control, optionally replaced by an AI-generated one.

    With an ``ai_generator`` the reasoning service rewrites the region the
    template would replace (or the flagged statement when no template
    applies). Any failure or empty reply keeps the template result.
    """

    name = "generate_fixes"
    step = FixStep.GENERATE_FIXES

    def __init__(self, ai_generator: Optional[AIFixGenerator] = None):
        self.ai_generator = ai_generator

    def _execute(self, state: FixPipelineState) -> Dict[str, Any]:
        if state.target_line is None:
            state.errors.append("no target line to fix")
            return {"generated": False}

        generator = GENERATORS.get(state.violation.control_id)
        if generator is None:
            state.errors.append(f"no fix generator for control {state.violation.control_id}")
            return {"generated": False}

        errors_before = len(state.errors)
        output = generator(state, state.lines, state.target_line)

        if self.ai_generator is not None:
            region = output[0] if output else self._flagged_statement(state)
            generated = self._generate_with_ai(state, region)
            if generated is not None:
                template_errors = state.errors[errors_before:]
                del state.errors[errors_before:]
                state.notes.extend(f"Template fix unavailable: {e}" for e in template_errors)
                state.original_code, state.fixed_code, state.explanation = generated
                return {"generated": True, "source": "ai"}

        if output is None:
            return {"generated": False}
        state.original_code, state.fixed_code, state.explanation = output
        return {"generated": True, "source": "template"}

    @staticmethod
    def _flagged_statement(state: FixPipelineState) -> str:
        start, end = statement_bounds(state.lines, state.target_line, _comment_token(state.language))
        return "\n".join(state.lines[start:end + 1])

    def _generate_with_ai(self, state: FixPipelineState, region: str) -> FixOutput:
        violation = state.violation
        try:
            result = self.ai_generator.generate(
                violation.control_id, violation.description, region, state.framework.value
            )
        except AnalyzerError as e:
            logger.warning("AI fix generation for %s failed: %s", violation.id, e)
            state.notes.append(f"AI fix generation failed: {e}")
            return None

        if result is None:
            state.notes.append("AI fix generation returned no code")
            return None
        fixed = _reindent(result.fixed_code, _indent_of(region))
        if fixed.strip() == region.strip():
            state.notes.append("AI fix generation returned the original code")
            return None

        usage = result.usage
        state.notes.append(
            f"AI fix generation used {usage.input_tokens + usage.output_tokens} tokens "
            f"(${usage.cost_usd:.4f})"
        )
        return region, fixed, f"AI-generated fix for {violation.control_id}: {violation.description}"


class ValidateStage(BaseStage):
    """Usable-fix check. Trust is ``review`` at best; nothing is auto-applied."""

    name = "validate"
    step = FixStep.VALIDATE

    def __init__(self, verifier: Optional[FixVerifier] = None):
        self.verifier = verifier or FixVerifier()

    def _execute(self, state: FixPipelineState) -> Dict[str, Any]:
        if not state.fixed_code.strip():
            state.trust_level = TrustLevel.MANUAL
            state.errors.append("fix generation produced no code")
            return {"valid": False}
        if state.fixed_code == state.original_code:
            state.trust_level = TrustLevel.MANUAL
            state.errors.append("fixed code is identical to the original")
            return {"valid": False}

        state.trust_level = TrustLevel.REVIEW
        result = self.verifier.verify_fix(
            state.violation.control_id, state.original_code, state.fixed_code
        )
        state.notes.append(result.details)
        return {"valid": True, "verified": result.fix_resolves, "confidence": result.confidence}


def build_default_stages(
    verifier: Optional[FixVerifier] = None,
    ai_generator: Optional[AIFixGenerator] = None,
) -> List[BaseStage]:
    """Build the standard stage list in step order."""
    return [ParseStage(), AnalyzeStage(), GenerateFixesStage(ai_generator), ValidateStage(verifier)]


__all__ = [
    "AnalyzeStage",
    "GENERATORS",
    "GenerateFixesStage",
    "ParseStage",
    "ValidateStage",
    "build_default_stages",
    "statement_bounds",
]
