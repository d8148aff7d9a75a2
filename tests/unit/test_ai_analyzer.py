#!/usr/bin/env python3
"""
Tests for AI analysis of one file: prompt building, response parsing and
the classified retry policy.
"""

import json
import sys
from pathlib import Path

import pytest

# Ensure scripts directory is on the path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "scripts"))

from controls import ALL_CONTROL_IDS, Framework
from exceptions import AnalyzerError, ValidationError
from hybrid.ai_analyzer import (
    AIAnalyzer,
    build_analysis_prompt,
    build_system_prompt,
    parse_response,
)
from hybrid.models import DetectionMethod, Severity, TokenUsage, Violation

CODE = "def admin(request):\n    return data\n"


class StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class ScriptedService:
    """Reasoning service that replays a list of replies or exceptions."""

    def __init__(self, *replies, usage=None):
        self.replies = list(replies)
        self.usage = usage or TokenUsage(input_tokens=100, output_tokens=10, cost_usd=0.01)
        self.calls = []

    def __call__(self, prompt, system=""):
        self.calls.append((prompt, system))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply, self.usage


def finding(**overrides):
    item = {
        "control_id": "CC6.1",
        "severity": "high",
        "description": "Admin view is reachable anonymously",
        "line_number": 1,
        "code_snippet": "def admin(request):",
        "confidence_score": 85,
        "reasoning": "No decorator guards this view",
    }
    item.update(overrides)
    return item


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


class TestPrompts:
    def test_system_prompt_lists_enabled_controls_only(self):
        prompt = build_system_prompt(["CC6.1"])
        assert "CC6.1" in prompt
        assert "## CC6.7" not in prompt
        assert "JSON array" in prompt

    def test_analysis_prompt_numbers_lines_and_lists_regex_hits(self):
        regex = Violation("CC6.1", Severity.HIGH, "View missing auth", "app.py", 1, "def admin(request):")
        prompt = build_analysis_prompt(CODE, "app.py", Framework.DJANGO, [regex])
        assert "1: def admin(request):" in prompt
        assert "2:     return data" in prompt
        assert "**Framework**: django" in prompt
        assert "- Line 1: View missing auth (CC6.1)" in prompt

    def test_analysis_prompt_without_regex_hits(self):
        prompt = build_analysis_prompt(CODE, "app.py", Framework.FLASK)
        assert "Regex Pattern Detections" not in prompt


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseResponse:
    def test_plain_array(self):
        violations = parse_response(json.dumps([finding()]), "app.py", CODE, ALL_CONTROL_IDS)
        assert len(violations) == 1
        v = violations[0]
        assert v.detection_method == DetectionMethod.LLM
        assert v.severity == Severity.HIGH
        assert v.confidence_score == 85
        assert v.llm_reasoning == "No decorator guards this view"
        assert v.file_path == "app.py"

    def test_code_fence_and_prose(self):
        text = "Here you go:\n```json\n" + json.dumps([finding()]) + "\n```"
        assert len(parse_response(text, "app.py", CODE, ALL_CONTROL_IDS)) == 1

    def test_empty_array(self):
        assert parse_response("[]", "app.py", CODE, ALL_CONTROL_IDS) == []

    def test_wrapped_object(self):
        text = json.dumps({"violations": [finding()]})
        assert len(parse_response(text, "app.py", CODE, ALL_CONTROL_IDS)) == 1

    def test_unknown_or_disabled_controls_dropped(self):
        text = json.dumps([finding(control_id="CC9.9"), finding(control_id="CC6.7")])
        assert parse_response(text, "app.py", CODE, ["CC6.1"]) == []

    def test_lenient_fields(self):
        text = json.dumps([
            finding(severity="urgent", line_number=99, confidence_score=400, code_snippet="", description="")
        ])
        v = parse_response(text, "app.py", CODE, ALL_CONTROL_IDS)[0]
        assert v.severity == Severity.MEDIUM
        assert v.line_number == 2
        assert v.confidence_score == 100
        assert v.code_snippet == "return data"
        assert v.description == "Logical Access Controls violation"

    @pytest.mark.parametrize("text", ["", "not json at all", '{"answer": 42}'])
    def test_malformed_raises_validation_error(self, text):
        with pytest.raises(ValidationError):
            parse_response(text, "app.py", CODE, ALL_CONTROL_IDS)


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class TestAIAnalyzer:
    def test_success_first_try(self):
        service = ScriptedService(json.dumps([finding()]))
        analyzer = AIAnalyzer(service, sleep=lambda s: None)
        result = analyzer.analyze(CODE, "app.py", "django")
        assert result.attempts == 1
        assert len(result.violations) == 1
        assert result.usage.cost_usd == 0.01
        assert service.calls[0][1] == analyzer.system_prompt

    def test_retries_malformed_reply_and_sums_usage(self):
        service = ScriptedService("garbage", json.dumps([finding()]))
        sleeps = []
        result = AIAnalyzer(service, sleep=sleeps.append).analyze(CODE, "app.py")
        assert result.attempts == 2
        assert result.usage.input_tokens == 200
        assert len(sleeps) == 1

    def test_retries_rate_limit(self):
        service = ScriptedService(StatusError("slow down", 429), "[]")
        result = AIAnalyzer(service, max_wait=0.0, sleep=lambda s: None).analyze(CODE, "app.py")
        assert result.violations == []
        assert result.attempts == 2

    def test_auth_error_not_retried(self):
        service = ScriptedService(StatusError("bad key", 401), "[]")
        with pytest.raises(AnalyzerError) as exc_info:
            AIAnalyzer(service, sleep=lambda s: None).analyze(CODE, "app.py")
        assert len(service.calls) == 1
        assert exc_info.value.file_path == "app.py"
        assert exc_info.value.usage == TokenUsage()

    def test_exhausted_retries_carry_usage(self):
        service = ScriptedService("garbage", "garbage", "garbage")
        with pytest.raises(AnalyzerError) as exc_info:
            AIAnalyzer(service, max_retries=2, sleep=lambda s: None).analyze(CODE, "app.py")
        assert len(service.calls) == 3
        assert exc_info.value.usage.input_tokens == 300

    def test_no_retries(self):
        service = ScriptedService("garbage", "[]")
        with pytest.raises(AnalyzerError):
            AIAnalyzer(service, max_retries=0, sleep=lambda s: None).analyze(CODE, "app.py")
        assert len(service.calls) == 1

    def test_enabled_controls_filter_results(self):
        service = ScriptedService(json.dumps([finding(), finding(control_id="CC6.7")]))
        analyzer = AIAnalyzer(service, enabled_controls=["CC6.7"], sleep=lambda s: None)
        result = analyzer.analyze(CODE, "app.py")
        assert [v.control_id for v in result.violations] == ["CC6.7"]

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            AIAnalyzer(ScriptedService(), max_retries=-1)
