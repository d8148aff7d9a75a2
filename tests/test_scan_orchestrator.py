#!/usr/bin/env python3
"""
Tests for the scan orchestrator: phase order, cost gate, cancellation,
failure handling and the scan registry.
"""

import queue
import sys
import threading
from pathlib import Path

import pytest

# Ensure scripts directory is on the path
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from exceptions import AnalyzerError, ConfigurationError, RynError, StorageError
from hybrid.ai_analyzer import AnalysisResult
from hybrid.models import DetectionMethod, FileMeta, Severity, TokenUsage, Violation
from orchestrator import (
    CostGateEvent,
    RateLimiter,
    ScanOrchestrator,
    ScanProgressEvent,
    ScanRegistry,
    ScanState,
    ScanStateEvent,
)
from storage import ViolationStore

APP_CODE = 'def admin(request):\n    PASSWORD = "x"\n    return data\n'
WAIT = 10


class FakeAnalyzer:
    """Stands in for AIAnalyzer; every call costs ``cost_per_file``."""

    def __init__(self, findings=None, cost_per_file=0.0, fail=()):
        self.findings = findings or {}
        self.cost_per_file = cost_per_file
        self.fail = set(fail)
        self.calls = []

    def analyze(self, code, file_path, framework=None, control_context=()):
        self.calls.append(file_path)
        usage = TokenUsage(input_tokens=100, output_tokens=10, cost_usd=self.cost_per_file)
        if file_path in self.fail:
            raise AnalyzerError(file_path, "service unavailable", usage=usage)
        return AnalysisResult(violations=list(self.findings.get(file_path, [])), usage=usage)


class BlockingAnalyzer(FakeAnalyzer):
    """Holds every call until ``release`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.started = threading.Event()
        self.release = threading.Event()

    def analyze(self, code, file_path, framework=None, control_context=()):
        self.started.set()
        self.release.wait(WAIT)
        return super().analyze(code, file_path, framework, control_context)


class WatchedLimiter(RateLimiter):
    """One request per minute; ``waiting`` is set once a caller has to wait."""

    def __init__(self):
        super().__init__(requests_per_minute=1)
        self.waiting = threading.Event()

    def time_until_available(self):
        delay = super().time_until_available()
        if delay > 0:
            self.waiting.set()
        return delay


class BrokenStore:
    def commit_scan(self, result):
        raise StorageError("Failed committing scan: disk I/O error")


def llm_finding(path, line, control="CC6.1"):
    return Violation(
        control_id=control,
        severity=Severity.CRITICAL,
        description="Admin view is reachable anonymously",
        file_path=path,
        line_number=line,
        code_snippet="def admin(request):",
        detection_method=DetectionMethod.LLM,
        confidence_score=90,
        llm_reasoning="Nothing checks the caller before returning data",
    )


def plain_files(count, content="x = 1\n"):
    return [FileMeta(f"src/mod_{i}.py", content=content) for i in range(count)]


def drain(events):
    found = []
    while True:
        try:
            found.append(events.get_nowait())
        except queue.Empty:
            return found


def wait_for_gate(events):
    while True:
        event = events.get(timeout=WAIT)
        if isinstance(event, CostGateEvent):
            return event


# ---------------------------------------------------------------------------
# Regex-only and hybrid scans
# ---------------------------------------------------------------------------


class TestScanPhases:
    def test_regex_only_end_to_end(self, tmp_path):
        app = tmp_path / "app.py"
        app.write_text(APP_CODE)
        store = ViolationStore()
        events = queue.Queue()

        scan = ScanOrchestrator([str(app)], mode="regex_only", store=store, events=events)
        result = scan.run()

        assert result.state == "completed"
        assert scan.state is ScanState.COMPLETED
        found = {(v.control_id, v.line_number) for v in result.violations}
        assert ("CC6.1", 1) in found
        assert ("CC6.7", 2) in found
        assert all(v.scan_id == scan.scan_id and v.id for v in result.violations)
        assert result.files_scanned == 1
        assert result.cost.total_cost_usd == 0.0

        stored = store.list_violations(scan_id=scan.scan_id)
        assert len(stored) == len(result.violations)
        assert store.get_scan(scan.scan_id)["state"] == "completed"

        states = [e.state for e in drain(events) if isinstance(e, ScanStateEvent)]
        assert states == [ScanState.REGEX_PHASE, ScanState.DEDUP, ScanState.COMPLETED]

    def test_analyze_all_merges_confirmed_finding(self):
        path = "app.py"
        analyzer = FakeAnalyzer(findings={path: [llm_finding(path, 1)]}, cost_per_file=0.001)
        scan = ScanOrchestrator(
            [FileMeta(path, content=APP_CODE)], mode="analyze_all", analyzer=analyzer, store=ViolationStore()
        )
        result = scan.run()

        line_one = [v for v in result.violations if v.control_id == "CC6.1" and v.line_number == 1]
        assert len(line_one) == 1
        assert line_one[0].detection_method == DetectionMethod.HYBRID
        assert line_one[0].confidence_score == 90
        assert result.cost.files_analyzed_with_llm == 1

    def test_progress_events(self):
        events = queue.Queue()
        scan = ScanOrchestrator(plain_files(3), mode="regex_only", events=events)
        scan.run()
        progress = [e for e in drain(events) if isinstance(e, ScanProgressEvent)]
        assert [e.files_scanned for e in progress] == [1, 2, 3]
        assert progress[-1].percentage == 100.0

    def test_smart_mode_only_sends_relevant_files(self):
        files = [FileMeta("src/auth.py", content="x = 1\n"), FileMeta("src/math.py", content="x = 1\n")]
        analyzer = FakeAnalyzer()
        ScanOrchestrator(files, mode="smart", analyzer=analyzer).run()
        assert analyzer.calls == ["src/auth.py"]

    def test_each_file_read_once(self):
        reads = []

        def reader(path):
            reads.append(path)
            return "conn = db.connect()\n"

        analyzer = FakeAnalyzer()
        ScanOrchestrator([FileMeta("src/store.py")], mode="smart", analyzer=analyzer, reader=reader).run()
        assert reads == ["src/store.py"]
        assert analyzer.calls == ["src/store.py"]

    def test_ai_mode_requires_analyzer(self):
        with pytest.raises(ConfigurationError):
            ScanOrchestrator(plain_files(1), mode="smart")

    def test_invalid_concurrency(self):
        with pytest.raises(ConfigurationError):
            ScanOrchestrator(plain_files(1), mode="regex_only", concurrency=0)

    def test_unreadable_file_is_recorded(self, tmp_path):
        scan = ScanOrchestrator([str(tmp_path / "missing.py")], mode="regex_only")
        result = scan.run()
        assert result.state == "completed"
        assert any("Cannot read" in e for e in result.errors)

    def test_analyzer_failure_keeps_scan_going(self):
        files = plain_files(2)
        analyzer = FakeAnalyzer(cost_per_file=0.01, fail={files[0].path})
        result = ScanOrchestrator(files, mode="analyze_all", analyzer=analyzer).run()
        assert result.state == "completed"
        assert any("AI analysis failed for src/mod_0.py" in e for e in result.errors)
        assert result.cost.files_analyzed_with_llm == 1
        assert result.cost.total_cost_usd == pytest.approx(0.02)

    def test_scan_runs_once(self):
        scan = ScanOrchestrator(plain_files(1), mode="regex_only")
        scan.run()
        with pytest.raises(RynError):
            scan.run()

    def test_status_snapshot(self):
        scan = ScanOrchestrator(plain_files(2), mode="regex_only", cost_limit=2.5)
        scan.run()
        status = scan.status()
        assert status["state"] == "completed"
        assert status["files_scanned"] == 2
        assert status["percentage"] == 100.0
        assert status["cost_limit_usd"] == 2.5


# ---------------------------------------------------------------------------
# Cost gate
# ---------------------------------------------------------------------------


class TestCostGate:
    def make_scan(self, events, files=4):
        analyzer = FakeAnalyzer(cost_per_file=0.02)
        scan = ScanOrchestrator(
            plain_files(files),
            mode="analyze_all",
            analyzer=analyzer,
            cost_limit=0.01,
            concurrency=1,
            store=ViolationStore(),
            events=events,
        )
        return scan, analyzer

    def test_continue_past_limit(self):
        events = queue.Queue()
        scan, analyzer = self.make_scan(events)
        scan.start()

        gate = wait_for_gate(events)
        assert gate.current_cost_usd == pytest.approx(0.02)
        assert gate.cost_limit_usd == 0.01
        assert gate.files_analyzed == 1
        assert gate.total_files == 4
        assert scan.state is ScanState.COST_GATE

        assert scan.respond_to_cost_limit(True) is True
        assert scan.respond_to_cost_limit(False) is False
        result = scan.join(WAIT)

        assert result.state == "completed"
        assert len(analyzer.calls) == 4
        assert result.cost.files_analyzed_with_llm == 4
        assert result.cost.total_cost_usd == pytest.approx(0.08)

    def test_stop_at_limit(self):
        events = queue.Queue()
        scan, analyzer = self.make_scan(events)
        scan.start()
        wait_for_gate(events)

        assert scan.respond_to_cost_limit(False) is True
        result = scan.join(WAIT)

        assert result.state == "completed"
        assert len(analyzer.calls) == 1
        assert result.cost.files_analyzed_with_llm == 1

    def test_cancel_while_parked(self):
        events = queue.Queue()
        scan, _ = self.make_scan(events)
        scan.start()
        wait_for_gate(events)

        scan.cancel()
        result = scan.join(WAIT)

        assert result.state == "cancelled"
        assert result.violations == []
        assert scan.store.get_scan(scan.scan_id) is None

    def test_no_gate_when_limit_hit_on_last_file(self):
        events = queue.Queue()
        scan, analyzer = self.make_scan(events, files=1)
        result = scan.run()
        assert result.state == "completed"
        assert not any(isinstance(e, CostGateEvent) for e in drain(events))

    def test_gate_fires_once_with_parallel_waves(self):
        events = queue.Queue()
        analyzer = FakeAnalyzer(cost_per_file=0.02)
        scan = ScanOrchestrator(
            plain_files(6),
            mode="analyze_all",
            analyzer=analyzer,
            cost_limit=0.01,
            concurrency=2,
            store=ViolationStore(),
            events=events,
        )
        scan.start()

        gate = wait_for_gate(events)
        assert gate.files_analyzed == 2
        assert gate.total_files == 6
        assert scan.respond_to_cost_limit(True) is True
        result = scan.join(WAIT)

        rest = drain(events)
        assert not any(isinstance(e, CostGateEvent) for e in rest)
        states = [e.state for e in rest if isinstance(e, ScanStateEvent)]
        assert ScanState.COST_GATE not in states
        assert states[-1] is ScanState.COMPLETED
        assert len(analyzer.calls) == 6
        assert result.cost.total_cost_usd == pytest.approx(0.12)

    def test_stop_with_parallel_waves(self):
        events = queue.Queue()
        analyzer = FakeAnalyzer(cost_per_file=0.02)
        scan = ScanOrchestrator(
            plain_files(6), mode="analyze_all", analyzer=analyzer, cost_limit=0.01, concurrency=3, events=events
        )
        scan.start()
        wait_for_gate(events)

        scan.respond_to_cost_limit(False)
        result = scan.join(WAIT)

        assert result.state == "completed"
        assert len(analyzer.calls) == 3

    def test_response_without_gate(self):
        scan = ScanOrchestrator(plain_files(1), mode="regex_only")
        assert scan.respond_to_cost_limit(True) is False


# ---------------------------------------------------------------------------
# Failure and cancellation
# ---------------------------------------------------------------------------


class TestFailures:
    def test_storage_failure_fails_scan(self):
        events = queue.Queue()
        scan = ScanOrchestrator(
            [FileMeta("app.py", content=APP_CODE)], mode="regex_only", store=BrokenStore(), events=events
        )
        result = scan.run()
        assert result.state == "failed"
        assert result.violations == []
        assert any("disk I/O error" in e for e in result.errors)
        final = [e for e in drain(events) if isinstance(e, ScanStateEvent)][-1]
        assert final.state is ScanState.FAILED
        assert "disk I/O error" in final.error

    def test_cancel_before_run(self):
        scan = ScanOrchestrator(plain_files(3), mode="regex_only")
        scan.cancel()
        result = scan.run()
        assert result.state == "cancelled"
        assert scan.cancelled

    def test_cancel_while_wave_in_flight(self):
        store = ViolationStore()
        analyzer = BlockingAnalyzer(findings={"src/mod_0.py": [llm_finding("src/mod_0.py", 1)]})
        scan = ScanOrchestrator(
            plain_files(4, content=APP_CODE), mode="analyze_all", analyzer=analyzer, concurrency=2, store=store
        )
        scan.start()
        assert analyzer.started.wait(WAIT)

        scan.cancel()
        analyzer.release.set()
        result = scan.join(WAIT)

        assert result.state == "cancelled"
        assert result.violations == []
        assert not {"src/mod_2.py", "src/mod_3.py"} & set(analyzer.calls)
        assert store.get_scan(scan.scan_id) is None
        assert store.list_violations() == []

    def test_cancel_while_rate_limited(self):
        store = ViolationStore()
        limiter = WatchedLimiter()
        events = queue.Queue()
        scan = ScanOrchestrator(
            plain_files(2, content=APP_CODE),
            mode="analyze_all",
            analyzer=FakeAnalyzer(cost_per_file=0.001),
            concurrency=2,
            rate_limiter=limiter,
            store=store,
            events=events,
        )
        scan.start()
        assert limiter.waiting.wait(WAIT)

        scan.cancel()
        result = scan.join(WAIT)

        assert result.state == "cancelled"
        assert limiter.total_acquired == 1
        assert store.get_scan(scan.scan_id) is None
        assert store.list_violations() == []
        final = [e for e in drain(events) if isinstance(e, ScanStateEvent)][-1]
        assert final.state is ScanState.CANCELLED
        assert final.previous is ScanState.AI_PHASE


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestScanRegistry:
    def test_register_and_route(self):
        registry = ScanRegistry()
        scan = registry.register(ScanOrchestrator(plain_files(1), mode="regex_only", scan_id="scan-1"))
        assert registry.get("scan-1") is scan
        assert registry.active() == [scan]

        with pytest.raises(RynError):
            registry.register(ScanOrchestrator(plain_files(1), mode="regex_only", scan_id="scan-1"))

        assert registry.cancel_scan("scan-1") is True
        assert scan.cancelled
        scan.run()
        assert registry.active() == []
        assert registry.unregister("scan-1") is scan

    def test_unknown_scan(self):
        registry = ScanRegistry()
        assert registry.respond_to_cost_limit("nope", True) is False
        assert registry.cancel_scan("nope") is False
