#!/usr/bin/env python3
"""
Scan Orchestrator

Drives one compliance scan through its phases:

    IDLE -> REGEX_PHASE -> (FILE_SELECTION -> AI_PHASE <-> COST_GATE ->) DEDUP -> COMPLETED

with CANCELLED and FAILED as alternate terminal states. Every file goes through
the rule engine; in AI modes the selected files are then sent to the analyzer
in small rate-limited waves. Governor updates happen on the scan thread in
file order, so the cost gate sees a deterministic running total.

Signals are typed dataclasses pushed onto an optional ``queue.Queue``. The
caller answers a gate through ``respond_to_cost_limit`` (directly or through a
``ScanRegistry``) and can ``cancel`` at any time, including while the scan is
parked in the gate.

Usage:
    events = queue.Queue()
    scan = ScanOrchestrator.for_project("./app", mode="smart", analyzer=analyzer, events=events)
    scan.start()
    ...
    scan.respond_to_cost_limit(True)
    result = scan.join()
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from queue import Queue
from typing import Callable, Iterable, Optional, Union

from controls import normalize_control_ids
from exceptions import AnalyzerError, ConfigurationError, RynError, ScanCancelledError, StorageError
from hybrid.deduplicator import Deduplicator, stamp
from hybrid.file_selector import FileSelector, is_supported
from hybrid.file_source import DEFAULT_MAX_FILE_SIZE, list_files, load_content, read_file
from hybrid.models import (
    FileMeta,
    ScanCost,
    ScanMode,
    ScanProgress,
    ScanResult,
    Violation,
    count_by_severity,
    utc_now,
)
from orchestrator.cost_tracker import DEFAULT_COST_LIMIT_USD, CostGovernor, LimitExceeded
from orchestrator.rate_limiter import RateLimiter
from rules.engine import RuleEngine

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3


class ScanState(str, Enum):
    IDLE = "idle"
    REGEX_PHASE = "regex_phase"
    FILE_SELECTION = "file_selection"
    AI_PHASE = "ai_phase"
    COST_GATE = "cost_gate"
    DEDUP = "dedup"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanState.COMPLETED, ScanState.CANCELLED, ScanState.FAILED)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScanProgressEvent:
    scan_id: str
    files_scanned: int
    total_files: int
    violations_found: int
    current_file: str

    @property
    def percentage(self) -> float:
        return ScanProgress(self.files_scanned, self.total_files, self.current_file).percentage


@dataclass(frozen=True)
class CostGateEvent:
    """The scan is parked until ``respond_to_cost_limit`` is called."""

    scan_id: str
    current_cost_usd: float
    cost_limit_usd: float
    files_analyzed: int
    total_files: int


@dataclass(frozen=True)
class ScanStateEvent:
    scan_id: str
    state: ScanState
    previous: ScanState
    error: Optional[str] = None


ScanEvent = Union[ScanProgressEvent, CostGateEvent, ScanStateEvent]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ScanOrchestrator:
    """One scan of one file set. A new scan needs a new instance.

    Args:
        files: Files to scan, as ``FileMeta`` or paths.
        mode: ``regex_only``, ``smart`` or ``analyze_all``.
        scan_id: Explicit scan identifier; a random one is generated if omitted.
        project_path: Recorded on the result and the scan row.
        enabled_controls: Control ids to check; all controls when omitted.
        rule_engine, selector, deduplicator: Overridable phase components.
        analyzer: ``AIAnalyzer``-like object. Required for AI modes.
        governor: Cost governor; built from ``cost_limit`` when omitted.
        store: ``ViolationStore``-like object. Results are committed only
            when the scan completes.
        rate_limiter: Bounds reasoning-service requests per minute.
        framework: Framework hint for every file; inferred per file otherwise.
        concurrency: AI calls issued per wave.
        reader: ``path -> content`` used for files without loaded content.
        events: Channel receiving progress, gate and state events.
    """

    def __init__(
        self,
        files: Iterable[Union[FileMeta, str]],
        mode: Union[ScanMode, str] = ScanMode.SMART,
        scan_id: Optional[str] = None,
        project_path: str = "",
        enabled_controls: Optional[Iterable[str]] = None,
        rule_engine: Optional[RuleEngine] = None,
        selector: Optional[FileSelector] = None,
        analyzer=None,
        governor: Optional[CostGovernor] = None,
        cost_limit: float = DEFAULT_COST_LIMIT_USD,
        deduplicator: Optional[Deduplicator] = None,
        store=None,
        rate_limiter: Optional[RateLimiter] = None,
        framework=None,
        concurrency: int = DEFAULT_CONCURRENCY,
        reader: Callable[[str], str] = read_file,
        events: Optional[Queue] = None,
    ):
        self.mode = ScanMode.parse(mode)
        if self.mode.uses_ai and analyzer is None:
            raise ConfigurationError(f"Scan mode '{self.mode.value}' requires an AI analyzer")
        if concurrency < 1:
            raise ConfigurationError(f"Invalid concurrency {concurrency!r}. Must be >= 1.")

        self.scan_id = scan_id or uuid.uuid4().hex
        self.project_path = project_path
        self.files = [f if isinstance(f, FileMeta) else FileMeta(path=str(f)) for f in files]
        self.enabled_controls = normalize_control_ids(enabled_controls)
        self.rule_engine = rule_engine or RuleEngine(self.enabled_controls)
        self.selector = selector or FileSelector(reader=reader)
        self.analyzer = analyzer
        self.governor = governor or CostGovernor(cost_limit)
        self.deduplicator = deduplicator or Deduplicator()
        self.store = store
        self.rate_limiter = rate_limiter or RateLimiter()
        self.framework = framework
        self.concurrency = concurrency
        self.reader = reader
        self.events = events

        self._state = ScanState.IDLE
        self._state_lock = threading.Lock()
        self._cancelled = threading.Event()
        self._gate = threading.Condition()
        self._gate_open = False
        self._gate_decision: Optional[bool] = None
        self._thread: Optional[threading.Thread] = None
        self._result: Optional[ScanResult] = None

        self._contents: dict[str, str] = {}
        self._regex: dict[str, list[Violation]] = {}
        self._llm: dict[str, list[Violation]] = {}
        self._errors: list[str] = []
        self._files_scanned = 0
        self._current_file = ""
        self._started_at = ""

    @classmethod
    def for_project(
        cls,
        root: Union[str, Path],
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        **kwargs,
    ) -> "ScanOrchestrator":
        """Build a scan over every supported source file under ``root``."""
        files = [f for f in list_files(root, max_file_size) if is_supported(f.path)]
        kwargs.setdefault("project_path", str(Path(root).resolve()))
        return cls(files, **kwargs)

    # ------------------------------------------------------------------
    # Caller interface
    # ------------------------------------------------------------------

    @property
    def state(self) -> ScanState:
        with self._state_lock:
            return self._state

    @property
    def result(self) -> Optional[ScanResult]:
        return self._result

    def start(self) -> threading.Thread:
        """Run the scan on a worker thread."""
        if self._thread is not None:
            raise RynError(f"Scan {self.scan_id} was already started")
        self._thread = threading.Thread(target=self.run, name=f"scan-{self.scan_id[:8]}", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> Optional[ScanResult]:
        if self._thread is not None:
            self._thread.join(timeout)
        return self._result

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next unit of work."""
        with self._gate:
            self._cancelled.set()
            self._gate.notify_all()
        logger.info("Cancellation requested for scan %s", self.scan_id)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def respond_to_cost_limit(self, continue_: bool) -> bool:
        """Resolve the open cost gate.

        Returns:
            True if this call resolved the gate, False if no gate was open or
            it had already been resolved.
        """
        with self._gate:
            if not self._gate_open or self._gate_decision is not None:
                logger.debug("Ignoring cost limit response for scan %s: no open gate", self.scan_id)
                return False
            self._gate_decision = bool(continue_)
            self._gate.notify_all()
        logger.info("Scan %s cost gate resolved: %s", self.scan_id, "continue" if continue_ else "stop")
        return True

    def status(self) -> dict:
        """Polled snapshot of the scan."""
        total = len(self.files)
        cost = self.governor.snapshot()
        return {
            "scan_id": self.scan_id,
            "state": self.state.value,
            "files_scanned": self._files_scanned,
            "total_files": total,
            "current_file": self._current_file,
            "percentage": ScanProgress(self._files_scanned, total, self._current_file).percentage,
            "violations_found": self._violations_so_far(),
            "current_cost_usd": cost.total_cost_usd,
            "cost_limit_usd": self.governor.limit,
        }

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> ScanResult:
        """Run the scan to a terminal state and return its result."""
        with self._state_lock:
            if self._state is not ScanState.IDLE:
                raise RynError(f"Scan {self.scan_id} is {self._state.value}; start a new scan")
        self._started_at = utc_now()
        logger.info(
            "Starting scan %s: %d files, mode=%s, controls=%s",
            self.scan_id, len(self.files), self.mode.value, ",".join(self.enabled_controls),
        )

        try:
            self._transition(ScanState.REGEX_PHASE)
            self._regex_phase()

            if self.mode.uses_ai:
                self._transition(ScanState.FILE_SELECTION)
                selected = self._select_files()
                self._transition(ScanState.AI_PHASE)
                self._ai_phase(selected)

            self._check_cancelled()
            self._transition(ScanState.DEDUP)
            violations = self._dedup()
            result = self._build_result(ScanState.COMPLETED, violations, self.governor.freeze())

            if self.store is not None:
                self.store.commit_scan(result)
        except ScanCancelledError:
            logger.info("Scan %s cancelled; discarding partial results", self.scan_id)
            result = self._build_result(ScanState.CANCELLED, [], self._final_cost())
            self._finish(result)
            return result
        except StorageError as e:
            logger.error("Scan %s failed: %s", self.scan_id, e, exc_info=True)
            self._errors.append(str(e))
            result = self._build_result(ScanState.FAILED, [], self._final_cost())
            self._finish(result, error=str(e))
            return result
        except Exception as e:
            logger.error("Scan %s failed unexpectedly: %s", self.scan_id, e, exc_info=True)
            self._errors.append(str(e))
            self._finish(self._build_result(ScanState.FAILED, [], self._final_cost()), error=str(e))
            raise

        self._finish(result)
        logger.info(
            "Scan %s completed: %d violations, $%.4f, %d error(s)",
            self.scan_id, len(result.violations), result.cost.total_cost_usd, len(result.errors),
        )
        return result

    def _finish(self, result: ScanResult, error: Optional[str] = None) -> None:
        self._result = result
        self._transition(ScanState(result.state), error=error)

    def _final_cost(self) -> ScanCost:
        return self.governor.freeze() if not self.governor.frozen else self.governor.snapshot()

    def _build_result(self, state: ScanState, violations: list[Violation], cost: ScanCost) -> ScanResult:
        return ScanResult(
            scan_id=self.scan_id,
            project_path=self.project_path,
            mode=self.mode,
            state=state.value,
            violations=violations,
            cost=cost,
            severity_counts=count_by_severity(violations),
            files_scanned=self._files_scanned,
            total_files=len(self.files),
            started_at=self._started_at,
            completed_at=utc_now(),
            errors=list(self._errors),
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _regex_phase(self) -> None:
        total = len(self.files)
        for meta in self.files:
            self._check_cancelled()
            self._current_file = meta.path
            content = self._content_for(meta)
            if content is not None:
                violations, errors = self.rule_engine.analyze_with_errors(
                    content, meta.path, self.framework
                )
                self._regex[meta.path] = violations
                self._errors.extend(str(e) for e in errors)
            self._files_scanned += 1
            self._emit(
                ScanProgressEvent(
                    scan_id=self.scan_id,
                    files_scanned=self._files_scanned,
                    total_files=total,
                    violations_found=self._violations_so_far(),
                    current_file=meta.path,
                )
            )
        logger.info(
            "Regex phase for scan %s: %d violations in %d files",
            self.scan_id, self._violations_so_far(), total,
        )

    def _content_for(self, meta: FileMeta) -> Optional[str]:
        try:
            content = load_content(meta, self.reader)
        except OSError as e:
            logger.warning("Cannot read %s: %s", meta.path, e)
            self._errors.append(f"Cannot read {meta.path}: {e}")
            return None
        self._contents[meta.path] = content
        return content

    def _select_files(self) -> list[FileMeta]:
        readable = [f for f in self.files if f.path in self._contents]
        selected = self.selector.select(readable, self.mode)
        self.governor.total_files = len(selected)
        return selected

    def _ai_phase(self, selected: list[FileMeta]) -> None:
        gate_resolved = False
        pool = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="ryn-ai")
        try:
            index = 0
            while index < len(selected):
                wave = []
                for meta in selected[index:index + self.concurrency]:
                    self._check_cancelled()
                    if not self.rate_limiter.acquire(self._cancelled):
                        raise ScanCancelledError(self.scan_id)
                    wave.append((meta, pool.submit(self._analyze_file, meta)))
                index += len(wave)

                for meta, future in wave:
                    self._record_analysis(meta, future)
                self._check_cancelled()

                check = self.governor.check_limit()
                if gate_resolved or not isinstance(check, LimitExceeded):
                    continue
                if index >= len(selected):
                    logger.info(
                        "Scan %s exceeded cost limit on its last AI file ($%.4f > $%.2f)",
                        self.scan_id, check.current_cost, check.limit,
                    )
                    break
                gate_resolved = True
                if not self._cost_gate(check):
                    skipped = len(selected) - index
                    logger.info(
                        "Scan %s stopped at cost gate; %d file(s) keep regex results only",
                        self.scan_id, skipped,
                    )
                    break
        finally:
            # Cancelled scans drop whatever is still queued or in flight.
            pool.shutdown(wait=False, cancel_futures=True)

    def _analyze_file(self, meta: FileMeta):
        return self.analyzer.analyze(
            self._contents[meta.path],
            meta.path,
            self.framework,
            self._regex.get(meta.path, []),
        )

    def _record_analysis(self, meta: FileMeta, future) -> None:
        try:
            analysis = future.result()
        except AnalyzerError as e:
            logger.warning("Skipping AI results for %s: %s", meta.path, e)
            self._errors.append(str(e))
            if e.usage is not None:
                self.governor.record(e.usage, file_analyzed=False)
            return
        self._llm[meta.path] = analysis.violations
        self.governor.record(analysis.usage)

    def _cost_gate(self, check: LimitExceeded) -> bool:
        """Park until the caller decides. Returns True to continue."""
        with self._gate:
            self._gate_open = True
            self._gate_decision = None
        self._transition(ScanState.COST_GATE)
        logger.warning(
            "Scan %s reached cost limit: $%.4f > $%.2f after %d/%d files",
            self.scan_id, check.current_cost, check.limit, check.files_analyzed, check.total_files,
        )
        self._emit(
            CostGateEvent(
                scan_id=self.scan_id,
                current_cost_usd=check.current_cost,
                cost_limit_usd=check.limit,
                files_analyzed=check.files_analyzed,
                total_files=check.total_files,
            )
        )

        with self._gate:
            while self._gate_decision is None and not self._cancelled.is_set():
                self._gate.wait()
            decision = self._gate_decision
            self._gate_open = False

        self._check_cancelled()
        if decision:
            self.governor.suspend()
            self._transition(ScanState.AI_PHASE)
        return bool(decision)

    def _dedup(self) -> list[Violation]:
        merged: list[Violation] = []
        for meta in self.files:
            regex = self._regex.get(meta.path, [])
            llm = self._llm.get(meta.path, [])
            if regex or llm:
                merged.extend(self.deduplicator.merge(regex, llm))
        return stamp(merged, self.scan_id, utc_now())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise ScanCancelledError(self.scan_id)

    def _violations_so_far(self) -> int:
        return sum(len(v) for v in self._regex.values())

    def _transition(self, state: ScanState, error: Optional[str] = None) -> None:
        with self._state_lock:
            previous = self._state
            self._state = state
        logger.debug("Scan %s: %s -> %s", self.scan_id, previous.value, state.value)
        self._emit(ScanStateEvent(scan_id=self.scan_id, state=state, previous=previous, error=error))

    def _emit(self, event: ScanEvent) -> None:
        if self.events is not None:
            self.events.put(event)


class ScanRegistry:
    """Running scans by id, so decisions can be routed by scan identifier."""

    def __init__(self):
        self._lock = threading.Lock()
        self._scans: dict[str, ScanOrchestrator] = {}

    def register(self, scan: ScanOrchestrator) -> ScanOrchestrator:
        with self._lock:
            if scan.scan_id in self._scans:
                raise RynError(f"Scan {scan.scan_id} is already registered")
            self._scans[scan.scan_id] = scan
        return scan

    def unregister(self, scan_id: str) -> Optional[ScanOrchestrator]:
        with self._lock:
            return self._scans.pop(scan_id, None)

    def get(self, scan_id: str) -> Optional[ScanOrchestrator]:
        with self._lock:
            return self._scans.get(scan_id)

    def active(self) -> list[ScanOrchestrator]:
        with self._lock:
            return [s for s in self._scans.values() if not s.state.is_terminal]

    def respond_to_cost_limit(self, scan_id: str, continue_: bool) -> bool:
        scan = self.get(scan_id)
        if scan is None:
            logger.warning("Cost limit response for unknown scan %s", scan_id)
            return False
        return scan.respond_to_cost_limit(continue_)

    def cancel_scan(self, scan_id: str) -> bool:
        scan = self.get(scan_id)
        if scan is None:
            logger.warning("Cancel requested for unknown scan %s", scan_id)
            return False
        scan.cancel()
        return True


__all__ = [
    "CostGateEvent",
    "DEFAULT_CONCURRENCY",
    "ScanEvent",
    "ScanOrchestrator",
    "ScanProgressEvent",
    "ScanRegistry",
    "ScanState",
    "ScanStateEvent",
]
