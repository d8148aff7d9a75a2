"""CLI entry point for the Ryn compliance scanner.

Runs a scan over a project directory, answers the cost gate, writes JSON,
SARIF and Markdown reports and optionally generates (and applies) fixes for
the violations found.
"""

import argparse
import logging
import queue
import sys
from pathlib import Path
from typing import Optional

from config_loader import build_unified_config, validate_config
from exceptions import PatchApplyError, RynError
from hybrid.ai_analyzer import AIAnalyzer
from hybrid.deduplicator import Deduplicator
from hybrid.file_selector import FileSelector
from hybrid.file_source import read_file
from hybrid.models import ScanMode, TrustLevel
from hybrid.report import print_summary, save_results
from orchestrator.llm_manager import LLMManager
from orchestrator.rate_limiter import RateLimiter
from orchestrator.scan_orchestrator import CostGateEvent, ScanOrchestrator, ScanProgressEvent, ScanStateEvent
from patch_applicator import PatchApplicator
from pipeline import AIFixGenerator, FixPipeline, build_default_stages
from storage import ViolationStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2
EXIT_CANCELLED = 130

EVENT_POLL_SECONDS = 0.5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ryn-scan",
        description="Ryn - SOC 2 compliance scanner combining regex rules with AI analysis",
    )
    parser.add_argument("target", help="Project directory to scan")
    parser.add_argument("--mode", choices=[m.value for m in ScanMode], help="Scan mode (default: smart)")
    parser.add_argument("--controls", help="Comma-separated control ids (e.g. CC6.1,CC6.7)")
    parser.add_argument("--cost-limit", type=float, help="AI spend per scan in USD before asking to continue")
    parser.add_argument("--provider", choices=["auto", "anthropic", "openai", "ollama"], help="AI provider")
    parser.add_argument("--model", help="Model name (default: provider default)")
    parser.add_argument("--framework", help="Framework hint (django, flask, express, nextjs)")
    parser.add_argument("--database", help="SQLite database path (default: ~/.ryn/ryn.db)")
    parser.add_argument("--concurrency", type=int, help="Concurrent AI calls per wave")
    parser.add_argument("--max-retries", type=int, help="Retries per AI call")
    parser.add_argument("--dedup-window", type=int, help="Line window for merging regex and AI findings")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    parser.add_argument(
        "--output-dir",
        default=".ryn/results",
        help="Output directory for reports (default: .ryn/results)",
    )

    gate = parser.add_mutually_exclusive_group()
    gate.add_argument("--auto-continue", action="store_true", help="Continue past the cost limit without asking")
    gate.add_argument("--auto-stop", action="store_true", help="Stop AI analysis at the cost limit without asking")

    parser.add_argument("--fix", action="store_true", help="Generate fixes for open violations")
    parser.add_argument(
        "--ai-fixes",
        action="store_const",
        const=True,
        help="Generate fixes with the AI provider, falling back to templates (requires --fix)",
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Commit generated fixes that are not marked manual (requires --fix and a clean git tree)",
    )
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _reasoning_service(config: dict) -> Optional[LLMManager]:
    manager = LLMManager(config)
    if not manager.initialize():
        return None
    return manager


def build_analyzer(config: dict) -> Optional[AIAnalyzer]:
    """Initialize the reasoning service, or return None if none is configured."""
    manager = _reasoning_service(config)
    if manager is None:
        return None
    return AIAnalyzer(
        manager.call_reasoning_service,
        max_retries=int(config["llm_max_retries"]),
        max_wait=float(config["llm_retry_max_wait"]),
        provider=manager.provider,
        enabled_controls=config["enabled_controls"],
    )


def build_fix_generator(config: dict) -> Optional[AIFixGenerator]:
    """AI fix generator when enabled and a provider is available."""
    if not config["ai_fixes"]:
        return None
    manager = _reasoning_service(config)
    if manager is None:
        logger.warning("No AI provider available; fixes use templates only")
        return None
    return AIFixGenerator(
        manager.call_reasoning_service,
        max_retries=int(config["llm_max_retries"]),
        max_wait=float(config["llm_retry_max_wait"]),
        provider=manager.provider,
    )


def ask_to_continue(event: CostGateEvent, args) -> bool:
    if args.auto_continue:
        return True
    if args.auto_stop or not sys.stdin.isatty():
        return False
    answer = input(
        f"AI cost ${event.current_cost_usd:.4f} exceeds the ${event.cost_limit_usd:.2f} limit "
        f"after {event.files_analyzed}/{event.total_files} files. Continue? [y/N] "
    )
    return answer.strip().lower() in ("y", "yes")


def drive(scan: ScanOrchestrator, events: queue.Queue, args) -> None:
    """Run the scan on its worker thread and react to its events."""
    scan.start()
    while True:
        try:
            event = events.get(timeout=EVENT_POLL_SECONDS)
        except queue.Empty:
            if scan.state.is_terminal:
                break
            continue

        if isinstance(event, ScanProgressEvent):
            logger.debug(
                "[%5.1f%%] %s (%d violations)",
                event.percentage, event.current_file, event.violations_found,
            )
        elif isinstance(event, CostGateEvent):
            decision = ask_to_continue(event, args)
            logger.info("Cost limit reached; %s", "continuing" if decision else "stopping AI analysis")
            scan.respond_to_cost_limit(decision)
        elif isinstance(event, ScanStateEvent):
            logger.info("Scan %s: %s -> %s", event.scan_id[:8], event.previous.value, event.state.value)
            if event.state.is_terminal:
                break
    scan.join()


def generate_fixes(
    result,
    store: ViolationStore,
    target: Path,
    framework,
    apply: bool,
    ai_generator: Optional[AIFixGenerator] = None,
) -> int:
    """Generate a fix for every open violation. Returns the number applied."""
    pipeline = FixPipeline(build_default_stages(ai_generator=ai_generator))
    applicator = PatchApplicator(target) if apply else None
    applied = 0

    for violation in result.violations:
        if not violation.is_open:
            continue
        try:
            code = read_file(violation.file_path)
        except OSError as e:
            logger.warning("Cannot read %s for fix generation: %s", violation.file_path, e)
            continue

        fix = pipeline.run(violation, code, violation.file_path, framework)
        store.persist_fix(fix)
        if applicator is None or fix.trust_level is TrustLevel.MANUAL:
            continue
        try:
            fix = applicator.apply(
                fix, Path(violation.file_path).resolve(), line_number=violation.line_number
            )
        except PatchApplyError as e:
            logger.warning("Fix %s not applied: %s", fix.id, e)
            continue
        store.mark_fix_applied(fix)
        applied += 1

    return applied


def main(argv=None) -> int:
    """CLI entry point for ryn-scan. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    target = Path(args.target)

    config = build_unified_config(cli_args=args, repo_path=str(target))
    _configure_logging(config["log_level"])

    issues = validate_config(config)
    for issue in issues:
        if issue.startswith("ERROR"):
            logger.error(issue)
        else:
            logger.warning(issue)
    if any(issue.startswith("ERROR") for issue in issues):
        return EXIT_ERROR
    if args.apply and not args.fix:
        logger.error("--apply requires --fix")
        return EXIT_ERROR

    mode = ScanMode.parse(config["scan_mode"])
    analyzer = None
    if mode.uses_ai:
        analyzer = build_analyzer(config)
        if analyzer is None:
            logger.warning("No AI provider available; falling back to regex_only")
            mode = ScanMode.REGEX_ONLY

    store = ViolationStore(config["database_path"])
    events: queue.Queue = queue.Queue()
    try:
        scan = ScanOrchestrator.for_project(
            target,
            max_file_size=int(config["max_file_size"]),
            mode=mode,
            enabled_controls=config["enabled_controls"],
            selector=FileSelector(keywords=config["smart_keywords"]),
            analyzer=analyzer,
            cost_limit=float(config["cost_limit"]),
            deduplicator=Deduplicator(
                window=int(config["dedup_line_window"]),
                match_control=bool(config["dedup_match_control"]),
            ),
            store=store,
            rate_limiter=RateLimiter(int(config["llm_requests_per_minute"])),
            framework=args.framework,
            concurrency=int(config["llm_concurrency"]),
            events=events,
        )
        try:
            drive(scan, events, args)
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling scan %s", scan.scan_id)
            scan.cancel()
            scan.join()

        result = scan.result
        if result is None:
            logger.error("Scan %s finished without a result", scan.scan_id)
            return EXIT_ERROR

        paths = save_results(result, args.output_dir)
        print_summary(result, paths)

        if result.state == "cancelled":
            return EXIT_CANCELLED
        if not result.succeeded:
            return EXIT_ERROR

        if args.fix:
            applied = generate_fixes(
                result, store, target, args.framework, args.apply, build_fix_generator(config)
            )
            logger.info("Generated fixes for %s; applied %d", target, applied)
    except (RynError, FileNotFoundError) as e:
        logger.error("%s", e)
        return EXIT_ERROR
    finally:
        store.close()

    if result.severity_counts.get("critical", 0) or result.severity_counts.get("high", 0):
        return EXIT_FINDINGS
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
