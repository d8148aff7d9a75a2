"""
Compliance Scan Report Generation.

Functions:
    build_report: Serializable summary of a ``ScanResult``
    save_results: Save scan results in multiple formats (JSON, SARIF, Markdown)
    convert_to_sarif: Convert results to SARIF format for code-scanning upload
    severity_to_sarif_level: Convert severity to SARIF level
    generate_markdown_report: Generate human-readable Markdown report
    print_summary: Print scan summary to console
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from controls import get_control
from hybrid.models import ScanResult, Severity, Violation, count_by_method

logger = logging.getLogger(__name__)

_SEVERITY_ORDER = [s.value for s in Severity]


def _control_label(control_id: str) -> str:
    control = get_control(control_id)
    return f"{control_id} {control.name}" if control else control_id


def build_report(result: ScanResult) -> dict[str, Any]:
    """Build the JSON-serializable report for a scan.

    Violations are ordered by severity, then file and line.
    """
    violations = sorted(
        result.violations,
        key=lambda v: (-Severity(v.severity).rank, v.file_path, v.line_number),
    )
    return {
        "scan_id": result.scan_id,
        "project_path": result.project_path,
        "mode": result.mode.value,
        "state": result.state,
        "started_at": result.started_at,
        "completed_at": result.completed_at,
        "files_scanned": result.files_scanned,
        "total_files": result.total_files,
        "summary": {
            "total_violations": result.violations_found,
            "by_severity": dict(result.severity_counts),
            "by_method": count_by_method(result.violations),
        },
        "cost": result.cost.to_dict(),
        "errors": list(result.errors),
        "violations": [v.to_dict() for v in violations],
    }


def save_results(result: ScanResult, output_dir: str) -> dict[str, Path]:
    """Save results in multiple formats.

    Args:
        result: The scan result to save
        output_dir: Directory to save results to

    Returns:
        Mapping of format name (``json``, ``sarif``, ``markdown``) to path
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    stem = f"ryn-scan-{result.scan_id}"
    paths = {
        "json": output_path / f"{stem}.json",
        "sarif": output_path / f"{stem}.sarif",
        "markdown": output_path / f"{stem}.md",
    }

    with open(paths["json"], "w", encoding="utf-8") as f:
        json.dump(build_report(result), f, indent=2, default=str)
    logger.info("JSON results: %s", paths["json"])

    with open(paths["sarif"], "w", encoding="utf-8") as f:
        json.dump(convert_to_sarif(result), f, indent=2)
    logger.info("SARIF results: %s", paths["sarif"])

    with open(paths["markdown"], "w", encoding="utf-8") as f:
        f.write(generate_markdown_report(result))
    logger.info("Markdown report: %s", paths["markdown"])

    return paths


def convert_to_sarif(result: ScanResult) -> dict:
    """Convert results to SARIF 2.1.0.

    One rule is declared per control that has at least one violation.
    """
    rules = []
    for control_id in sorted({v.control_id for v in result.violations}):
        control = get_control(control_id)
        rule = {"id": control_id}
        if control:
            rule["name"] = control.name
            rule["shortDescription"] = {"text": control.description}
        rules.append(rule)

    sarif = {
        "version": "2.1.0",
        "$schema": "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json",
        "runs": [
            {
                "tool": {"driver": {"name": "Ryn", "version": "0.1.0", "rules": rules}},
                "results": [],
            }
        ],
    }

    for violation in result.violations:
        sarif_result = {
            "ruleId": violation.control_id,
            "level": severity_to_sarif_level(Severity(violation.severity).value),
            "message": {"text": violation.description},
            "locations": [
                {
                    "physicalLocation": {
                        "artifactLocation": {"uri": violation.file_path},
                        "region": {"startLine": max(violation.line_number, 1)},
                    }
                }
            ],
            "properties": {"detection_method": violation.detection_method.value},
        }
        if violation.confidence_score is not None:
            sarif_result["properties"]["confidence"] = violation.confidence_score
        sarif["runs"][0]["results"].append(sarif_result)

    return sarif


def severity_to_sarif_level(severity: str) -> str:
    """Convert severity to SARIF level (error, warning, note)."""
    mapping = {"critical": "error", "high": "error", "medium": "warning", "low": "note"}
    return mapping.get(severity.lower(), "warning")


def _violation_section(index: int, violation: Violation) -> list[str]:
    lines = [
        f"### {index}. {_control_label(violation.control_id)}\n\n",
        f"**File**: `{violation.file_path}` (line {violation.line_number})\n\n",
        f"**Detected by**: {violation.detection_method.value}",
    ]
    if violation.confidence_score is not None:
        lines.append(f" (confidence {violation.confidence_score}%)")
    lines.append("\n\n")
    lines.append(f"**Description**: {violation.description}\n\n")
    if violation.code_snippet:
        lines.append(f"```\n{violation.code_snippet}\n```\n\n")
    if violation.llm_reasoning:
        lines.append(f"**Reasoning**: {violation.llm_reasoning}\n\n")
    lines.append("---\n\n")
    return lines


def generate_markdown_report(result: ScanResult) -> str:
    """Generate human-readable Markdown report."""
    report = []

    report.append("# Ryn Compliance Scan Report\n\n")
    report.append(f"**Scan**: {result.scan_id}\n\n")
    report.append(f"**Project**: {result.project_path}\n\n")
    report.append(f"**Mode**: {result.mode.value}\n\n")
    report.append(f"**State**: {result.state}\n\n")
    report.append(f"**Files scanned**: {result.files_scanned}/{result.total_files}\n\n")
    report.append(f"**AI cost**: ${result.cost.total_cost_usd:.4f}\n\n")
    report.append("---\n\n")

    report.append("## Summary\n\n")
    report.append(f"**Total Violations**: {result.violations_found}\n\n")

    report.append("### By Severity\n\n")
    for severity in _SEVERITY_ORDER:
        report.append(f"- **{severity.title()}**: {result.severity_counts.get(severity, 0)}\n")

    report.append("\n### By Detection Method\n\n")
    for method, count in count_by_method(result.violations).items():
        report.append(f"- **{method}**: {count}\n")

    if result.errors:
        report.append("\n### Errors\n\n")
        for error in result.errors:
            report.append(f"- {error}\n")

    report.append("\n---\n\n")

    for severity in _SEVERITY_ORDER:
        group = [v for v in result.violations if Severity(v.severity).value == severity]
        if not group:
            continue
        report.append(f"## {severity.title()} Violations ({len(group)})\n\n")
        group.sort(key=lambda v: (v.file_path, v.line_number))
        for i, violation in enumerate(group, 1):
            report.extend(_violation_section(i, violation))

    return "".join(report)


def print_summary(result: ScanResult, paths: Optional[dict[str, Path]] = None) -> None:
    """Print scan summary to console."""
    print("\n" + "=" * 80)
    print("RYN COMPLIANCE SCAN - RESULTS")
    print("=" * 80)
    print(f"Project:  {result.project_path}")
    print(f"Scan:     {result.scan_id} ({result.mode.value}, {result.state})")
    print(f"Files:    {result.files_scanned}/{result.total_files}")
    print(f"AI cost:  ${result.cost.total_cost_usd:.4f} "
          f"({result.cost.files_analyzed_with_llm} files, {result.cost.total_tokens} tokens)")
    print()
    print("Violations by Severity:")
    for severity in _SEVERITY_ORDER:
        print(f"   {severity.title():<9} {result.severity_counts.get(severity, 0)}")
    print(f"   {'Total':<9} {result.violations_found}")
    print()
    print("Violations by Method:")
    for method, count in count_by_method(result.violations).items():
        print(f"   {method:<9} {count}")
    if result.errors:
        print()
        print(f"Errors ({len(result.errors)}):")
        for error in result.errors[:10]:
            print(f"   {error}")
    if paths:
        print()
        for name, path in paths.items():
            print(f"{name}: {path}")
    print("=" * 80)


__all__ = [
    "build_report",
    "convert_to_sarif",
    "generate_markdown_report",
    "print_summary",
    "save_results",
    "severity_to_sarif_level",
]
