#!/usr/bin/env python3
"""
Regex/AI Violation Deduplicator

Folds an AI finding into the pattern finding it corroborates so one defect is
reported once, tagged ``hybrid``.

Matching rules, applied per regex violation in input order:

  - candidates are unconsumed llm violations on the same file within
    ``window`` lines (and, by default, on the same control)
  - the nearest line wins; ties go to the candidate encountered first
  - matching is one-to-one and greedy

A hybrid keeps the regex line, control id and description, takes the stricter
of both severities, carries the llm confidence score and both reasonings.
``split`` undoes a merge exactly, so ``merge(*split(merged)) == merged``.
Hybrids read back from storage carry no components. ``split`` rebuilds them
from the stored fields: the llm half sits on the regex line with the merged
severity, so re-merging reproduces each stored hybrid unless an earlier
unmatched regex finding now falls within the window of that line.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from hybrid.models import DetectionMethod, Severity, Violation, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LINE_WINDOW = 3
DEFAULT_LLM_CONFIDENCE = 50


class Deduplicator:
    """Merge regex and llm violations into the final per-file set.

    Parameters
    ----------
    window : int
        Maximum line distance between a regex and an llm violation that are
        considered the same defect.
    match_control : bool
        Require both violations to carry the same control id.
    """

    def __init__(self, window: int = DEFAULT_LINE_WINDOW, match_control: bool = True) -> None:
        if window < 0:
            raise ValueError(f"Invalid dedup window {window!r}. Must be >= 0.")
        self.window = window
        self.match_control = match_control

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(
        self,
        regex_violations: list[Violation],
        llm_violations: list[Violation],
        scan_id: Optional[str] = None,
        detected_at: Optional[str] = None,
    ) -> list[Violation]:
        """Return regex/hybrid violations in regex order, then unmatched llm ones.

        When ``scan_id`` is given every output violation is stamped with it,
        with ``detected_at`` (defaults to now) and a deterministic id. Inputs
        are never mutated.
        """
        consumed: set[int] = set()
        merged: list[Violation] = []

        for regex_v in regex_violations:
            match = self._nearest(regex_v, llm_violations, consumed)
            if match is None:
                merged.append(regex_v)
                continue
            consumed.add(match)
            merged.append(self._hybrid(regex_v, llm_violations[match]))

        merged.extend(v for i, v in enumerate(llm_violations) if i not in consumed)

        hybrids = len(consumed)
        if hybrids:
            logger.debug(
                "Merged %d regex + %d llm violations into %d (%d hybrid)",
                len(regex_violations), len(llm_violations), len(merged), hybrids,
            )

        if scan_id is not None:
            merged = stamp(merged, scan_id, detected_at or utc_now())
        return merged

    def _nearest(
        self, regex_v: Violation, candidates: list[Violation], consumed: set[int]
    ) -> Optional[int]:
        best: Optional[int] = None
        best_distance = self.window + 1
        for i, llm_v in enumerate(candidates):
            if i in consumed or llm_v.file_path != regex_v.file_path:
                continue
            if self.match_control and llm_v.control_id != regex_v.control_id:
                continue
            distance = abs(llm_v.line_number - regex_v.line_number)
            # strict < keeps the first encountered on ties
            if distance < best_distance:
                best, best_distance = i, distance
        return best

    @staticmethod
    def _hybrid(regex_v: Violation, llm_v: Violation) -> Violation:
        confidence = llm_v.confidence_score
        if confidence is None:
            confidence = DEFAULT_LLM_CONFIDENCE
        return Violation(
            control_id=regex_v.control_id,
            severity=Severity.max(regex_v.severity, llm_v.severity),
            description=regex_v.description,
            file_path=regex_v.file_path,
            line_number=regex_v.line_number,
            code_snippet=regex_v.code_snippet,
            detection_method=DetectionMethod.HYBRID,
            confidence_score=confidence,
            llm_reasoning=llm_v.llm_reasoning or llm_v.description,
            regex_reasoning=regex_v.regex_reasoning
            or f"Pattern match at line {regex_v.line_number}: {regex_v.description}",
            status=regex_v.status,
            scan_id=regex_v.scan_id,
            id=regex_v.id,
            detected_at=regex_v.detected_at,
            components=(regex_v, llm_v),
        )

    # ------------------------------------------------------------------
    # Split
    # ------------------------------------------------------------------

    @staticmethod
    def split(violations: list[Violation]) -> tuple[list[Violation], list[Violation]]:
        """Break hybrids back into their regex and llm components.

        The llm list holds hybrid components first (in merged order), then
        standalone llm violations, which preserves tie-breaking on re-merge.
        """
        regex_out: list[Violation] = []
        llm_from_hybrids: list[Violation] = []
        llm_out: list[Violation] = []
        for v in violations:
            method = DetectionMethod(v.detection_method)
            if method is DetectionMethod.HYBRID:
                regex_v, llm_v = v.components if len(v.components) == 2 else _rebuild_components(v)
                regex_out.append(regex_v)
                llm_from_hybrids.append(llm_v)
            elif method is DetectionMethod.REGEX:
                regex_out.append(v)
            else:
                llm_out.append(v)
        return regex_out, llm_from_hybrids + llm_out


def _rebuild_components(hybrid: Violation) -> tuple[Violation, Violation]:
    """Recreate the halves of a hybrid that lost its components in storage."""
    regex_v = replace(
        hybrid,
        detection_method=DetectionMethod.REGEX,
        confidence_score=None,
        llm_reasoning=None,
        components=(),
    )
    llm_v = Violation(
        control_id=hybrid.control_id,
        severity=hybrid.severity,
        description=hybrid.llm_reasoning or hybrid.description,
        file_path=hybrid.file_path,
        line_number=hybrid.line_number,
        code_snippet=hybrid.code_snippet,
        detection_method=DetectionMethod.LLM,
        confidence_score=hybrid.confidence_score,
        llm_reasoning=hybrid.llm_reasoning,
    )
    return regex_v, llm_v


def stamp(violations: list[Violation], scan_id: str, detected_at: str) -> list[Violation]:
    """Return copies stamped with scan id, detection time and unique ids."""
    seen: set[str] = set()
    stamped = []
    for v in violations:
        copy = replace(v, scan_id=scan_id, detected_at=detected_at, id="")
        vid = copy.compute_id()
        suffix = 1
        while vid in seen:
            vid = f"{copy.compute_id()}-{suffix}"
            suffix += 1
        seen.add(vid)
        copy.id = vid
        stamped.append(copy)
    return stamped


__all__ = ["DEFAULT_LINE_WINDOW", "Deduplicator", "stamp"]
