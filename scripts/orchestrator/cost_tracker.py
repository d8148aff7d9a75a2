#!/usr/bin/env python3
"""
Per-scan AI cost governor.

Accumulates token usage for one scan and reports when spend first goes over
the configured limit. The governor never decides whether to continue; the
orchestrator surfaces ``LimitExceeded`` to the caller and, after a
"continue" answer, calls ``suspend()`` so the scan is prompted only once.

All methods are serialized by a lock; one instance belongs to one scan.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Union

from exceptions import CostLimitExceededError
from hybrid.models import ScanCost, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_COST_LIMIT_USD = 1.0


@dataclass(frozen=True)
class WithinLimit:
    current_cost: float
    limit: float

    @property
    def exceeded(self) -> bool:
        return False


@dataclass(frozen=True)
class LimitExceeded:
    current_cost: float
    limit: float
    files_analyzed: int
    total_files: int

    @property
    def exceeded(self) -> bool:
        return True


LimitCheck = Union[WithinLimit, LimitExceeded]


class CostGovernor:
    """Running cost totals for one scan.

    Args:
        limit: Spend ceiling in USD. Exceeded means strictly greater.
        total_files: Number of files selected for AI analysis.
    """

    def __init__(self, limit: float = DEFAULT_COST_LIMIT_USD, total_files: int = 0):
        if limit < 0:
            raise ValueError(f"Invalid cost limit {limit!r}. Must be >= 0.")
        self.limit = float(limit)
        self.total_files = total_files
        self._lock = threading.Lock()
        self._files = 0
        self._input = 0
        self._output = 0
        self._cache_read = 0
        self._cache_write = 0
        self._cost = 0.0
        self._suspended = False
        self._frozen = False

    def record(self, usage: TokenUsage, file_analyzed: bool = True) -> None:
        """Add one call's usage. ``file_analyzed`` counts it as a finished file.

        Raises:
            CostLimitExceededError: If the ledger was frozen at scan end.
        """
        with self._lock:
            if self._frozen:
                raise CostLimitExceededError("cost ledger is frozen; the scan has ended")
            self._input += usage.input_tokens
            self._output += usage.output_tokens
            self._cache_read += usage.cache_read_tokens
            self._cache_write += usage.cache_write_tokens
            self._cost += usage.cost_usd
            if file_analyzed:
                self._files += 1
            logger.debug("Scan cost now $%.4f / $%.2f", self._cost, self.limit)

    def check_limit(self) -> LimitCheck:
        with self._lock:
            if not self._suspended and self._cost > self.limit:
                return LimitExceeded(
                    current_cost=self._cost,
                    limit=self.limit,
                    files_analyzed=self._files,
                    total_files=self.total_files,
                )
            return WithinLimit(current_cost=self._cost, limit=self.limit)

    def suspend(self) -> None:
        """Stop reporting the limit for the rest of the scan."""
        with self._lock:
            self._suspended = True
            logger.info("Cost limit checks suspended at $%.4f", self._cost)

    @property
    def suspended(self) -> bool:
        with self._lock:
            return self._suspended

    def freeze(self) -> ScanCost:
        with self._lock:
            self._frozen = True
        return self.snapshot()

    @property
    def frozen(self) -> bool:
        with self._lock:
            return self._frozen

    def snapshot(self) -> ScanCost:
        with self._lock:
            return ScanCost(
                files_analyzed_with_llm=self._files,
                input_tokens=self._input,
                output_tokens=self._output,
                cache_read_tokens=self._cache_read,
                cache_write_tokens=self._cache_write,
                total_cost_usd=round(self._cost, 6),
            )


__all__ = ["CostGovernor", "DEFAULT_COST_LIMIT_USD", "LimitCheck", "LimitExceeded", "WithinLimit"]
