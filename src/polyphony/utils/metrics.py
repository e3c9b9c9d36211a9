"""
In-process counters for comparisons and per-model outcomes.

Fed by the orchestrator after each submission and exposed at ``/metrics``.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from polyphony.core.models import ModelResult, utcnow


@dataclass
class OutcomeCounters:
    """Aggregated outcomes for one provider or one model."""

    total_streams: int = 0
    completed_streams: int = 0
    failed_streams: int = 0
    synthetic_streams: int = 0
    total_elapsed_ms: float = 0.0
    total_tokens: int = 0
    costs: list[float] = field(default_factory=list)
    errors: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    @property
    def success_rate(self) -> float:
        if self.total_streams == 0:
            return 0.0
        return self.completed_streams / self.total_streams

    @property
    def avg_elapsed_ms(self) -> float:
        if self.completed_streams == 0:
            return 0.0
        return self.total_elapsed_ms / self.completed_streams

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_streams": self.total_streams,
            "completed_streams": self.completed_streams,
            "failed_streams": self.failed_streams,
            "synthetic_streams": self.synthetic_streams,
            "success_rate": self.success_rate,
            "avg_elapsed_ms": self.avg_elapsed_ms,
            "total_tokens": self.total_tokens,
            "total_cost_usd": math.fsum(self.costs),
            "errors": dict(self.errors),
        }


class Metrics:
    """
    Thread-safe metrics collector.

    A synthetic stream counts as failed: it carries an error even though
    text was delivered.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._comparisons = 0
        self._persistence_failures = 0
        self._providers: dict[str, OutcomeCounters] = defaultdict(OutcomeCounters)
        self._models: dict[str, OutcomeCounters] = defaultdict(OutcomeCounters)
        self._start_time = utcnow()

    def record_result(self, provider: str, result: ModelResult) -> None:
        """Record the terminal outcome of one model stream."""
        with self._lock:
            for counters in (self._providers[provider], self._models[result.model]):
                counters.total_streams += 1
                if result.success:
                    counters.completed_streams += 1
                    counters.total_elapsed_ms += result.elapsed_ms
                else:
                    counters.failed_streams += 1
                    counters.errors[_error_kind(result.error)] += 1
                if result.synthetic:
                    counters.synthetic_streams += 1
                if result.tokens is not None:
                    counters.total_tokens += result.tokens.total_tokens
                if result.estimated_cost_usd is not None:
                    counters.costs.append(result.estimated_cost_usd)

    def record_comparison(self) -> None:
        with self._lock:
            self._comparisons += 1

    def record_persistence_failure(self) -> None:
        with self._lock:
            self._persistence_failures += 1

    def get_summary(self) -> dict[str, Any]:
        """
        Get metrics summary.

        Returns:
            Dictionary with aggregated metrics
        """
        with self._lock:
            total = sum(c.total_streams for c in self._providers.values())
            completed = sum(c.completed_streams for c in self._providers.values())
            uptime = (utcnow() - self._start_time).total_seconds()

            return {
                "uptime_seconds": uptime,
                "comparisons": self._comparisons,
                "persistence_failures": self._persistence_failures,
                "total_streams": total,
                "completed_streams": completed,
                "failed_streams": total - completed,
                "success_rate": completed / total if total > 0 else 0,
                "providers": {name: c.as_dict() for name, c in self._providers.items()},
                "models": {name: c.as_dict() for name, c in self._models.items()},
            }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._comparisons = 0
            self._persistence_failures = 0
            self._providers.clear()
            self._models.clear()
            self._start_time = utcnow()


def _error_kind(error: str | None) -> str:
    if not error:
        return "unknown"
    lowered = error.lower()
    if "authentication" in lowered:
        return "authentication"
    if "not available" in lowered:
        return "unavailable"
    if "rate limit" in lowered:
        return "rate_limit"
    if "timed out" in lowered:
        return "timeout"
    return "upstream"
