"""Suite Report (E2): one accumulation pass over a finished run.

The runner collects ``ExecutionResult`` objects per environment; the report
is filled from them once, after every pair has finished, instead of through
counters shared by running tests.

Only ``UNEXPECTED_FAILURE`` results mark the run as broken.
``UNEXPECTED_PASS`` results are listed so stale known-divergence
declarations can be cleaned up later.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from crossrun.outcome import ExecutionResult, Status

logger = logging.getLogger(__name__)

_MARKERS = {
    Status.PASS: "[ok]",
    Status.EXPECTED_FAILURE: "[~ ]",
    Status.UNEXPECTED_PASS: "[! ]",
    Status.UNEXPECTED_FAILURE: "[!!]",
}


# ── Exceptions ──


class ReportError(Exception):
    """Base exception for suite report errors."""


class BuildBrokenError(ReportError):
    """Raised by ``SuiteReport.raise_for_status`` on unexpected failures."""

    def __init__(self, failures: list[ExecutionResult]):
        names = ", ".join(r.display_name for r in failures[:10])
        if len(failures) > 10:
            names += f" +{len(failures) - 10} more"
        super().__init__(f"{len(failures)} unexpected failure(s): {names}")
        self.failures = failures


# ── Report ──


@dataclass
class SuiteReport:
    """Aggregated results of a suite run.

    Attributes:
        results: Every classified result, in run order.
        warnings: Non-fatal notes (unexpected passes, filtered-out runners).
    """

    results: list[ExecutionResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add(self, result: ExecutionResult) -> None:
        if result.status is None:
            raise ReportError(
                f"Result for {result.display_name or result.method_name} "
                f"has not been classified"
            )
        self.results.append(result)
        if result.status.is_warning:
            self.warnings.append(
                f"{result.display_name} passed but is declared as a known "
                f"divergence; the declaration may be stale."
            )

    def extend(self, results: Iterable[ExecutionResult]) -> None:
        for r in results:
            self.add(r)

    # ── Queries ──

    @property
    def counts(self) -> dict[Status, int]:
        tally = Counter(r.status for r in self.results)
        return {status: tally.get(status, 0) for status in Status}

    def with_status(self, status: Status) -> list[ExecutionResult]:
        return [r for r in self.results if r.status is status]

    @property
    def unexpected_failures(self) -> list[ExecutionResult]:
        return self.with_status(Status.UNEXPECTED_FAILURE)

    @property
    def unexpected_passes(self) -> list[ExecutionResult]:
        return self.with_status(Status.UNEXPECTED_PASS)

    @property
    def broken(self) -> bool:
        return any(r.status.breaks_build for r in self.results)

    @property
    def retried(self) -> list[ExecutionResult]:
        return [r for r in self.results if r.attempts_used > 1]

    def raise_for_status(self) -> None:
        """Raise ``BuildBrokenError`` if any result broke the build."""
        failures = self.unexpected_failures
        if failures:
            raise BuildBrokenError(failures)
        for r in self.unexpected_passes:
            logger.warning("Unexpected pass: %s", r.display_name)

    # ── Rendering ──

    def as_dict(self) -> dict:
        return {
            "broken": self.broken,
            "counts": {s.value: n for s, n in self.counts.items()},
            "results": [
                {
                    "class": r.class_name,
                    "method": r.method_name,
                    "environment": r.environment.nickname if r.environment else "",
                    "name": r.display_name,
                    "status": r.status.value,
                    "attempts": r.attempts_used,
                    "timed_out": r.timed_out,
                    "expected": list(r.expected),
                    "observed": list(r.observed) if r.observed is not None else None,
                    "error": r.failure_message,
                    "previous_errors": [
                        f"{type(e).__name__}: {e}" for e in r.previous_failures
                    ],
                    "elapsed_ms": r.elapsed_ms,
                }
                for r in self.results
            ],
            "warnings": list(self.warnings),
        }

    def as_text(self) -> str:
        """Render the report as readable plain text."""
        counts = self.counts
        lines: list[str] = []
        lines.append("=" * 60)
        lines.append("  crossrun Suite Report")
        lines.append("=" * 60)
        lines.append(
            f"\nTests: {len(self.results)} run, "
            f"{counts[Status.PASS]} passed, "
            f"{counts[Status.EXPECTED_FAILURE]} expected failures, "
            f"{counts[Status.UNEXPECTED_PASS]} unexpected passes, "
            f"{counts[Status.UNEXPECTED_FAILURE]} unexpected failures"
        )

        notable = [r for r in self.results if r.status is not Status.PASS]
        if notable:
            lines.append("\n" + "-" * 40)
            lines.append("  Details")
            lines.append("-" * 40)
            for r in notable:
                lines.append(f"\n{_MARKERS[r.status]} {r.label or r.display_name}")
                if r.failure_message:
                    lines.append(f"    {r.failure_message}")
                if r.attempts_used > 1:
                    lines.append(f"    Attempts: {r.attempts_used}")

        if self.warnings:
            lines.append("\nWarnings:")
            for w in self.warnings:
                lines.append(f"  - {w}")

        lines.append("\n" + ("BUILD BROKEN" if self.broken else "BUILD OK"))
        return "\n".join(lines)
