"""Outcome Classifier (D3): final reportable status per (method, environment).

Folds the attempt outcome together with the method's known-divergence
declaration:

  | attempt succeeded | known divergent | status             |
  |-------------------|-----------------|--------------------|
  | yes               | no              | PASS               |
  | yes               | yes             | UNEXPECTED_PASS    |
  | no                | yes             | EXPECTED_FAILURE   |
  | no                | no              | UNEXPECTED_FAILURE |

Only ``UNEXPECTED_FAILURE`` breaks the build.  ``UNEXPECTED_PASS`` flags a
stale divergence declaration and is reported without failing.

Pure Python. No external dependency.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from crossrun.environment import Environment


class Status(Enum):
    """Reportable outcome of one (method, environment) pair."""

    PASS = "pass"
    EXPECTED_FAILURE = "expected_failure"
    UNEXPECTED_FAILURE = "unexpected_failure"
    UNEXPECTED_PASS = "unexpected_pass"

    @property
    def breaks_build(self) -> bool:
        return self is Status.UNEXPECTED_FAILURE

    @property
    def is_warning(self) -> bool:
        return self is Status.UNEXPECTED_PASS


_TRUTH_TABLE = {
    (True, False): Status.PASS,
    (True, True): Status.UNEXPECTED_PASS,
    (False, True): Status.EXPECTED_FAILURE,
    (False, False): Status.UNEXPECTED_FAILURE,
}


def classify(attempt_succeeded: bool, known_divergent: bool) -> Status:
    """Map an attempt outcome and divergence flag to a ``Status``."""
    return _TRUTH_TABLE[(bool(attempt_succeeded), bool(known_divergent))]


@dataclass
class ExecutionResult:
    """Outcome of one (method, environment) execution.

    Attributes:
        class_name: Owning test class.
        method_name: Test method identifier.
        environment: Environment the method ran against.
        display_name: Environment-qualified name (``"method [FF68]"``).
        label: Display name with report-only prefixes (e.g. ``"(NYI) "``).
        expected: Resolved expected outputs.
        observed: Outputs recorded by the final attempt, if any.
        exception: Cause of the final attempt's failure, ``None`` on success.
        succeeded: Whether the final attempt succeeded.
        timed_out: Whether the final attempt hit the timeout boundary.
        attempts_used: Attempts run (0 when setup failed before any attempt).
        known_divergent: Whether a failure was declared tolerable here.
        status: Classified status; ``None`` until classified.
        elapsed_ms: Wall-clock time across all attempts.
        previous_failures: Causes of discarded earlier attempts, oldest first.
            Diagnostic only; never the reported failure.
    """

    class_name: str = ""
    method_name: str = ""
    environment: Optional[Environment] = None
    display_name: str = ""
    label: str = ""
    expected: tuple[str, ...] = ()
    observed: Optional[tuple[str, ...]] = None
    exception: Optional[BaseException] = None
    succeeded: bool = False
    timed_out: bool = False
    attempts_used: int = 0
    known_divergent: bool = False
    status: Optional[Status] = None
    elapsed_ms: float = 0.0
    previous_failures: list[BaseException] = field(default_factory=list)

    @property
    def failure_message(self) -> str:
        if self.exception is None:
            return ""
        return f"{type(self.exception).__name__}: {self.exception}"
