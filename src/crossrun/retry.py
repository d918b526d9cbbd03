"""Retry Controller (D2): repeat a failing attempt up to a bound.

Every attempt gets a pipeline built by the caller's factory around a freshly
constructed test case, so no state leaks from one attempt into the next.
The first success ends the loop.  When all attempts fail, the last failure
is the one reported; earlier causes are kept only as diagnostics.

Pure Python. No external dependency.
"""

import logging
import time
from typing import Callable

from crossrun.outcome import ExecutionResult
from crossrun.pipeline import AttemptFailed, ExecutionPipeline

logger = logging.getLogger(__name__)

AttemptFactory = Callable[[int], ExecutionPipeline]


class RetryController:
    """Runs attempts until one succeeds or ``max_attempts`` is reached.

    Configuration errors raised by the factory itself (anything other than
    ``AttemptFailed``) are not retried and propagate to the caller.
    """

    def __init__(self, max_attempts: int = 1):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts

    def run(self, attempt_factory: AttemptFactory) -> ExecutionResult:
        failures: list[AttemptFailed] = []
        start = time.perf_counter()

        for attempt in range(1, self.max_attempts + 1):
            pipeline = attempt_factory(attempt)
            try:
                observed = pipeline.run()
            except AttemptFailed as failure:
                failures.append(failure)
                if attempt < self.max_attempts:
                    logger.warning(
                        "%s failed on attempt %d/%d, retrying: %s",
                        pipeline.invocation.method.name, attempt,
                        self.max_attempts, failure,
                    )
                    continue
                return ExecutionResult(
                    observed=pipeline.invocation.test_case.observed_outputs,
                    exception=failure.cause,
                    succeeded=False,
                    timed_out=failure.timed_out,
                    attempts_used=attempt,
                    elapsed_ms=_elapsed_ms(start),
                    previous_failures=[f.cause for f in failures[:-1]],
                )

            if failures:
                logger.info(
                    "%s passed on attempt %d/%d",
                    pipeline.invocation.method.name, attempt, self.max_attempts,
                )
            return ExecutionResult(
                observed=observed,
                succeeded=True,
                attempts_used=attempt,
                elapsed_ms=_elapsed_ms(start),
                previous_failures=[f.cause for f in failures],
            )

        raise AssertionError("unreachable: max_attempts >= 1")


def run_with_retry(
    attempt_factory: AttemptFactory,
    max_attempts: int = 1,
) -> ExecutionResult:
    """Shortcut for ``RetryController(max_attempts).run(attempt_factory)``."""
    return RetryController(max_attempts).run(attempt_factory)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)
