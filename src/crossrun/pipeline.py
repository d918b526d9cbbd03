"""Execution Pipeline (D1): ordered middleware around one test-method attempt.

Each cross-cutting behavior is a middleware ``(invocation, next_) -> result``
that receives the rest of the chain as an explicit parameter.  The default
chain, outermost first:

  (a) lifecycle_hooks    set_up / tear_down, teardown on every exit path
  (b) rule_wrapping      class-level then method-level rules
  (c) timeout_boundary   wall-clock bound on everything inside it
  (d) expected_exception interpret a declared expected exception
  (e) invoke_body        the raw test body plus output verification

A pipeline runs exactly once and moves through
``NOT_STARTED -> RUNNING -> {SUCCEEDED, FAILED_WITH_EXCEPTION, TIMED_OUT}
-> FINALIZED``.  Both failure states leave ``run()`` as ``AttemptFailed``.

Pure Python. No external dependency.
"""

import functools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence

from crossrun.case import TestCase
from crossrun.registry import TestMethod

logger = logging.getLogger(__name__)

Next = Callable[["Invocation"], Any]
Middleware = Callable[["Invocation", Next], Any]


# ── Exceptions ──


class PipelineError(Exception):
    """Base exception for execution pipeline errors."""


class PipelineStateError(PipelineError):
    """Illegal pipeline state transition."""


class AttemptFailed(PipelineError):
    """One attempt ended in an exception or a timeout.

    Attributes:
        cause: The exception raised inside the chain.
        state: ``FAILED_WITH_EXCEPTION`` or ``TIMED_OUT``.
    """

    def __init__(self, cause: BaseException, state: "PipelineState"):
        super().__init__(
            f"Attempt {state.value}: {type(cause).__name__}: {cause}"
        )
        self.cause = cause
        self.state = state

    @property
    def timed_out(self) -> bool:
        return self.state is PipelineState.TIMED_OUT


class TimeoutExceededError(Exception):
    """The timeout boundary expired before the inner chain finished."""

    def __init__(self, seconds: float):
        super().__init__(f"test timed out after {seconds:g} seconds")
        self.seconds = seconds


class MultipleFailuresError(Exception):
    """More than one failure in a single attempt (e.g. body and teardown)."""

    def __init__(self, errors: Sequence[BaseException]):
        summary = "; ".join(f"{type(e).__name__}: {e}" for e in errors)
        super().__init__(f"{len(errors)} failures: {summary}")
        self.errors = list(errors)


# ── State ──


class PipelineState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_WITH_EXCEPTION = "failed_with_exception"
    TIMED_OUT = "timed_out"
    FINALIZED = "finalized"


_TRANSITIONS = {
    PipelineState.NOT_STARTED: {PipelineState.RUNNING},
    PipelineState.RUNNING: {
        PipelineState.SUCCEEDED,
        PipelineState.FAILED_WITH_EXCEPTION,
        PipelineState.TIMED_OUT,
    },
    PipelineState.SUCCEEDED: {PipelineState.FINALIZED},
    PipelineState.FAILED_WITH_EXCEPTION: {PipelineState.FINALIZED},
    PipelineState.TIMED_OUT: {PipelineState.FINALIZED},
    PipelineState.FINALIZED: set(),
}


@dataclass
class Invocation:
    """Everything one attempt needs: the method, its fresh case, and limits."""

    method: TestMethod
    test_case: TestCase
    timeout: Optional[float] = None
    attempt: int = 1


# ── Middleware ──


def lifecycle_hooks(invocation: Invocation, next_: Next) -> Any:
    """(a) Run set_up, the rest of the chain, then tear_down on every path.

    A failing set_up skips the body.  Body and teardown failures are both
    reported; two or more become a ``MultipleFailuresError``.
    ``KeyboardInterrupt`` still runs tear_down but is never collected.
    """
    case = invocation.test_case
    errors: list[BaseException] = []
    result = None
    try:
        case.set_up()
        result = next_(invocation)
    except KeyboardInterrupt:
        raise
    except BaseException as exc:
        errors.append(exc)
    finally:
        try:
            case.tear_down()
        except Exception as exc:
            logger.warning(
                "tear_down failed for %s: %s", invocation.method.name, exc,
            )
            errors.append(exc)

    if len(errors) == 1:
        raise errors[0]
    if errors:
        raise MultipleFailuresError(errors)
    return result


def rule_wrapping(invocation: Invocation, next_: Next) -> Any:
    """(b) Apply class-level rules around method-level rules."""
    rules = list(invocation.test_case.rules()) + list(invocation.method.rules)
    if not rules:
        return next_(invocation)
    return compose(rules, next_)(invocation)


def timeout_boundary(invocation: Invocation, next_: Next) -> Any:
    """(c) Bound the inner chain by ``invocation.timeout`` seconds.

    The inner chain runs on a daemon thread.  On expiry the attempt is
    abandoned with ``TimeoutExceededError``; a body that never returns is
    left behind and does not keep the interpreter alive.
    """
    seconds = invocation.timeout
    if not seconds:
        return next_(invocation)

    outcome: dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["result"] = next_(invocation)
        except BaseException as exc:
            outcome["error"] = exc

    worker = threading.Thread(
        target=target,
        name=f"crossrun-timeout-{invocation.method.name}",
        daemon=True,
    )
    worker.start()
    worker.join(seconds)

    if worker.is_alive():
        logger.info(
            "%s timed out after %gs (attempt %d)",
            invocation.method.name, seconds, invocation.attempt,
        )
        raise TimeoutExceededError(seconds)
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")


def expected_exception(invocation: Invocation, next_: Next) -> Any:
    """(d) A declared exception type turns raising it into success."""
    expected = invocation.method.expected_exception
    if expected is None:
        return next_(invocation)
    try:
        next_(invocation)
    except expected:
        return invocation.test_case.observed_outputs
    except Exception as exc:
        raise AssertionError(
            f"Unexpected exception, expected<{expected.__name__}> "
            f"but was<{type(exc).__name__}>"
        ) from exc
    raise AssertionError(f"Expected exception: {expected.__name__}")


def invoke_body(invocation: Invocation) -> Optional[tuple[str, ...]]:
    """(e) Call the raw body; verify any outputs it returns."""
    case = invocation.test_case
    observed = invocation.method.body(case)
    if observed is not None:
        case.verify(observed)
    return case.observed_outputs


DEFAULT_MIDDLEWARE: tuple[Middleware, ...] = (
    lifecycle_hooks,
    rule_wrapping,
    timeout_boundary,
    expected_exception,
)


def compose(middlewares: Iterable[Middleware], terminal: Next) -> Next:
    """Fold *middlewares* (outermost first) around *terminal*."""

    def wrap(next_: Next, middleware: Middleware) -> Next:
        return lambda invocation: middleware(invocation, next_)

    return functools.reduce(wrap, reversed(list(middlewares)), terminal)


# ── Pipeline ──


class ExecutionPipeline:
    """A composed, single-use chain for one attempt.

    Usage::

        pipeline = build_pipeline(method, case, timeout=5.0)
        try:
            observed = pipeline.run()
        except AttemptFailed as failure:
            ...
    """

    def __init__(
        self,
        invocation: Invocation,
        middlewares: Iterable[Middleware] = DEFAULT_MIDDLEWARE,
        terminal: Next = invoke_body,
    ):
        self.invocation = invocation
        self.middlewares = tuple(middlewares)
        self._chain = compose(self.middlewares, terminal)
        self.state = PipelineState.NOT_STARTED
        self.history: list[PipelineState] = [self.state]
        self.cause: Optional[BaseException] = None
        self.result: Any = None

    def _transition(self, new_state: PipelineState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise PipelineStateError(
                f"Illegal transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    @property
    def terminal_state(self) -> Optional[PipelineState]:
        """The outcome state the pipeline passed through before finalizing."""
        for state in reversed(self.history):
            if state in _TRANSITIONS[PipelineState.RUNNING]:
                return state
        return None

    def run(self) -> Any:
        """Execute the chain once.

        Returns:
            The observed outputs recorded by the body, if any.

        Any ``BaseException`` from the chain (``SystemExit`` included) is an
        ordinary attempt failure, except ``KeyboardInterrupt``, which is
        re-raised once the pipeline is finalized.

        Raises:
            AttemptFailed: If the chain raised or timed out.
            PipelineStateError: If the pipeline was already run.
        """
        self._transition(PipelineState.RUNNING)
        try:
            self.result = self._chain(self.invocation)
        except BaseException as exc:
            self.cause = exc
            self._transition(
                PipelineState.TIMED_OUT if _is_timeout(exc)
                else PipelineState.FAILED_WITH_EXCEPTION
            )
            if isinstance(exc, KeyboardInterrupt):
                self._transition(PipelineState.FINALIZED)
                raise
        else:
            self._transition(PipelineState.SUCCEEDED)

        outcome = self.state
        self._transition(PipelineState.FINALIZED)

        if self.cause is not None:
            raise AttemptFailed(self.cause, outcome) from self.cause
        return self.result


def build_pipeline(
    method: TestMethod,
    test_case: TestCase,
    timeout: Optional[float] = None,
    attempt: int = 1,
    middlewares: Iterable[Middleware] = DEFAULT_MIDDLEWARE,
) -> ExecutionPipeline:
    """Standard pipeline for *method* bound to a fresh *test_case*."""
    invocation = Invocation(
        method=method,
        test_case=test_case,
        timeout=method.timeout if method.timeout is not None else timeout,
        attempt=attempt,
    )
    return ExecutionPipeline(invocation, middlewares)


# ── Helpers ──


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutExceededError):
        return True
    if isinstance(exc, MultipleFailuresError):
        return any(isinstance(e, TimeoutExceededError) for e in exc.errors)
    return False
