"""Test case base class and the system-under-test contract.

A fresh ``TestCase`` instance is created for every attempt of every
(method, environment) pair.  The runner configures it with the environment,
execution mode, resolved expectations and the system under test before the
pipeline runs.
"""

from typing import Callable, Optional, Protocol, Sequence

from crossrun.environment import Environment, ExecutionMode


class OutputMismatchError(AssertionError):
    """Observed outputs differ from the resolved expectations."""

    def __init__(self, expected: Sequence[str], observed: Sequence[str]):
        super().__init__(
            f"expected:<{list(expected)}> but was:<{list(observed)}>"
        )
        self.expected = tuple(expected)
        self.observed = tuple(observed)


class SystemUnderTest(Protocol):
    """External engine that produces observed outputs for a test case."""

    def run(self, test_case: "TestCase") -> Sequence[str]:
        ...


class TestCase:
    """Base class for test-case objects run by crossrun.

    Subclasses override ``set_up``/``tear_down`` for per-test lifecycle work
    and ``rules`` to contribute wrapping middleware.  Test bodies receive the
    instance and usually end with ``run_target()`` or ``verify(...)``.
    """

    __test__ = False  # not a pytest test class

    def __init__(self) -> None:
        self.environment: Optional[Environment] = None
        self.execution_mode: ExecutionMode = ExecutionMode.SIMULATED
        self.expected_outputs: tuple[str, ...] = ()
        self.observed_outputs: Optional[tuple[str, ...]] = None
        self.system_under_test: Optional[SystemUnderTest] = None

    def configure(
        self,
        environment: Environment,
        mode: ExecutionMode,
        expected_outputs: Sequence[str],
        system_under_test: Optional[SystemUnderTest] = None,
    ) -> None:
        self.environment = environment
        self.execution_mode = mode
        self.expected_outputs = tuple(expected_outputs)
        self.system_under_test = system_under_test

    @property
    def uses_real_engine(self) -> bool:
        return self.execution_mode is ExecutionMode.REAL

    # ── Lifecycle hooks ──

    def set_up(self) -> None:
        pass

    def tear_down(self) -> None:
        pass

    def rules(self) -> list[Callable]:
        """Class-level wrapping middleware, outermost first."""
        return []

    # ── Helpers for test bodies ──

    def run_target(self) -> tuple[str, ...]:
        """Run this case against the system under test and record the outputs."""
        if self.system_under_test is None:
            raise RuntimeError("No system under test configured for this case")
        self.observed_outputs = tuple(self.system_under_test.run(self))
        return self.observed_outputs

    def verify(self, observed: Sequence[str]) -> None:
        """Compare *observed* against the resolved expectations.

        Raises:
            OutputMismatchError: If they differ.
        """
        self.observed_outputs = tuple(observed)
        if self.observed_outputs != self.expected_outputs:
            raise OutputMismatchError(self.expected_outputs, self.observed_outputs)
