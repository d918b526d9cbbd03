"""Environment Runner (E1): runs registered test methods per environment.

For each (method, environment) pair the runner:

  1. resolves the expected outputs (a redundant override fails the test
     immediately; it is a configuration defect, not flakiness),
  2. builds a pipeline around a fresh test case for every attempt and runs
     it through the retry controller,
  3. classifies the final attempt against the known-divergence declaration.

``run_suite`` drives every (test class, environment) runner and fills a
``SuiteReport`` from the collected results in a single pass at the end.

Under ``ExecutionMode.REAL`` retries are disabled and known-divergence
declarations are ignored: they describe gaps of the internal simulation.
"""

import concurrent.futures
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from crossrun.case import SystemUnderTest, TestCase
from crossrun.environment import KNOWN_ENVIRONMENTS, Environment, ExecutionMode
from crossrun.identity import NameFilter, TestIdentity
from crossrun.outcome import ExecutionResult, Status, classify
from crossrun.pipeline import ExecutionPipeline, build_pipeline
from crossrun.registry import TestClass, TestMethod
from crossrun.report import SuiteReport
from crossrun.resolver import ExpectationResolver, ResolutionError
from crossrun.retry import RetryController

logger = logging.getLogger(__name__)

# Set to 1/true/yes to get class-qualified test names
QUALIFIED_NAMES_ENV = "CROSSRUN_QUALIFIED_NAMES"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY


# ── Exceptions ──


class RunnerError(Exception):
    """Base exception for runner errors."""


class NoTestsRemainError(RunnerError):
    """A filter removed every test method of a runner."""


# ── Configuration ──


@dataclass
class RunnerConfig:
    """Configuration for a suite run.

    Attributes:
        environments: Environments every test class runs against.
        mode: Execution mode of the system under test.
        qualified_names: Use ``Class.method`` plain names.  Defaults to the
            ``CROSSRUN_QUALIFIED_NAMES`` environment variable.
        default_timeout: Per-attempt timeout in seconds for methods that
            declare none.  ``None`` disables the boundary.
        workers: Number of (class, environment) runners executed in
            parallel.  1 runs everything on the calling thread.
    """

    environments: tuple[Environment, ...] = KNOWN_ENVIRONMENTS
    mode: ExecutionMode = ExecutionMode.SIMULATED
    qualified_names: bool = field(
        default_factory=lambda: _env_flag(QUALIFIED_NAMES_ENV),
    )
    default_timeout: Optional[float] = None
    workers: int = 1

    def __post_init__(self) -> None:
        if not self.environments:
            raise RunnerError("At least one environment is required")
        if self.workers < 1:
            raise RunnerError(f"workers must be >= 1, got {self.workers}")


# ── Runner ──


class EnvironmentRunner:
    """Runs the methods of one test class against one environment.

    Usage::

        runner = EnvironmentRunner(selection, FIREFOX_68, system_under_test=sut)
        results = runner.run()
    """

    def __init__(
        self,
        test_class: TestClass,
        environment: Environment,
        system_under_test: Optional[SystemUnderTest] = None,
        mode: ExecutionMode = ExecutionMode.SIMULATED,
        identity: Optional[TestIdentity] = None,
        default_timeout: Optional[float] = None,
        resolver: Optional[ExpectationResolver] = None,
    ):
        self.test_class = test_class
        self.environment = environment
        self.system_under_test = system_under_test
        self.mode = mode
        self.identity = identity or TestIdentity()
        self.default_timeout = default_timeout
        self.resolver = resolver or ExpectationResolver()
        # Computed once so that filtering sticks for later runs
        self._methods: list[TestMethod] = list(test_class.methods)

    @property
    def name(self) -> str:
        return self.identity.group_name(self.environment, self.mode)

    @property
    def methods(self) -> tuple[TestMethod, ...]:
        return tuple(self._methods)

    @property
    def uses_real_engine(self) -> bool:
        return self.mode is ExecutionMode.REAL

    def plain_name(self, method: TestMethod) -> str:
        return self.identity.plain_name(self.test_class.name, method.name)

    def display_name(self, method: TestMethod) -> str:
        return self.identity.display_name(
            self.test_class.name, method.name, self.environment, self.mode,
        )

    def filter(self, name_filter: NameFilter) -> None:
        """Keep only methods the filter selects.

        The bare method name and its ``method [label]`` form are always
        accepted, also when qualified naming is on.

        Raises:
            NoTestsRemainError: If no method is left.
        """
        self._methods = [m for m in self._methods if self._selects(name_filter, m)]
        if not self._methods:
            raise NoTestsRemainError(
                f"No tests in {self.test_class.name} {self.name} match "
                f"{name_filter.pattern!r}"
            )

    def _selects(self, name_filter: NameFilter, method: TestMethod) -> bool:
        label = self.identity.environment_label(self.environment, self.mode)
        if name_filter.accepts(method.name, f"{method.name} [{label}]"):
            return True
        return name_filter.accepts(self.plain_name(method), self.display_name(method))

    def is_known_divergent(self, method: TestMethod) -> bool:
        if self.uses_real_engine:
            return False
        return method.is_known_divergent(self.environment)

    def tries_for(self, method: TestMethod) -> int:
        return 1 if self.uses_real_engine else method.tries

    def resolve_expectations(self, method: TestMethod) -> tuple[str, ...]:
        """Resolve the active table; standards-mode tables take no overrides."""
        standards = (
            self.test_class.standards_mode
            and method.standards_expectations is not None
        )
        table = method.expectations_for(self.test_class.standards_mode)
        override = None if standards else method.override_for(self.mode)
        return self.resolver.resolve(table, override, self.environment, self.mode)

    def create_test(self, expected: tuple[str, ...]) -> TestCase:
        case = self.test_class.create_test()
        case.configure(
            self.environment, self.mode, expected, self.system_under_test,
        )
        return case

    def run_method(self, method: TestMethod) -> ExecutionResult:
        """Resolve, execute with retries, and classify one method."""
        known_divergent = self.is_known_divergent(method)
        display = self.display_name(method)
        start = time.perf_counter()

        try:
            expected = self.resolve_expectations(method)
        except ResolutionError as exc:
            logger.error("%s: %s", display, exc)
            result = ExecutionResult(
                exception=exc,
                attempts_used=0,
                status=Status.UNEXPECTED_FAILURE,
                elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return self._identify(result, method, known_divergent=False)

        def attempt_factory(attempt: int) -> ExecutionPipeline:
            return build_pipeline(
                method,
                self.create_test(expected),
                timeout=self.default_timeout,
                attempt=attempt,
            )

        logger.info("Running %s", display)
        result = RetryController(self.tries_for(method)).run(attempt_factory)
        result.expected = expected
        result.status = classify(result.succeeded, known_divergent)

        if result.status is Status.UNEXPECTED_PASS:
            logger.warning(
                "%s passed but is declared as a known divergence", display,
            )
        elif result.status is Status.UNEXPECTED_FAILURE:
            logger.info("%s failed: %s", display, result.failure_message)

        return self._identify(result, method, known_divergent)

    def run(self) -> list[ExecutionResult]:
        """Run every (filtered) method.  One failing method never stops the rest."""
        results: list[ExecutionResult] = []
        for method in self._methods:
            try:
                results.append(self.run_method(method))
            except Exception as exc:
                logger.exception(
                    "Runner error in %s", self.display_name(method),
                )
                result = ExecutionResult(
                    exception=exc, status=Status.UNEXPECTED_FAILURE,
                )
                results.append(self._identify(result, method, False))
        return results

    def _identify(
        self,
        result: ExecutionResult,
        method: TestMethod,
        known_divergent: bool,
    ) -> ExecutionResult:
        result.class_name = self.test_class.name
        result.method_name = method.name
        result.environment = self.environment
        result.display_name = self.display_name(method)
        result.known_divergent = known_divergent
        result.label = self.identity.report_label(
            self.test_class.name, method.name, self.environment, self.mode,
            known_divergent=known_divergent,
        )
        return result


# ── Suite ──


def build_runners(
    test_classes: Iterable[TestClass],
    config: RunnerConfig,
    system_under_test: Optional[SystemUnderTest] = None,
) -> list[EnvironmentRunner]:
    """One runner per (environment, test class) with at least one method."""
    identity = TestIdentity(qualified=config.qualified_names)
    classes = [tc for tc in test_classes if tc.has_test_methods()]
    return [
        EnvironmentRunner(
            tc,
            env,
            system_under_test=system_under_test,
            mode=config.mode,
            identity=identity,
            default_timeout=config.default_timeout,
        )
        for env in config.environments
        for tc in classes
    ]


def run_suite(
    test_classes: Iterable[TestClass],
    system_under_test: Optional[SystemUnderTest] = None,
    config: Optional[RunnerConfig] = None,
    name_filter: Optional[NameFilter] = None,
) -> SuiteReport:
    """Run every test class against every configured environment.

    Returns:
        A ``SuiteReport`` built from all results once the run is complete.
    """
    config = config or RunnerConfig()
    report = SuiteReport()

    runners: list[EnvironmentRunner] = []
    for runner in build_runners(test_classes, config, system_under_test):
        if name_filter is not None:
            try:
                runner.filter(name_filter)
            except NoTestsRemainError:
                logger.debug("Filtered out %s %s", runner.test_class.name, runner.name)
                continue
        runners.append(runner)

    if not runners:
        report.warnings.append("No tests to run.")
        return report

    logger.info(
        "Running %d runner(s) in %s mode with %d worker(s)",
        len(runners), config.mode.value, config.workers,
    )

    if config.workers == 1:
        collected = [runner.run() for runner in runners]
    else:
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=config.workers,
        ) as pool:
            collected = list(pool.map(lambda r: r.run(), runners))

    for results in collected:
        report.extend(results)

    logger.info(
        "Suite finished: %d results, %d unexpected failures",
        len(report.results), len(report.unexpected_failures),
    )
    return report
