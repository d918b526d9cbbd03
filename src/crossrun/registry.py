"""Test Registry (C3): explicit per-method metadata and test-class registration.

Metadata that other harnesses read from annotations at run time is declared
here once, at registration, through ``MethodBuilder`` or the
``TestClass.test`` decorator.  The resulting ``TestMethod`` objects are
frozen and shared read-only by every environment runner.

Pure Python. No external dependency.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from crossrun.case import TestCase
from crossrun.environment import (
    KNOWN_ENVIRONMENTS,
    Environment,
    ExecutionMode,
    Selector,
    matches_any,
    parse_selector,
)
from crossrun.expectations import (
    ExpectationError,
    ExpectationTable,
    Expectations,
    OverrideTable,
)

logger = logging.getLogger(__name__)

Body = Callable[[TestCase], Optional[Sequence[str]]]


# ── Exceptions ──


class RegistrationError(ExpectationError):
    """Invalid test method or test class registration."""


# ── Data Classes ──


def _run_target(case: TestCase) -> Sequence[str]:
    return case.run_target()


@dataclass(frozen=True)
class TestMethod:
    """Frozen metadata for one test method.

    Attributes:
        name: Method identifier, unique within its test class.
        body: Callable receiving the test case.  A non-``None`` return value
            is compared against the resolved expectations.
        expectations: Plain expectation table.
        standards_expectations: Table used instead of ``expectations`` when
            the owning class runs in standards mode.
        overrides: Mode-scoped override tables.
        known_divergence: Selectors where a failing attempt is tolerated.
        tries: Maximum attempts (1 = no retry).
        timeout: Per-attempt wall-clock limit in seconds.
        expected_exception: Exception type the body must raise.
        rules: Method-level wrapping middleware, outermost first.
    """

    __test__ = False

    name: str
    body: Body = _run_target
    expectations: ExpectationTable = field(default_factory=ExpectationTable)
    standards_expectations: Optional[ExpectationTable] = None
    overrides: Mapping[ExecutionMode, OverrideTable] = field(default_factory=dict)
    known_divergence: frozenset[Selector] = frozenset()
    tries: int = 1
    timeout: Optional[float] = None
    expected_exception: Optional[type[BaseException]] = None
    rules: tuple[Callable, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "overrides", MappingProxyType(dict(self.overrides)),
        )

    def override_for(self, mode: ExecutionMode) -> Optional[OverrideTable]:
        return self.overrides.get(mode)

    def expectations_for(self, standards_mode: bool) -> ExpectationTable:
        if standards_mode and self.standards_expectations is not None:
            return self.standards_expectations
        return self.expectations

    def is_known_divergent(self, environment: Environment) -> bool:
        return matches_any(self.known_divergence, environment)


# ── Builder ──


class MethodBuilder:
    """Fluent builder for ``TestMethod``.

    Usage::

        method = (
            MethodBuilder("inWindow", body)
            .expect(default="true", by_family={"IE": "false"})
            .known_divergence("FF")
            .tries(3)
            .build()
        )
    """

    def __init__(
        self,
        name: str,
        body: Optional[Body] = None,
        environments: Iterable[Environment] = KNOWN_ENVIRONMENTS,
    ):
        if not name:
            raise RegistrationError("Test method name must not be empty")
        self._name = name
        self._body = body or _run_target
        self._environments = tuple(environments)
        self._expectations: Optional[ExpectationTable] = None
        self._standards: Optional[ExpectationTable] = None
        self._overrides: dict[ExecutionMode, OverrideTable] = {}
        self._known_divergence: set[Selector] = set()
        self._tries = 1
        self._timeout: Optional[float] = None
        self._expected_exception: Optional[type[BaseException]] = None
        self._rules: list[Callable] = []

    def expect(
        self,
        declaration: Optional[Expectations] = None,
        **kwargs: Any,
    ) -> "MethodBuilder":
        if self._expectations is not None:
            raise RegistrationError(
                f"Expectations already declared for '{self._name}'"
            )
        self._expectations = ExpectationTable.declare(
            declaration or Expectations(**kwargs), self._environments,
        )
        return self

    def expect_standards(
        self,
        declaration: Optional[Expectations] = None,
        **kwargs: Any,
    ) -> "MethodBuilder":
        if self._standards is not None:
            raise RegistrationError(
                f"Standards-mode expectations already declared for '{self._name}'"
            )
        self._standards = ExpectationTable.declare(
            declaration or Expectations(**kwargs), self._environments,
        )
        return self

    def override(
        self,
        mode: ExecutionMode,
        declaration: Optional[Expectations] = None,
        **kwargs: Any,
    ) -> "MethodBuilder":
        if mode in self._overrides:
            raise RegistrationError(
                f"Override for mode '{mode.value}' already declared for "
                f"'{self._name}'"
            )
        self._overrides[mode] = OverrideTable.declare(
            mode, declaration or Expectations(**kwargs), self._environments,
        )
        return self

    def known_divergence(self, *selectors: Selector | str) -> "MethodBuilder":
        for s in selectors:
            self._known_divergence.add(parse_selector(s, self._environments))
        return self

    def tries(self, count: int) -> "MethodBuilder":
        if count < 1:
            raise ValueError(f"tries must be >= 1, got {count}")
        self._tries = count
        return self

    def timeout(self, seconds: Optional[float]) -> "MethodBuilder":
        if seconds is not None and seconds <= 0:
            raise ValueError(f"timeout must be positive, got {seconds}")
        self._timeout = seconds
        return self

    def raises(self, exc_type: type[BaseException]) -> "MethodBuilder":
        self._expected_exception = exc_type
        return self

    def rule(self, middleware: Callable) -> "MethodBuilder":
        self._rules.append(middleware)
        return self

    def build(self) -> TestMethod:
        return TestMethod(
            name=self._name,
            body=self._body,
            expectations=self._expectations or ExpectationTable(),
            standards_expectations=self._standards,
            overrides=self._overrides,
            known_divergence=frozenset(self._known_divergence),
            tries=self._tries,
            timeout=self._timeout,
            expected_exception=self._expected_exception,
            rules=tuple(self._rules),
        )


# ── Test Class ──


class TestClass:
    """A named group of test methods sharing one test-case factory.

    Usage::

        selection = TestClass("SelectionTest", factory=PageCase)

        @selection.test(expect=Expectations(default="true"), tries=2)
        def equality(case):
            return case.run_target()
    """

    __test__ = False

    def __init__(
        self,
        name: str,
        factory: Callable[[], TestCase] = TestCase,
        standards_mode: bool = False,
        environments: Iterable[Environment] = KNOWN_ENVIRONMENTS,
    ):
        self.name = name
        self.factory = factory
        self.standards_mode = standards_mode
        self.environments = tuple(environments)
        self._methods: dict[str, TestMethod] = {}

    @property
    def methods(self) -> tuple[TestMethod, ...]:
        return tuple(self._methods.values())

    @property
    def simple_name(self) -> str:
        return self.name.rsplit(".", 1)[-1]

    def has_test_methods(self) -> bool:
        return bool(self._methods)

    def add(self, method: TestMethod | MethodBuilder) -> TestMethod:
        if isinstance(method, MethodBuilder):
            method = method.build()
        if method.name in self._methods:
            raise RegistrationError(
                f"Duplicate test method '{method.name}' in {self.name}"
            )
        self._methods[method.name] = method
        logger.debug("Registered %s.%s", self.name, method.name)
        return method

    def builder(self, name: str, body: Optional[Body] = None) -> MethodBuilder:
        return MethodBuilder(name, body, self.environments)

    def test(
        self,
        name: Optional[str] = None,
        *,
        expect: Optional[Expectations] = None,
        standards: Optional[Expectations] = None,
        overrides: Optional[Mapping[ExecutionMode, Expectations]] = None,
        known_divergence: Iterable[Selector | str] = (),
        tries: int = 1,
        timeout: Optional[float] = None,
        raises: Optional[type[BaseException]] = None,
    ) -> Callable[[Body], Body]:
        """Decorator registering a function as a test method."""

        def decorator(func: Body) -> Body:
            builder = self.builder(name or func.__name__, func)
            if expect is not None:
                builder.expect(expect)
            if standards is not None:
                builder.expect_standards(standards)
            for mode, declaration in (overrides or {}).items():
                builder.override(mode, declaration)
            builder.known_divergence(*known_divergence)
            builder.tries(tries).timeout(timeout)
            if raises is not None:
                builder.raises(raises)
            self.add(builder)
            return func

        return decorator

    def create_test(self) -> TestCase:
        """Instantiate a fresh test case.

        Raises:
            RegistrationError: If the factory does not produce a ``TestCase``.
        """
        instance = self.factory()
        if not isinstance(instance, TestCase):
            raise RegistrationError(
                f"Test class {self.name} must produce TestCase instances, "
                f"got {type(instance).__name__}"
            )
        return instance
