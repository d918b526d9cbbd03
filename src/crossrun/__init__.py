"""crossrun: run one test body against many simulated environments."""

from crossrun.case import OutputMismatchError, SystemUnderTest, TestCase
from crossrun.environment import (
    CHROME,
    FIREFOX_60,
    FIREFOX_68,
    INTERNET_EXPLORER,
    KNOWN_ENVIRONMENTS,
    Environment,
    ExecutionMode,
    Family,
    Selector,
    SelectorError,
    UnknownSelectorError,
    matches,
    matches_any,
    parse_selector,
)
from crossrun.expectations import (
    DuplicateSelectorError,
    ExpectationError,
    ExpectationTable,
    Expectations,
    OverrideTable,
)
from crossrun.registry import (
    MethodBuilder,
    RegistrationError,
    TestClass,
    TestMethod,
)
from crossrun.resolver import (
    ExpectationResolver,
    RedundantOverrideError,
    ResolutionError,
    resolve,
)
from crossrun.pipeline import (
    AttemptFailed,
    ExecutionPipeline,
    Invocation,
    MultipleFailuresError,
    PipelineError,
    PipelineState,
    PipelineStateError,
    TimeoutExceededError,
    build_pipeline,
)
from crossrun.retry import RetryController, run_with_retry
from crossrun.outcome import ExecutionResult, Status, classify
from crossrun.identity import NameFilter, TestIdentity
from crossrun.runner import (
    EnvironmentRunner,
    NoTestsRemainError,
    RunnerConfig,
    RunnerError,
    run_suite,
)
from crossrun.report import BuildBrokenError, ReportError, SuiteReport

__all__ = [
    # Environments (C1)
    "Environment",
    "Family",
    "ExecutionMode",
    "Selector",
    "KNOWN_ENVIRONMENTS",
    "CHROME",
    "FIREFOX_60",
    "FIREFOX_68",
    "INTERNET_EXPLORER",
    "matches",
    "matches_any",
    "parse_selector",
    "SelectorError",
    "UnknownSelectorError",
    # Expectation Tables (C2)
    "Expectations",
    "ExpectationTable",
    "OverrideTable",
    "ExpectationError",
    "DuplicateSelectorError",
    # Test Registry (C3)
    "TestCase",
    "SystemUnderTest",
    "OutputMismatchError",
    "TestMethod",
    "MethodBuilder",
    "TestClass",
    "RegistrationError",
    # Expectation Resolver (C4)
    "ExpectationResolver",
    "resolve",
    "ResolutionError",
    "RedundantOverrideError",
    # Execution Pipeline (D1)
    "ExecutionPipeline",
    "Invocation",
    "PipelineState",
    "build_pipeline",
    "PipelineError",
    "PipelineStateError",
    "AttemptFailed",
    "TimeoutExceededError",
    "MultipleFailuresError",
    # Retry Controller (D2)
    "RetryController",
    "run_with_retry",
    # Outcome Classifier (D3)
    "Status",
    "classify",
    "ExecutionResult",
    # Test Identity (D4)
    "TestIdentity",
    "NameFilter",
    # Environment Runner (E1)
    "EnvironmentRunner",
    "RunnerConfig",
    "run_suite",
    "RunnerError",
    "NoTestsRemainError",
    # Suite Report (E2)
    "SuiteReport",
    "ReportError",
    "BuildBrokenError",
]
