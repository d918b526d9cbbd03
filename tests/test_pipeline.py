"""Tests for the Execution Pipeline (D1)."""

import os
import subprocess
import sys
import textwrap
import threading
from pathlib import Path

import pytest

from crossrun.case import OutputMismatchError, TestCase
from crossrun.environment import FIREFOX_68, ExecutionMode
from crossrun.pipeline import (
    DEFAULT_MIDDLEWARE,
    AttemptFailed,
    ExecutionPipeline,
    Invocation,
    MultipleFailuresError,
    PipelineState,
    PipelineStateError,
    TimeoutExceededError,
    build_pipeline,
    compose,
)
from crossrun.registry import MethodBuilder


class RecordingCase(TestCase):
    """Test case that records lifecycle calls into a shared list."""

    def __init__(self, log=None, fail_set_up=False, fail_tear_down=False):
        super().__init__()
        self.log = log if log is not None else []
        self.fail_set_up = fail_set_up
        self.fail_tear_down = fail_tear_down
        self.torn_down = threading.Event()

    def set_up(self):
        self.log.append("set_up")
        if self.fail_set_up:
            raise RuntimeError("set_up boom")

    def tear_down(self):
        self.log.append("tear_down")
        self.torn_down.set()
        if self.fail_tear_down:
            raise RuntimeError("tear_down boom")

    def rules(self):
        return [_recording_rule("class_rule", self.log)]


def _recording_rule(name, log):
    def rule(invocation, next_):
        log.append(f"{name}:before")
        try:
            return next_(invocation)
        finally:
            log.append(f"{name}:after")
    return rule


def _case(expected=(), **kwargs):
    case = RecordingCase(**kwargs)
    case.configure(FIREFOX_68, ExecutionMode.SIMULATED, expected)
    return case


# ── Compose Tests ──


class TestCompose:
    def test_outermost_first(self):
        log = []
        chain = compose(
            [_recording_rule("a", log), _recording_rule("b", log)],
            lambda inv: log.append("terminal") or "done",
        )
        assert chain(None) == "done"
        assert log == ["a:before", "b:before", "terminal", "b:after", "a:after"]

    def test_empty_chain_is_terminal(self):
        assert compose([], lambda inv: 42)(None) == 42

    def test_middleware_can_short_circuit(self):
        chain = compose([lambda inv, next_: "short"], lambda inv: "terminal")
        assert chain(None) == "short"


# ── Pipeline Order Tests ──


class TestPipelineOrder:
    def test_layer_order(self):
        log = []

        def body(case):
            log.append("body")
            return ["ok"]

        method = (
            MethodBuilder("m", body)
            .rule(_recording_rule("method_rule", log))
            .build()
        )
        case = _case(expected=["ok"], log=log)
        assert build_pipeline(method, case).run() == ("ok",)
        assert log == [
            "set_up",
            "class_rule:before",
            "method_rule:before",
            "body",
            "method_rule:after",
            "class_rule:after",
            "tear_down",
        ]

    def test_default_middleware_order(self):
        names = [m.__name__ for m in DEFAULT_MIDDLEWARE]
        assert names == [
            "lifecycle_hooks",
            "rule_wrapping",
            "timeout_boundary",
            "expected_exception",
        ]

    def test_body_returning_none_skips_verification(self):
        method = MethodBuilder("m", lambda case: None).build()
        assert build_pipeline(method, _case(expected=["x"])).run() is None


# ── Lifecycle Tests ──


class TestLifecycle:
    def test_teardown_runs_after_body_failure(self):
        def body(case):
            raise ValueError("body boom")

        case = _case()
        pipeline = build_pipeline(MethodBuilder("m", body).build(), case)
        with pytest.raises(AttemptFailed) as exc_info:
            pipeline.run()
        assert isinstance(exc_info.value.cause, ValueError)
        assert case.log[-1] == "tear_down"

    def test_set_up_failure_skips_body(self):
        calls = []
        method = MethodBuilder("m", lambda case: calls.append(1)).build()
        case = _case(fail_set_up=True)
        with pytest.raises(AttemptFailed) as exc_info:
            build_pipeline(method, case).run()
        assert calls == []
        assert "tear_down" in case.log
        assert str(exc_info.value.cause) == "set_up boom"

    def test_teardown_failure_alone(self):
        method = MethodBuilder("m", lambda case: None).build()
        with pytest.raises(AttemptFailed) as exc_info:
            build_pipeline(method, _case(fail_tear_down=True)).run()
        assert str(exc_info.value.cause) == "tear_down boom"

    def test_body_and_teardown_failures_both_reported(self):
        def body(case):
            raise ValueError("body boom")

        method = MethodBuilder("m", body).build()
        with pytest.raises(AttemptFailed) as exc_info:
            build_pipeline(method, _case(fail_tear_down=True)).run()
        cause = exc_info.value.cause
        assert isinstance(cause, MultipleFailuresError)
        assert [type(e) for e in cause.errors] == [ValueError, RuntimeError]

    def test_output_mismatch(self):
        method = MethodBuilder("m", lambda case: ["b"]).build()
        case = _case(expected=["a"])
        with pytest.raises(AttemptFailed) as exc_info:
            build_pipeline(method, case).run()
        assert isinstance(exc_info.value.cause, OutputMismatchError)
        assert case.observed_outputs == ("b",)


# ── Timeout Tests ──


class TestTimeout:
    def test_timeout_expires(self):
        release = threading.Event()

        def body(case):
            release.wait(5)

        case = _case()
        method = MethodBuilder("slow", body).timeout(0.05).build()
        pipeline = build_pipeline(method, case)
        try:
            with pytest.raises(AttemptFailed) as exc_info:
                pipeline.run()
        finally:
            release.set()
        failure = exc_info.value
        assert failure.timed_out
        assert isinstance(failure.cause, TimeoutExceededError)
        assert pipeline.terminal_state is PipelineState.TIMED_OUT
        assert case.torn_down.is_set()

    def test_hung_body_runs_on_daemon_thread(self):
        started = threading.Event()

        def body(case):
            started.set()
            threading.Event().wait()

        case = _case()
        method = MethodBuilder("hung", body).timeout(0.05).build()
        pipeline = build_pipeline(method, case)
        with pytest.raises(AttemptFailed) as exc_info:
            pipeline.run()
        assert exc_info.value.timed_out
        assert started.is_set()
        assert case.torn_down.is_set()
        workers = [t for t in threading.enumerate() if t.name == "crossrun-timeout-hung"]
        assert workers
        assert all(t.daemon for t in workers)

    def test_hung_body_does_not_block_interpreter_exit(self):
        script = textwrap.dedent(
            """
            import time
            from crossrun import MethodBuilder, TestClass, run_suite, RunnerConfig
            from crossrun.environment import CHROME

            tc = TestClass("Hung")

            def body(case):
                while True:
                    time.sleep(0.05)

            tc.add(MethodBuilder("forever", body).timeout(0.2))
            report = run_suite([tc], config=RunnerConfig(environments=(CHROME,)))
            print(report.results[0].status.value, report.results[0].timed_out)
            """
        )
        src = Path(__file__).parent.parent / "src"
        env = dict(os.environ, PYTHONPATH=str(src))
        completed = subprocess.run(
            [sys.executable, "-c", script],
            capture_output=True, text=True, timeout=30, env=env,
        )
        assert completed.returncode == 0, completed.stderr
        assert completed.stdout.split() == ["unexpected_failure", "True"]

    def test_fast_body_within_timeout(self):
        method = MethodBuilder("fast", lambda case: ["x"]).timeout(5).build()
        assert build_pipeline(method, _case(expected=["x"])).run() == ("x",)

    def test_method_timeout_beats_default(self):
        method = MethodBuilder("m").timeout(2).build()
        assert build_pipeline(method, _case(), timeout=9).invocation.timeout == 2

    def test_default_timeout_used(self):
        method = MethodBuilder("m").build()
        assert build_pipeline(method, _case(), timeout=9).invocation.timeout == 9

    def test_body_timeout_error_is_not_a_timeout(self):
        def body(case):
            raise TimeoutError("socket")

        method = MethodBuilder("m", body).timeout(5).build()
        pipeline = build_pipeline(method, _case())
        with pytest.raises(AttemptFailed) as exc_info:
            pipeline.run()
        assert not exc_info.value.timed_out
        assert pipeline.terminal_state is PipelineState.FAILED_WITH_EXCEPTION


# ── Expected Exception Tests ──


class TestExpectedException:
    def test_expected_exception_is_success(self):
        def body(case):
            raise KeyError("k")

        method = MethodBuilder("m", body).raises(KeyError).build()
        pipeline = build_pipeline(method, _case())
        pipeline.run()
        assert pipeline.terminal_state is PipelineState.SUCCEEDED

    def test_subclass_of_expected_is_success(self):
        def body(case):
            raise KeyError("k")

        method = MethodBuilder("m", body).raises(LookupError).build()
        build_pipeline(method, _case()).run()

    def test_missing_exception_fails(self):
        method = MethodBuilder("m", lambda case: None).raises(KeyError).build()
        with pytest.raises(AttemptFailed) as exc_info:
            build_pipeline(method, _case()).run()
        assert str(exc_info.value.cause) == "Expected exception: KeyError"

    def test_wrong_exception_fails(self):
        def body(case):
            raise ValueError("v")

        method = MethodBuilder("m", body).raises(KeyError).build()
        with pytest.raises(AttemptFailed) as exc_info:
            build_pipeline(method, _case()).run()
        cause = exc_info.value.cause
        assert isinstance(cause, AssertionError)
        assert "expected<KeyError> but was<ValueError>" in str(cause)
        assert isinstance(cause.__cause__, ValueError)


# ── State Machine Tests ──


class TestPipelineState:
    def test_success_history(self):
        method = MethodBuilder("m", lambda case: None).build()
        pipeline = build_pipeline(method, _case())
        assert pipeline.state is PipelineState.NOT_STARTED
        assert pipeline.terminal_state is None
        pipeline.run()
        assert pipeline.history == [
            PipelineState.NOT_STARTED,
            PipelineState.RUNNING,
            PipelineState.SUCCEEDED,
            PipelineState.FINALIZED,
        ]

    def test_failure_history(self):
        def body(case):
            raise ValueError("x")

        pipeline = build_pipeline(MethodBuilder("m", body).build(), _case())
        with pytest.raises(AttemptFailed) as exc_info:
            pipeline.run()
        assert pipeline.history[-2:] == [
            PipelineState.FAILED_WITH_EXCEPTION,
            PipelineState.FINALIZED,
        ]
        assert exc_info.value.state is PipelineState.FAILED_WITH_EXCEPTION
        assert pipeline.cause is exc_info.value.cause

    def test_pipeline_runs_once(self):
        pipeline = build_pipeline(MethodBuilder("m", lambda c: None).build(), _case())
        pipeline.run()
        with pytest.raises(PipelineStateError):
            pipeline.run()

    def test_custom_middleware(self):
        invocation = Invocation(MethodBuilder("m").build(), _case())
        pipeline = ExecutionPipeline(
            invocation, middlewares=[], terminal=lambda inv: "raw",
        )
        assert pipeline.run() == "raw"

    def test_system_exit_is_finalized_as_failure(self):
        def body(case):
            raise SystemExit(3)

        case = _case()
        pipeline = build_pipeline(MethodBuilder("m", body).build(), case)
        with pytest.raises(AttemptFailed) as exc_info:
            pipeline.run()
        assert isinstance(exc_info.value.cause, SystemExit)
        assert pipeline.history == [
            PipelineState.NOT_STARTED,
            PipelineState.RUNNING,
            PipelineState.FAILED_WITH_EXCEPTION,
            PipelineState.FINALIZED,
        ]
        assert case.log[-1] == "tear_down"

    def test_system_exit_with_teardown_failure(self):
        def body(case):
            raise SystemExit(3)

        pipeline = build_pipeline(
            MethodBuilder("m", body).build(), _case(fail_tear_down=True),
        )
        with pytest.raises(AttemptFailed) as exc_info:
            pipeline.run()
        cause = exc_info.value.cause
        assert isinstance(cause, MultipleFailuresError)
        assert [type(e) for e in cause.errors] == [SystemExit, RuntimeError]

    def test_keyboard_interrupt_propagates_after_finalizing(self):
        def body(case):
            raise KeyboardInterrupt

        case = _case()
        pipeline = build_pipeline(MethodBuilder("m", body).build(), case)
        with pytest.raises(KeyboardInterrupt):
            pipeline.run()
        assert pipeline.state is PipelineState.FINALIZED
        assert pipeline.terminal_state is PipelineState.FAILED_WITH_EXCEPTION
        assert case.log[-1] == "tear_down"
