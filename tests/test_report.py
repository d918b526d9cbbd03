"""Tests for the Suite Report (E2)."""

import logging

import pytest

from crossrun.environment import CHROME, FIREFOX_68
from crossrun.outcome import ExecutionResult, Status
from crossrun.report import BuildBrokenError, ReportError, SuiteReport


def _result(name, status, env=CHROME, **kwargs):
    return ExecutionResult(
        class_name="T",
        method_name=name,
        environment=env,
        display_name=f"{name} [{env.nickname}]",
        label=f"{name} [{env.nickname}]",
        status=status,
        **kwargs,
    )


@pytest.fixture
def report():
    r = SuiteReport()
    r.extend([
        _result("a", Status.PASS, succeeded=True, attempts_used=1),
        _result("b", Status.EXPECTED_FAILURE, FIREFOX_68,
                exception=RuntimeError("nyi"), attempts_used=1),
        _result("c", Status.UNEXPECTED_PASS, succeeded=True, attempts_used=1),
    ])
    return r


# ── Accumulation Tests ──


class TestAccumulation:
    def test_counts_cover_every_status(self, report):
        assert report.counts == {
            Status.PASS: 1,
            Status.EXPECTED_FAILURE: 1,
            Status.UNEXPECTED_FAILURE: 0,
            Status.UNEXPECTED_PASS: 1,
        }

    def test_unexpected_pass_adds_warning(self, report):
        assert len(report.warnings) == 1
        assert "c [CHROME]" in report.warnings[0]

    def test_unclassified_result_rejected(self):
        with pytest.raises(ReportError):
            SuiteReport().add(ExecutionResult(method_name="x"))

    def test_retried(self, report):
        report.add(_result("d", Status.PASS, succeeded=True, attempts_used=3))
        assert [r.method_name for r in report.retried] == ["d"]


# ── Build Status Tests ──


class TestBuildStatus:
    def test_expected_failures_and_unexpected_passes_do_not_break(self, report):
        assert not report.broken
        report.raise_for_status()

    def test_unexpected_pass_logged(self, report, caplog):
        with caplog.at_level(logging.WARNING, logger="crossrun.report"):
            report.raise_for_status()
        assert "Unexpected pass: c [CHROME]" in caplog.text

    def test_unexpected_failure_breaks(self, report):
        report.add(_result("e", Status.UNEXPECTED_FAILURE, exception=ValueError("x")))
        assert report.broken
        with pytest.raises(BuildBrokenError) as exc_info:
            report.raise_for_status()
        assert "e [CHROME]" in str(exc_info.value)
        assert [r.method_name for r in exc_info.value.failures] == ["e"]

    def test_many_failures_truncated(self):
        report = SuiteReport()
        report.extend(
            _result(f"m{i}", Status.UNEXPECTED_FAILURE) for i in range(12)
        )
        with pytest.raises(BuildBrokenError, match=r"12 unexpected failure\(s\).*\+2 more"):
            report.raise_for_status()


# ── Rendering Tests ──


class TestRendering:
    def test_as_dict(self, report):
        data = report.as_dict()
        assert data["broken"] is False
        assert data["counts"]["expected_failure"] == 1
        entry = data["results"][1]
        assert entry["environment"] == "FF68"
        assert entry["status"] == "expected_failure"
        assert entry["error"] == "RuntimeError: nyi"
        assert entry["observed"] is None

    def test_as_text(self, report):
        text = report.as_text()
        assert "crossrun Suite Report" in text
        assert "3 run, 1 passed" in text
        assert "[~ ] b [FF68]" in text
        assert "RuntimeError: nyi" in text
        assert "a [CHROME]" not in text
        assert text.endswith("BUILD OK")

    def test_as_text_broken(self):
        report = SuiteReport()
        report.add(_result("x", Status.UNEXPECTED_FAILURE, attempts_used=2))
        text = report.as_text()
        assert "[!!] x [CHROME]" in text
        assert "Attempts: 2" in text
        assert text.endswith("BUILD BROKEN")
