"""Test Identity (D4): stable names for filtering and reporting.

Every test has a plain name (``method`` or ``Class.method``) and a display
name qualified by the environment (``method [FF68]``).  Stripping the
bracketed suffix from a display name always gives back the plain name, so
a filter written either way selects the same underlying test.
"""

import re
from typing import Optional

from crossrun.environment import Environment, ExecutionMode

_SUFFIX_RE = re.compile(r" \[[^\[\]]*\]$")


class TestIdentity:
    """Builds plain and environment-qualified test names.

    Args:
        qualified: Prefix method names with the simple class name, as batch
            build tools expect (``SelectionTest.equality [FF68]``).
    """

    __test__ = False

    def __init__(self, qualified: bool = False):
        self.qualified = qualified

    @staticmethod
    def environment_label(environment: Environment, mode: ExecutionMode) -> str:
        if mode is ExecutionMode.REAL:
            return f"Real {environment.nickname}"
        return environment.nickname

    def group_name(self, environment: Environment, mode: ExecutionMode) -> str:
        """Name of the per-environment group of tests (``[Real FF68]``)."""
        return f"[{self.environment_label(environment, mode)}]"

    def plain_name(self, class_name: str, method_name: str) -> str:
        if not self.qualified:
            return method_name
        return f"{class_name.rsplit('.', 1)[-1]}.{method_name}"

    def display_name(
        self,
        class_name: str,
        method_name: str,
        environment: Environment,
        mode: ExecutionMode = ExecutionMode.SIMULATED,
    ) -> str:
        plain = self.plain_name(class_name, method_name)
        return f"{plain} [{self.environment_label(environment, mode)}]"

    def report_label(
        self,
        class_name: str,
        method_name: str,
        environment: Environment,
        mode: ExecutionMode = ExecutionMode.SIMULATED,
        known_divergent: bool = False,
    ) -> str:
        """Display name for reports; marks tolerated divergences ``(NYI)``.

        Never used for filtering.
        """
        name = self.display_name(class_name, method_name, environment, mode)
        if known_divergent and mode is ExecutionMode.SIMULATED:
            return f"(NYI) {name}"
        return name

    @staticmethod
    def strip_environment(display_name: str) -> str:
        """Remove the trailing `` [environment]`` suffix, if present."""
        return _SUFFIX_RE.sub("", display_name)


class NameFilter:
    """Selects tests by name.

    The pattern is either a bare method name (``"equality"``), which selects
    the test in every environment, or a name qualified with an environment
    label (``"equality [FF68]"``), which selects it in that one.
    """

    def __init__(self, pattern: str):
        self.pattern = pattern.strip()

    def should_run(self, description: str) -> bool:
        return description == self.pattern

    def accepts(self, plain_name: str, display_name: Optional[str] = None) -> bool:
        """Whether either form of a test's name is selected."""
        if self.should_run(plain_name):
            return True
        return display_name is not None and self.should_run(display_name)

    def __repr__(self) -> str:
        return f"NameFilter({self.pattern!r})"
