"""Expectation Resolver (C4): effective expected outputs for one environment.

Resolution order, highest priority first:

  1. The override table for the active execution mode, if it has an entry
     matching the environment (variant, then family, then wildcard).
  2. The plain expectation table, same selector priority.
  3. Nothing matched: no output expected.

An override whose outputs equal what the plain table would have produced
is stale metadata and fails resolution with ``RedundantOverrideError``.

Pure Python. No external dependency.
"""

import logging
from typing import Mapping, Optional

from crossrun.environment import Environment, ExecutionMode, Selector, matches
from crossrun.expectations import ExpectationTable, OverrideTable, Outputs

logger = logging.getLogger(__name__)


# ── Exceptions ──


class ResolutionError(Exception):
    """Base exception for expectation resolution errors."""


class RedundantOverrideError(ResolutionError):
    """An override does not differ from the non-override fallback."""

    def __init__(
        self,
        selector: Selector,
        environment: Environment,
        mode: ExecutionMode,
        outputs: Outputs,
    ):
        super().__init__(
            f"Override for '{selector}' under mode '{mode.value}' duplicates "
            f"the expectations already resolved for {environment.nickname}: "
            f"{list(outputs)}"
        )
        self.selector = selector
        self.environment = environment
        self.mode = mode
        self.outputs = outputs


# ── Resolver ──


class ExpectationResolver:
    """Resolves expectation tables against a concrete environment.

    Stateless; a single instance can be shared across threads.

    Usage::

        resolver = ExpectationResolver()
        expected = resolver.resolve(table, override, FIREFOX_68, mode)
    """

    @staticmethod
    def lookup(
        entries: Mapping[Selector, Outputs],
        environment: Environment,
    ) -> Optional[tuple[Selector, Outputs]]:
        """Best matching ``(selector, outputs)`` entry, or ``None``.

        Variant beats family beats wildcard.  An environment belongs to
        exactly one family, so at most one entry exists per priority level.
        """
        best: Optional[tuple[Selector, Outputs]] = None
        for selector, outputs in entries.items():
            if not matches(selector, environment):
                continue
            if best is None or selector.priority < best[0].priority:
                best = (selector, outputs)
        return best

    def resolve(
        self,
        table: Optional[ExpectationTable],
        override_table: Optional[OverrideTable],
        environment: Environment,
        mode: ExecutionMode,
    ) -> Outputs:
        """Effective expected outputs for *environment* under *mode*.

        Raises:
            RedundantOverrideError: If the applicable override equals the
                plain-table fallback.
        """
        fallback: Outputs = ()
        if table is not None:
            found = self.lookup(table.entries, environment)
            if found is not None:
                fallback = found[1]

        if override_table is None or not override_table.applies_to(mode):
            return fallback

        override = self.lookup(override_table.entries, environment)
        if override is None:
            return fallback

        selector, outputs = override
        if outputs == fallback:
            raise RedundantOverrideError(selector, environment, mode, outputs)

        logger.debug(
            "Override '%s' applies to %s under %s mode",
            selector, environment.nickname, mode.value,
        )
        return outputs


_DEFAULT_RESOLVER = ExpectationResolver()


def resolve(
    table: Optional[ExpectationTable],
    override_table: Optional[OverrideTable],
    environment: Environment,
    mode: ExecutionMode,
) -> Outputs:
    """Module-level shortcut for ``ExpectationResolver().resolve``."""
    return _DEFAULT_RESOLVER.resolve(table, override_table, environment, mode)
