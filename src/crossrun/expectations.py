"""Expectation Tables (C2): immutable per-method output declarations.

A table maps selectors (a variant, a family, or the ``default`` wildcard) to
the ordered outputs a test method is expected to produce.  Override tables
have the same shape but only apply under one execution mode.

Tables are built once, when a test class is registered, and are read-only
afterwards; the mappings are exposed through ``MappingProxyType``.

Pure Python. No external dependency.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence

from crossrun.environment import (
    KNOWN_ENVIRONMENTS,
    Environment,
    ExecutionMode,
    Family,
    Selector,
    SelectorKind,
    environment_by_nickname,
    parse_selector,
)

Outputs = tuple[str, ...]


# ── Exceptions ──


class ExpectationError(Exception):
    """Base exception for expectation declaration errors."""


class DuplicateSelectorError(ExpectationError):
    """Raised when a table declares the same selector twice."""


# ── Declarations ──


@dataclass(frozen=True)
class Expectations:
    """Declarative expectation shape attached to a test method.

    Attributes:
        default: Outputs for environments with no more specific entry.
            ``None`` means no default was declared (falls through to empty).
        by_family: Family value (``"FF"``) or ``Family`` -> outputs.
        by_variant: Environment nickname (``"FF68"``) -> outputs.

    A bare string anywhere an output list is expected counts as a single
    output.
    """

    default: Optional[Sequence[str] | str] = None
    by_family: Mapping[Family | str, Sequence[str] | str] = field(
        default_factory=dict,
    )
    by_variant: Mapping[str, Sequence[str] | str] = field(default_factory=dict)


# ── Tables ──


@dataclass(frozen=True)
class ExpectationTable:
    """Selector -> expected outputs, at most one entry per selector."""

    entries: Mapping[Selector, Outputs] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = {sel: _as_outputs(values) for sel, values in self.entries.items()}
        object.__setattr__(self, "entries", MappingProxyType(frozen))

    @classmethod
    def of(
        cls,
        entries: Iterable[tuple[Selector | str, Sequence[str] | str]],
        environments: Iterable[Environment] = KNOWN_ENVIRONMENTS,
    ) -> "ExpectationTable":
        """Build a table from ``(selector, outputs)`` pairs.

        Raises:
            DuplicateSelectorError: If two pairs name the same selector.
        """
        environments = tuple(environments)
        collected: dict[Selector, Outputs] = {}
        for key, values in entries:
            selector = parse_selector(key, environments)
            if selector in collected:
                raise DuplicateSelectorError(
                    f"Selector '{selector}' declared more than once"
                )
            collected[selector] = _as_outputs(values)
        return cls(collected)

    @classmethod
    def declare(
        cls,
        declaration: Optional[Expectations] = None,
        environments: Iterable[Environment] = KNOWN_ENVIRONMENTS,
    ) -> "ExpectationTable":
        """Build a table from an ``Expectations`` declaration."""
        if declaration is None:
            return cls()
        return cls.of(_declared_entries(declaration, tuple(environments)), environments)

    def get(self, selector: Selector) -> Optional[Outputs]:
        return self.entries.get(selector)

    @property
    def selectors(self) -> tuple[Selector, ...]:
        return tuple(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class OverrideTable:
    """Expectation table that only applies under one execution mode.

    Attributes:
        mode: The execution mode whose results diverge from the plain table.
        table: The divergent outputs.
    """

    mode: ExecutionMode
    table: ExpectationTable = field(default_factory=ExpectationTable)

    @classmethod
    def declare(
        cls,
        mode: ExecutionMode,
        declaration: Expectations,
        environments: Iterable[Environment] = KNOWN_ENVIRONMENTS,
    ) -> "OverrideTable":
        return cls(mode, ExpectationTable.declare(declaration, environments))

    @property
    def entries(self) -> Mapping[Selector, Outputs]:
        return self.table.entries

    def applies_to(self, mode: ExecutionMode) -> bool:
        return self.mode is mode


# ── Helpers ──


def _as_outputs(values: Sequence[str] | str) -> Outputs:
    """Normalize an output declaration to a tuple of strings."""
    if isinstance(values, str):
        return (values,)
    return tuple(str(v) for v in values)


def _declared_entries(
    declaration: Expectations,
    environments: tuple[Environment, ...],
) -> list[tuple[Selector, Sequence[str] | str]]:
    entries: list[tuple[Selector, Sequence[str] | str]] = []
    if declaration.default is not None:
        entries.append((Selector.wildcard(), declaration.default))

    for key, values in declaration.by_family.items():
        if isinstance(key, Family):
            selector = Selector.of_family(key)
        else:
            selector = parse_selector(key, environments)
            if selector.kind is not SelectorKind.FAMILY:
                raise ExpectationError(f"Not a family selector: {key!r}")
        entries.append((selector, values))

    for key, values in declaration.by_variant.items():
        env = key if isinstance(key, Environment) else environment_by_nickname(
            key, environments,
        )
        entries.append((Selector.of_variant(env), values))

    return entries
