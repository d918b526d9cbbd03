"""Environments (C1): simulated target environments and selector matching.

An environment is one emulated runtime variant, identified by a family
(a closed set of browser kinds) and a variant within that family.  Selectors
name a single variant, a whole family, or every environment; they are what
expectation tables and known-divergence declarations are keyed by.

Pure Python. No external dependency.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

WILDCARD = "default"


# ── Exceptions ──


class SelectorError(Exception):
    """Base exception for environment and selector errors."""


class UnknownSelectorError(SelectorError):
    """Raised when selector text names no known family or variant."""


# ── Enums ──


class Family(Enum):
    """Closed set of environment families."""

    INTERNET_EXPLORER = "IE"
    FIREFOX = "FF"
    CHROME = "CHROME"


class ExecutionMode(Enum):
    """How the system under test is driven.

    ``SIMULATED`` runs the internal emulation.  ``REAL`` drives a real
    external engine; mode-scoped override tables apply there.
    """

    SIMULATED = "simulated"
    REAL = "real"


class SelectorKind(Enum):
    """Which part of an environment a selector names."""

    WILDCARD = "wildcard"
    FAMILY = "family"
    VARIANT = "variant"


# ── Data Classes ──


@dataclass(frozen=True)
class Environment:
    """One simulated target.

    Attributes:
        family: Broad category the environment belongs to.
        variant: Version within the family, or ``None`` for a family with a
            single unnamed variant.
        nickname: Short label used in display names and selector text
            (e.g. ``"FF68"``).  Not part of equality.
    """

    family: Family
    variant: Optional[str] = None
    nickname: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.nickname:
            object.__setattr__(
                self, "nickname", self.family.value + (self.variant or ""),
            )

    def __str__(self) -> str:
        return self.nickname


@dataclass(frozen=True)
class Selector:
    """Key of an expectation entry or known-divergence declaration.

    Use the ``wildcard()``, ``of_family()`` and ``of_variant()``
    constructors rather than building one by hand.
    """

    kind: SelectorKind
    family: Optional[Family] = None
    variant: Optional[str] = None

    @classmethod
    def wildcard(cls) -> "Selector":
        return cls(SelectorKind.WILDCARD)

    @classmethod
    def of_family(cls, family: Family) -> "Selector":
        return cls(SelectorKind.FAMILY, family=family)

    @classmethod
    def of_variant(cls, environment: Environment) -> "Selector":
        return cls(
            SelectorKind.VARIANT,
            family=environment.family,
            variant=environment.variant,
        )

    @property
    def priority(self) -> int:
        """Lower wins: variant beats family beats wildcard."""
        return _PRIORITY[self.kind]

    def __str__(self) -> str:
        if self.kind is SelectorKind.WILDCARD:
            return WILDCARD
        if self.kind is SelectorKind.FAMILY:
            return self.family.value
        return self.family.value + (self.variant or "")


_PRIORITY = {
    SelectorKind.VARIANT: 0,
    SelectorKind.FAMILY: 1,
    SelectorKind.WILDCARD: 2,
}


# ── Known Environments ──

INTERNET_EXPLORER = Environment(Family.INTERNET_EXPLORER, nickname="IE")
FIREFOX_60 = Environment(Family.FIREFOX, "60", nickname="FF60")
FIREFOX_68 = Environment(Family.FIREFOX, "68", nickname="FF68")
CHROME = Environment(Family.CHROME, nickname="CHROME")

KNOWN_ENVIRONMENTS: tuple[Environment, ...] = (
    CHROME,
    FIREFOX_60,
    FIREFOX_68,
    INTERNET_EXPLORER,
)


# ── Selector Parsing ──


def parse_selector(
    text: str | Selector,
    environments: Iterable[Environment] = KNOWN_ENVIRONMENTS,
) -> Selector:
    """Turn selector text into a ``Selector``.

    Accepts ``"default"`` (wildcard), a family value (``"FF"``) or an
    environment nickname (``"FF68"``).  Family names win over nicknames, so
    ``"IE"`` and ``"CHROME"`` are family selectors even though single-variant
    environments share that nickname.

    Raises:
        UnknownSelectorError: If the text names nothing known.
    """
    if isinstance(text, Selector):
        return text
    key = text.strip()
    if key.lower() == WILDCARD:
        return Selector.wildcard()
    for family in Family:
        if key.upper() == family.value:
            return Selector.of_family(family)
    for env in environments:
        if key.upper() == env.nickname.upper():
            return Selector.of_variant(env)
    raise UnknownSelectorError(f"Unknown environment selector: {text!r}")


def environment_by_nickname(
    nickname: str,
    environments: Iterable[Environment] = KNOWN_ENVIRONMENTS,
) -> Environment:
    """Look up a configured environment by its nickname (case-insensitive)."""
    for env in environments:
        if env.nickname.upper() == nickname.strip().upper():
            return env
    raise UnknownSelectorError(f"Unknown environment: {nickname!r}")


# ── Matching ──


def matches(selector: Selector, environment: Environment) -> bool:
    """Whether *environment* belongs to the set named by *selector*."""
    if selector.kind is SelectorKind.WILDCARD:
        return True
    if selector.family is not environment.family:
        return False
    if selector.kind is SelectorKind.FAMILY:
        return True
    return selector.variant == environment.variant


def matches_any(selectors: Iterable[Selector], environment: Environment) -> bool:
    """Whether *environment* is inside any of *selectors*."""
    return any(matches(s, environment) for s in selectors)
