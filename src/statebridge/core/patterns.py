"""Whitelist pattern matching for state ids.

A pattern is a literal id in which ``*`` matches any substring, including
the empty one. ``*`` on its own, or an empty pattern, matches every id.

Patterns are compiled once and cached by their string, so the broadcast
path never rebuilds a regex per state change.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache

WILDCARD = "*"


@dataclass(frozen=True, slots=True)
class PatternMatcher:
    """Compiled whitelist pattern.

    Attributes:
        pattern: Source pattern string
        regex: Anchored expression, or None when the pattern matches everything
    """

    pattern: str
    regex: re.Pattern[str] | None = None

    @property
    def matches_all(self) -> bool:
        """Whether this matcher accepts every id."""
        return self.regex is None

    def matches(self, state_id: str) -> bool:
        """Test a state id against the pattern."""
        if self.regex is None:
            return True
        return self.regex.fullmatch(state_id) is not None

    __call__ = matches


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> PatternMatcher:
    """Compile a whitelist pattern into a reusable matcher.

    Args:
        pattern: Pattern string, ``*`` as wildcard

    Returns:
        Matcher cached by pattern string
    """
    if not pattern or pattern == WILDCARD:
        return PatternMatcher(pattern)

    # Escape literal runs, join them with unbounded wildcards
    expr = ".*".join(re.escape(part) for part in pattern.split(WILDCARD))
    return PatternMatcher(pattern, re.compile(expr, re.DOTALL))


def id_matches_pattern(state_id: str, pattern: str) -> bool:
    """Test a single id against a pattern string."""
    return compile_pattern(pattern).matches(state_id)


class Whitelist:
    """Ordered set of compiled patterns selecting which ids are exposed.

    An empty whitelist is unrestricted.

    Example:
        wl = Whitelist(["light.*", "sensor.temp"])
        wl.allows("light.kitchen")  # True
        wl.allows("sensor.humidity")  # False
    """

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        # Duplicates removed, first occurrence wins
        self._patterns: tuple[str, ...] = tuple(dict.fromkeys(patterns))
        self._matchers = tuple(compile_pattern(p) for p in self._patterns)

    @property
    def patterns(self) -> tuple[str, ...]:
        """Configured pattern strings in order."""
        return self._patterns

    @property
    def unrestricted(self) -> bool:
        """Whether every id passes this whitelist."""
        return not self._matchers or any(m.matches_all for m in self._matchers)

    def allows(self, state_id: str) -> bool:
        """Check whether an id matches at least one pattern."""
        if not self._matchers:
            return True
        return any(m.matches(state_id) for m in self._matchers)

    def subscription_patterns(self) -> tuple[str, ...]:
        """Patterns to subscribe and resolve; ``*`` when unrestricted by omission."""
        return self._patterns or (WILDCARD,)

    def __len__(self) -> int:
        return len(self._patterns)

    def __repr__(self) -> str:
        return f"Whitelist({list(self._patterns)!r})"
