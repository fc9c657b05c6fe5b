"""
String predicates used by trust policies.

Provides:
- ALWAYS_MATCH: Matches every string, including the empty string
- NEVER_MATCH: Matches no string
- RegexMatcher: Matches strings containing a regular expression
- compile_pattern: Build a RegexMatcher from user configuration

ALWAYS_MATCH and NEVER_MATCH are singletons. The host key resolver
compares trust policies against them by identity to decide whether
known_hosts needs to be read at all, so callers must reuse them rather
than build an equivalent regular expression.
"""
from __future__ import annotations

import re
from typing import Any

from xver.errors import ConfigurationError


class Matcher:
    """Base class for string predicates."""

    def test(self, text: str) -> bool:
        raise NotImplementedError

    def __call__(self, text: str) -> bool:
        return self.test(text)


class _AlwaysMatch(Matcher):
    _instance: "_AlwaysMatch | None" = None

    def __new__(cls) -> "_AlwaysMatch":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def test(self, text: str) -> bool:
        return True

    def __repr__(self) -> str:
        return "ALWAYS_MATCH"


class _NeverMatch(Matcher):
    _instance: "_NeverMatch | None" = None

    def __new__(cls) -> "_NeverMatch":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def test(self, text: str) -> bool:
        return False

    def __repr__(self) -> str:
        return "NEVER_MATCH"


ALWAYS_MATCH: Matcher = _AlwaysMatch()
NEVER_MATCH: Matcher = _NeverMatch()


class RegexMatcher(Matcher):
    """
    Matches strings in which the regular expression is found anywhere.

    Attributes:
        pattern: The compiled regular expression
    """

    def __init__(self, pattern: re.Pattern[str]) -> None:
        self.pattern = pattern

    def test(self, text: str) -> bool:
        return self.pattern.search(text) is not None

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, RegexMatcher):
            return NotImplemented
        return self.pattern == other.pattern

    def __hash__(self) -> int:
        return hash(self.pattern)

    def __repr__(self) -> str:
        return f"RegexMatcher({self.pattern.pattern!r})"


def compile_pattern(source: str, field_name: str = "pattern") -> RegexMatcher:
    """
    Compile a user-supplied pattern string.

    Args:
        source: Regular expression text
        field_name: Configuration key, used in error messages

    Returns:
        RegexMatcher for the pattern

    Raises:
        ConfigurationError: If the pattern is not a string or does not compile
    """
    if not isinstance(source, str):
        raise ConfigurationError(
            f"{field_name} must be a string, got {type(source).__name__}"
        )
    try:
        return RegexMatcher(re.compile(source))
    except re.error as e:
        raise ConfigurationError(f"Invalid {field_name} {source!r}: {e}") from e
