"""
Glob pattern safety validation.

Every pattern that reaches the matcher passes through here first. Patterns
that are too long, carry too many wildcards or braces, stack globstars, or
contain nested repetition constructs are rejected so that no pathological
pattern is ever executed.
"""

import re
from typing import Any, Optional

from snapward.errors import InvalidPatternError


class GlobValidator:
    """Pure complexity checks for glob patterns."""

    MAX_PATTERN_LENGTH = 1000
    MAX_WILDCARDS = 20
    MAX_BRACES = 10

    # Four or more globstar segments in a row
    CONSECUTIVE_GLOBSTARS = re.compile(r"(\*\*/){4,}")
    # (x+)+ / (x*)+ / (x+)* style nesting
    NESTED_REPETITION = re.compile(r"\(.*[+*].*\)[+*]")

    GLOBSTAR_PLACEHOLDER = "##"

    def rejection_reason(self, pattern: Any) -> Optional[str]:
        """Return why a pattern is unsafe, or None if it is safe."""
        if pattern is None:
            return "pattern is empty"
        if not isinstance(pattern, str):
            return f"pattern must be a string, got {type(pattern).__name__}"
        if not pattern.strip():
            return "pattern is empty"
        if len(pattern) > self.MAX_PATTERN_LENGTH:
            return f"pattern exceeds {self.MAX_PATTERN_LENGTH} characters"

        neutralized = pattern.replace("**", self.GLOBSTAR_PLACEHOLDER)
        wildcards = neutralized.count("*") + neutralized.count("?")
        if wildcards > self.MAX_WILDCARDS:
            return f"pattern has {wildcards} wildcards (max {self.MAX_WILDCARDS})"

        braces = pattern.count("{")
        if braces > self.MAX_BRACES:
            return f"pattern has {braces} brace groups (max {self.MAX_BRACES})"

        if self.CONSECUTIVE_GLOBSTARS.search(pattern):
            return "pattern has too many consecutive globstars"
        if self.NESTED_REPETITION.search(pattern):
            return "pattern contains nested repetition"
        return None

    def is_glob_safe(self, pattern: Any) -> bool:
        return self.rejection_reason(pattern) is None

    def sanitize(self, pattern: Any) -> str:
        """Return the pattern unchanged if safe.

        Raises:
            InvalidPatternError: If the pattern fails any safety check.
        """
        if not self.is_glob_safe(pattern):
            raise InvalidPatternError(pattern)
        return pattern


_default_validator = GlobValidator()


def is_glob_safe(pattern: Any) -> bool:
    """Check a pattern against the default validator."""
    return _default_validator.is_glob_safe(pattern)


def sanitize(pattern: Any) -> str:
    """Validate a pattern with the default validator, raising if unsafe."""
    return _default_validator.sanitize(pattern)


def rejection_reason(pattern: Any) -> Optional[str]:
    return _default_validator.rejection_reason(pattern)
