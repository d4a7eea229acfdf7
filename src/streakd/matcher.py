"""
Wildcard pattern matching for tracked-site rules.

Patterns are literal text with '*' standing for any run of characters
(including none). A pattern must cover the whole candidate string.
"""

import re
from functools import lru_cache


class Matcher:
    """A compiled wildcard pattern."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        parts = (re.escape(part) for part in pattern.split('*'))
        self._regex = re.compile('.*'.join(parts), re.DOTALL)

    def test(self, candidate: str) -> bool:
        """True if the pattern matches the entire candidate."""
        return self._regex.fullmatch(candidate) is not None

    def __repr__(self) -> str:
        return f"Matcher({self.pattern!r})"


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> Matcher:
    """Compile a wildcard pattern. Repeated patterns share one Matcher."""
    return Matcher(pattern)
