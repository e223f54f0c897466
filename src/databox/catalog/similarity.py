"""Bigram Dice coefficient, as popularised by the `string-similarity` package.

Whitespace is ignored, identical strings score 1, strings shorter than two
characters (after stripping) score 0, and bigrams are counted as a
multiset.
"""

from __future__ import annotations

import re
from collections import Counter

_WS = re.compile(r"\s+")


def _bigrams(s: str) -> Counter[str]:
    return Counter(s[i : i + 2] for i in range(len(s) - 1))


def compare_two_strings(first: str, second: str) -> float:
    """Return the Dice similarity of `first` and `second` in [0, 1]."""
    first = _WS.sub("", first)
    second = _WS.sub("", second)
    if first == second:
        return 1.0
    if len(first) < 2 or len(second) < 2:
        return 0.0
    overlap = sum((_bigrams(first) & _bigrams(second)).values())
    return (2.0 * overlap) / (len(first) + len(second) - 2)
