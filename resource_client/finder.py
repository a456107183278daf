"""
Linear search over string sequences, exact or by substring.
"""

from __future__ import annotations

from typing import Sequence


def find(haystack: Sequence[str] | None, needle: str, partial: bool = False) -> int:
    """
    Return the index of the first element of haystack matching needle, -1 if none.

    Args:
        haystack: Strings to scan, in order.
        needle: Value to look for.
        partial: If True, an element matches when it contains needle as a substring
                 (e.g. "application/json; charset=utf-8" matches "application/json").
    """
    if not haystack:
        return -1
    for i, candidate in enumerate(haystack):
        if partial:
            if needle in candidate:
                return i
        elif candidate == needle:
            return i
    return -1
