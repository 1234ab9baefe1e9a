from __future__ import annotations

from collections import Counter
from typing import Dict, Hashable, Iterable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)


# PUBLIC_INTERFACE
def contains_ignore_case(haystack: Optional[str], needle: str) -> bool:
    """
    Case-insensitive substring test used by every text search.

    A missing haystack never matches; an empty needle matches any present text.
    """
    if haystack is None:
        return False
    return needle.lower() in haystack.lower()


# PUBLIC_INTERFACE
def group_counts(keys: Iterable[K]) -> Dict[K, int]:
    """
    Count occurrences per key, GROUP BY style: keys that never occur are absent.

    Args:
        keys: One key per counted record.

    Returns:
        Dict mapping each seen key to its count.
    """
    return dict(Counter(keys))
