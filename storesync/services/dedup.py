"""
Batch deduplication.

A multi-row INSERT ... ON CONFLICT DO UPDATE cannot touch the same conflict
target twice, so every batch is collapsed to one row per natural key before
it reaches the store.
"""
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")


def dedupe_rows(rows: Sequence[T], key: Optional[Callable[[T], Hashable]] = None) -> List[T]:
    """
    Keep the last occurrence of each natural key.

    Output order follows the first appearance of each key; the value is the
    row seen last. `key` defaults to the row's own natural_key().
    """
    key_fn = key or (lambda row: row.natural_key())
    latest: Dict[Hashable, T] = {}
    for row in rows:
        latest[key_fn(row)] = row
    return list(latest.values())


def dedupe_with_count(rows: Sequence[T], key: Optional[Callable[[T], Hashable]] = None) -> Tuple[List[T], int]:
    """dedupe_rows() plus the number of rows dropped."""
    unique = dedupe_rows(rows, key)
    return unique, len(rows) - len(unique)
