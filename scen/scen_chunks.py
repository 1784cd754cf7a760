"""Batch splitting for commands that fan one instruction out into several calls."""

from typing import List, Sequence, TypeVar

T = TypeVar("T")


def get_chunks(seq: Sequence[T], size: int) -> List[List[T]]:
    """Splits `seq` into consecutive chunks of `size`; only the last may be shorter.

    `get_chunks([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]`. An empty
    sequence gives no chunks.
    """
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        raise ValueError(f"chunk size must be a positive integer, got {size!r}")
    items = list(seq)
    return [items[i:i + size] for i in range(0, len(items), size)]
