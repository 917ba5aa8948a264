"""
Fixed-size, order-preserving partitioning.
"""
from typing import List, Sequence, TypeVar

T = TypeVar("T")


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    """
    Split ``items`` into contiguous slices of at most ``size`` elements.

    Concatenating the returned slices reproduces ``items`` exactly; only the
    last slice may be shorter. Used for record batches and for merge groups.

    Args:
        items: Ordered input sequence
        size: Maximum slice length, at least 1

    Returns:
        List of slices (empty when ``items`` is empty)

    Raises:
        ValueError: If ``size`` is smaller than 1
    """
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    items = list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]
