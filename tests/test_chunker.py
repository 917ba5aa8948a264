"""
Test record and result partitioning.
"""
import math

import pytest

from resumail_core.pipeline.chunker import chunk


@pytest.mark.parametrize("count,size", [(1, 1), (7, 3), (50, 50), (120, 50), (5, 10)])
def test_chunks_reconstruct_input(count, size):
    """Concatenated batches reproduce the input and count is ceil(n/s)."""
    items = list(range(count))
    batches = chunk(items, size)

    assert [item for batch in batches for item in batch] == items
    assert len(batches) == math.ceil(count / size)
    assert all(1 <= len(batch) <= size for batch in batches)


def test_last_batch_may_be_smaller():
    """120 records at size 50 split into 50, 50, 20."""
    batches = chunk(list(range(120)), 50)
    assert [len(batch) for batch in batches] == [50, 50, 20]


def test_empty_input_returns_no_batches():
    assert chunk([], 5) == []


def test_size_must_be_positive():
    with pytest.raises(ValueError):
        chunk([1, 2, 3], 0)


def test_input_is_not_mutated():
    items = [3, 1, 2]
    chunk(items, 2)
    assert items == [3, 1, 2]
