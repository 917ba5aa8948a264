"""
Hierarchical merge of partial analysis results.

Folds any number of per-batch results into one through bounded fan-in
oracle merge rounds.
"""
from .reducer import MergeReducer
from .metrics import ReductionMetrics

__all__ = ['MergeReducer', 'ReductionMetrics']
