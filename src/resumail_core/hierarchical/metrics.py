"""
Metrics for hierarchical merging.
"""
from typing import Dict, List


class ReductionMetrics:
    """Counters for one reduction tree."""

    def __init__(self):
        self.rounds = 0
        self.merge_calls = 0
        self.merge_fallbacks = 0
        self.repair_fallbacks = 0
        self.round_sizes: List[int] = []
        self.total_time_ms = 0

    def to_dict(self) -> Dict:
        """Convert metrics to dictionary."""
        return {
            "rounds": self.rounds,
            "merge_calls": self.merge_calls,
            "merge_fallbacks": self.merge_fallbacks,
            "repair_fallbacks": self.repair_fallbacks,
            "round_sizes": list(self.round_sizes),
            "total_time_ms": self.total_time_ms,
        }
