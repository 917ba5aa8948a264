"""
Merge reducer for partial analysis results.

Each round groups the current results into chunks of at most ``fan_in``,
asks the oracle to merge every group into one result, and repeats on the
shorter list until a single result is left. With ``fan_in >= 2`` this takes
ceil(log_fan_in(N)) rounds.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Sequence

import structlog

from resumail_core.config import PipelineConfig
from resumail_core.errors import OracleUnavailable
from resumail_core.hierarchical.metrics import ReductionMetrics
from resumail_core.llm.gateway import ROLE_MERGE, OracleClient
from resumail_core.llm.repair import parse_analysis
from resumail_core.llm.schemas import AnalysisResult
from resumail_core.observability.metrics import MetricsCollector
from resumail_core.pipeline.chunker import chunk

logger = structlog.get_logger()


class MergeReducer:
    """Fold many AnalysisResults into one through oracle merge rounds."""

    def __init__(
        self,
        oracle: OracleClient,
        config: PipelineConfig,
        metrics: MetricsCollector = None,
    ):
        """
        Initialize merge reducer.

        Args:
            oracle: Oracle client used for merge calls
            config: Fan-in, repair limits and worker pool size
            metrics: Optional Prometheus collector
        """
        if config.merge_fan_in < 2:
            raise ValueError(f"merge_fan_in must be >= 2, got {config.merge_fan_in}")
        self.oracle = oracle
        self.config = config
        self.metrics = metrics
        self.stats = ReductionMetrics()
        self._lock = threading.Lock()

    def reduce(self, results: Sequence[AnalysisResult], trace_id: str = None) -> AnalysisResult:
        """
        Reduce ``results`` to a single AnalysisResult.

        A single input is returned unchanged. Oracle failures on a group
        degrade that group to its first member instead of aborting.

        Args:
            results: Partial results, at least one
            trace_id: Trace ID for logging

        Returns:
            The consolidated result
        """
        if not results:
            raise ValueError("reduce() needs at least one result")

        self.stats = ReductionMetrics()
        start_time = time.time()
        current: List[AnalysisResult] = list(results)

        while len(current) > 1:
            self.stats.rounds += 1
            self.stats.round_sizes.append(len(current))
            groups = chunk(current, self.config.merge_fan_in)

            logger.info("Starting merge round",
                        round=self.stats.rounds,
                        results=len(current),
                        groups=len(groups),
                        trace_id=trace_id)

            current = self._merge_round(groups, trace_id)

        self.stats.total_time_ms = int((time.time() - start_time) * 1000)
        if self.metrics:
            self.metrics.record_merge_rounds(self.stats.rounds)

        logger.info("Merge reduction completed", trace_id=trace_id, **self.stats.to_dict())
        return current[0]

    def _merge_round(self, groups: List[List[AnalysisResult]], trace_id: str) -> List[AnalysisResult]:
        """Merge every group; output order follows group order."""
        pool = min(self.config.parallel_pool, len(groups))
        if pool <= 1:
            return [self._merge_group(group, trace_id) for group in groups]

        with ThreadPoolExecutor(max_workers=pool) as executor:
            return list(executor.map(lambda group: self._merge_group(group, trace_id), groups))

    def _merge_group(self, group: List[AnalysisResult], trace_id: str) -> AnalysisResult:
        """
        Merge one group through the oracle.

        Singleton groups pass through without an oracle call.
        """
        if len(group) == 1:
            return group[0]

        with self._lock:
            self.stats.merge_calls += 1
        try:
            raw = self.oracle.merge_group(group, trace_id=trace_id)
        except OracleUnavailable as e:
            with self._lock:
                self.stats.merge_fallbacks += 1
            logger.warning("Merge call failed, keeping first group member",
                           group_size=len(group),
                           reason=e.reason,
                           trace_id=trace_id)
            return group[0]

        merged, parsed = parse_analysis(
            raw,
            fallback_count=sum(result.total_emails for result in group),
            fallback_summary_chars=self.config.fallback_summary_chars,
            summary_max_chars=self.config.summary_max_chars,
        )
        if not parsed:
            with self._lock:
                self.stats.repair_fallbacks += 1
            if self.metrics:
                self.metrics.record_repair_fallback(ROLE_MERGE)
            logger.warning("Merge output unparseable, using repaired fallback",
                           group_size=len(group),
                           trace_id=trace_id)
        return merged
