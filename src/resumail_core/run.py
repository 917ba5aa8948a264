"""
Main analysis pipeline runner.
"""
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

import httpx
import structlog
from pydantic import ValidationError
from sqlalchemy.engine import Engine

from resumail_core.billing.ledger import CreditLedger
from resumail_core.config import Config, PipelineConfig
from resumail_core.errors import InvalidAnalysisRequest, LedgerError, OracleUnavailable, StorageError
from resumail_core.hierarchical.reducer import MergeReducer
from resumail_core.llm.gateway import ROLE_CLASSIFY, LLMGateway, OracleClient
from resumail_core.llm.repair import parse_analysis
from resumail_core.llm.schemas import AnalysisOutcome, AnalysisResult, EmailRecord, FinalReport
from resumail_core.observability.metrics import MetricsCollector
from resumail_core.pipeline.chunker import chunk
from resumail_core.storage.accounts import AccountStore
from resumail_core.storage.database import create_engine_from_config, init_schema
from resumail_core.storage.reports import ReportStore

logger = structlog.get_logger()

RecordInput = Union[EmailRecord, Mapping[str, Any]]


class AnalysisPipeline:
    """Reserve credits, classify batches, persist mini-reports, merge, persist final."""

    def __init__(
        self,
        config: PipelineConfig,
        oracle: OracleClient,
        ledger: CreditLedger,
        report_store: ReportStore,
        metrics: MetricsCollector = None,
    ):
        self.config = config
        self.oracle = oracle
        self.ledger = ledger
        self.report_store = report_store
        self.metrics = metrics

    def analyze(self, account_id: str, records: Iterable[RecordInput]) -> AnalysisOutcome:
        """
        Run the complete analysis pipeline for one account.

        Credits are reserved once, before the first oracle call. Oracle
        failures degrade individual batches or merge groups; only ledger and
        final-report persistence failures abort the run.

        Args:
            account_id: Account to charge and own the reports
            records: Ordered e-mail records (models or mappings)

        Returns:
            AnalysisOutcome with the final report, remaining balance and
            provenance ids

        Raises:
            InvalidAnalysisRequest: Blank account id or no records
            InsufficientCredits: Balance lower than the run cost
            AccountNotFound: Unknown account
            StorageError: Ledger storage or final-report write failed
        """
        trace_id = str(uuid.uuid4())
        start_time = time.time()

        email_records = self._coerce_records(records)
        if not isinstance(account_id, str) or not account_id.strip():
            raise InvalidAnalysisRequest("account_id is required")
        if not email_records:
            raise InvalidAnalysisRequest("at least one record is required")

        amount = self.ledger.cost_for(len(email_records))
        logger.info("Starting analysis run",
                    account_id=account_id,
                    records=len(email_records),
                    credits=amount,
                    trace_id=trace_id)

        # Step 1: Charge before any oracle spend
        try:
            reserved_balance = self.ledger.reserve(account_id, amount, trace_id=trace_id)
        except LedgerError:
            self._record_run("rejected")
            raise
        except StorageError:
            self._record_run("failed")
            raise

        # Step 2: Partition and classify
        batches = chunk(email_records, self.config.batch_size)
        if self.metrics:
            self.metrics.record_records(len(email_records))
            self.metrics.record_batches(len(batches))

        batch_outputs = self._process_batches(account_id, batches, trace_id)
        results = [result for result, _, _ in batch_outputs]
        mini_ids = [mini_id for _, mini_id, _ in batch_outputs if mini_id is not None]
        degraded = sum(1 for _, _, was_degraded in batch_outputs if was_degraded)

        # Step 3: Merge every batch result, persisted or not
        reducer = MergeReducer(self.oracle, self.config, metrics=self.metrics)
        final_result = reducer.reduce(results, trace_id=trace_id)

        # Step 4: Final report is the one write that must succeed
        try:
            final_id = self.report_store.save_final(account_id, final_result, mini_ids)
        except StorageError as e:
            if self.metrics:
                self.metrics.record_storage_error("save_final")
            self._record_run("failed")
            logger.error("Failed to save final report",
                         account_id=account_id,
                         error=str(e),
                         trace_id=trace_id)
            raise

        remaining = self._refresh_balance(account_id, reserved_balance, trace_id)
        self._record_run("ok")

        logger.info("Analysis run completed",
                    account_id=account_id,
                    final_report_id=final_id,
                    batches=len(batches),
                    mini_reports=len(mini_ids),
                    degraded_batches=degraded,
                    remaining_balance=remaining,
                    total_time_ms=int((time.time() - start_time) * 1000),
                    trace_id=trace_id,
                    **{f"merge_{k}": v for k, v in reducer.stats.to_dict().items()})

        return AnalysisOutcome(
            final_report=FinalReport(
                id=final_id,
                account_id=account_id,
                result=final_result,
                mini_report_ids=mini_ids,
            ),
            remaining_balance=remaining,
            mini_report_ids=mini_ids,
            trace_id=trace_id,
            degraded_batches=degraded,
        )

    def _coerce_records(self, records: Iterable[RecordInput]) -> List[EmailRecord]:
        if records is None:
            return []
        coerced = []
        for record in records:
            if isinstance(record, EmailRecord):
                coerced.append(record)
            elif isinstance(record, Mapping):
                try:
                    coerced.append(EmailRecord(**record))
                except ValidationError as e:
                    raise InvalidAnalysisRequest(f"invalid record: {e}") from e
            else:
                raise InvalidAnalysisRequest(f"unsupported record type: {type(record).__name__}")
        return coerced

    def _process_batches(
        self,
        account_id: str,
        batches: List[List[EmailRecord]],
        trace_id: str,
    ) -> List[Tuple[AnalysisResult, Optional[int], bool]]:
        """Classify and persist every batch; output is in batch index order."""
        pool = min(self.config.parallel_pool, len(batches))
        if pool <= 1:
            return [
                self._process_batch(account_id, index, batch, trace_id)
                for index, batch in enumerate(batches)
            ]

        logger.info("Processing batches in parallel", batches=len(batches), pool_size=pool, trace_id=trace_id)
        with ThreadPoolExecutor(max_workers=pool) as executor:
            return list(executor.map(
                lambda item: self._process_batch(account_id, item[0], item[1], trace_id),
                enumerate(batches),
            ))

    def _process_batch(
        self,
        account_id: str,
        index: int,
        batch: List[EmailRecord],
        trace_id: str,
    ) -> Tuple[AnalysisResult, Optional[int], bool]:
        """
        Classify one batch and save it as a mini-report.

        Returns:
            Tuple of (result, mini-report id or None, degraded flag)
        """
        try:
            raw = self.oracle.classify_batch(batch, trace_id=trace_id)
        except OracleUnavailable as e:
            logger.warning("Batch classification failed, using fallback result",
                           batch_index=index,
                           batch_size=len(batch),
                           reason=e.reason,
                           trace_id=trace_id)
            raw = ""

        result, parsed = parse_analysis(
            raw,
            fallback_count=len(batch),
            fallback_summary_chars=self.config.fallback_summary_chars,
            summary_max_chars=self.config.summary_max_chars,
        )
        if not parsed and raw and self.metrics:
            self.metrics.record_repair_fallback(ROLE_CLASSIFY)

        mini_id = None
        try:
            mini_id = self.report_store.save_mini(account_id, result, batch_index=index)
            logger.info("Mini-report created", batch_index=index, mini_report_id=mini_id, trace_id=trace_id)
        except StorageError as e:
            # Result still feeds the merge, only provenance is lost
            if self.metrics:
                self.metrics.record_storage_error("save_mini")
            logger.error("Failed to save mini-report",
                         batch_index=index,
                         error=str(e),
                         trace_id=trace_id)

        return result, mini_id, not parsed

    def _refresh_balance(self, account_id: str, reserved_balance: int, trace_id: str) -> int:
        """Re-read the balance; fall back to the reservation result."""
        try:
            balance = self.ledger.store.get_balance(account_id)
        except StorageError as e:
            logger.warning("Balance refresh failed, reporting reserved balance",
                           error=str(e),
                           trace_id=trace_id)
            return reserved_balance
        return balance if balance is not None else reserved_balance

    def _record_run(self, status: str) -> None:
        if self.metrics:
            self.metrics.record_run_total(status)


def build_pipeline(
    config: Config = None,
    engine: Engine = None,
    service=None,
    metrics: MetricsCollector = None,
    transport: httpx.BaseTransport = None,
) -> AnalysisPipeline:
    """
    Wire a pipeline from configuration.

    Args:
        config: Loaded configuration (``Config()`` when omitted)
        engine: SQLAlchemy engine (built from ``config.storage`` when omitted)
        service: Oracle service with ``complete()``; an ``LLMGateway`` by default
        metrics: Optional Prometheus collector
        transport: Optional httpx transport for the default gateway

    Returns:
        Ready-to-use AnalysisPipeline
    """
    config = config or Config()
    if engine is None:
        engine = create_engine_from_config(config.storage)
        init_schema(engine)
    if service is None:
        service = LLMGateway(config.llm, transport=transport)

    oracle = OracleClient(service, config.llm, config.pipeline, metrics=metrics)
    ledger = CreditLedger(
        AccountStore(engine, atomic_decrement=config.storage.atomic_decrement),
        cost_per_record=config.pipeline.cost_per_record,
        signup_credits=config.storage.signup_credits,
        metrics=metrics,
    )
    return AnalysisPipeline(config.pipeline, oracle, ledger, ReportStore(engine), metrics=metrics)
