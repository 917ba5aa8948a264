"""
Shared fixtures: in-memory storage, configs and pipeline factory.
"""
import pytest

from resumail_core.billing.ledger import CreditLedger
from resumail_core.config import LLMConfig, PipelineConfig, StorageConfig
from resumail_core.llm.gateway import OracleClient
from resumail_core.observability.metrics import MetricsCollector
from resumail_core.run import AnalysisPipeline
from resumail_core.storage.accounts import AccountStore
from resumail_core.storage.database import create_engine_from_config, init_schema
from resumail_core.storage.reports import ReportStore


@pytest.fixture
def engine():
    """In-memory SQLite engine with the schema created."""
    engine = create_engine_from_config(StorageConfig(database_url="sqlite://"))
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def account_store(engine):
    return AccountStore(engine)


@pytest.fixture
def report_store(engine):
    return ReportStore(engine)


@pytest.fixture
def metrics():
    """Metrics collector on a private registry."""
    return MetricsCollector()


@pytest.fixture
def ledger(account_store, metrics):
    return CreditLedger(account_store, cost_per_record=1, signup_credits=10, metrics=metrics)


@pytest.fixture
def llm_config():
    return LLMConfig(
        endpoint="https://llm.test/v1/chat/completions",
        model="test-model",
        max_retries=1,
    )


@pytest.fixture
def make_pipeline(engine, llm_config, metrics):
    """Factory building an AnalysisPipeline around a given oracle service."""

    def _make(service, store_engine=None, **overrides):
        if store_engine is None:
            store_engine = engine
        settings = {"cost_per_record": 1}
        settings.update(overrides)
        pipeline_config = PipelineConfig(**settings)
        oracle = OracleClient(service, llm_config, pipeline_config, metrics=metrics)
        ledger = CreditLedger(
            AccountStore(store_engine),
            cost_per_record=pipeline_config.cost_per_record,
            metrics=metrics,
        )
        return AnalysisPipeline(pipeline_config, oracle, ledger, ReportStore(store_engine), metrics=metrics)

    return _make
