"""
Test credit reservation, balance queries and top-ups.
"""
import threading
from unittest.mock import Mock

import pytest

from resumail_core.billing.ledger import CreditLedger
from resumail_core.config import StorageConfig
from resumail_core.errors import AccountNotFound, InsufficientCredits, StorageError
from resumail_core.storage.accounts import AccountStore
from resumail_core.storage.database import create_engine_from_config, init_schema


@pytest.fixture
def fallback_ledger(engine):
    """Ledger over a store without the conditional decrement."""
    return CreditLedger(AccountStore(engine, atomic_decrement=False), cost_per_record=1)


class TestReserve:
    """Atomic reservation path."""

    def test_reserve_decrements_exactly(self, ledger, account_store):
        account_store.create_account("acct", 10)

        remaining = ledger.reserve("acct", 4)

        assert remaining == 6
        assert account_store.get_balance("acct") == 6

    def test_reserve_whole_balance(self, ledger, account_store):
        account_store.create_account("acct", 10)
        assert ledger.reserve("acct", 10) == 0
        assert account_store.get_balance("acct") == 0

    def test_insufficient_credits_leaves_balance_unchanged(self, ledger, account_store, metrics):
        account_store.create_account("acct", 5)

        with pytest.raises(InsufficientCredits) as exc_info:
            ledger.reserve("acct", 10)

        assert exc_info.value.balance == 5
        assert exc_info.value.requested == 10
        assert account_store.get_balance("acct") == 5
        assert metrics.get_metric_value(
            "ledger_rejections_total", {"reason": "insufficient_credits"}
        ) == 1.0

    def test_unknown_account(self, ledger, metrics):
        with pytest.raises(AccountNotFound):
            ledger.reserve("ghost", 1)
        assert metrics.get_metric_value(
            "ledger_rejections_total", {"reason": "account_not_found"}
        ) == 1.0

    def test_rejection_reports_balance_read_afterwards(self):
        """A top-up landing between the refused decrement and the re-read shows up."""
        store = Mock(spec=AccountStore)
        store.atomic_decrement.return_value = None
        store.get_balance.return_value = 20

        with pytest.raises(InsufficientCredits) as exc_info:
            CreditLedger(store).reserve("acct", 10)

        assert exc_info.value.requested == 10
        assert exc_info.value.balance == 20
        store.atomic_decrement.assert_called_once_with("acct", 10)

    def test_negative_amount_rejected(self, ledger, account_store):
        account_store.create_account("acct", 5)
        with pytest.raises(ValueError):
            ledger.reserve("acct", -1)

    def test_reserved_credits_are_counted(self, ledger, account_store, metrics):
        account_store.create_account("acct", 10)
        ledger.reserve("acct", 3)
        assert metrics.get_metric_value("credits_reserved_total") == 3.0

    def test_cost_for_scales_with_records(self, account_store):
        assert CreditLedger(account_store, cost_per_record=3).cost_for(10) == 30

    def test_concurrent_reservations_never_overdraw(self, tmp_path):
        """Only as many reservations succeed as the balance allows."""
        engine = create_engine_from_config(
            StorageConfig(database_url=f"sqlite:///{tmp_path / 'ledger.db'}")
        )
        init_schema(engine)
        store = AccountStore(engine)
        store.create_account("acct", 10)
        ledger = CreditLedger(store)

        outcomes = []
        lock = threading.Lock()

        def worker():
            try:
                ledger.reserve("acct", 3)
                result = "ok"
            except InsufficientCredits:
                result = "rejected"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 3
        assert outcomes.count("rejected") == 5
        assert store.get_balance("acct") == 1
        engine.dispose()


class TestFallbackReserve:
    """Read-compare-write path used when the store has no conditional decrement."""

    def test_fallback_decrements(self, fallback_ledger, account_store):
        account_store.create_account("acct", 10)
        assert fallback_ledger.reserve("acct", 7) == 3
        assert account_store.get_balance("acct") == 3

    def test_fallback_insufficient(self, fallback_ledger, account_store):
        account_store.create_account("acct", 2)
        with pytest.raises(InsufficientCredits):
            fallback_ledger.reserve("acct", 3)
        assert account_store.get_balance("acct") == 2

    def test_fallback_unknown_account(self, fallback_ledger):
        with pytest.raises(AccountNotFound):
            fallback_ledger.reserve("ghost", 1)


class TestBalanceAndTopUp:
    """Supplemented balance query and top-up operations."""

    def test_balance_of_existing_account(self, ledger, account_store):
        account_store.create_account("acct", 42)
        assert ledger.balance("acct") == 42

    def test_balance_of_missing_account(self, ledger):
        with pytest.raises(AccountNotFound):
            ledger.balance("ghost")

    def test_balance_provisions_signup_credits(self, ledger, account_store):
        assert ledger.balance("new", provision=True) == 10
        assert account_store.get_balance("new") == 10
        # Second call does not grant credits again
        ledger.reserve("new", 4)
        assert ledger.balance("new", provision=True) == 6

    def test_top_up(self, ledger, account_store):
        account_store.create_account("acct", 1)
        assert ledger.top_up("acct", 25) == 26
        assert account_store.get_balance("acct") == 26

    def test_top_up_missing_account(self, ledger):
        with pytest.raises(AccountNotFound):
            ledger.top_up("ghost", 5)

    def test_top_up_requires_positive_amount(self, ledger, account_store):
        account_store.create_account("acct", 1)
        with pytest.raises(ValueError):
            ledger.top_up("acct", 0)


class TestAccountStore:
    """Account store primitives."""

    def test_atomic_decrement_rejects_overdraw(self, account_store):
        account_store.create_account("acct", 2)
        assert account_store.atomic_decrement("acct", 3) is None
        assert account_store.get_balance("acct") == 2

    def test_create_account_is_idempotent(self, account_store):
        assert account_store.create_account("acct", 5) is True
        assert account_store.create_account("acct", 99) is False
        assert account_store.get_balance("acct") == 5

    def test_set_balance_on_missing_account(self, account_store):
        with pytest.raises(StorageError):
            account_store.set_balance("ghost", 3)

    def test_database_errors_are_wrapped(self):
        engine = create_engine_from_config(StorageConfig(database_url="sqlite://"))
        store = AccountStore(engine)  # schema never created
        with pytest.raises(StorageError) as exc_info:
            store.get_balance("acct")
        assert exc_info.value.operation == "get_balance"
