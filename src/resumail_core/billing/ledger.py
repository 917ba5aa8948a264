"""
Credit ledger - reserve usage before any oracle spend.

The preferred path is the account store's conditional decrement, which is
linearizable per account row. The read-compare-write fallback exists for
stores without that primitive and is NOT safe against concurrent
reservations on the same account: two runs can both read the same balance
and both succeed.
"""
from typing import Optional

import structlog

from resumail_core.errors import (
    AccountNotFound,
    AtomicDecrementUnavailable,
    InsufficientCredits,
)
from resumail_core.observability.metrics import MetricsCollector
from resumail_core.storage.accounts import AccountStore

logger = structlog.get_logger()


class CreditLedger:
    """Reserve, query and top up account credits."""

    def __init__(
        self,
        store: AccountStore,
        cost_per_record: int = 1,
        signup_credits: int = 10,
        metrics: MetricsCollector = None,
    ):
        self.store = store
        self.cost_per_record = cost_per_record
        self.signup_credits = signup_credits
        self.metrics = metrics

    def cost_for(self, record_count: int) -> int:
        return record_count * self.cost_per_record

    def reserve(self, account_id: str, amount: int, trace_id: str = None) -> int:
        """
        Deduct ``amount`` credits, or nothing at all.

        Args:
            account_id: Account to charge
            amount: Credits to deduct (>= 0)
            trace_id: Trace ID for logging

        Returns:
            Remaining balance after the deduction

        Raises:
            InsufficientCredits: Balance is lower than ``amount``; balance unchanged.
                The reported balance is read after the rejection, so a
                concurrent top-up can make it ``>= amount``.
            AccountNotFound: No such account
            StorageError: The account store failed
        """
        if amount < 0:
            raise ValueError(f"amount must be >= 0, got {amount}")

        try:
            new_balance = self.store.atomic_decrement(account_id, amount)
        except AtomicDecrementUnavailable:
            logger.warning("Atomic decrement unavailable, using read-compare-write fallback",
                           account_id=account_id,
                           trace_id=trace_id)
            return self._reserve_fallback(account_id, amount, trace_id)

        if new_balance is None:
            # Rejected: tell a missing account apart from a short balance
            balance = self.store.get_balance(account_id)
            self._reject(account_id, amount, balance, trace_id)

        self._accepted(account_id, amount, new_balance, trace_id)
        return new_balance

    def _reserve_fallback(self, account_id: str, amount: int, trace_id: str) -> int:
        balance = self.store.get_balance(account_id)
        if balance is None or balance < amount:
            self._reject(account_id, amount, balance, trace_id)

        new_balance = self.store.set_balance(account_id, balance - amount)
        self._accepted(account_id, amount, new_balance, trace_id)
        return new_balance

    def _reject(self, account_id: str, amount: int, balance: Optional[int], trace_id: str):
        if balance is None:
            logger.info("Credit reservation rejected: unknown account",
                        account_id=account_id, trace_id=trace_id)
            if self.metrics:
                self.metrics.record_ledger_rejection("account_not_found")
            raise AccountNotFound(account_id)

        logger.info("Credit reservation rejected: insufficient credits",
                    account_id=account_id,
                    requested=amount,
                    balance=balance,
                    trace_id=trace_id)
        if self.metrics:
            self.metrics.record_ledger_rejection("insufficient_credits")
        raise InsufficientCredits(account_id, amount, balance)

    def _accepted(self, account_id: str, amount: int, new_balance: int, trace_id: str) -> None:
        logger.info("Credits reserved",
                    account_id=account_id,
                    amount=amount,
                    remaining=new_balance,
                    trace_id=trace_id)
        if self.metrics:
            self.metrics.record_credits_reserved(amount)

    def balance(self, account_id: str, provision: bool = False) -> int:
        """
        Current balance.

        With ``provision`` a missing account is created with the signup
        credits instead of failing.

        Raises:
            AccountNotFound: Account missing and ``provision`` is False
        """
        balance = self.store.get_balance(account_id)
        if balance is not None:
            return balance
        if not provision:
            raise AccountNotFound(account_id)

        if self.store.create_account(account_id, self.signup_credits):
            logger.info("Provisioned credit account",
                        account_id=account_id,
                        credits=self.signup_credits)
            return self.signup_credits
        # Lost a creation race; the row exists now
        return self.store.get_balance(account_id)

    def top_up(self, account_id: str, amount: int) -> int:
        """Add purchased credits and return the new balance."""
        if amount < 1:
            raise ValueError(f"top-up amount must be >= 1, got {amount}")
        new_balance = self.store.add_credits(account_id, amount)
        if new_balance is None:
            raise AccountNotFound(account_id)
        logger.info("Credits added", account_id=account_id, amount=amount, balance=new_balance)
        return new_balance
