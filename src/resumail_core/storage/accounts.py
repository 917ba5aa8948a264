"""Credit account rows."""

from typing import Optional

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from resumail_core.errors import AtomicDecrementUnavailable, StorageError
from resumail_core.storage.database import accounts, transaction

logger = structlog.get_logger()


class AccountStore:
    """Select/update access to the ``accounts`` table."""

    def __init__(self, engine: Engine, atomic_decrement: bool = True):
        self.engine = engine
        self.supports_atomic = atomic_decrement

    def get_balance(self, account_id: str) -> Optional[int]:
        """Current balance, or None when the account does not exist."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(
                    select(accounts.c.balance).where(accounts.c.id == account_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError("get_balance", str(e)) from e

    def atomic_decrement(self, account_id: str, amount: int) -> Optional[int]:
        """
        Decrement only if ``balance >= amount``, in one conditional UPDATE.

        Returns:
            New balance, or None when rejected (missing account or not enough credits)

        Raises:
            AtomicDecrementUnavailable: If the store was configured without it
        """
        if not self.supports_atomic:
            raise AtomicDecrementUnavailable("conditional decrement disabled for this store")

        try:
            with transaction(self.engine) as conn:
                result = conn.execute(
                    update(accounts)
                    .where(accounts.c.id == account_id)
                    .where(accounts.c.balance >= amount)
                    .values(balance=accounts.c.balance - amount)
                )
                if result.rowcount != 1:
                    return None
                return conn.execute(
                    select(accounts.c.balance).where(accounts.c.id == account_id)
                ).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError("atomic_decrement", str(e)) from e

    def set_balance(self, account_id: str, value: int) -> int:
        """Overwrite the balance. Not safe against concurrent writers."""
        try:
            with transaction(self.engine) as conn:
                result = conn.execute(
                    update(accounts).where(accounts.c.id == account_id).values(balance=value)
                )
                if result.rowcount != 1:
                    raise StorageError("set_balance", f"no account row for {account_id}")
        except SQLAlchemyError as e:
            raise StorageError("set_balance", str(e)) from e
        return value

    def create_account(self, account_id: str, balance: int = 0) -> bool:
        """Insert a new account; False when it already exists."""
        try:
            with transaction(self.engine) as conn:
                conn.execute(insert(accounts).values(id=account_id, balance=balance))
        except IntegrityError:
            logger.debug("Account already exists", account_id=account_id)
            return False
        except SQLAlchemyError as e:
            raise StorageError("create_account", str(e)) from e
        return True

    def add_credits(self, account_id: str, amount: int) -> Optional[int]:
        """Increment the balance; None when the account does not exist."""
        try:
            with transaction(self.engine) as conn:
                result = conn.execute(
                    update(accounts)
                    .where(accounts.c.id == account_id)
                    .values(balance=accounts.c.balance + amount)
                )
                if result.rowcount != 1:
                    return None
                return conn.execute(
                    select(accounts.c.balance).where(accounts.c.id == account_id)
                ).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError("add_credits", str(e)) from e
