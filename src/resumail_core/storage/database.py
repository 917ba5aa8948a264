"""Database engine and schema."""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from resumail_core.config import StorageConfig

metadata = MetaData()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


accounts = Table(
    "accounts",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("balance", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
)

reports = Table(
    "reports",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(255), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    Column("is_final", Boolean, nullable=False, default=False),
    Column("batch_index", Integer, nullable=True),
    Column("total_emails", Integer, nullable=False, default=0),
    Column("classification", JSON, nullable=False),
    Column("highlights", JSON, nullable=False),
    Column("summary", Text, nullable=False, default=""),
    Column("report_text", Text, nullable=False, default=""),
    Column("mini_report_ids", JSON, nullable=True),
)


def create_engine_from_config(config: StorageConfig) -> Engine:
    """Build an engine; in-memory SQLite shares one connection across threads."""
    url = config.database_url
    if url.startswith("sqlite") and (url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url):
        return create_engine(
            url,
            echo=config.echo_sql,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=config.echo_sql, connect_args={"check_same_thread": False})
    return create_engine(url, echo=config.echo_sql, pool_pre_ping=True)


def init_schema(engine: Engine) -> None:
    """Create tables that do not exist yet."""
    metadata.create_all(engine)


@contextmanager
def transaction(engine: Engine) -> Generator[Connection, None, None]:
    """Connection inside a transaction that commits on success."""
    with engine.begin() as conn:
        yield conn
