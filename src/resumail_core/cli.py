import json
import sys
from pathlib import Path
from typing import Optional

import typer

from resumail_core.billing.ledger import CreditLedger
from resumail_core.config import Config
from resumail_core.errors import AccountNotFound, InsufficientCredits, ResumailError
from resumail_core.observability.logs import setup_logging
from resumail_core.observability.metrics import MetricsCollector
from resumail_core.run import build_pipeline
from resumail_core.stats import account_stats, list_reports
from resumail_core.storage.accounts import AccountStore
from resumail_core.storage.database import create_engine_from_config, init_schema
from resumail_core.storage.reports import ReportStore

app = typer.Typer(add_completion=False)

EXIT_ERROR = 1
EXIT_INSUFFICIENT_CREDITS = 2
EXIT_ACCOUNT_NOT_FOUND = 3


def _load_config(log_level: Optional[str]) -> Config:
    config = Config()
    # stdout carries command output; logs go to stderr
    setup_logging(log_level=log_level or config.observability.log_level, stream=sys.stderr)
    return config


def _engine(config: Config):
    engine = create_engine_from_config(config.storage)
    init_schema(engine)
    return engine


def _ledger(config: Config) -> CreditLedger:
    return CreditLedger(
        AccountStore(_engine(config), atomic_decrement=config.storage.atomic_decrement),
        cost_per_record=config.pipeline.cost_per_record,
        signup_credits=config.storage.signup_credits,
    )


def _load_records(path: Path) -> list:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("emails", [])
    if not isinstance(data, list):
        raise ValueError("records file must hold a JSON list or {\"emails\": [...]}")
    return data


def _exit_for(error: Exception) -> int:
    if isinstance(error, InsufficientCredits):
        return EXIT_INSUFFICIENT_CREDITS
    if isinstance(error, AccountNotFound):
        return EXIT_ACCOUNT_NOT_FOUND
    return EXIT_ERROR


@app.command("init-db")
def init_db(log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (defaults to observability.log_level)")):
    """Create database tables."""
    config = _load_config(log_level)
    _engine(config)
    typer.echo("✓ Database schema ready")


@app.command()
def analyze(
    account_id: str = typer.Argument(..., help="Account to charge"),
    records_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON list of {from, subject, body}"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the outcome JSON here instead of stdout"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Override records per batch"),
    serve_metrics: bool = typer.Option(False, "--serve-metrics", help="Expose Prometheus metrics on observability.prometheus_port"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
):
    """Analyze a batch of e-mails and store the consolidated report."""
    config = _load_config(log_level)
    if batch_size:
        config.pipeline.batch_size = batch_size

    metrics = MetricsCollector()
    if serve_metrics:
        metrics.start_server(config.observability.prometheus_port)

    try:
        records = _load_records(records_file)
        pipeline = build_pipeline(config, metrics=metrics)
        outcome = pipeline.analyze(account_id, records)
    except ResumailError as e:
        typer.echo(f"Error: {e}", err=True)
        sys.exit(_exit_for(e))
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_ERROR)

    payload = outcome.model_dump_json(indent=2)
    if out:
        out.write_text(payload, encoding="utf-8")
        typer.echo(f"✓ Final report {outcome.final_report.id} written to {out}")
    else:
        typer.echo(payload)


@app.command()
def balance(
    account_id: str = typer.Argument(..., help="Account id"),
    provision: bool = typer.Option(False, "--provision", help="Create the account with signup credits if missing"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (defaults to observability.log_level)"),
):
    """Show remaining credits."""
    config = _load_config(log_level)
    try:
        credits = _ledger(config).balance(account_id, provision=provision)
    except ResumailError as e:
        typer.echo(f"Error: {e}", err=True)
        sys.exit(_exit_for(e))
    typer.echo(json.dumps({"account_id": account_id, "credits": credits}))


@app.command("top-up")
def top_up(
    account_id: str = typer.Argument(..., help="Account id"),
    amount: int = typer.Argument(..., min=1, help="Credits to add"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (defaults to observability.log_level)"),
):
    """Add credits to an existing account."""
    config = _load_config(log_level)
    try:
        credits = _ledger(config).top_up(account_id, amount)
    except ResumailError as e:
        typer.echo(f"Error: {e}", err=True)
        sys.exit(_exit_for(e))
    typer.echo(json.dumps({"account_id": account_id, "credits": credits}))


@app.command()
def stats(
    account_id: str = typer.Argument(..., help="Account id"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (defaults to observability.log_level)"),
):
    """Aggregate statistics over an account's final reports."""
    config = _load_config(log_level)
    try:
        result = account_stats(ReportStore(_engine(config)), account_id)
    except ResumailError as e:
        typer.echo(f"Error: {e}", err=True)
        sys.exit(_exit_for(e))
    typer.echo(json.dumps(result, ensure_ascii=False, indent=2))


@app.command()
def reports(
    account_id: str = typer.Argument(..., help="Account id"),
    final_only: bool = typer.Option(False, "--final-only", help="Only consolidated reports"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (defaults to observability.log_level)"),
):
    """List an account's reports, newest first."""
    config = _load_config(log_level)
    try:
        rows = list_reports(ReportStore(_engine(config)), account_id, final_only=final_only)
    except ResumailError as e:
        typer.echo(f"Error: {e}", err=True)
        sys.exit(_exit_for(e))
    typer.echo(json.dumps(rows, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    app()
