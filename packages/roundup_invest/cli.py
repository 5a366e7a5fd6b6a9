# ruff: noqa: I001
"""CLI for the ``roundup_invest`` package.

A Typer console interface over :mod:`roundup_invest.api`. Environment
variables (``DATABASE_URL``, ``ROUNDUP_LLM_API_KEY``/``OPENAI_API_KEY`` and
the ``ROUNDUP_*`` knobs) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Commands print a JSON summary to
stdout and exit non-zero on errors that abort the whole operation.
"""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging


# ---- Small module-level helpers used by CLI commands -------------------------


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        _fail(f"cannot read {path}: {e}")


def _resolution_dict(resolution: Any) -> dict[str, Any]:
    out = asdict(resolution) if is_dataclass(resolution) else {"value": repr(resolution)}
    out["outcome"] = type(resolution).__name__.lower()
    return out


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Round-up pipeline: import purchases, resolve merchants to tickers and "
        "queue fee-adjusted orders. Loads DATABASE_URL from a local .env."
    ),
)

# Module-level option objects shared by the Annotated parameters below.
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to a CSV file",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
    readable=True,
)
OWNER_OPTION: OptionInfo = typer.Option(..., "--owner-id", help="Owner (user) id")
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    "--database-url", help="Override DATABASE_URL (falls back to env var)."
)


@app.command("import-csv")
def import_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    owner_id: Annotated[int, OWNER_OPTION],
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Import purchases from a bulk CSV (date, merchant, amount required)."""

    from roundup_db.client import session_scope

    from .api import BatchAbortedError, ingest_bulk_csv

    text = _read_text(csv_path)
    try:
        with session_scope(database_url=database_url) as session:
            summary = ingest_bulk_csv(session, owner_id, text)
    except BatchAbortedError as e:
        _fail(str(e))
    _echo_json(summary.as_dict())


@app.command("import-mappings")
def import_mappings_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    owner_id: Annotated[int | None, typer.Option(help="Attribute rows to this owner")] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Import merchant-to-ticker mappings (merchant, ticker required)."""

    from roundup_db.client import session_scope

    from .api import BatchAbortedError, import_mappings_csv

    text = _read_text(csv_path)
    try:
        with session_scope(database_url=database_url) as session:
            summary = import_mappings_csv(session, text, owner_id=owner_id)
    except BatchAbortedError as e:
        _fail(str(e))
    _echo_json(summary.as_dict())


@app.command("process-purchase")
def process_purchase_cmd(
    owner_id: Annotated[int, OWNER_OPTION],
    merchant: Annotated[str | None, typer.Option(help="Merchant name")] = None,
    amount: Annotated[str | None, typer.Option(help="Purchase amount, e.g. 4.35")] = None,
    category: Annotated[str | None, typer.Option(help="Optional category hint")] = None,
    date: Annotated[
        str | None, typer.Option("--date", help="YYYY-MM-DD or MM/DD/YYYY (default: today)")
    ] = None,
    transaction_id: Annotated[
        int | None, typer.Option(help="Process an already-ingested transaction instead")
    ] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Run one purchase through round-up, resolution and queuing."""

    from roundup_db.client import session_scope

    from .api import RoundupError, process_purchase
    from .normalizers import parse_date

    if transaction_id is None and (merchant is None or amount is None):
        _fail("pass --merchant and --amount, or --transaction-id")
    try:
        tx_date = parse_date(date) if date else None
        with session_scope(database_url=database_url) as session:
            result = process_purchase(
                session,
                owner_id,
                merchant=merchant,
                amount=amount,
                category=category,
                tx_date=tx_date,
                transaction_id=transaction_id,
            )
    except (RoundupError, LookupError, ValueError) as e:
        _fail(str(e))
    _echo_json(
        {
            "transaction_id": result.transaction_id,
            "round_up": result.quote.round_up,
            "fee": result.quote.fee,
            "net": result.quote.net,
            "resolution": _resolution_dict(result.resolution),
            "ledger_entry_id": result.ledger_entry_id,
            "queued_order_ids": list(result.queued_order_ids),
            "duplicate": result.duplicate,
        }
    )


@app.command("submit-receipt")
def submit_receipt_cmd(
    json_path: Annotated[Path, typer.Option("--json-path", help="OCR'd receipt JSON file")],
    owner_id: Annotated[int, OWNER_OPTION],
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Allocate a receipt's round-up across the retailer and brand tickers."""

    from roundup_db.client import session_scope

    from .api import RoundupError, submit_receipt

    try:
        payload = json.loads(_read_text(json_path))
    except json.JSONDecodeError as e:
        _fail(f"receipt is not valid JSON: {e}")
    try:
        with session_scope(database_url=database_url) as session:
            result = submit_receipt(session, owner_id, payload)
    except (RoundupError, ValueError) as e:
        _fail(str(e))
    _echo_json(
        {
            "receipt_id": result.receipt_id,
            "transaction_id": result.transaction_id,
            "round_up": result.quote.round_up,
            "fee": result.quote.fee,
            "net": result.quote.net,
            "allocations": [asdict(line) for line in result.allocations],
            "queued_order_ids": list(result.queued_order_ids),
            "persistence_failures": result.persistence_failures,
            "duplicate": result.duplicate,
        }
    )


@app.command("resolve-merchant")
def resolve_merchant_cmd(
    merchant: Annotated[str, typer.Option(help="Merchant name to resolve")],
    category: Annotated[str | None, typer.Option(help="Optional category hint")] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Resolve one merchant through the tier chain and print the outcome."""

    from roundup_db.client import session_scope

    from .api import MerchantResolver, load_pipeline_config

    with session_scope(database_url=database_url) as session:
        resolver = MerchantResolver(session, load_pipeline_config(session))
        outcome = resolver.resolve(merchant, category)
    _echo_json(_resolution_dict(outcome))


@app.command("resolve-pending")
def resolve_pending_cmd(
    owner_id: Annotated[int, OWNER_OPTION],
    limit: Annotated[int | None, typer.Option(help="Maximum transactions to retry")] = None,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Retry resolution for the owner's pending and failed transactions."""

    from roundup_db.client import session_scope

    from .api import BatchAbortedError, resolve_pending_transactions

    try:
        with session_scope(database_url=database_url) as session:
            summary = resolve_pending_transactions(session, owner_id, limit=limit)
    except BatchAbortedError as e:
        _fail(str(e))
    _echo_json(summary.as_dict())


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging once for all
    subcommands.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
