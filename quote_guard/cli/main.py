"""
CLI interface for Quote Guard.

Provides command-line access to quote acquisition, the cache and the
generative spend ledger.
"""

import sys
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from quote_guard.bootstrap import build_app
from quote_guard.config.loader import load_config
from quote_guard.core.records import GeneratedQuoteRecord, QuoteRecord
from quote_guard.core.retry import CancellationToken
from quote_guard.errors import AcquisitionFailed, FetchCancelled
from quote_guard.logging_config import configure_logging
from quote_guard.pipeline.orchestrator import StrategyAttempt

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_state = {"config_path": None}


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML configuration file"
    ),
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
):
    """Quote Guard CLI."""
    load_dotenv()
    try:
        configure_logging(log_level)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    _state["config_path"] = config
    if ctx.invoked_subcommand is None:
        console.print("Quote Guard - Use --help to see available commands")


def _build():
    return build_app(load_config(_state["config_path"]))


def _print_attempt(ticker: str, attempt: StrategyAttempt) -> None:
    if attempt.success:
        console.print(f"[dim]{ticker}: {attempt.source.value} ok ({attempt.duration_ms}ms)[/]")
    else:
        console.print(f"[dim]{ticker}: {attempt.source.value} failed - {attempt.error}[/]")


def _format_ratio(value: float) -> str:
    if abs(value) >= 1_000_000:
        return f"{value:,.0f}"
    return f"{value:,.4f}".rstrip("0").rstrip(".")


def _display_record(record: QuoteRecord) -> None:
    console.print(f"\n[bold]{record.name}[/bold] ({record.ticker})")
    console.print(f"Price: {record.price:,.2f} {record.currency}")
    console.print(f"Source: {record.source.value}")
    console.print(f"Fetched at: {record.fetched_at.isoformat(timespec='seconds')}")
    if isinstance(record, GeneratedQuoteRecord):
        console.print(f"Confidence: {record.confidence:.2f}")

    if not record.ratios:
        console.print("\n[dim]No ratios available.[/]")
        return

    table = Table(title="Ratios")
    table.add_column("Ratio")
    table.add_column("Value", justify="right")
    for name in sorted(record.ratios):
        table.add_row(name, _format_ratio(record.ratios[name]))
    console.print(table)


@app.command()
def init():
    """Initialize the Quote Guard database."""
    try:
        with _build():
            pass
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def fetch(
    ticker: str = typer.Argument(..., help="Ticker symbol, e.g. AAPL or CAP.PA"),
    force_refresh: bool = typer.Option(
        False,
        "--force-refresh",
        "-f",
        help="Bypass the cache"
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Give up after this many seconds"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show every strategy attempt"
    ),
):
    """Fetch one quote through the fallback chain."""
    try:
        quote_app = build_app(
            load_config(_state["config_path"]),
            attempt_sink=_print_attempt if verbose else None,
        )
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    with quote_app:
        try:
            record = quote_app.orchestrator.fetch(
                ticker,
                force_refresh=force_refresh,
                cancel=CancellationToken(timeout=timeout),
            )
        except (AcquisitionFailed, FetchCancelled, ValueError) as e:
            console.print(f"[red]Error:[/] {str(e)}")
            sys.exit(EXIT_CODE_FAIL)

    _display_record(record)
    sys.exit(EXIT_CODE_PASS)


@app.command("fetch-many")
def fetch_many(
    tickers: List[str] = typer.Argument(..., help="Ticker symbols"),
    force_refresh: bool = typer.Option(
        False,
        "--force-refresh",
        "-f",
        help="Bypass the cache"
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Give up on the whole batch after this many seconds"
    ),
):
    """Fetch several quotes sequentially, reporting partial results."""
    try:
        quote_app = _build()
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    with quote_app:
        batch = quote_app.orchestrator.fetch_many(
            tickers,
            force_refresh=force_refresh,
            cancel=CancellationToken(timeout=timeout),
        )

    table = Table(title="Quotes")
    table.add_column("Ticker")
    table.add_column("Name")
    table.add_column("Price", justify="right")
    table.add_column("Source")
    for record in batch.results:
        table.add_row(
            record.ticker,
            record.name,
            f"{record.price:,.2f} {record.currency}",
            record.source.value,
        )
    console.print(table)

    for error in batch.errors:
        console.print(f"[red]✗[/] {error.ticker}: {error.error}")

    console.print(f"\nFetched {len(batch.results)} of {len(tickers)} tickers")
    sys.exit(EXIT_CODE_FAIL if batch.errors and not batch.results else EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.4f}"


@app.command()
def budget():
    """Show month-to-date generative spend against the configured limits."""
    try:
        quote_app = _build()
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    with quote_app:
        stats = quote_app.budget.get_month_stats()
        limits = quote_app.config.budget

    if stats.total_calls == 0:
        console.print("\n[bold yellow]No generative usage recorded this month[/]")
        console.print(f"Monthly budget: {_format_currency(limits.monthly)}")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Generative Spend (month to date)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Total cost", f"{_format_currency(stats.total_cost)} / {_format_currency(limits.monthly)}")
    table.add_row("Today", f"{_format_currency(stats.day_cost)} / {_format_currency(limits.daily)}")
    table.add_row(
        "Data fetch",
        f"{_format_currency(stats.data_fetch_cost)} / "
        f"{_format_currency(limits.monthly * limits.allocation.data_fetch)}",
    )
    table.add_row(
        "Analysis",
        f"{_format_currency(stats.analysis_cost)} / "
        f"{_format_currency(limits.monthly * limits.allocation.analysis)}",
    )
    table.add_row("Calls", str(stats.total_calls))
    table.add_row("Success rate", f"{stats.success_rate:.0%}")
    table.add_row("Acceptance rate", f"{stats.acceptance_rate:.0%}")
    table.add_row("Average confidence", f"{stats.avg_confidence:.2f}")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("cache-clear")
def cache_clear(
    ticker: Optional[str] = typer.Argument(None, help="Ticker to evict; all entries when omitted"),
):
    """Remove cached quotes."""
    try:
        quote_app = _build()
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    with quote_app:
        removed = quote_app.cache.invalidate(ticker)
    console.print(f"[green]✓[/] Removed {removed} cached quote(s)")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
