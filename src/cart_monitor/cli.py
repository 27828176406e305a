"""Command-line interface for Cart Monitor."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cart_monitor import __version__
from cart_monitor.exceptions import CartMonitorError
from cart_monitor.utils.config import get_settings
from cart_monitor.utils.logging import setup_logging


app = typer.Typer(
    name="cart-monitor",
    help="Cart-based price monitor driving an already running Chrome",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()


# =============================================================================
# Helper Functions
# =============================================================================


def run_async(coro):
    """Run async coroutine in sync context."""
    return asyncio.run(coro)


def read_cookies(path: Path) -> str:
    """Read a cookie jar file (JSON array or base64 JSON)."""
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        console.print(f"[red]✗ Cannot read cookies file:[/red] {e}")
        raise typer.Exit(code=1) from e


def display_add_result(result) -> None:
    """Display a batch report in a table."""
    table = Table(
        title=(
            f"Variants: {result.total_skus}  "
            f"[green]ok {result.success_count}[/green]  "
            f"[red]failed {result.failed_count}[/red]"
        )
    )
    table.add_column("#", style="dim")
    table.add_column("Variant", style="white", max_width=50)
    table.add_column("Result")
    table.add_column("Detail", style="dim", max_width=40)

    for index, item in enumerate(result.results, start=1):
        if item.success:
            status = "[yellow]skipped[/yellow]" if item.skipped else "[green]added[/green]"
        else:
            status = f"[red]{item.error.value if item.error else 'failed'}[/red]"
        table.add_row(str(index), item.sku_properties, status, item.detail or "")

    console.print(table)


def display_snapshot(report) -> None:
    """Display cart lines read by a snapshot pass."""
    table = Table(title=f"Cart Items: {len(report.items)}")
    table.add_column("Product ID", style="cyan")
    table.add_column("SKU", style="white", max_width=30)
    table.add_column("Title", style="white", max_width=40)
    table.add_column("Price", style="green")
    table.add_column("Qty", style="yellow")

    for item in report.items:
        table.add_row(
            item.product_id,
            item.sku_properties or "-",
            (item.title or "")[:40],
            f"¥{item.price:,.2f}" if item.price is not None else "-",
            str(item.quantity),
        )

    console.print(table)
    console.print(f"[dim]Rows written: {report.upserted}[/dim]")
    if report.missing:
        console.print(
            f"[yellow]Not found in cart:[/yellow] {', '.join(report.missing)}"
        )


# =============================================================================
# Commands
# =============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[bold blue]cart-monitor[/bold blue] v{__version__}")


@app.command("add-all")
def add_all(
    account_id: str = typer.Argument(..., help="Account identifier"),
    product_id: str = typer.Argument(..., help="Product ID to add"),
    cookies: Path = typer.Option(
        ..., "--cookies", "-c", help="Cookie jar file (JSON or base64 JSON)"
    ),
    headless: bool = typer.Option(
        True,
        "--headless/--no-headless",
        help="Advisory; an attached browser keeps its own mode",
    ),
    deadline: float = typer.Option(
        None, "--deadline", "-d", help="Overall deadline in seconds"
    ),
    skip_existing: bool = typer.Option(
        False, "--skip-existing", help="Skip variants already in the cart"
    ),
    single_sku_fallback: bool = typer.Option(
        False,
        "--single-sku-fallback",
        help="Try a plain add when the page layout is not recognized",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Add every purchasable variant of a product to the account's cart."""

    async def _add_all():
        settings = get_settings()
        setup_logging(
            level="DEBUG" if verbose else settings.log_level,
            json_format=settings.log_json,
        )

        from cart_monitor.core.cart_adder import AddAllOptions
        from cart_monitor.core.monitor import CartMonitor

        jar = read_cookies(cookies)
        options = AddAllOptions(
            headless=headless,
            deadline_seconds=deadline,
            skip_existing=skip_existing,
            single_sku_fallback=single_sku_fallback,
        )

        if not as_json:
            console.print(f"[bold]Adding variants of:[/bold] {product_id}")
            console.print(f"[dim]Account: {account_id}[/dim]\n")

        async with CartMonitor(settings=settings) as monitor:
            return await monitor.add_all_skus_to_cart(
                account_id, product_id, jar, options
            )

    try:
        result = run_async(_add_all())
    except CartMonitorError as e:
        console.print(f"[red]✗ {type(e).__name__}:[/red] {e}")
        raise typer.Exit(code=1) from e

    if as_json:
        console.print_json(data=result.to_dict())
    else:
        display_add_result(result)


@app.command()
def snapshot(
    account_id: str = typer.Argument(..., help="Account identifier"),
    cookies: Path = typer.Option(
        ..., "--cookies", "-c", help="Cookie jar file (JSON or base64 JSON)"
    ),
    db_url: str = typer.Option(
        None, "--db-url", envvar="CART_MONITOR_DB_URL", help="Async database URL"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Read the cart and reconcile prices with the product store."""

    async def _snapshot():
        settings = get_settings()
        setup_logging(
            level="DEBUG" if verbose else settings.log_level,
            json_format=settings.log_json,
        )

        from cart_monitor.core.monitor import CartMonitor

        jar = read_cookies(cookies)
        console.print(f"[bold]Reading cart of:[/bold] {account_id}\n")

        async with CartMonitor(settings=settings, database_url=db_url) as monitor:
            return await monitor.update_prices_from_cart(account_id, jar)

    try:
        report = run_async(_snapshot())
    except CartMonitorError as e:
        console.print(f"[red]✗ {type(e).__name__}:[/red] {e}")
        artifacts = getattr(e, "artifacts", None)
        if artifacts:
            console.print(f"[dim]Artifacts: {', '.join(artifacts)}[/dim]")
        raise typer.Exit(code=1) from e

    display_snapshot(report)


if __name__ == "__main__":
    app()
