"""Command-line interface for the fact-check relayer."""

import asyncio
import json
import logging
import signal
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from factcheck_relayer.config import Settings, get_settings
from factcheck_relayer.errors import RelayerError
from factcheck_relayer.models.schemas import FactCheckRequest, FactCheckResult
from factcheck_relayer.pipeline import FactCheckPipeline, RelayerContext
from factcheck_relayer.relayer import Relayer
from factcheck_relayer.state.store import RequestStore

# Configure logging with Rich handler for better formatting
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
)
logger = logging.getLogger(__name__)

app = typer.Typer(
    name="factcheck-relayer",
    help="Fact-check relayer - fulfill on-chain fact-check requests with LLM verdicts",
)
console = Console()


def _configure_logging(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(level)
    if verbose:
        logger.debug("Verbose logging enabled")


def _store_from(settings: Settings) -> RequestStore:
    return RequestStore(
        settings.resolved_state_dir,
        max_attempts=settings.max_attempts,
        retry_delay=settings.retry_delay,
        max_records=settings.max_records,
    )


def _require(settings: Settings) -> None:
    """Exit with status 1 if a required variable is missing."""
    missing = settings.missing_required()
    if missing:
        console.print(f"[red]Error:[/red] Missing {', '.join(missing)}")
        console.print("Set them in the environment or your .env file")
        raise typer.Exit(1)


async def _run_relayer(settings: Settings) -> None:
    from factcheck_relayer.chain.contract import FactCheckContract

    store = _store_from(settings)
    contract = FactCheckContract.from_settings(settings)
    context = RelayerContext.from_settings(settings, chain=contract, store=store)
    relayer = Relayer(
        FactCheckPipeline(context),
        contract,
        store,
        poll_interval=settings.poll_interval,
        start_block=settings.start_block,
        max_concurrent=settings.max_concurrent_requests,
        max_block_range=settings.max_block_range,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, relayer.stop)

    logger.info(f"Relayer account: {contract.address}")
    try:
        await relayer.run()
    finally:
        await context.close()


@app.command()
def run(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """Listen for fact-check requests and fulfill them until interrupted."""
    settings = get_settings()
    _configure_logging(settings, verbose)
    _require(settings)

    asyncio.run(_run_relayer(settings))


async def _process_once(
    settings: Settings,
    request: FactCheckRequest,
    submit: bool,
) -> tuple:
    chain = None
    if submit:
        from factcheck_relayer.chain.contract import FactCheckContract

        chain = FactCheckContract.from_settings(settings)

    context = RelayerContext.from_settings(settings, chain=chain)
    pipeline = FactCheckPipeline(context)
    try:
        if submit:
            return await pipeline.run(request)
        return await pipeline.evaluate(request), None
    finally:
        await context.close()


@app.command()
def process(
    uri: str = typer.Argument(..., help="Blob-store URI of the article"),
    request_id: Optional[int] = typer.Option(
        None, "--request-id", "-i", help="On-chain request id (required with --submit)"
    ),
    submit: bool = typer.Option(
        False, "--submit", help="Fulfill the request on-chain after scoring"
    ),
    json_output: bool = typer.Option(
        False, "--json", "-j", help="Output the explanation payload as JSON only"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """Fact-check one article without waiting for an on-chain event."""
    settings = get_settings()
    _configure_logging(settings, verbose)

    if not settings.walrus_gateway_url:
        console.print("[red]Error:[/red] Missing WALRUS_GATEWAY_URL")
        raise typer.Exit(1)
    if submit and request_id is None:
        console.print("[red]Error:[/red] --submit needs the on-chain --request-id")
        raise typer.Exit(1)
    if submit:
        _require(settings)

    request = FactCheckRequest(
        request_id=request_id if request_id is not None else 0,
        requester="cli",
        content_uri=uri,
    )

    try:
        result, tx_hash = asyncio.run(_process_once(settings, request, submit))
    except RelayerError as e:
        console.print(f"[red]Error:[/red] {type(e).__name__}: {e}")
        raise typer.Exit(1)

    if json_output:
        print(json.dumps(result.explanation_payload(), indent=2))
        return

    _display_result(result, tx_hash)


@app.command()
def check_config():
    """Check configuration and API keys."""
    settings = get_settings()

    table = Table(title="Configuration Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Value")

    def row(name: str, value: Optional[str], required: bool, secret: bool = False) -> None:
        if value:
            status, shown = "✅", ("Configured" if secret else value)
        else:
            status, shown = ("❌", "Missing") if required else ("⚠️", "Not set")
        table.add_row(name, status, shown)

    row("ALCHEMY_URL", settings.alchemy_url, required=True, secret=True)
    row("WALRUS_GATEWAY_URL", settings.walrus_gateway_url, required=True)
    row("RELAYER_PRIVATE_KEY", settings.relayer_private_key, required=True, secret=True)
    row("FACTCHECK_CONTRACT", settings.factcheck_contract, required=True)
    row("BROKER_URL", settings.broker_url, required=False)
    row("DEEPSEEK_PROVIDER", settings.deepseek_provider, required=False)
    row("SERPAPI_KEY", settings.serpapi_key, required=False, secret=True)
    table.add_row("NUM_RESULTS", "ℹ️", str(settings.num_results))
    table.add_row("MAX_CLAIMS", "ℹ️", str(settings.max_claims))
    table.add_row("STATE_DIR", "ℹ️", str(settings.resolved_state_dir))

    console.print(table)

    missing = settings.missing_required()
    if missing:
        console.print(f"\n[red]Error:[/red] Missing {', '.join(missing)}")
        raise typer.Exit(1)


@app.command()
def dead_letters():
    """List requests that exhausted their attempts."""
    settings = get_settings()
    records = _store_from(settings).dead_letters()

    if not records:
        console.print("[green]No dead-lettered requests[/green]")
        return

    table = Table(title="Dead-Lettered Requests")
    table.add_column("Request", style="cyan")
    table.add_column("URI", max_width=40)
    table.add_column("Attempts")
    table.add_column("Last Error", style="red", max_width=60)
    table.add_column("Updated")

    for record in records:
        table.add_row(
            str(record.request_id),
            record.content_uri,
            str(record.attempts),
            record.last_error or "",
            record.updated_at.isoformat(timespec="seconds"),
        )

    console.print(table)


@app.command()
def requeue(
    request_id: int = typer.Argument(..., help="Request id to retry"),
):
    """Reset a dead-lettered request so the running relayer retries it."""
    settings = get_settings()
    record = _store_from(settings).requeue(request_id)

    if record is None:
        console.print(f"[red]Error:[/red] Request {request_id} is not dead-lettered or failed")
        raise typer.Exit(1)

    console.print(f"[green]Requeued request {request_id}[/green]")


def _display_result(result: FactCheckResult, tx_hash: Optional[str]) -> None:
    """Display a fact-check result in a nice format."""
    console.print(
        Panel(
            f"Verdict: [bold]{result.verdict}[/bold]    Bias: [bold]{result.bias_score}[/bold]",
            title=f"[bold blue]Request {result.request_id}[/bold blue]",
        )
    )

    if result.scored_claims:
        table = Table(title="Claims")
        table.add_column("Claim", max_width=80)
        table.add_column("Score", style="green")
        for scored in result.scored_claims:
            table.add_row(scored.claim, scored.score)
        console.print(table)
    else:
        console.print("[yellow]No factual claims extracted[/yellow]")

    if tx_hash:
        console.print(f"\n[green]Fulfill tx:[/green] {tx_hash}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
