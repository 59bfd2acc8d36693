"""CLI entry point for the block shipper.

Provides commands:
  - run: Ship block files to S3 until interrupted
  - status: Show remote top block and the local backlog without uploading
  - config: Manage S3 credentials in the system keyring
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from blockship.config import (
    SERVICE_NAME,
    delete_aws_credentials,
    get_aws_credentials,
    load_shipper_config,
    set_aws_credentials,
)
from blockship.constants import NO_BLOCK
from blockship.models import ShipperConfig
from blockship.store.client import StoreError

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="blockship - replicate numbered block files to S3 in strict order",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage S3 credentials")
app.add_typer(config_app, name="config")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    for noisy in ("boto3", "botocore", "s3transfer", "urllib3", "watchdog"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _resolve_config(
    config_path: Path | None,
    bucket: str | None,
    directory: Path | None,
    interval_ms: int | None,
) -> ShipperConfig:
    """Config file + env, then command-line overrides."""
    try:
        config = load_shipper_config(config_path)
        if bucket is not None:
            config.bucket_name = bucket
        if directory is not None:
            config.source_directory = directory
        if interval_ms is not None:
            if interval_ms <= 0:
                raise ValueError(f"--interval-ms must be positive, got {interval_ms}")
            config.poll_interval_ms = interval_ms
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(code=1)
    return config


def _format_block(number: int | None) -> str:
    if number is None or number == NO_BLOCK:
        return "none"
    return str(number)


BucketOption = Annotated[
    Optional[str],
    typer.Option("--bucket", "-b", help="Destination S3 bucket (env: TX_LOG_S3_BUCKET)"),
]
DirectoryOption = Annotated[
    Optional[Path],
    typer.Option("--dir", "-d", help="Block file directory (env: TX_LOG_DIRECTORY)"),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to shipper_config.json"),
]


@app.command()
def run(
    bucket: BucketOption = None,
    directory: DirectoryOption = None,
    interval_ms: Annotated[
        Optional[int],
        typer.Option("--interval-ms", "-i", help="Upload tick interval in milliseconds"),
    ] = None,
    config_path: ConfigOption = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging"),
    ] = False,
) -> None:
    """Ship block files to S3 until interrupted (Ctrl+C to stop)."""
    _setup_logging(verbose)
    config = _resolve_config(config_path, bucket, directory, interval_ms)

    if not config.enabled:
        console.print(
            "[yellow]No destination bucket configured.[/yellow]\n"
            "Set one with [bold]--bucket[/bold] or TX_LOG_S3_BUCKET. Nothing to ship."
        )
        return

    from blockship.shipper.producer import S3BlockProducer

    async def _run_shipper() -> dict:
        producer = S3BlockProducer(config)
        try:
            await producer.init()
        except StoreError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)

        signal_count = 0

        def _handler() -> None:
            nonlocal signal_count
            signal_count += 1
            if signal_count == 1:
                logger.warning("Graceful shutdown initiated, finishing current upload...")
                producer.stop()
            else:
                logger.warning("Forced shutdown. Exiting immediately.")
                raise SystemExit(1)

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, _handler)
            except (NotImplementedError, RuntimeError):
                # add_signal_handler is unavailable on some platforms
                logger.debug("Could not set handler for signal %s", signum)

        await producer.wait_stopped()
        return producer.summary

    console.print(
        Panel(
            f"Shipping [bold]{config.source_directory}[/bold] to "
            f"[bold]s3://{config.bucket_name}/{config.key_prefix}[/bold]\n"
            f"Tick: {config.poll_interval_ms}ms | "
            f"Stall warning after {config.stall_threshold} ticks",
            title="Block Shipper",
        )
    )

    result = asyncio.run(_run_shipper())

    summary_table = Table(title="Shipping Summary")
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Value", justify="right")
    summary_table.add_row("Uploaded", f"[green]{result.get('uploaded', 0)}[/green]")
    summary_table.add_row("Failed attempts", f"[red]{result.get('failed_attempts', 0)}[/red]")
    summary_table.add_row("Pending", str(result.get("pending", 0)))
    summary_table.add_row("Last uploaded block", _format_block(result.get("current_block")))
    console.print(Panel(summary_table, title="Stopped"))


@app.command()
def status(
    bucket: BucketOption = None,
    directory: DirectoryOption = None,
    config_path: ConfigOption = None,
) -> None:
    """Show the remote top block and the local backlog without uploading."""
    config = _resolve_config(config_path, bucket, directory, None)
    if not config.enabled:
        console.print("[red]Error:[/red] No destination bucket configured.")
        raise typer.Exit(code=1)

    from blockship.shipper.reconciler import BacklogReconciler
    from blockship.store.client import S3BlockStore

    async def _reconcile():
        store = S3BlockStore.from_config(config)
        await store.check_bucket()
        return await BacklogReconciler(store, config).reconcile()

    try:
        backlog = asyncio.run(_reconcile())
    except StoreError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"s3://{config.bucket_name}")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Remote top block", _format_block(backlog.cursor))
    table.add_row("Next expected block", str(backlog.cursor + 1))
    table.add_row("Local backlog", str(len(backlog.pending)))
    table.add_row("Ready to upload", f"[green]{backlog.ready_count}[/green]")
    missing = backlog.first_missing
    table.add_row(
        "Missing block",
        f"[yellow]{missing}[/yellow]" if missing is not None else "[dim]none[/dim]",
    )
    console.print(table)


@config_app.command("set-credentials")
def set_credentials(
    access_key: Annotated[
        str,
        typer.Option("--access-key", prompt=True, help="AWS access key id"),
    ],
    secret_key: Annotated[
        str,
        typer.Option("--secret-key", prompt=True, hide_input=True, help="AWS secret access key"),
    ],
) -> None:
    """Store S3 credentials in the system keyring (service: blockship-s3)."""
    if not access_key.strip() or not secret_key.strip():
        console.print("[red]Error:[/red] Credentials cannot be empty")
        raise typer.Exit(code=1)

    try:
        set_aws_credentials(access_key.strip(), secret_key.strip())
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to store credentials: {e}")
        raise typer.Exit(code=1)
    console.print(
        f"[green]✓[/green] Credentials stored in system keyring (service: {SERVICE_NAME})"
    )


@config_app.command("show-credentials")
def show_credentials() -> None:
    """Display the S3 access key in use (masked)."""
    access_key, _ = get_aws_credentials()
    if not access_key:
        console.print(
            "[yellow]No credentials in keyring or environment.[/yellow]\n"
            "boto3's default credential chain will be used."
        )
        raise typer.Exit(code=1)

    masked = access_key[:4] + "*" * max(1, len(access_key) - 4)
    console.print(f"[green]Access key:[/green] {masked}")


@config_app.command("remove-credentials")
def remove_credentials() -> None:
    """Delete stored S3 credentials from the system keyring."""
    if not delete_aws_credentials():
        console.print("[yellow]Warning:[/yellow] No credentials found in keyring. Nothing to remove.")
        return
    console.print(
        f"[green]✓[/green] Credentials removed from system keyring (service: {SERVICE_NAME})"
    )
