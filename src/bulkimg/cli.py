"""CLI entry point for the bulk image uploader.

Provides commands:
  - match: Scan a folder, fetch draft records, show which images match
  - upload: Match, then upload and attach the matched images
  - config: Manage the Admin API access token
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Annotated

import httpx
import keyring
import keyring.errors
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bulkimg.config import (
    ENV_TOKEN,
    KEY_NAME,
    SERVICE_NAME,
    get_access_token,
    load_uploader_config,
)
from bulkimg.matching import group_match_results, match_images_to_records, matched_pairs
from bulkimg.models import MatchSummary, RemoteRecord, UploaderConfig
from bulkimg.scanner import ScanResult, scan_directory
from bulkimg.summary import format_upload_banner

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Bulk Image Uploader - match images to draft records by handle and attach them",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (access token)")
app.add_typer(config_app, name="config")

ImagesDir = Annotated[
    Path,
    typer.Argument(
        exists=True, file_okay=False, dir_okay=True, help="Folder containing images"
    ),
]
ConfigPath = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to uploader_config.json"),
]
Recursive = Annotated[
    bool,
    typer.Option("--recursive", "-r", help="Include images in subfolders"),
]


@app.callback()
def app_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_config_or_exit(config_path: Path | None) -> tuple[UploaderConfig, str]:
    config = load_uploader_config(config_path)
    if not config.shop_domain:
        console.print(
            "[red]Error:[/red] No shop domain configured. Set [bold]shop_domain[/bold] "
            "in config/uploader_config.json or export BULKIMG_SHOP_DOMAIN."
        )
        raise typer.Exit(code=1)
    try:
        token = config.access_token or get_access_token()
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    return config, token


def _build_catalog(http: httpx.AsyncClient, config: UploaderConfig, token: str):
    from bulkimg.upload.client import CatalogClient

    return CatalogClient(
        http,
        endpoint=config.graphql_url,
        access_token=token,
        page_size=config.page_size,
        record_query=config.record_query,
    )


async def _fetch_records(config: UploaderConfig, token: str) -> list[RemoteRecord]:
    async with httpx.AsyncClient(timeout=config.http_timeout) as http:
        return await _build_catalog(http, config, token).fetch_draft_records()


def _scan_or_exit(images_dir: Path, recursive: bool) -> ScanResult:
    scan = scan_directory(images_dir, recursive=recursive)
    for rejected in scan.rejected:
        console.print(f"[yellow]Skipped[/yellow] {rejected}")
    for duplicate in scan.duplicates:
        console.print(f"[yellow]Skipped duplicate filename[/yellow] {duplicate}")
    if not scan.files:
        console.print("[red]Error:[/red] No valid images found.")
        raise typer.Exit(code=1)
    return scan


def _fetch_or_exit(config: UploaderConfig, token: str) -> list[RemoteRecord]:
    from bulkimg.upload.exceptions import CatalogAPIError

    try:
        records = asyncio.run(_fetch_records(config, token))
    except (CatalogAPIError, httpx.HTTPError) as e:
        console.print(f"[red]Failed to fetch draft records:[/red] {e}")
        raise typer.Exit(code=1)
    if not records:
        console.print("[yellow]No draft records found.[/yellow]")
        raise typer.Exit(code=1)
    return records


def _print_match_summary(summary: MatchSummary) -> None:
    groups = group_match_results(summary.results)

    matched_table = Table(title=f"Matched ({summary.matched_count})")
    matched_table.add_column("Image", style="cyan", no_wrap=True)
    matched_table.add_column("Handle")
    matched_table.add_column("Title")
    matched_table.add_column("Has Image", justify="center")
    for result in groups.matched:
        record = result.record
        matched_table.add_row(
            result.file.name,
            record.handle,
            record.title,
            "[yellow]yes[/yellow]" if record.has_existing_image else "no",
        )
    console.print(matched_table)

    if groups.unmatched:
        unmatched_table = Table(title=f"Unmatched ({summary.unmatched_count})")
        unmatched_table.add_column("Image", style="red", no_wrap=True)
        unmatched_table.add_column("Looked up handle", style="dim")
        for result in groups.unmatched:
            unmatched_table.add_row(result.file.name, result.derived_key)
        console.print(unmatched_table)

    console.print(
        f"[bold]{summary.total}[/bold] images: "
        f"[green]{summary.matched_count} matched[/green], "
        f"[red]{summary.unmatched_count} unmatched[/red]"
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def match(
    images_dir: ImagesDir,
    config_path: ConfigPath = None,
    recursive: Recursive = False,
) -> None:
    """Show which images in a folder match a draft record handle."""
    config, token = _load_config_or_exit(config_path)
    scan = _scan_or_exit(images_dir, recursive)
    records = _fetch_or_exit(config, token)

    summary = match_images_to_records(scan.files, records)
    _print_match_summary(summary)


@app.command()
def upload(
    images_dir: ImagesDir,
    config_path: ConfigPath = None,
    recursive: Recursive = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-n", help="Max concurrent transfers (default: 1)"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be uploaded without uploading"),
    ] = False,
) -> None:
    """Upload matched images and attach them to their draft records.

    The access token is read from the system keyring (service: bulkimg-shopify).
    To set it:  bulkimg config set-token YOUR_TOKEN
    """
    config, token = _load_config_or_exit(config_path)
    scan = _scan_or_exit(images_dir, recursive)
    records = _fetch_or_exit(config, token)

    summary = match_images_to_records(scan.files, records)
    _print_match_summary(summary)

    pairs = matched_pairs(summary.results)
    if not pairs:
        console.print("[yellow]Nothing to upload.[/yellow]")
        return

    if dry_run:
        console.print(
            Panel(
                f"[bold]{len(pairs)}[/bold] images would be uploaded to "
                f"[bold]{config.shop_domain}[/bold]",
                title="Dry Run",
            )
        )
        return

    # Import upload modules here to keep CLI startup fast for match
    from bulkimg.upload.exceptions import SlotRequestError
    from bulkimg.upload.orchestrator import UploadOrchestrator, UploadReport
    from bulkimg.upload.progress import UploadProgressTracker
    from bulkimg.upload.rate_limiter import TransferPolicy
    from bulkimg.upload.client import StorageTransfer

    policy = TransferPolicy(
        max_concurrency=concurrency or config.max_concurrent_transfers,
        min_interval=config.min_transfer_interval,
    )

    console.print(
        Panel(
            f"Uploading [bold]{len(pairs)}[/bold] images to "
            f"[bold]{config.shop_domain}[/bold]\n"
            f"Concurrency: {policy.max_concurrency}",
            title="Upload Pipeline",
        )
    )

    progress = UploadProgressTracker(console=console)

    async def _run_upload() -> UploadReport:
        async with httpx.AsyncClient(timeout=config.http_timeout) as http:
            orchestrator = UploadOrchestrator(
                catalog=_build_catalog(http, config, token),
                storage=StorageTransfer(http),
                policy=policy,
                progress=progress,
            )
            with progress:
                return await orchestrator.run(pairs)

    try:
        report = asyncio.run(_run_upload())
    except SlotRequestError as e:
        console.print(f"[red]Upload failed, nothing was uploaded:[/red] {e}")
        raise typer.Exit(code=1)

    banner, *failures = format_upload_banner(report.outcomes)
    style = "green" if report.all_succeeded else "yellow"
    body = f"[{style}]{banner}[/{style}]"
    if failures:
        body += "\n" + "\n".join(f"[red]{line}[/red]" for line in failures)
    console.print(Panel(body, title="Upload Complete"))

    if not report.all_succeeded:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Access token
# ---------------------------------------------------------------------------


def _mask_token(token: str) -> str:
    """Keep the ``shpat_`` style prefix and the last four characters visible."""
    if len(token) <= 10:
        return "*" * len(token)
    return token[:6] + "*" * (len(token) - 10) + token[-4:]


def _stored_token() -> str | None:
    try:
        return keyring.get_password(SERVICE_NAME, KEY_NAME)
    except keyring.errors.KeyringError as e:
        logger.debug("Keyring lookup failed: %s", e)
        return None


@config_app.command("set-token")
def set_token(
    token: Annotated[
        str,
        typer.Argument(help="Admin API access token to store in system keyring"),
    ],
) -> None:
    """Store the Admin API access token in the system keyring (service: bulkimg-shopify)."""
    token = token.strip()
    if not token:
        console.print("[red]Error:[/red] Access token cannot be empty")
        raise typer.Exit(code=1)

    try:
        keyring.set_password(SERVICE_NAME, KEY_NAME, token)
    except keyring.errors.KeyringError as e:
        console.print(
            f"[red]Error:[/red] Keyring refused the token: {e}\n"
            f"Export [bold]{ENV_TOKEN}[/bold] instead."
        )
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Stored {_mask_token(token)} under {SERVICE_NAME}")


@config_app.command("get-token")
def show_token() -> None:
    """Show the access token the upload commands will use (masked) and its source."""
    token = _stored_token()
    source = f"keyring service {SERVICE_NAME}"
    if not token:
        token = os.environ.get(ENV_TOKEN)
        source = f"environment variable {ENV_TOKEN}"
    if not token:
        console.print(
            "[yellow]No access token configured.[/yellow]\n"
            "Set it with: [bold]bulkimg config set-token YOUR_TOKEN[/bold]"
        )
        raise typer.Exit(code=1)

    console.print(f"[green]Access token:[/green] {_mask_token(token)}")
    console.print(f"[dim](from {source})[/dim]")


@config_app.command("remove-token")
def remove_token() -> None:
    """Delete the stored access token from the system keyring."""
    if not _stored_token():
        console.print("[yellow]No access token in keyring; nothing to remove.[/yellow]")
        return

    try:
        keyring.delete_password(SERVICE_NAME, KEY_NAME)
    except keyring.errors.KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to remove access token: {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Access token removed from {SERVICE_NAME}")


if __name__ == "__main__":
    app()
