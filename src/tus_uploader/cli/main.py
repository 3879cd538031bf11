"""CLI interface for chunked tus uploads."""

import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from ..core.api import TusUploader
from ..core.chunks import plan_file_chunks
from ..core.exceptions import PartialUploadFailure
from ..core.files import split_file
from ..core.models import DEFAULT_CHUNK_SIZE, OFFSET_UNKNOWN, UploaderConfig

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()


def build_config(ctx, **overrides) -> UploaderConfig:
    """Merge CLI options over TUS_* environment variables."""
    return UploaderConfig.from_env(base_url=ctx.obj["base_url"], **overrides)


def make_progress() -> Progress:
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
    )


def print_failure(e: Exception) -> None:
    console.print(f"[red]Error: {escape(str(e))}[/red]")
    if isinstance(e, PartialUploadFailure):
        for index, error in sorted(e.errors.items()):
            console.print(f"  [red]Chunk {index}:[/red] {escape(str(error))}")


@click.group()
@click.option(
    "--base-url",
    envvar="TUS_BASE_URL",
    help="tus creation endpoint (or set TUS_BASE_URL env var)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, base_url, verbose):
    """tus uploader CLI - Upload large files reliably."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--copy-path", help="Destination path stored in the upload metadata")
@click.option(
    "--mode",
    type=click.Choice(["concat", "sequential"], case_sensitive=False),
    default="concat",
    show_default=True,
    help="Parallel chunks merged by the server, or one resumable stream",
)
@click.option("--chunk-size", type=int, envvar="TUS_CHUNK_SIZE", help="Chunk size in bytes")
@click.option("--concurrency", type=int, envvar="TUS_CONCURRENCY", help="Chunks uploaded at once")
@click.option("--retries", type=int, envvar="TUS_RETRIES", help="Attempts per chunk")
@click.option("--merge-timeout", type=float, help="Seconds to wait for the merge")
@click.option("--checksum", is_flag=True, help="Send a SHA1 checksum with every request")
@click.option("--no-cleanup", is_flag=True, help="Keep partial uploads after a failure")
@click.pass_context
def upload(ctx, file_path, copy_path, mode, chunk_size, concurrency, retries,
           merge_timeout, checksum, no_cleanup):
    """Upload a file."""
    try:
        config = build_config(
            ctx,
            chunk_size=chunk_size,
            concurrency=concurrency,
            retries=retries,
            merge_timeout=merge_timeout,
            checksum=checksum or None,
            cleanup_on_failure=False if no_cleanup else None,
        )
        file_size = os.path.getsize(file_path)
        console.print(
            f"Uploading [cyan]{file_path}[/cyan] ({file_size} bytes) to "
            f"[green]{config.base_url}[/green] ({mode})"
        )

        with make_progress() as progress:
            task = progress.add_task(Path(file_path).name, total=file_size)

            def progress_callback(uploaded, total, speed_mbps):
                progress.update(task, completed=uploaded)

            uploader = TusUploader(config, progress_callback=progress_callback)
            if mode.lower() == "sequential":
                result = uploader.upload_sequential(file_path, copy_path)
            else:
                result = uploader.upload_by_concat(file_path, copy_path)

        console.print("[green]✓[/green] Upload completed successfully!")
        console.print(f"Location: [bold]{result.location}[/bold]")
        console.print(
            f"{result.size} bytes in {result.chunks} part(s), "
            f"{result.upload_time:.1f}s ({result.speed_mbps:.2f} MB/s)"
        )

    except Exception as e:
        print_failure(e)
        sys.exit(1)


@cli.command()
@click.argument("location")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def resume(ctx, location, file_path):
    """Continue an interrupted upload at LOCATION from FILE_PATH."""
    try:
        config = build_config(ctx)
        file_size = os.path.getsize(file_path)

        with make_progress() as progress:
            task = progress.add_task(Path(file_path).name, total=file_size)

            def progress_callback(uploaded, total, speed_mbps):
                progress.update(task, completed=uploaded)

            uploader = TusUploader(config, progress_callback=progress_callback)
            result = uploader.resume(location, file_path)

        console.print("[green]✓[/green] Upload resumed and completed!")
        console.print(f"Location: [bold]{result.location}[/bold]")

    except Exception as e:
        print_failure(e)
        sys.exit(1)


@cli.command()
@click.argument("location")
@click.pass_context
def status(ctx, location):
    """Show the confirmed offset and size of an upload."""
    try:
        uploader = TusUploader(build_config(ctx))
        upload = uploader.get_upload(location)

        def fmt(value):
            return "unknown" if value == OFFSET_UNKNOWN else str(value)

        table = Table(title="Upload Status")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Location", upload.location)
        table.add_row("Offset", fmt(upload.remote_offset))
        table.add_row("Size", fmt(upload.remote_size))
        table.add_row("Partial", "yes" if upload.partial else "no")
        table.add_row("Complete", "yes" if upload.is_complete else "no")
        for key, value in upload.metadata.items():
            table.add_row(f"Metadata: {key}", value)

        console.print(table)

    except Exception as e:
        print_failure(e)
        sys.exit(1)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, show_default=True,
    help="Chunk size in bytes",
)
def plan(file_path, chunk_size):
    """Show how a file would be split into chunks."""
    try:
        chunks = plan_file_chunks(file_path, chunk_size)

        table = Table(title=f"Chunks of {Path(file_path).name}")
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Offset", justify="right")
        table.add_column("Size", justify="right", style="green")

        for chunk in chunks:
            table.add_row(str(chunk.index), str(chunk.offset), str(chunk.size))

        console.print(table)
        console.print(f"{len(chunks)} chunks")

    except Exception as e:
        print_failure(e)
        sys.exit(1)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("part1_path", type=click.Path(dir_okay=False))
@click.argument("part2_path", type=click.Path(dir_okay=False))
@click.option("--split-at", type=int, help="Byte offset to split at (default: half the file)")
def split(file_path, part1_path, part2_path, split_at):
    """Split a file into two parts."""
    try:
        if split_at is None:
            split_at = os.path.getsize(file_path) // 2

        size1, size2 = split_file(file_path, part1_path, part2_path, split_at)
        console.print("[green]✓[/green] File split into two parts:")
        console.print(f"  [cyan]{part1_path}[/cyan] ({size1} bytes)")
        console.print(f"  [cyan]{part2_path}[/cyan] ({size2} bytes)")

    except Exception as e:
        print_failure(e)
        sys.exit(1)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
