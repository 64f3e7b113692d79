"""Thin CLI wrapper for imagewrite.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from imagewrite import __version__
from imagewrite.config import get_settings, print_settings_json
from imagewrite.service import FlashResult, flash_image, verify_image
from imagewrite.types import ProgressSnapshot

app = typer.Typer(
    name="imagewrite",
    help="Image Writer - write disk images to block devices and verify them",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"imagewrite version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Image Writer - write disk images to block devices and verify them."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _progress_bar() -> Progress:
    return Progress(
        "[progress.description]{task.description}",
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
    )


def _result_json(result: FlashResult) -> str:
    return json.dumps(
        {
            "success": result.success,
            "image_path": result.image_path,
            "device_path": result.device_path,
            "bytes_written": result.bytes_written,
            "verification_result": result.verification_result.value,
            "source_digest": result.source_digest,
            "device_digest": result.device_digest,
            "error_message": result.error_message,
            "error_code": result.error_code,
        },
        indent=2,
    )


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print(f"  Chunk size:          {settings.chunk_size}")
        console.print(f"  Verify after write:  {settings.verify}")
        console.print(f"  Digest algorithm:    {settings.digest_algorithm}")
        console.print(f"  Digest chunk size:   {settings.digest_chunk_size}")
        console.print(f"  Log level:           {settings.log_level}")


@app.command()
def write(
    image_path: Annotated[str, typer.Argument(help="Path to image file")],
    device: Annotated[str, typer.Argument(help="Device path (e.g., /dev/sdX)")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation prompts"),
    ] = False,
    no_verify: Annotated[
        bool,
        typer.Option("--no-verify", help="Skip verification after write"),
    ] = False,
    chunk_size: Annotated[
        int | None,
        typer.Option("--chunk-size", min=512, help="Bytes written per chunk"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Write an image file to a device and verify it.

    The first 512 bytes of the device are erased before writing.
    Everything on the device is lost.
    """
    settings = get_settings()
    if chunk_size is not None:
        settings = settings.model_copy(update={"chunk_size": chunk_size})

    # Confirmation prompt unless force
    if not force:
        console.print(f"[bold red]WARNING:[/bold red] This will OVERWRITE {device}")
        console.print(f"  Image: {image_path}")
        confirm = typer.confirm("Are you sure you want to continue?", default=False)
        if not confirm:
            console.print("[yellow]Aborted[/yellow]")
            raise typer.Exit(code=0)

    with _progress_bar() as progress:
        write_task = progress.add_task("Writing", total=None)
        verify_task = progress.add_task("Verifying", total=None, visible=False)

        def on_write(snapshot: ProgressSnapshot) -> None:
            progress.update(
                write_task, total=snapshot.length, completed=snapshot.transferred
            )

        def on_verify(snapshot: ProgressSnapshot) -> None:
            progress.update(
                verify_task,
                total=snapshot.length,
                completed=snapshot.transferred,
                visible=True,
            )

        result = flash_image(
            image_path,
            device,
            settings=settings,
            verify=not no_verify,
            on_progress=on_write,
            on_verify_progress=on_verify,
        )

    if json_output:
        typer.echo(_result_json(result))
    elif result.success:
        console.print("[green]✓ Write succeeded[/green]")
        console.print(f"  Bytes written: {result.bytes_written}")
        console.print(f"  Verification: {result.verification_result.value}")
    else:
        console.print("[red]✗ Write failed[/red]")
        if result.error_message:
            console.print(f"  Error: {result.error_message}")

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def check(
    image_path: Annotated[str, typer.Argument(help="Path to image file")],
    device: Annotated[str, typer.Argument(help="Device path (e.g., /dev/sdX)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Verify that a device holds the contents of an image file."""
    settings = get_settings()

    try:
        with _progress_bar() as progress:
            verify_task = progress.add_task("Verifying", total=None)

            def on_verify(snapshot: ProgressSnapshot) -> None:
                progress.update(
                    verify_task, total=snapshot.length, completed=snapshot.transferred
                )

            result = verify_image(
                image_path, device, settings=settings, on_progress=on_verify
            )
    except Exception as e:
        console.print(f"[red]Verification failed: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(_result_json(result))
    elif result.success:
        console.print("[green]✓ Device matches image[/green]")
    else:
        console.print("[red]✗ Device does not match image[/red]")
        console.print(f"  Image digest:  {result.source_digest}")
        console.print(f"  Device digest: {result.device_digest}")

    if not result.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
