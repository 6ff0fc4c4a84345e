from pathlib import Path

import click
from tabulate import tabulate

from dk_util.log.file_sink import RotatingFileSink

_HEADERS = ("NAME", "SIZE", "MODIFIED")


def _format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KiB"
    return f"{size_bytes / (1024 * 1024):.1f} MiB"


def _get_sink(ctx: click.Context) -> RotatingFileSink:
    return ctx.obj["file_sink"]


@click.group()
def logs() -> None:
    """Inspect, export and clear local log files."""


@logs.command(name="list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """Show log files, newest first."""
    sink = _get_sink(ctx)
    infos = sink.describe_log_files()
    if not infos:
        click.echo(f"No log files in {sink.log_dir}")
        return

    rows = [
        (info.name, _format_size(info.size_bytes), info.modified_at.isoformat(sep=" ", timespec="seconds"))
        for info in infos
    ]
    click.echo(tabulate(rows, headers=_HEADERS, tablefmt="plain"))


@logs.command()
@click.option(
    "--dest",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory to write the export into [default: the configured export directory]",
)
@click.pass_context
def export(ctx: click.Context, dest: Path | None) -> None:
    """Merge all log files into a single export file and print its path."""
    export_path = _get_sink(ctx).export_logs(destination_dir=dest)
    if export_path is None:
        click.echo("Nothing exported", err=True)
        ctx.exit(1)
    click.echo(str(export_path))


@logs.command()
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Delete every log file."""
    sink = _get_sink(ctx)
    sink.clear_all_logs()
    click.echo(f"Cleared {sink.log_dir}")
