from pathlib import Path

import click

from dk_util.cli.logs import logs
from dk_util.log.file_sink import RotatingFileSink
from dk_util.primitives import LogLevel
from dk_util.utils.logging import setup_logging


def _level_from_verbose(verbose: int) -> LogLevel:
    return LogLevel.DEBUG if verbose > 0 else LogLevel.WARNING


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity; -v for DEBUG")
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Log file directory [default: ~/.dk_util/logs]",
)
@click.option(
    "--export-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for exported logs [default: ~/.dk_util/exported_logs]",
)
@click.pass_context
def cli(ctx: click.Context, verbose: int, log_dir: Path | None, export_dir: Path | None) -> None:
    """dk-util: maintain the log files written by dk_util."""
    setup_logging(_level_from_verbose(verbose))
    ctx.ensure_object(dict)
    ctx.obj["file_sink"] = RotatingFileSink(log_dir=log_dir, export_dir=export_dir)


cli.add_command(logs)
