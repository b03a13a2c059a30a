"""
Command-line interface for memstore.

Rows are printed tab-separated on stdout so they can be piped; errors go to
stderr with exit status 1.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional
import logging

import click
from rich.console import Console
from rich.markup import escape

from memstore import __version__
from memstore.config import (
    DEFAULT_KEEP,
    DEFAULT_KIND,
    DEFAULT_PATH,
    DEFAULT_RECENT_LIMIT,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_VEC_PATH,
    DEFAULT_WEIGHT,
    PATH_ENV,
    VEC_PATH_ENV,
    log_level,
)
from memstore.memory_system import MemorySystem
from memstore.record import I64_MAX, I64_MIN, parse_f32, parse_signed
from memstore.storage import StoreError

logger = logging.getLogger(__name__)

# Errors only; stdout carries the data rows
err_console = Console(stderr=True, highlight=False)

COMMAND_SETTINGS = {
    # -h/--help is added per command so usage goes to stderr
    "help_option_names": [],
    "ignore_unknown_options": True,
    "allow_extra_args": True,
}


def _print_help(ctx, param, value):
    if not value or ctx.resilient_parsing:
        return
    click.echo(ctx.get_help(), err=True)
    ctx.exit()


def help_option(f):
    return click.option(
        "-h", "--help",
        is_flag=True,
        expose_value=False,
        is_eager=True,
        callback=_print_help,
        help="Show this message and exit."
    )(f)



def setup_logging(verbose: bool = False) -> None:
    """Configure stderr logging once per process."""
    if verbose:
        level = logging.DEBUG
    else:
        level = logging.getLevelName(log_level())
        if not isinstance(level, int):
            level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger("memstore").setLevel(level)


class LenientInt(click.ParamType):
    """Integer option that falls back to its default instead of failing."""

    name = "integer"

    def __init__(self, default: int, minimum: Optional[int] = None):
        self.default = default
        self.minimum = minimum

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            return value
        number = parse_signed(str(value), I64_MIN, I64_MAX)
        if number is None or (self.minimum is not None and number < self.minimum):
            logger.debug(f"Unparseable {param.name if param else 'value'} {value!r}, using {self.default}")
            return self.default
        return number


class LenientFloat(click.ParamType):
    """Float option that falls back to its default instead of failing."""

    name = "float"

    def __init__(self, default: float):
        self.default = default

    def convert(self, value, param, ctx):
        if isinstance(value, float):
            return value
        number = parse_f32(str(value))
        return self.default if number is None else number


def path_option(f):
    return click.option(
        "--path",
        type=click.Path(path_type=Path),
        envvar=PATH_ENV,
        default=DEFAULT_PATH,
        show_default=True,
        help="Record log file"
    )(f)


def vec_path_option(f):
    return click.option(
        "--vec-path",
        type=click.Path(path_type=Path),
        envvar=VEC_PATH_ENV,
        default=DEFAULT_VEC_PATH,
        show_default=True,
        help="Vector log file"
    )(f)


def fail(message: str) -> None:
    """Print an error on stderr and exit with status 1."""
    err_console.print(f"[red]✗[/red] {escape(message)}")
    raise click.exceptions.Exit(1)


@contextmanager
def store_errors():
    """Turn file-level store failures into a one-line error and exit 1."""
    try:
        yield
    except StoreError as e:
        logger.debug(f"Store failure: {e}", exc_info=True)
        fail(f"{e.category}: {e.path}")


def one_line(text: str) -> str:
    return text.replace("\n", " ")


@click.group(context_settings={"help_option_names": []}, invoke_without_command=True)
@help_option
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx, verbose: bool):
    """
    memstore - simple local memory store

    Defaults: kind=summary, weight=1.0, limit=3, keep=5000
    """
    setup_logging(verbose)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help(), err=True)


@cli.command(context_settings=COMMAND_SETTINGS)
@help_option
@click.option("--text", default=None, help="Memory text (required)")
@click.option("--kind", default=DEFAULT_KIND, show_default=True, help="Short tag")
@click.option("--weight", type=LenientFloat(DEFAULT_WEIGHT), default=DEFAULT_WEIGHT,
              show_default=True, help="Ranking weight")
@path_option
@vec_path_option
def add(text: Optional[str], kind: str, weight: float, path: Path, vec_path: Path):
    """Store a new memory."""
    if text is None:
        fail("Missing --text")

    with store_errors():
        MemorySystem(path=path, vec_path=vec_path).add(text, kind=kind, weight=weight)


@cli.command(context_settings=COMMAND_SETTINGS)
@help_option
@click.option("--query", default=None, help="Search text (required)")
@click.option("--limit", "-n", type=LenientInt(DEFAULT_SEARCH_LIMIT, minimum=0), default=DEFAULT_SEARCH_LIMIT,
              show_default=True, help="Number of results to return")
@path_option
@vec_path_option
def search(query: Optional[str], limit: int, path: Path, vec_path: Path):
    """Search memories by similarity, weight and recency."""
    if query is None:
        fail("Missing --query")

    with store_errors():
        results = MemorySystem(path=path, vec_path=vec_path).search(query, limit=limit)

    for hit in results:
        record = hit.record
        click.echo(f"{hit.score:.3f}\t{record.kind}\t{record.id}\t{record.ts}\t{one_line(record.text)}")


@cli.command(context_settings=COMMAND_SETTINGS)
@help_option
@click.option("--limit", "-n", type=LenientInt(DEFAULT_RECENT_LIMIT, minimum=0), default=DEFAULT_RECENT_LIMIT,
              show_default=True, help="Number of memories to show")
@path_option
def recent(limit: int, path: Path):
    """List recent memories, newest first."""
    with store_errors():
        records = MemorySystem(path=path).recent(limit=limit)

    for record in records:
        click.echo(f"{record.kind}\t{record.id}\t{record.ts}\t{one_line(record.text)}")


@cli.command(context_settings=COMMAND_SETTINGS)
@help_option
@click.option("--keep", type=LenientInt(DEFAULT_KEEP, minimum=0), default=DEFAULT_KEEP,
              show_default=True, help="Number of newest memories to keep")
@path_option
@vec_path_option
def compact(keep: int, path: Path, vec_path: Path):
    """Drop all but the newest memories and rewrite both logs."""
    with store_errors():
        MemorySystem(path=path, vec_path=vec_path).compact(keep=keep)


@cli.command(context_settings=COMMAND_SETTINGS)
@help_option
@path_option
@vec_path_option
def reindex(path: Path, vec_path: Path):
    """Rebuild the vector log from the record log."""
    with store_errors():
        MemorySystem(path=path, vec_path=vec_path).reindex()


@cli.command(context_settings=COMMAND_SETTINGS)
@help_option
@path_option
@vec_path_option
def stats(path: Path, vec_path: Path):
    """Show store statistics."""
    with store_errors():
        store_stats = MemorySystem(path=path, vec_path=vec_path).get_stats()

    embedding = store_stats.pop("embedding")
    for key, value in store_stats.items():
        click.echo(f"{key}\t{value}")
    for key, value in embedding.items():
        click.echo(f"embedding_{key}\t{value}")


@cli.command(name="help")
@click.pass_context
def help_command(ctx):
    """Show this message."""
    click.echo(ctx.parent.get_help(), err=True)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Console entry point.

    Usage errors (unknown command, malformed option) print the usage and
    return 1 rather than click's default 2.
    """
    try:
        rv = cli.main(args=argv, prog_name="memstore", standalone_mode=False)
    except click.UsageError as e:
        err_console.print(f"[red]✗[/red] {escape(e.format_message())}")
        help_ctx = e.ctx.find_root() if e.ctx is not None else None
        if help_ctx is not None:
            click.echo(help_ctx.get_help(), err=True)
        return 1
    except click.ClickException as e:
        e.show()
        return 1
    except click.Abort:
        return 1
    return rv if isinstance(rv, int) else 0
