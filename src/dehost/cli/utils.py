"""
Shared CLI utilities for dehost commands.

Provides common functionality used across CLI modules: progress display,
quiet-aware console output, logging setup, configuration assembly and the
mapping from errors to exit codes.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from dehost.core.exceptions import DehostError
from dehost.models.config import FilterConfig
from dehost.models.stats import RunStats

# Exit code for I/O failures surfaced as OSError
OS_ERROR_EXIT_CODE = 9


@contextmanager
def spinner_progress(
    description: str,
    console: Console | None = None,
    quiet: bool = False,
) -> Generator[Progress, None, None]:
    """Context manager for spinner-style progress display.

    The spinner is suppressed when quiet mode is enabled.

    Example:
        >>> with spinner_progress("Filtering reads...", console, quiet):
        ...     stats = engine.run(inputs)
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console if not quiet else None,
        disable=quiet,
    ) as progress:
        progress.add_task(description=description, total=None)
        yield progress


class QuietConsole:
    """Console wrapper that suppresses output in quiet mode.

    Example:
        >>> console = Console()
        >>> qc = QuietConsole(console, quiet=True)
        >>> qc.print("This won't be shown")  # Suppressed
    """

    def __init__(self, console: Console, quiet: bool = False):
        self._console = console
        self._quiet = quiet

    @property
    def console(self) -> Console:
        """The wrapped Console, for output that ignores quiet mode."""
        return self._console

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Print to console unless quiet mode is enabled."""
        if not self._quiet:
            self._console.print(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._console, name)


def setup_logging(verbose: bool = False, quiet: bool = False, console: Console | None = None) -> None:
    """Route ``dehost`` loggers through a rich handler.

    INFO by default, DEBUG with ``--verbose`` and WARNING with ``--quiet``.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handler = RichHandler(
        console=console,
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    package_logger = logging.getLogger("dehost")
    for existing in list(package_logger.handlers):
        package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)


@contextmanager
def exit_on_error(console: Console) -> Generator[None, None, None]:
    """Translate run failures into a printed message and a distinct exit code.

    ``DehostError`` subclasses carry their own exit code, invalid
    configuration values exit 2 and I/O failures exit 9.
    """
    try:
        yield
    except DehostError as e:
        console.print(f"\n[red]Error:[/red] {e.message}", highlight=False)
        if e.suggestion:
            console.print(f"[dim]{e.suggestion}[/dim]", highlight=False)
        raise typer.Exit(code=e.exit_code) from None
    except ValidationError as e:
        console.print("\n[red]Error:[/red] Invalid configuration", highlight=False)
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "config"
            console.print(f"  {field}: {error['msg']}", highlight=False)
        raise typer.Exit(code=2) from None
    except OSError as e:
        console.print(f"\n[red]I/O error:[/red] {e}", highlight=False)
        raise typer.Exit(code=OS_ERROR_EXIT_CODE) from None


def build_config(
    config_file: Path | None,
    *,
    taxids: list[int] | None = None,
    min_confidence: float | None = None,
    human: bool = False,
    on_missing: str | None = None,
    mate_suffix: str | None = None,
    threads: int | None = None,
    output_type: str | None = None,
    compression_level: int | None = None,
    force: bool = False,
) -> FilterConfig:
    """Load ``--config`` (if any) and apply CLI overrides on top.

    Flags only override when given, so a config file's ``invert: true``
    survives a command line without ``--human``.
    """
    base = FilterConfig.from_yaml(config_file) if config_file is not None else FilterConfig()
    return base.merged(
        target_taxa=frozenset(taxids) if taxids else None,
        min_confidence=min_confidence,
        invert=True if human else None,
        on_missing=on_missing,
        mate_suffix=mate_suffix,
        threads=threads,
        output_codec=output_type,
        compression_level=compression_level,
        overwrite=True if force else None,
    )


def stats_table(stats: RunStats) -> Table:
    """Render run statistics as a rich table."""
    unit = "Pairs" if stats.layout == "paired" else "Reads"
    table = Table(title="Filtering summary", show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    table.add_column("%", justify="right")

    table.add_row(f"{unit} total", f"{stats.total:,}", "")
    table.add_row("Kept", f"{stats.kept:,}", f"{stats.kept_pct:.2f}")
    table.add_row("Discarded", f"{stats.discarded:,}", f"{stats.discarded_pct:.2f}")
    table.add_row("Classified", f"{stats.classified:,}", "")
    table.add_row("Unclassified", f"{stats.unclassified:,}", "")
    if stats.missing:
        table.add_row("Missing verdict", f"{stats.missing:,}", "")
    return table
