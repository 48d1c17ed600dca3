"""
Main CLI entry point for dehost.

Provides subcommands:
- run: Classify reads with Kraken2 and remove host reads
- filter: Remove host reads using an existing Kraken2 output file
- check: Verify that external dependencies are installed
"""

from __future__ import annotations

import typer
from rich import print as rprint

from dehost import __version__

app = typer.Typer(
    name="dehost",
    help="Remove host reads from FASTA/FASTQ files using Kraken2 classifications",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        rprint(f"dehost version {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    dehost: remove host reads from sequencing data.

    Reads are classified with Kraken2 against a host database; every read
    (or read pair) assigned to a host taxon is dropped and the rest are
    written back in the same, or a chosen, compression format.
    """


# Import subcommands
from dehost.cli import check, run
from dehost.cli import filter as filter_cmd  # Alias to avoid shadowing builtin

# Register subcommands
app.command(name="run")(run.run_pipeline)
app.command(name="filter")(filter_cmd.filter_reads)
app.command(name="check")(check.check_dependencies)


if __name__ == "__main__":
    app()
