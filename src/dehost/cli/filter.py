"""
Filter command: remove host reads using an existing Kraken2 output file.

The Kraken2 per-read output is loaded into a ``ClassificationIndex`` and
the original read file(s) are streamed once through the ``FilterEngine``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console

from dehost.cli.utils import (
    QuietConsole,
    build_config,
    exit_on_error,
    setup_logging,
    spinner_progress,
    stats_table,
)
from dehost.core.filtering import FilterEngine, preflight_outputs
from dehost.core.index import ClassificationIndex
from dehost.models.config import FilterConfig
from dehost.models.stats import RunStats

logger = logging.getLogger(__name__)

console = Console(stderr=True)


def filter_with_index(
    index: ClassificationIndex,
    config: FilterConfig,
    inputs: list[Path],
    outputs: list[Path | None],
    *,
    output_dir: Path | None,
    decision_log: Path | None,
    stats_path: Path | None,
    out: QuietConsole,
    quiet: bool,
) -> RunStats:
    """Run the filter pass and report its statistics."""
    engine = FilterEngine(index, config, decision_log=decision_log)

    with spinner_progress("Filtering reads...", out.console, quiet):
        stats = engine.run(inputs, outputs, output_dir=output_dir)

    out.print(stats_table(stats))
    out.print("\n[bold]Output files:[/bold]")
    for path in stats.output_paths:
        out.print(f"  {path}")

    if stats_path is not None:
        stats.write_json(stats_path)
        out.print(f"  Stats: {stats_path}")
    if decision_log is not None:
        out.print(f"  Decision log: {decision_log}")

    return stats


def filter_reads(
    reads_1: Path = typer.Option(
        ...,
        "--reads-1", "-1",
        help="Reads file (FASTA/FASTQ, optionally compressed); forward reads if paired",
        exists=True,
        dir_okay=False,
    ),
    reads_2: Path | None = typer.Option(
        None,
        "--reads-2", "-2",
        help="Reverse reads file for paired-end data",
        exists=True,
        dir_okay=False,
    ),
    kraken_output: Path = typer.Option(
        ...,
        "--kraken-output", "-k",
        help="Kraken2 per-read output (--output) for the same read file(s)",
        exists=True,
        dir_okay=False,
    ),
    out1: Path | None = typer.Option(
        None,
        "--out1", "-o",
        help="Output for filtered reads (default: <input>.dehosted.<ext>)",
    ),
    out2: Path | None = typer.Option(
        None,
        "--out2", "-O",
        help="Output for filtered reverse reads",
    ),
    output_dir: Path | None = typer.Option(
        None,
        "--output-dir",
        help="Directory for default-named outputs (default: next to the inputs)",
        file_okay=False,
    ),
    taxids: list[int] | None = typer.Option(
        None,
        "--taxid",
        help="Host taxon id to remove; repeat for several (default: 9606)",
        min=1,
    ),
    min_confidence: float | None = typer.Option(
        None,
        "--min-confidence",
        help="Minimum confidence for a read to count as host (0-1)",
        min=0.0,
        max=1.0,
    ),
    human: bool = typer.Option(
        False,
        "--human", "-H",
        help="Invert: keep host reads and discard everything else",
    ),
    output_type: str | None = typer.Option(
        None,
        "--output-type", "-F",
        help="Output compression: u, g, B (bgzf), b (bzip2), x, z (default: from output name or input)",
    ),
    compression_level: int | None = typer.Option(
        None,
        "--compression-level",
        help="Compression level for the output codec",
    ),
    mate_suffix: str | None = typer.Option(
        None,
        "--mate-suffix",
        help="Mate suffix rule: none, slash, dot, underscore, any, or an anchored regex",
    ),
    on_missing: str | None = typer.Option(
        None,
        "--on-missing",
        help="Reads absent from the Kraken2 output: error (default), keep or discard",
    ),
    threads: int | None = typer.Option(
        None,
        "--threads", "-t",
        help="Compression threads",
        min=1,
    ),
    stats_path: Path | None = typer.Option(
        None,
        "--stats",
        help="Write run statistics as JSON",
        dir_okay=False,
    ),
    decision_log: Path | None = typer.Option(
        None,
        "--decision-log",
        help="Write the per-read keep/discard decisions (TSV, optionally compressed)",
        dir_okay=False,
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        help="YAML configuration file; command-line options take precedence",
        exists=True,
        dir_okay=False,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite existing output files",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable debug logging",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress output",
    ),
) -> None:
    """
    Remove host reads using an existing Kraken2 output file.

    Example:

        dehost filter -1 sample_R1.fq.gz -2 sample_R2.fq.gz \\
            -k sample.kraken --taxid 9606 --stats sample.stats.json
    """
    setup_logging(verbose, quiet, console)
    out = QuietConsole(console, quiet=quiet)

    with exit_on_error(console):
        config = build_config(
            config_file,
            taxids=taxids,
            min_confidence=min_confidence,
            human=human,
            on_missing=on_missing,
            mate_suffix=mate_suffix,
            threads=threads,
            output_type=output_type,
            compression_level=compression_level,
            force=force,
        )
        inputs = [reads_1] if reads_2 is None else [reads_1, reads_2]
        outputs = [out1] if reads_2 is None else [out1, out2]
        preflight_outputs(
            inputs,
            outputs,
            config,
            output_dir=output_dir,
            decision_log=decision_log,
            artifacts=[stats_path],
            sources=[kraken_output],
        )

        out.print("\n[bold blue]dehost filter[/bold blue]\n")
        out.print(f"  Reads:         {', '.join(str(p) for p in inputs)}")
        out.print(f"  Kraken output: {kraken_output}")
        out.print(f"  Host taxa:     {', '.join(str(t) for t in sorted(config.target_taxa))}")
        out.print(f"  Keep:          {'host reads' if config.invert else 'non-host reads'}\n")

        with spinner_progress("Loading Kraken2 output...", console, quiet):
            index = ClassificationIndex.from_kraken_output(
                kraken_output, normalizer=config.normalizer()
            )

        filter_with_index(
            index,
            config,
            inputs,
            outputs,
            output_dir=output_dir,
            decision_log=decision_log,
            stats_path=stats_path,
            out=out,
            quiet=quiet,
        )
