"""
Run command: classify reads with Kraken2, then remove host reads.

Steps:
1. Validate the Kraken2 database directory
2. Run Kraken2 (verdicts go to a temporary directory unless --kraken-output)
3. Load the verdicts into a ClassificationIndex
4. Stream the original read file(s) through the FilterEngine
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

import typer
from rich.console import Console

from dehost.cli.filter import filter_with_index
from dehost.cli.utils import (
    QuietConsole,
    build_config,
    exit_on_error,
    setup_logging,
    spinner_progress,
)
from dehost.core.filtering import preflight_outputs
from dehost.core.index import ClassificationIndex
from dehost.external.kraken import (
    Kraken2,
    classify_reads,
    parse_confidence_score,
    validate_db_directory,
)

logger = logging.getLogger(__name__)

console = Console(stderr=True)


def run_pipeline(
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
    database: Path | None = typer.Option(
        None,
        "--db",
        help="Kraken2 database directory",
        envvar="DEHOST_DB",
        file_okay=False,
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
    kraken_output: Path | None = typer.Option(
        None,
        "--kraken-output", "-k",
        help="Keep the Kraken2 per-read output at this path (default: temporary)",
        dir_okay=False,
    ),
    kraken_log: Path | None = typer.Option(
        None,
        "--kraken-log",
        help="Write Kraken2's stderr summary to this file",
        dir_okay=False,
    ),
    threads: int | None = typer.Option(
        None,
        "--threads", "-t",
        help="Threads for Kraken2 and output compression",
        min=1,
    ),
    conf: str | None = typer.Option(
        None,
        "--conf",
        help="Kraken2 confidence score threshold (0-1)",
    ),
    min_confidence: float | None = typer.Option(
        None,
        "--min-confidence",
        help="Minimum confidence for a read to count as host (0-1)",
        min=0.0,
        max=1.0,
    ),
    taxids: list[int] | None = typer.Option(
        None,
        "--taxid",
        help="Host taxon id to remove; repeat for several (default: 9606)",
        min=1,
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
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show the Kraken2 command without executing anything",
    ),
) -> None:
    """
    Classify reads with Kraken2 and remove host reads.

    Example:

        dehost run -1 sample_R1.fq.gz -2 sample_R2.fq.gz --db /data/human_db -t 8

        # Keep the Kraken2 output for later 'dehost filter' runs
        dehost run -1 sample.fq.zst --db /data/human_db -k sample.kraken
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
        confidence = parse_confidence_score(conf) if conf is not None else None

        if database is None:
            console.print("[red]Error:[/red] No Kraken2 database given")
            console.print("[dim]Pass --db or set DEHOST_DB.[/dim]")
            raise typer.Exit(code=2)
        db_dir = validate_db_directory(database)

        if not dry_run:
            Kraken2.get_executable()

        inputs = [reads_1] if reads_2 is None else [reads_1, reads_2]
        outputs = [out1] if reads_2 is None else [out1, out2]
        # Everything the run will create is vetted before Kraken2 starts.
        preflight_outputs(
            inputs,
            outputs,
            config,
            output_dir=output_dir,
            decision_log=decision_log,
            artifacts=[stats_path, kraken_log, kraken_output],
        )

        out.print("\n[bold blue]dehost run[/bold blue]\n")
        out.print(f"  Reads:       {', '.join(str(p) for p in inputs)}")
        out.print(f"  Database:    {db_dir}")
        out.print(f"  Host taxa:   {', '.join(str(t) for t in sorted(config.target_taxa))}")
        out.print(f"  Keep:        {'host reads' if config.invert else 'non-host reads'}")
        out.print(f"  Threads:     {config.threads}\n")

        with tempfile.TemporaryDirectory(prefix="dehost_") as tmp:
            workdir = Path(tmp)
            verdicts = kraken_output if kraken_output is not None else workdir / "reads.kraken"

            if dry_run:
                result, _ = classify_reads(
                    inputs,
                    db_dir,
                    verdicts,
                    threads=config.threads,
                    confidence=confidence,
                    dry_run=True,
                )
                console.print("\n[bold cyan]DRY RUN MODE[/bold cyan]\n")
                console.print(f"[dim]Command: {result.command_string}[/dim]")
                console.print("\n[green]Dry run complete. No files were created.[/green]")
                raise typer.Exit(code=0)

            with spinner_progress("Classifying reads with Kraken2...", console, quiet):
                result, summary = classify_reads(
                    inputs,
                    db_dir,
                    verdicts,
                    threads=config.threads,
                    confidence=confidence,
                    log_path=kraken_log,
                    workdir=workdir,
                )
            out.print(
                f"  [green]Kraken2 complete ({result.elapsed_seconds:.1f}s)[/green]: "
                f"{summary.classified:,} / {summary.processed:,} sequences classified "
                f"({summary.classified_pct:.2f}%)\n"
            )

            with spinner_progress("Loading Kraken2 output...", console, quiet):
                index = ClassificationIndex.from_kraken_output(
                    verdicts, normalizer=config.normalizer()
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

        if kraken_output is not None:
            out.print(f"  Kraken output: {kraken_output}")
        if kraken_log is not None:
            out.print(f"  Kraken log: {kraken_log}")
