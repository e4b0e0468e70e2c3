"""
Assign command for adaptive-margin consensus classification.

Reads a BLAST hit table, remaps outdated taxon ids, tags hits against the
adaptive upper margin and the lower margin, resolves taxonomy and writes
the consensus classification of every query.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from pathlib import Path

import polars as pl
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from margintax.cli.utils import QuietConsole, setup_logging, spinner_progress
from margintax.clients.ncbi import NCBITaxonomyClient
from margintax.core.exceptions import MargintaxError, NoFullCoverageError
from margintax.core.io_utils import (
    OUTPUT_FORMATS,
    infer_output_format,
    write_dataframe,
    write_empty_marker,
    write_id_list,
)
from margintax.core.pipeline import (
    ClassificationPipeline,
    ClassificationResult,
    build_taxonomy_source,
)
from margintax.core.remap import TaxonIdRemapper
from margintax.models.config import ClassificationConfig
from margintax.models.hits import MarginTag

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="assign",
    help="Consensus classification of BLAST hits with adaptive margins",
    no_args_is_help=True,
)

console = Console()


def _load_config(
    config_path: Path | None,
    lower_margin: float | None,
    exclude: list[str] | None,
    drop_unresolved: bool,
    threads: int | None,
    email: str | None,
    api_key: str | None,
) -> ClassificationConfig:
    """Configuration file (or defaults) with CLI flags applied on top."""
    config = (
        ClassificationConfig.from_yaml(config_path)
        if config_path is not None
        else ClassificationConfig()
    )
    resolver = {
        key: value
        for key, value in (
            ("max_workers", threads),
            ("email", email),
            ("api_key", api_key),
        )
        if value is not None
    }
    return config.with_overrides(
        lower_margin=lower_margin,
        excluded_names=exclude or None,
        drop_unresolved=True if drop_unresolved else None,
        resolver=resolver or None,
    )


def _display_summary_table(result: ClassificationResult, total_queries: int) -> None:
    """Display run statistics as a Rich table."""
    table = Table(title="Classification Summary", show_header=True)

    table.add_column("Category", style="cyan", no_wrap=True)
    table.add_column("Count", justify="right", style="magenta")

    total = total_queries or 1

    table.add_row(
        "Classified queries",
        f"{result.num_classified:,} ({100.0 * result.num_classified / total:.1f}%)",
    )
    table.add_row("Skipped queries", f"{result.skipped.height:,}", style="yellow")
    table.add_row(
        "Upper margin hits",
        f"{result.tagged.filter(pl.col('margin') == MarginTag.UPPER.value).height:,}",
    )
    table.add_row(
        "Lower margin hits",
        f"{result.tagged.filter(pl.col('margin') == MarginTag.LOWER.value).height:,}",
    )
    table.add_row("Excluded hits", f"{result.excluded.height:,}")
    table.add_row("Remapped hits", f"{result.remapped.height:,}", style="blue")
    table.add_row(
        "Unresolved taxids", f"{len(result.unresolved_taxids):,}", style="yellow"
    )

    console.print(table)


@app.command(name="classify")
def classify(
    hits: Path = typer.Option(
        ...,
        "--hits",
        "-i",
        help="BLAST hit table (-outfmt '6 ... qcovs staxid ssciname', .tsv or .tsv.gz)",
        exists=True,
        dir_okay=False,
    ),
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Output path for the classification table",
    ),
    remap: Path | None = typer.Option(
        None,
        "--remap",
        "-r",
        help="Merged taxid table (MergedTaxIDs with OldTaxID/NewTaxID, or merged.dmp)",
        exists=True,
        dir_okay=False,
    ),
    taxonomy_table: Path | None = typer.Option(
        None,
        "--taxonomy-table",
        "-t",
        help="Offline lineage table from 'margintax lineage resolve' (skips NCBI)",
        exists=True,
        dir_okay=False,
    ),
    email: str | None = typer.Option(
        None,
        "--email",
        help="Contact e-mail for NCBI E-utilities",
    ),
    api_key: str | None = typer.Option(
        None,
        "--api-key",
        help="NCBI API key (10 instead of 3 requests per second)",
        envvar="NCBI_API_KEY",
    ),
    lower_margin: float | None = typer.Option(
        None,
        "--lower-margin",
        "-m",
        help="Percentage points below the best hit kept as alternatives [default: 2]",
        min=0.0,
        max=100.0,
    ),
    exclude: list[str] | None = typer.Option(
        None,
        "--exclude",
        "-x",
        help="Exclude hits whose scientific name contains this term (repeatable)",
    ),
    drop_unresolved: bool = typer.Option(
        False,
        "--drop-unresolved",
        help="Do not score hits whose taxid could not be resolved",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML configuration file; command-line flags take precedence",
        exists=True,
        dir_okay=False,
    ),
    margins: Path | None = typer.Option(
        None,
        "--margins",
        help="Write the per-taxon identity statistics behind the adaptive margins",
    ),
    hit_scores: Path | None = typer.Option(
        None,
        "--hit-scores",
        help="Write every scoring hit with its weight and rank scores",
    ),
    summed: Path | None = typer.Option(
        None,
        "--summed",
        help="Write the distinct taxonomic paths of each query with their scores",
    ),
    remap_log: Path | None = typer.Option(
        None,
        "--remap-log",
        help="Write the replaced taxids (qseqid, old_taxid, new_taxid)",
    ),
    unresolved: Path | None = typer.Option(
        None,
        "--unresolved",
        help="Write the taxids that could not be resolved, one per line",
    ),
    output_format: str | None = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format: 'tsv', 'csv' or 'parquet' [default: from --output extension, else tsv]",
    ),
    threads: int | None = typer.Option(
        None,
        "--threads",
        "-p",
        help="Concurrent taxonomy lookups [default: 4]",
        min=1,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress progress output (for scripting)",
    ),
) -> None:
    """
    Classify OTUs/ASVs from their BLAST hits by adaptive-margin consensus.

    Only hits covering the whole query are used. For each query the identity
    range of the best matching taxon sets the upper margin; hits inside it
    vote for a consensus path weighted by evalue. Hits down to --lower-margin
    below the best hit are listed as alternatives.

    Example:

        margintax assign classify \\
            --hits otus.blast.tsv \\
            --remap MergedTaxIDs \\
            --email me@example.org \\
            --exclude uncultured --exclude environmental \\
            --output otus.classified.tsv

        # Offline, with a lineage table built beforehand:
        margintax assign classify \\
            --hits otus.blast.tsv \\
            --taxonomy-table lineages.tsv \\
            --output otus.classified.tsv \\
            --hit-scores otus.all_classifications.tsv \\
            --summed otus.all_classifications_summed.tsv
    """
    out = QuietConsole(console, quiet=quiet)
    setup_logging(verbose=verbose)

    out.print("\n[bold blue]Margintax Consensus Classification[/bold blue]\n")

    if output_format is not None:
        output_format = output_format.lower()
        if output_format not in OUTPUT_FORMATS:
            console.print(
                f"[red]Error: Invalid format '{output_format}'. "
                f"Use one of: {', '.join(OUTPUT_FORMATS)}.[/red]"
            )
            raise typer.Exit(code=1) from None
    else:
        output_format = infer_output_format(output)

    try:
        config = _load_config(
            config_path, lower_margin, exclude, drop_unresolved, threads, email, api_key
        )
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Error: Invalid configuration: {e}[/red]")
        raise typer.Exit(code=1) from None

    if taxonomy_table is None and config.resolver.email is None:
        out.print(
            "[yellow]Note: no --email given; NCBI asks E-utilities users to "
            "identify themselves.[/yellow]\n"
        )

    out.print(f"[bold]Hit table:[/bold] {hits}")
    out.print(f"[bold]Lower margin:[/bold] {config.lower_margin:g}")
    if config.excluded_names:
        out.print(f"[bold]Excluded names:[/bold] {', '.join(config.excluded_names)}")
    out.print(
        f"[bold]Taxonomy:[/bold] "
        f"{taxonomy_table if taxonomy_table is not None else 'NCBI E-utilities'}\n"
    )

    output.parent.mkdir(parents=True, exist_ok=True)

    try:
        remapper = (
            TaxonIdRemapper.from_file(remap) if remap is not None else TaxonIdRemapper()
        )

        with ExitStack() as stack:
            source = build_taxonomy_source(config.resolver, taxonomy_table)
            if isinstance(source, NCBITaxonomyClient):
                stack.enter_context(source)

            pipeline = ClassificationPipeline(config, source, remapper)
            with spinner_progress("Classifying queries...", console, quiet):
                result = pipeline.run_file(hits)

    except NoFullCoverageError as e:
        write_empty_marker(output)
        console.print(f"\n[red]Error: {e.message}[/red]")
        if e.suggestion:
            console.print(f"[dim]{e.suggestion}[/dim]")
        console.print(f"[dim]Empty output written to {output}[/dim]")
        raise typer.Exit(code=1) from None
    except MargintaxError as e:
        console.print(f"\n[red]Error: {e.full_message}[/red]")
        raise typer.Exit(code=1) from None
    except pl.exceptions.PolarsError as e:
        console.print(f"\n[red]Data processing error: {e}[/red]")
        console.print(
            "[dim]This may indicate malformed BLAST data or incompatible file format.[/dim]"
        )
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1) from None
    except (FileNotFoundError, ValueError) as e:
        console.print(f"\n[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    except PermissionError as e:
        console.print(f"\n[red]Permission denied: {e}[/red]")
        console.print("[dim]Check file permissions and try again.[/dim]")
        raise typer.Exit(code=1) from None

    write_dataframe(result.classified, output, output_format)

    extra_tables = (
        (margins, result.margins),
        (hit_scores, result.hit_scores),
        (summed, result.summed),
        (remap_log, result.remapped),
    )
    for path, df in extra_tables:
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            write_dataframe(df, path, infer_output_format(path, output_format))
            logger.info("Wrote %d rows to %s", df.height, path)

    if unresolved is not None:
        write_id_list(result.unresolved_taxids, unresolved)

    total_queries = result.num_classified + result.skipped.height
    out.print(f"[green]Classified {result.num_classified:,} queries[/green]\n")
    if not quiet:
        _display_summary_table(result, total_queries)

    if result.skipped.height and verbose:
        for row in result.skipped.iter_rows(named=True):
            out.print(f"  [yellow]{row['qseqid']}[/yellow]: {row['reason']}")

    out.print(f"\n[bold green]Results written to:[/bold green] {output}")
    for path, _ in extra_tables:
        if path is not None:
            out.print(f"[bold green]Written:[/bold green] {path}")
    if unresolved is not None:
        out.print(f"[bold green]Unresolved taxids written to:[/bold green] {unresolved}")
    out.print()
