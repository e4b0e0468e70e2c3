"""
Lineage command for building offline taxonomy tables.

Resolves taxon ids against NCBI Taxonomy once and writes them as a lineage
TSV, which ``margintax assign classify --taxonomy-table`` reads instead of
querying NCBI on every run.
"""

from __future__ import annotations

from pathlib import Path

import polars as pl
import typer
from pydantic import ValidationError
from rich.console import Console

from margintax.cli.utils import QuietConsole, setup_logging, spinner_progress
from margintax.clients.ncbi import NCBITaxonomyClient
from margintax.core.classification.filtering import valid_taxid_expr
from margintax.core.constants import INVALID_TAXIDS
from margintax.core.exceptions import MargintaxError
from margintax.core.io_utils import write_dataframe, write_id_list
from margintax.core.parsers import HitTableParser
from margintax.core.remap import TaxonIdRemapper
from margintax.core.taxonomy import TaxonomyResolver, lineages_to_frame
from margintax.models.config import ResolverConfig

app = typer.Typer(
    name="lineage",
    help="Build offline lineage tables from NCBI Taxonomy",
    no_args_is_help=True,
)

console = Console()


def read_taxid_list(path: Path) -> list[str]:
    """Taxon ids from a text file, one per line; blank and '#' lines ignored."""
    ids = []
    for line in path.read_text().splitlines():
        taxon_id = line.strip()
        if taxon_id and not taxon_id.startswith("#") and taxon_id not in INVALID_TAXIDS:
            ids.append(taxon_id)
    return ids


def taxids_from_hits(path: Path, remapper: TaxonIdRemapper) -> list[str]:
    """Distinct valid, remapped subject taxon ids of a hit table."""
    hits = HitTableParser(path).parse()
    normalized, _ = remapper.normalize_frame(hits)
    return (
        normalized.filter(valid_taxid_expr())
        .select(pl.col("staxid").unique().sort())
        .to_series()
        .to_list()
    )


@app.command(name="resolve")
def resolve(
    taxids: Path | None = typer.Option(
        None,
        "--taxids",
        help="Text file with one taxon id per line",
        exists=True,
        dir_okay=False,
    ),
    hits: Path | None = typer.Option(
        None,
        "--hits",
        "-i",
        help="BLAST hit table whose subject taxids should be resolved",
        exists=True,
        dir_okay=False,
    ),
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Output lineage table (TSV)",
    ),
    remap: Path | None = typer.Option(
        None,
        "--remap",
        "-r",
        help="Merged taxid table applied before resolution",
        exists=True,
        dir_okay=False,
    ),
    unresolved: Path | None = typer.Option(
        None,
        "--unresolved",
        help="Write the taxids that could not be resolved, one per line",
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
    threads: int = typer.Option(
        4,
        "--threads",
        "-p",
        help="Concurrent taxonomy lookups",
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
    Resolve taxon ids to kingdom..species lineages via NCBI Taxonomy.

    Example:

        margintax lineage resolve \\
            --hits otus.blast.tsv \\
            --remap MergedTaxIDs \\
            --email me@example.org \\
            --output lineages.tsv
    """
    out = QuietConsole(console, quiet=quiet)
    setup_logging(verbose=verbose)

    if (taxids is None) == (hits is None):
        console.print("[red]Error: Provide exactly one of --taxids or --hits.[/red]")
        raise typer.Exit(code=1) from None

    try:
        resolver_config = ResolverConfig(
            max_workers=threads, email=email, api_key=api_key
        )
    except ValidationError as e:
        console.print(f"[red]Error: Invalid resolver settings: {e}[/red]")
        raise typer.Exit(code=1) from None

    try:
        remapper = (
            TaxonIdRemapper.from_file(remap) if remap is not None else TaxonIdRemapper()
        )
        if taxids is not None:
            ids = sorted({remapper.normalize(t) for t in read_taxid_list(taxids)})
        else:
            ids = taxids_from_hits(hits, remapper)
    except MargintaxError as e:
        console.print(f"[red]Error: {e.full_message}[/red]")
        raise typer.Exit(code=1) from None

    out.print(f"\n[bold blue]Resolving {len(ids):,} taxids[/bold blue]\n")

    with NCBITaxonomyClient(
        timeout=resolver_config.timeout,
        max_retries=resolver_config.max_retries,
        retry_delay=resolver_config.retry_delay,
        retry_backoff=resolver_config.retry_backoff,
        email=resolver_config.email,
        api_key=resolver_config.api_key,
    ) as client:
        resolver = TaxonomyResolver(client, max_workers=resolver_config.max_workers)
        with spinner_progress("Querying NCBI Taxonomy...", console, quiet):
            resolved, missing = resolver.resolve(ids)

    output.parent.mkdir(parents=True, exist_ok=True)
    write_dataframe(lineages_to_frame(resolved), output, "tsv")
    if unresolved is not None:
        write_id_list(missing, unresolved)

    out.print(f"[green]Resolved {len(resolved):,} of {len(ids):,} taxids[/green]")
    if missing:
        out.print(f"[yellow]Unresolved: {len(missing):,}[/yellow]")
    out.print(f"\n[bold green]Lineages written to:[/bold green] {output}\n")
