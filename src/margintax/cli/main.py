"""
Main CLI entry point for margintax.

Provides subcommands:
- assign: Consensus classification of BLAST hit tables
- lineage: Build offline lineage tables from NCBI Taxonomy
"""

from __future__ import annotations

import typer
from rich import print as rprint

from margintax import __version__

app = typer.Typer(
    name="margintax",
    help="Adaptive-margin consensus taxonomy for OTU/ASV BLAST hits",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        rprint(f"margintax version {__version__}")
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
    Margintax: adaptive-margin consensus taxonomy for metabarcoding.

    Classifies each OTU/ASV from its BLAST hits. Hits within the identity
    range of the best matching taxon vote for a consensus path weighted by
    evalue; slightly weaker hits are reported as alternatives.
    """


from margintax.cli import assign, lineage  # noqa: E402

app.add_typer(assign.app, name="assign")
app.add_typer(lineage.app, name="lineage")


if __name__ == "__main__":
    app()
