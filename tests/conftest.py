"""
Shared pytest fixtures for margintax tests.

Provides reusable hit data, temporary files, taxonomy sources
and the CLI runner for unit and integration testing.
"""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import polars as pl
import pytest

from margintax.core.constants import HIT_COLUMNS
from margintax.core.parsers import hits_from_records
from margintax.core.taxonomy import InMemoryTaxonomySource, lineages_to_frame
from margintax.models.taxonomy import TaxonomicPath
from tests.factories import make_hit, write_hit_table


# =============================================================================
# Hit Test Data Fixtures
# =============================================================================


@pytest.fixture
def valid_hit_line() -> str:
    """Single valid 16-column hit line."""
    return (
        "OTU_1\tMN122345.1\t98.5\t313\t5\t0\t1\t313\t1\t313\t1e-150\t540.0"
        "\t313\t100\t8030\tSalmo salar"
    )


@pytest.fixture
def margin_example_records() -> list[dict[str, Any]]:
    """
    Query with two hits of its best taxon and one weaker taxon.

    Taxon A spans 98.0-97.0 (adaptive upper margin 1.0), taxon B sits at
    95.5: excluded with a lower margin of 2, kept as lower with 3.
    """
    return [
        make_hit("Q1", "A1", 98.0, "101", "Taxon a", evalue=1e-60),
        make_hit("Q1", "A2", 97.0, "101", "Taxon a", evalue=1e-58),
        make_hit("Q1", "B1", 95.5, "102", "Taxon b", evalue=1e-55),
    ]


@pytest.fixture
def margin_example_hits(margin_example_records: list[dict[str, Any]]) -> pl.DataFrame:
    return hits_from_records(margin_example_records)


@pytest.fixture
def salmonid_records() -> list[dict[str, Any]]:
    """Two queries against salmonid references, one with an outdated taxid."""
    return [
        make_hit("OTU_1", "S1", 100.0, "8030", "Salmo salar", evalue=1e-160),
        make_hit("OTU_1", "S2", 99.5, "8030", "Salmo salar", evalue=1e-158),
        make_hit("OTU_1", "T1", 99.0, "8032", "Salmo trutta", evalue=1e-157),
        make_hit("OTU_1", "O1", 97.5, "8018", "Oncorhynchus mykiss", evalue=1e-150),
        make_hit("OTU_2", "H1", 100.0, "9606", "Homo sapiens", evalue=1e-170),
        make_hit("OTU_2", "H2", 99.7, "9606", "Homo sapiens", evalue=1e-168),
        make_hit("OTU_2", "X1", 80.0, "9606", "Homo sapiens", evalue=1e-20, qcovs=60.0),
    ]


@pytest.fixture
def salmonid_paths() -> dict[str, TaxonomicPath]:
    """Lineages for the taxids used by ``salmonid_records``."""
    chordate = {"kingdom": "Metazoa", "phylum": "Chordata"}
    salmonid = {
        **chordate,
        "class": "Actinopteri",
        "order": "Salmoniformes",
        "family": "Salmonidae",
    }
    return {
        "8030": TaxonomicPath.from_ranks({**salmonid, "genus": "Salmo", "species": "Salmo salar"}),
        "8032": TaxonomicPath.from_ranks({**salmonid, "genus": "Salmo", "species": "Salmo trutta"}),
        "8018": TaxonomicPath.from_ranks(
            {**salmonid, "genus": "Oncorhynchus", "species": "Oncorhynchus mykiss"}
        ),
        "9607": TaxonomicPath.from_ranks(
            {
                **chordate,
                "class": "Mammalia",
                "order": "Primates",
                "family": "Hominidae",
                "genus": "Homo",
                "species": "Homo sapiens",
            }
        ),
    }


@pytest.fixture
def salmonid_source(salmonid_paths: dict[str, TaxonomicPath]) -> InMemoryTaxonomySource:
    return InMemoryTaxonomySource(salmonid_paths)


# =============================================================================
# File Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def hit_table_writer(temp_dir: Path) -> Callable[..., Path]:
    """Write hit records to a file in the temporary directory."""

    def _write(
        records: list[dict[str, Any]],
        name: str = "hits.tsv",
        columns: tuple[str, ...] = HIT_COLUMNS,
    ) -> Path:
        return write_hit_table(temp_dir / name, records, columns)

    return _write


@pytest.fixture
def salmonid_hit_file(temp_dir: Path, salmonid_records: list[dict[str, Any]]) -> Path:
    return write_hit_table(temp_dir / "otus.blast.tsv", salmonid_records)


@pytest.fixture
def merged_taxids_file(temp_dir: Path) -> Path:
    """MergedTaxIDs table remapping the outdated human taxid used in tests."""
    path = temp_dir / "MergedTaxIDs"
    path.write_text("OldTaxID\tNewTaxID\n9606\t9607\n12\t74109\n")
    return path


@pytest.fixture
def lineage_table_file(temp_dir: Path, salmonid_paths: dict[str, TaxonomicPath]) -> Path:
    """Offline lineage table as written by ``margintax lineage resolve``."""
    path = temp_dir / "lineages.tsv"
    lineages_to_frame(salmonid_paths).write_csv(path, separator="\t")
    return path


# =============================================================================
# CLI Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
