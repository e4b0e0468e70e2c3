"""
Unit tests for I/O utility functions.

Tests for write_dataframe and the small file helpers.
"""

from __future__ import annotations

from pathlib import Path

import polars as pl
import pytest

from margintax.core.io_utils import (
    infer_output_format,
    write_dataframe,
    write_empty_marker,
    write_id_list,
)


@pytest.fixture
def sample_df() -> pl.DataFrame:
    """Create a sample classification-like DataFrame."""
    return pl.DataFrame({
        "qseqid": ["OTU_1", "OTU_2"],
        "species": ["Salmo salar", "Homo sapiens"],
        "species_score": [100.0, 87.5],
    })


class TestWriteDataframe:
    """Tests for write_dataframe function."""

    def test_write_tsv(self, sample_df: pl.DataFrame, tmp_path: Path) -> None:
        """Should write tab-separated text with a header by default."""
        output = tmp_path / "classified.tsv"
        write_dataframe(sample_df, output)

        lines = output.read_text().splitlines()
        assert lines[0] == "qseqid\tspecies\tspecies_score"
        assert lines[1] == "OTU_1\tSalmo salar\t100.0"

    def test_write_csv(self, sample_df: pl.DataFrame, tmp_path: Path) -> None:
        output = tmp_path / "classified.csv"
        write_dataframe(sample_df, output, "csv")

        assert pl.read_csv(output).equals(sample_df)

    def test_write_parquet(self, sample_df: pl.DataFrame, tmp_path: Path) -> None:
        output = tmp_path / "classified.parquet"
        write_dataframe(sample_df, output, "parquet")

        assert pl.read_parquet(output).equals(sample_df)


class TestFileHelpers:
    """Tests for id lists, marker files and format inference."""

    def test_write_id_list_sorted(self, tmp_path: Path) -> None:
        path = tmp_path / "unresolved.txt"
        write_id_list({"9606", "12", "8030"}, path)

        assert path.read_text() == "12\n8030\n9606\n"

    def test_write_empty_id_list(self, tmp_path: Path) -> None:
        path = tmp_path / "unresolved.txt"
        write_id_list([], path)

        assert path.read_text() == ""

    def test_empty_marker(self, tmp_path: Path) -> None:
        """Should create an empty file, including missing parent directories."""
        path = tmp_path / "results" / "classified.tsv"
        write_empty_marker(path)

        assert path.exists()
        assert path.stat().st_size == 0

    @pytest.mark.parametrize("name,expected", [
        ("classified.tsv", "tsv"),
        ("classified.CSV", "csv"),
        ("classified.parquet", "parquet"),
        ("classified.txt", "tsv"),
        ("classified", "tsv"),
    ])
    def test_infer_output_format(self, name: str, expected: str) -> None:
        assert infer_output_format(Path(name)) == expected
