"""Unit tests for merged taxon id remapping."""

from __future__ import annotations

from pathlib import Path

import polars as pl
import pytest

from margintax.core.exceptions import RemapTableError
from margintax.core.parsers import hits_from_records
from margintax.core.remap import TaxonIdRemapper
from margintax.models.taxonomy import RemapRecord
from tests.factories import make_hit


class TestTaxonIdRemapperLoading:
    """Tests for loading remap tables."""

    def test_merged_taxids_with_header(self, merged_taxids_file: Path):
        """Should skip the OldTaxID/NewTaxID header and load all pairs."""
        remapper = TaxonIdRemapper.from_file(merged_taxids_file)

        assert len(remapper) == 2
        assert remapper.normalize("9606") == "9607"
        assert remapper.normalize("12") == "74109"

    def test_taxdump_merged_dmp(self, temp_dir: Path):
        """Should read the pipe-delimited NCBI merged.dmp layout."""
        path = temp_dir / "merged.dmp"
        path.write_text("12\t|\t74109\t|\n30\t|\t29\t|\n")

        remapper = TaxonIdRemapper.from_file(path)

        assert remapper.old_to_new == {"12": "74109", "30": "29"}

    def test_missing_file(self, temp_dir: Path):
        """Should raise RemapTableError for a missing table."""
        with pytest.raises(RemapTableError) as exc_info:
            TaxonIdRemapper.from_file(temp_dir / "MergedTaxIDs")
        assert "file not found" in str(exc_info.value)

    def test_single_column_line(self, temp_dir: Path):
        """Should reject lines without two ids."""
        path = temp_dir / "MergedTaxIDs"
        path.write_text("OldTaxID\tNewTaxID\n9606\n")

        with pytest.raises(RemapTableError) as exc_info:
            TaxonIdRemapper.from_file(path)
        assert "line 2" in str(exc_info.value)

    def test_non_numeric_after_data(self, temp_dir: Path):
        """Should only tolerate a non-numeric first line as header."""
        path = temp_dir / "MergedTaxIDs"
        path.write_text("9606\t9607\nfoo\tbar\n")

        with pytest.raises(RemapTableError):
            TaxonIdRemapper.from_file(path)


class TestTaxonIdRemapperNormalize:
    """Tests for id normalization."""

    def test_unknown_id_unchanged(self):
        """Should return ids absent from the table unchanged."""
        remapper = TaxonIdRemapper.from_pairs({"9606": "9607"})

        assert remapper.normalize("8030") == "8030"
        assert "9606" in remapper
        assert "8030" not in remapper

    def test_normalize_frame(self):
        """Should replace outdated taxids and report one audit row per hit."""
        df = hits_from_records(
            [
                make_hit("OTU_2", "H1", 100.0, "9606", "Homo sapiens"),
                make_hit("OTU_2", "H2", 99.7, "9606", "Homo sapiens"),
                make_hit("OTU_1", "S1", 99.0, "8030", "Salmo salar"),
            ]
        )
        remapper = TaxonIdRemapper.from_pairs([("9606", "9607")])

        remapped, audit = remapper.normalize_frame(df)

        assert sorted(remapped["staxid"].to_list()) == ["8030", "9607", "9607"]
        assert remapped.columns == df.columns
        assert audit.height == 2
        assert audit.columns == ["qseqid", "old_taxid", "new_taxid"]
        assert set(audit["old_taxid"]) == {"9606"}
        assert set(audit["new_taxid"]) == {"9607"}

    def test_normalize_frame_logs_each_remap(self, caplog):
        """Should warn once per remapped hit."""
        df = hits_from_records([make_hit("OTU_2", "H1", 100.0, "9606", "Homo sapiens")])
        remapper = TaxonIdRemapper.from_pairs({"9606": "9607"})

        with caplog.at_level("WARNING", logger="margintax"):
            remapper.normalize_frame(df)

        assert "OTU_2 has an outdated taxid" in caplog.text
        assert "9606 to new taxid: 9607" in caplog.text

    def test_empty_remapper_is_identity(self):
        """Should leave the frame untouched and return an empty audit."""
        df = hits_from_records([make_hit("OTU_1", "S1", 99.0, "8030", "Salmo salar")])

        remapped, audit = TaxonIdRemapper().normalize_frame(df)

        assert remapped.equals(df)
        assert audit.is_empty()
        assert audit.schema["old_taxid"] == pl.Utf8

    def test_missing_column(self):
        """Should raise ValueError when the taxid column is absent."""
        df = pl.DataFrame({"qseqid": ["Q1"]})

        with pytest.raises(ValueError, match="staxid"):
            TaxonIdRemapper.from_pairs({"1": "2"}).normalize_frame(df)

    def test_records(self):
        """Should convert audit rows to RemapRecord models."""
        audit = pl.DataFrame(
            {"qseqid": ["OTU_2"], "old_taxid": ["9606"], "new_taxid": ["9607"]}
        )

        records = TaxonIdRemapper.records(audit)

        assert records == [RemapRecord(qseqid="OTU_2", old_taxid="9606", new_taxid="9607")]
