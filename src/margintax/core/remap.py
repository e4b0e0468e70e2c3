"""
Remapping of deprecated taxon ids to their current ids.

NCBI merges taxa over time; BLAST databases built from an older taxonomy
carry the retired ids. The remap table (``MergedTaxIDs`` or the taxdump
``merged.dmp``) maps each retired id to the id that absorbed it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import polars as pl

from margintax.core.exceptions import RemapTableError
from margintax.models.taxonomy import RemapRecord

logger = logging.getLogger(__name__)

REMAP_RECORD_SCHEMA: dict[str, pl.DataType] = {
    "qseqid": pl.Utf8,
    "old_taxid": pl.Utf8,
    "new_taxid": pl.Utf8,
}


@dataclass
class TaxonIdRemapper:
    """Static old-id -> new-id lookup for merged taxon ids.

    Absence from the table is the common case and leaves an id unchanged.

    Example:
        >>> remapper = TaxonIdRemapper.from_pairs([("9606", "9607")])
        >>> remapper.normalize("9606")
        '9607'
        >>> remapper.normalize("8030")
        '8030'
    """

    old_to_new: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_pairs(cls, pairs: list[tuple[str, str]] | dict[str, str]) -> TaxonIdRemapper:
        items = pairs.items() if isinstance(pairs, dict) else pairs
        return cls(old_to_new={str(old).strip(): str(new).strip() for old, new in items})

    @classmethod
    def from_file(cls, path: Path) -> TaxonIdRemapper:
        """Load a remap table.

        Two layouts are recognised:

            OldTaxID	NewTaxID            (whitespace separated, with header)
            12	|	74109	|           (NCBI taxdump merged.dmp)

        Args:
            path: Path to the remap table

        Returns:
            TaxonIdRemapper instance

        Raises:
            RemapTableError: If the file is missing or a line cannot be parsed
        """
        if not path.exists():
            raise RemapTableError(str(path), "file not found")

        mapping: dict[str, str] = {}
        with path.open() as handle:
            for line_num, line in enumerate(handle, start=1):
                if not line.strip() or line.startswith("#"):
                    continue
                if "|" in line:
                    parts = [p.strip() for p in line.split("|") if p.strip()]
                else:
                    parts = line.split()

                if len(parts) < 2:
                    raise RemapTableError(
                        str(path), f"line {line_num}: expected two ids, got {line.strip()!r}"
                    )
                old_id, new_id = parts[0], parts[1]
                if not old_id.isdigit():
                    # Header line ("OldTaxID NewTaxID")
                    if mapping:
                        raise RemapTableError(
                            str(path), f"line {line_num}: non-numeric taxid {old_id!r}"
                        )
                    continue
                mapping[old_id] = new_id

        logger.info("Loaded %d merged taxid entries from %s", len(mapping), path)
        return cls(old_to_new=mapping)

    def normalize(self, taxon_id: str) -> str:
        """Return the current id for ``taxon_id`` (itself if not merged)."""
        return self.old_to_new.get(taxon_id, taxon_id)

    def normalize_frame(
        self,
        df: pl.DataFrame,
        col: str = "staxid",
    ) -> tuple[pl.DataFrame, pl.DataFrame]:
        """Remap the taxon id column of a hit DataFrame (vectorized).

        Every remapped hit is logged and returned as an audit row.

        Args:
            df: Hit DataFrame with ``qseqid`` and the taxon id column
            col: Name of the taxon id column

        Returns:
            Tuple of (remapped DataFrame, audit DataFrame with columns
            qseqid, old_taxid, new_taxid)
        """
        if col not in df.columns:
            raise ValueError(f"Column '{col}' not found in DataFrame")

        if not self.old_to_new:
            return df, pl.DataFrame(schema=REMAP_RECORD_SCHEMA)

        mapping_df = pl.DataFrame(
            {
                "_old_taxid": list(self.old_to_new.keys()),
                "_new_taxid": list(self.old_to_new.values()),
            },
            schema={"_old_taxid": pl.Utf8, "_new_taxid": pl.Utf8},
        )

        joined = df.join(mapping_df, left_on=col, right_on="_old_taxid", how="left")

        changed = joined.filter(pl.col("_new_taxid").is_not_null()).select(
            pl.col("qseqid"),
            pl.col(col).alias("old_taxid"),
            pl.col("_new_taxid").alias("new_taxid"),
        )
        for record in changed.iter_rows(named=True):
            logger.warning(
                "%s has an outdated taxid. Overwriting outdated taxid: %s to new taxid: %s",
                record["qseqid"],
                record["old_taxid"],
                record["new_taxid"],
            )

        result = joined.with_columns(
            pl.coalesce(pl.col("_new_taxid"), pl.col(col)).alias(col)
        ).drop("_new_taxid")

        return result, changed

    @staticmethod
    def records(audit: pl.DataFrame) -> list[RemapRecord]:
        """Convert an audit DataFrame into RemapRecord objects."""
        return [RemapRecord(**row) for row in audit.iter_rows(named=True)]

    def __len__(self) -> int:
        return len(self.old_to_new)

    def __contains__(self, item: str) -> bool:
        return item in self.old_to_new
