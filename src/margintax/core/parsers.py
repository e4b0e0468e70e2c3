"""
Parser for BLAST hit tables carrying taxonomy columns, using Polars.

The classifier consumes tabular BLAST output with query coverage, subject
taxon id and scientific name appended to the standard 12 columns:

    qseqid sseqid pident length mismatch gapopen qstart qend
    sstart send evalue bitscore qlen qcovs staxid ssciname

Tables from databases without scientific names (15 columns) are accepted
and get the placeholder name "NA".
"""

from __future__ import annotations

import gzip
import logging
from pathlib import Path
from typing import ClassVar, TextIO

import polars as pl
from pydantic import ValidationError

from margintax.core.constants import (
    HIT_COLUMNS,
    HIT_COLUMNS_NO_SCINAME,
    MISSING_SCINAME,
)
from margintax.core.exceptions import (
    EmptyHitTableError,
    MalformedHitTableError,
    NoFullCoverageError,
)
from margintax.models.hits import TaxonomyHit

logger = logging.getLogger(__name__)


class HitTableParser:
    """
    Reader for 16-column (or 15-column) BLAST hit tables.

    Example:
        parser = HitTableParser(Path("otus.blast.tsv.gz"))
        hits = parser.parse()
        hits = apply_coverage_filter(hits, min_coverage=100.0)
    """

    HIT_SCHEMA: ClassVar[dict[str, pl.DataType]] = {
        "qseqid": pl.Utf8,
        "sseqid": pl.Utf8,
        "pident": pl.Float64,
        "length": pl.Int64,
        "mismatch": pl.Int64,
        "gapopen": pl.Int64,
        "qstart": pl.Int64,
        "qend": pl.Int64,
        "sstart": pl.Int64,
        "send": pl.Int64,
        "evalue": pl.Float64,
        "bitscore": pl.Float64,
        "qlen": pl.Int64,
        "qcovs": pl.Float64,
        "staxid": pl.Utf8,
        "ssciname": pl.Utf8,
    }

    def __init__(self, hits_path: Path) -> None:
        """
        Initialize the parser and detect the column layout.

        Args:
            hits_path: Path to the hit table (may be gzipped)

        Raises:
            FileNotFoundError: If the file does not exist
            EmptyHitTableError: If the file has no data lines
            MalformedHitTableError: If the first data line has the wrong width
        """
        self.hits_path = hits_path
        if not self.hits_path.exists():
            msg = f"Hit table not found: {self.hits_path}"
            raise FileNotFoundError(msg)

        num_cols = self._detect_column_count()
        if num_cols == len(HIT_COLUMNS):
            self.column_names: tuple[str, ...] = HIT_COLUMNS
        else:
            self.column_names = HIT_COLUMNS_NO_SCINAME
            logger.info(
                "Hit table %s has no scientific names; using '%s'",
                self.hits_path,
                MISSING_SCINAME,
            )

    def _open(self) -> TextIO:
        if self.hits_path.suffix == ".gz":
            return gzip.open(self.hits_path, "rt")
        return self.hits_path.open("r")

    def _detect_column_count(self) -> int:
        """Count tab-separated fields of the first non-comment line."""
        with self._open() as handle:
            for line_num, line in enumerate(handle, start=1):
                if line.startswith("#") or not line.strip():
                    continue
                num_cols = len(line.rstrip("\n").split("\t"))
                if num_cols not in (len(HIT_COLUMNS_NO_SCINAME), len(HIT_COLUMNS)):
                    raise MalformedHitTableError(
                        str(self.hits_path),
                        line_num,
                        f"expected {len(HIT_COLUMNS)} columns, got {num_cols}",
                    )
                return num_cols

        raise EmptyHitTableError(str(self.hits_path))

    @property
    def schema(self) -> dict[str, pl.DataType]:
        return {name: self.HIT_SCHEMA[name] for name in self.column_names}

    def parse(self) -> pl.DataFrame:
        """
        Read the whole table into a DataFrame.

        Returns:
            DataFrame with the 16 hit columns

        Raises:
            MalformedHitTableError: With the line and field at fault when a
                row does not match the schema
        """
        try:
            df = pl.read_csv(
                self.hits_path,
                separator="\t",
                has_header=False,
                new_columns=list(self.column_names),
                schema_overrides=self.schema,
                comment_prefix="#",
                quote_char=None,
            )
        except (pl.exceptions.ComputeError, pl.exceptions.ShapeError) as e:
            located = self._locate_malformed_line()
            if located is None:
                raise MalformedHitTableError(
                    str(self.hits_path), 0, str(e).splitlines()[0]
                ) from e
            line_num, field, detail = located
            raise MalformedHitTableError(
                str(self.hits_path), line_num, detail, field=field
            ) from e

        # Short rows are padded with nulls rather than rejected
        numeric = [n for n in self.column_names if self.HIT_SCHEMA[n] != pl.Utf8]
        if df.select(pl.any_horizontal(pl.col(numeric).is_null()).any()).item():
            located = self._locate_malformed_line()
            line_num, field, detail = located or (0, None, "missing numeric values")
            raise MalformedHitTableError(
                str(self.hits_path), line_num, detail, field=field
            )

        if "ssciname" not in df.columns:
            df = df.with_columns(pl.lit(MISSING_SCINAME).alias("ssciname"))

        df = df.with_columns(
            pl.col("staxid").str.strip_chars(),
            pl.col("ssciname").fill_null(MISSING_SCINAME),
        )

        if df.is_empty():
            raise EmptyHitTableError(str(self.hits_path))

        logger.info(
            "Parsed %d hits for %d queries from %s",
            df.height,
            df["qseqid"].n_unique(),
            self.hits_path,
        )
        return df

    def _locate_malformed_line(self) -> tuple[int, str | None, str] | None:
        """Find the first line that breaks the schema, for error reporting."""
        expected = len(self.column_names)
        with self._open() as handle:
            for line_num, line in enumerate(handle, start=1):
                if line.startswith("#") or not line.strip():
                    continue
                fields = line.rstrip("\n").split("\t")
                if len(fields) != expected:
                    return line_num, None, f"expected {expected} columns, got {len(fields)}"
                try:
                    TaxonomyHit.from_blast_line(line)
                except ValidationError as e:
                    error = e.errors()[0]
                    field = str(error["loc"][0]) if error["loc"] else None
                    return line_num, field, f"{error['input']!r}: {error['msg']}"
        return None


def apply_coverage_filter(df: pl.DataFrame, min_coverage: float = 100.0) -> pl.DataFrame:
    """
    Keep only hits covering at least ``min_coverage`` percent of the query.

    The adaptive margin assumes full-length matches, so a table where no hit
    reaches the requirement cannot be classified at all.

    Raises:
        NoFullCoverageError: If no hit reaches ``min_coverage``
    """
    kept = df.filter(pl.col("qcovs") >= min_coverage)
    if kept.is_empty():
        max_observed = df["qcovs"].max() if not df.is_empty() else None
        raise NoFullCoverageError(min_coverage, max_observed)

    dropped = df.height - kept.height
    if dropped:
        logger.info(
            "Dropped %d hits with query coverage below %g%%", dropped, min_coverage
        )
    return kept


def hits_from_records(records: list[dict]) -> pl.DataFrame:
    """Build a hit DataFrame from row dictionaries, filling optional columns."""
    df = pl.DataFrame(records)
    missing = [name for name in HIT_COLUMNS if name not in df.columns]
    defaults = {
        "length": 0,
        "mismatch": 0,
        "gapopen": 0,
        "qstart": 1,
        "qend": 1,
        "sstart": 1,
        "send": 1,
        "bitscore": 0.0,
        "qlen": 1,
        "qcovs": 100.0,
        "ssciname": MISSING_SCINAME,
    }
    fill = [pl.lit(defaults[name]).alias(name) for name in missing if name in defaults]
    if fill:
        df = df.with_columns(fill)
    return df.select(
        pl.col(name).cast(HitTableParser.HIT_SCHEMA[name]) for name in HIT_COLUMNS
    )
