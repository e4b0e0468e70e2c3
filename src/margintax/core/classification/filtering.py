"""
Adaptive-margin hit filtering.

For each query, hits are split into those used for classification
(``upper``), those only reported as alternatives (``lower``) and those
dropped. The upper window is not a fixed cutoff: it is the identity range
of the best matching taxon, so it widens automatically for taxa with high
intraspecific variability in the reference database.

Worked example (lower_margin = 2):

    Q1  taxon A  98.0, 97.0      best identity 98, best taxon A
    Q1  taxon B  95.5            adaptive upper margin = 98 - 97 = 1

    A 98.0 -> upper, A 97.0 -> upper, B 95.5 -> excluded (< 98 - 2)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

import polars as pl

from margintax.core.constants import (
    DEFAULT_LOWER_MARGIN,
    IDENTITY_TOLERANCE,
    INVALID_TAXIDS,
)
from margintax.core.exceptions import InvalidThresholdError
from margintax.models.hits import MarginTag

logger = logging.getLogger(__name__)

SKIPPED_SCHEMA: dict[str, pl.DataType] = {"qseqid": pl.Utf8, "reason": pl.Utf8}

REASON_NO_VALID_TAXID = "no hit with a valid taxid"


@dataclass(frozen=True)
class FilterResult:
    """Output of HitFilter.

    Attributes:
        hits: Retained hits tagged ``upper`` or ``lower`` with the per-query
            thresholds they were tested against
        excluded: Hits dropped by the name filter or the lower margin,
            tagged ``excluded`` with an ``exclusion_reason``
        margins: One row per (qseqid, staxid, ssciname) with the identity
            statistics behind the adaptive margin
        skipped: Queries without any usable hit (qseqid, reason)
    """

    hits: pl.DataFrame
    excluded: pl.DataFrame
    margins: pl.DataFrame
    skipped: pl.DataFrame

    @property
    def upper(self) -> pl.DataFrame:
        return self.hits.filter(pl.col("margin") == MarginTag.UPPER.value)

    @property
    def lower(self) -> pl.DataFrame:
        return self.hits.filter(pl.col("margin") == MarginTag.LOWER.value)


def valid_taxid_expr(col: str = "staxid") -> pl.Expr:
    """True for hits carrying a usable taxon id."""
    return pl.col(col).is_not_null() & ~pl.col(col).is_in(list(INVALID_TAXIDS))


def excluded_name_expr(terms: Iterable[str], col: str = "ssciname") -> pl.Expr:
    """Case-insensitive literal substring match against any of ``terms``."""
    pattern = "|".join(re.escape(term) for term in terms)
    return pl.col(col).fill_null("").str.contains(f"(?i){pattern}")


class HitFilter:
    """
    Per-query adaptive margin filter.

    Args:
        lower_margin: Percentage points below the best identity down to
            which hits are kept as alternatives. Expected to be at least as
            wide as the adaptive upper margins it is combined with.
        excluded_names: Scientific name terms whose hits are removed
            (case-insensitive substring match)

    Example:
        hit_filter = HitFilter(lower_margin=2.0, excluded_names=["uncultured"])
        result = hit_filter.filter(hits_df)
        result.upper  # hits used for consensus scoring
    """

    def __init__(
        self,
        lower_margin: float = DEFAULT_LOWER_MARGIN,
        excluded_names: Iterable[str] = (),
    ) -> None:
        if not 0 <= lower_margin <= 100:
            raise InvalidThresholdError("lower_margin", lower_margin, 0, 100)
        self.lower_margin = lower_margin
        self.excluded_names = tuple(t for t in excluded_names if t)

    def compute_margins(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Identity statistics per (query, taxon) and the adaptive upper margin.

        The best taxon of a query is the (staxid, ssciname) sub-group holding
        the highest identity; ties go to the alphabetically first name, then
        the lowest taxid. Its minimum identity fixes the query's upper margin.

        Args:
            df: Hits with valid taxids (before any name filtering)

        Returns:
            DataFrame with qseqid, staxid, ssciname, pident_max, pident_min,
            n_hits, best_taxon_min_identity, identity_diff, overlaps_best,
            adaptive_upper_margin; sorted by qseqid and pident_max descending
        """
        per_taxon = (
            df.group_by("qseqid", "staxid", "ssciname")
            .agg(
                pl.col("pident").max().alias("pident_max"),
                pl.col("pident").min().alias("pident_min"),
                pl.len().alias("n_hits"),
            )
            .sort(
                ["qseqid", "pident_max", "ssciname", "staxid"],
                descending=[False, True, False, False],
            )
        )

        best = (
            per_taxon.group_by("qseqid", maintain_order=True)
            .first()
            .select(
                "qseqid",
                pl.col("pident_min").alias("best_taxon_min_identity"),
                (pl.col("pident_max") - pl.col("pident_min")).alias(
                    "adaptive_upper_margin"
                ),
            )
        )

        return (
            per_taxon.join(best, on="qseqid", how="left")
            .with_columns(
                (pl.col("best_taxon_min_identity") - pl.col("pident_max")).alias(
                    "identity_diff"
                ),
            )
            .with_columns(
                (pl.col("identity_diff") <= IDENTITY_TOLERANCE).alias("overlaps_best"),
            )
            .select(
                "qseqid",
                "staxid",
                "ssciname",
                "pident_max",
                "pident_min",
                "n_hits",
                "best_taxon_min_identity",
                "identity_diff",
                "overlaps_best",
                "adaptive_upper_margin",
            )
            .sort(
                ["qseqid", "pident_max", "ssciname", "staxid"],
                descending=[False, True, False, False],
            )
        )

    def _flag_excluded_names(self, df: pl.DataFrame) -> pl.DataFrame:
        """Add ``name_excluded``: name matches and the query keeps >1 hit without it."""
        if not self.excluded_names:
            return df.with_columns(pl.lit(False).alias("name_excluded"))

        matches = excluded_name_expr(self.excluded_names)
        return (
            df.with_columns(matches.alias("_name_match"))
            .with_columns(
                (
                    pl.col("_name_match")
                    & ((~pl.col("_name_match")).sum().over("qseqid") > 1)
                ).alias("name_excluded")
            )
            .drop("_name_match")
        )

    def filter(self, df: pl.DataFrame) -> FilterResult:
        """
        Tag the hits of every query as upper, lower or excluded.

        Steps, per query:
            1. drop hits with an invalid taxid ("N/A")
            2. flag hits matching an excluded name, unless that would leave
               the query with one hit or none
            3. best identity over the remaining hits
            4. adaptive upper margin from the best taxon, computed on the
               hits of step 1 so that a name filter removing rows of the best
               taxon does not shift the margin
            5. keep hits with pident >= best - lower_margin
            6. upper if pident >= best - adaptive_upper_margin, else lower

        Args:
            df: Hit DataFrame (qseqid, sseqid, pident, evalue, staxid, ssciname, ...)

        Returns:
            FilterResult
        """
        valid = df.filter(valid_taxid_expr())

        skipped_ids = (
            df.select("qseqid")
            .unique()
            .join(valid.select("qseqid").unique(), on="qseqid", how="anti")
        )
        skipped = skipped_ids.with_columns(
            pl.lit(REASON_NO_VALID_TAXID).alias("reason")
        ).sort("qseqid")
        if skipped.height:
            logger.warning(
                "%d queries have no hit with a valid taxid and are skipped",
                skipped.height,
            )

        margins = self.compute_margins(valid)
        per_query = margins.select("qseqid", "adaptive_upper_margin").unique(subset="qseqid")

        flagged = self._flag_excluded_names(valid)
        name_dropped = flagged.filter(pl.col("name_excluded"))
        kept = flagged.filter(~pl.col("name_excluded")).drop("name_excluded")

        tested = (
            kept.join(per_query, on="qseqid", how="left")
            .with_columns(pl.col("pident").max().over("qseqid").alias("best_pident"))
            .with_columns(
                (pl.col("best_pident") - pl.col("adaptive_upper_margin")).alias(
                    "upper_threshold"
                ),
                (pl.col("best_pident") - self.lower_margin).alias("lower_threshold"),
            )
        )

        in_lower = pl.col("pident") >= pl.col("lower_threshold") - IDENTITY_TOLERANCE
        in_upper = pl.col("pident") >= pl.col("upper_threshold") - IDENTITY_TOLERANCE

        hits = (
            tested.filter(in_lower)
            .with_columns(
                pl.when(in_upper)
                .then(pl.lit(MarginTag.UPPER.value))
                .otherwise(pl.lit(MarginTag.LOWER.value))
                .alias("margin")
            )
            .sort(["qseqid", "pident", "sseqid"], descending=[False, True, False])
        )

        below_lower = tested.filter(~in_lower).with_columns(
            pl.lit("below_lower_margin").alias("exclusion_reason")
        )
        by_name = name_dropped.drop("name_excluded").with_columns(
            pl.lit("excluded_name").alias("exclusion_reason")
        )
        excluded = pl.concat(
            [below_lower.select(by_name.columns), by_name], how="vertical_relaxed"
        ).with_columns(pl.lit(MarginTag.EXCLUDED.value).alias("margin"))

        logger.info(
            "Margin filter kept %d upper and %d lower hits, excluded %d",
            self._count(hits, MarginTag.UPPER),
            self._count(hits, MarginTag.LOWER),
            excluded.height,
        )

        return FilterResult(hits=hits, excluded=excluded, margins=margins, skipped=skipped)

    @staticmethod
    def _count(df: pl.DataFrame, tag: MarginTag) -> int:
        return df.filter(pl.col("margin") == tag.value).height
