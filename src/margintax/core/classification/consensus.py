"""
Evalue-weighted multi-rank consensus (soft LCA) for margin-tagged hits.

Each upper-margin hit of a query gets a weight proportional to 1/evalue,
normalised to sum to 100 over the query. Weights are summed bottom-up over
every rank: the species score of a hit is the total weight of hits sharing
its full kingdom..species path, its genus score the total over hits sharing
kingdom..genus, and so on up to kingdom. The query takes the path of the
hit with the best (kingdom, phylum, ..., species) score tuple, so agreement
at a coarse rank outweighs disagreement at a finer one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import polars as pl

from margintax.core.constants import (
    DEFAULT_EVALUE_FLOOR,
    RANKS,
    SCORE_COLUMNS,
    WEIGHT_TOTAL,
)
from margintax.core.classification.filtering import SKIPPED_SCHEMA
from margintax.models.hits import MarginTag
from margintax.models.taxonomy import ConsensusResult

logger = logging.getLogger(__name__)

REASON_NO_SCORING_HIT = "no upper-margin hit to score"
REASON_NON_FINITE = "non-finite hit weights"

# Tie-break after the seven rank scores
_TIE_BREAK: tuple[tuple[str, bool], ...] = (
    ("pident", True),
    ("evalue", False),
    ("species", False),
    ("sseqid", False),
)


def format_identity(value: float) -> str:
    """Shortest rendering of a percent identity: 98.0 -> '98', 97.25 -> '97.25'."""
    return f"{value:g}"


def evalue_weight_expr(
    evalue_floor: float = DEFAULT_EVALUE_FLOOR,
    group: str = "qseqid",
) -> pl.Expr:
    """
    Expression for 100 * (1/evalue) / sum(1/evalue) within each group.

    Evaluated in log space, so that very small evalues cannot overflow the
    reciprocal. Evalues below ``evalue_floor`` (BLAST reports 0.0 beyond
    double precision) are clamped to it: such hits weigh the most, and
    several clamped hits share their weight equally.
    """
    neg_log = -(pl.col("evalue").clip(lower_bound=evalue_floor).log())
    relative = (neg_log - neg_log.max().over(group)).exp()
    return WEIGHT_TOTAL * relative / relative.sum().over(group)


def rank_score_exprs(group: str = "qseqid") -> list[pl.Expr]:
    """Per-rank score columns: sum of weights over hits sharing the path down to that rank."""
    return [
        pl.col("score").sum().over([group, *RANKS[: i + 1]]).alias(score_col)
        for i, score_col in enumerate(SCORE_COLUMNS)
    ]


@dataclass(frozen=True)
class ConsensusTables:
    """Output of ConsensusScorer.

    Attributes:
        classified: One row per query with the winning path, its seven
            rank scores and the alternatives string
        hit_scores: Every scoring hit with its weight (``score``) and rank scores
        summed: One row per distinct (query, path) with hit count, best
            identity and rank scores
        skipped: Queries that could not be scored (qseqid, reason)
    """

    classified: pl.DataFrame
    hit_scores: pl.DataFrame
    summed: pl.DataFrame
    skipped: pl.DataFrame

    def results(self) -> list[ConsensusResult]:
        return [ConsensusResult.from_row(row) for row in self.classified.iter_rows(named=True)]


class ConsensusScorer:
    """
    Weighted consensus classification of margin-tagged hits.

    Input hits carry the ``margin`` tag from HitFilter and one column per
    rank (kingdom..species) from taxonomy resolution, plus a boolean
    ``resolved`` column when ``drop_unresolved`` is used.

    Example:
        scorer = ConsensusScorer()
        tables = scorer.score(hits_with_paths)
        tables.classified.select("qseqid", "species", "species_score")
    """

    def __init__(
        self,
        evalue_floor: float = DEFAULT_EVALUE_FLOOR,
        drop_unresolved: bool = False,
    ) -> None:
        if not 0 < evalue_floor < 1:
            msg = f"evalue_floor must be in (0, 1), got {evalue_floor}"
            raise ValueError(msg)
        self.evalue_floor = evalue_floor
        self.drop_unresolved = drop_unresolved

    def _scoring_hits(self, hits: pl.DataFrame) -> pl.DataFrame:
        scoring = hits.filter(pl.col("margin") == MarginTag.UPPER.value)
        if self.drop_unresolved and "resolved" in scoring.columns:
            dropped = scoring.filter(~pl.col("resolved")).height
            if dropped:
                logger.info("Excluding %d hits with unresolved taxids from scoring", dropped)
            scoring = scoring.filter(pl.col("resolved"))
        return scoring

    def weigh(self, hits: pl.DataFrame) -> pl.DataFrame:
        """Add the ``score`` weight and the seven rank score columns to scoring hits."""
        return hits.with_columns(
            evalue_weight_expr(self.evalue_floor).alias("score")
        ).with_columns(rank_score_exprs())

    def score(self, hits: pl.DataFrame) -> ConsensusTables:
        """
        Compute the consensus classification of every query.

        Args:
            hits: Upper and lower margin hits with rank columns

        Returns:
            ConsensusTables

        Raises:
            ValueError: If rank or margin columns are missing
        """
        missing = {"qseqid", "margin", "evalue", "pident", *RANKS} - set(hits.columns)
        if missing:
            msg = f"Hits are missing required columns: {sorted(missing)}"
            raise ValueError(msg)

        weighted = self.weigh(self._scoring_hits(hits))

        bad = (
            weighted.group_by("qseqid")
            .agg(pl.col("score").is_finite().all().alias("_finite"))
            .filter(~pl.col("_finite"))
            .select("qseqid")
        )
        if bad.height:
            logger.warning(
                "Skipping %d queries with non-finite hit weights: %s",
                bad.height,
                ", ".join(sorted(bad["qseqid"].to_list())[:5]),
            )
            weighted = weighted.join(bad, on="qseqid", how="anti")

        no_scoring = (
            hits.select("qseqid")
            .unique()
            .join(weighted.select("qseqid").unique(), on="qseqid", how="anti")
            .join(bad, on="qseqid", how="anti")
        )
        if no_scoring.height:
            logger.warning(
                "Skipping %d queries without upper-margin hits to score",
                no_scoring.height,
            )

        skipped = pl.concat(
            [
                no_scoring.with_columns(pl.lit(REASON_NO_SCORING_HIT).alias("reason")),
                bad.with_columns(pl.lit(REASON_NON_FINITE).alias("reason")),
            ]
        ).cast(SKIPPED_SCHEMA).sort("qseqid")

        ranked = weighted.sort(
            ["qseqid", *SCORE_COLUMNS, *(col for col, _ in _TIE_BREAK)],
            descending=[False, *([True] * len(SCORE_COLUMNS)), *(d for _, d in _TIE_BREAK)],
        )

        winners = ranked.group_by("qseqid", maintain_order=True).first()

        counts = hits.group_by("qseqid").agg(
            (pl.col("margin") == MarginTag.UPPER.value).sum().alias("n_upper_hits"),
            (pl.col("margin") == MarginTag.LOWER.value).sum().alias("n_lower_hits"),
        )

        classified = (
            winners.join(self.alternatives(hits), on="qseqid", how="left")
            .join(counts, on="qseqid", how="left")
            .select(
                "qseqid",
                *RANKS,
                *SCORE_COLUMNS,
                "alternatives",
                "sseqid",
                "staxid",
                "pident",
                "evalue",
                "score",
                "n_upper_hits",
                "n_lower_hits",
            )
            .sort("qseqid")
        )

        hit_scores = ranked.select(
            "qseqid",
            "sseqid",
            "staxid",
            "ssciname",
            "pident",
            "qcovs",
            "evalue",
            "margin",
            "score",
            *RANKS,
            *SCORE_COLUMNS,
        )

        summed = (
            ranked.group_by("qseqid", *RANKS, maintain_order=True)
            .agg(
                pl.len().alias("n_hits"),
                pl.col("pident").max().alias("pident_max"),
                *(pl.col(col).first() for col in SCORE_COLUMNS),
            )
        )

        logger.info(
            "Classified %d queries (%d skipped)", classified.height, skipped.height
        )
        return ConsensusTables(
            classified=classified,
            hit_scores=hit_scores,
            summed=summed,
            skipped=skipped,
        )

    @staticmethod
    def alternatives(hits: pl.DataFrame) -> pl.DataFrame:
        """
        Alternatives string per query from all upper and lower hits.

        Distinct (species, identity) pairs, highest identity first, flattened
        into "Species a, 98, Species b, 97.5".
        """
        pairs = (
            hits.select("qseqid", "species", "pident")
            .unique()
            .sort(["qseqid", "pident", "species"], descending=[False, True, False])
            .with_columns(
                pl.concat_str(
                    pl.col("species"),
                    pl.col("pident").map_elements(format_identity, return_dtype=pl.Utf8),
                    separator=", ",
                ).alias("_pair")
            )
        )
        return pairs.group_by("qseqid", maintain_order=True).agg(
            pl.col("_pair").str.join(", ").alias("alternatives")
        )
