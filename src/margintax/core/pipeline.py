"""
End-to-end consensus classification of a BLAST hit table.

Stages run strictly forward:

    coverage gate -> taxid remap -> margin filter -> taxonomy resolution
    -> path join -> weighted consensus

Taxonomy resolution is deduplicated over all queries before any scoring
starts; everything else is vectorised over the whole table with Polars
window and group operations keyed by ``qseqid``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import polars as pl

from margintax.clients.ncbi import NCBITaxonomyClient
from margintax.core.classification.consensus import ConsensusScorer
from margintax.core.classification.filtering import SKIPPED_SCHEMA, HitFilter
from margintax.core.constants import RANKS, UNRESOLVED
from margintax.core.parsers import HitTableParser, apply_coverage_filter
from margintax.core.remap import TaxonIdRemapper
from margintax.core.taxonomy import (
    LineageTableSource,
    TaxonomyResolver,
    TaxonomySource,
    lineages_to_frame,
)
from margintax.models.config import ClassificationConfig, ResolverConfig
from margintax.models.taxonomy import ConsensusResult, RemapRecord, TaxonomicPath

logger = logging.getLogger(__name__)


def build_taxonomy_source(
    resolver_config: ResolverConfig,
    taxonomy_table: Path | None = None,
) -> TaxonomySource:
    """Offline lineage table when given, NCBI E-utilities otherwise."""
    if taxonomy_table is not None:
        return LineageTableSource.from_file(taxonomy_table)
    return NCBITaxonomyClient(
        timeout=resolver_config.timeout,
        max_retries=resolver_config.max_retries,
        retry_delay=resolver_config.retry_delay,
        retry_backoff=resolver_config.retry_backoff,
        email=resolver_config.email,
        api_key=resolver_config.api_key,
    )


def attach_paths(
    hits: pl.DataFrame,
    resolved: Mapping[str, TaxonomicPath],
) -> pl.DataFrame:
    """
    Join resolved taxonomic paths onto hits by taxid.

    Hits without a resolved path keep their own scientific name as species
    and "unresolved" for every coarser rank; no rank is inferred. Paths
    resolved above species level (genus-level "sp." taxa) also take the
    species from the hit's scientific name.
    """
    lineages = lineages_to_frame(resolved).with_columns(
        pl.lit(True).alias("resolved")
    )
    species_missing = pl.col("species").is_null() | (pl.col("species") == UNRESOLVED)
    return (
        hits.join(lineages, on="staxid", how="left")
        .with_columns(
            pl.col("resolved").fill_null(False),
            pl.when(species_missing)
            .then(pl.coalesce(pl.col("ssciname"), pl.lit(UNRESOLVED)))
            .otherwise(pl.col("species"))
            .alias("species"),
            *(pl.col(rank).fill_null(UNRESOLVED) for rank in RANKS[:-1]),
        )
    )


@dataclass(frozen=True)
class ClassificationResult:
    """Everything a classification run produces.

    Attributes:
        classified: One row per classified query (winning path, seven rank
            scores, alternatives)
        hit_scores: Scoring hits with their individual weights and rank scores
        summed: Distinct (query, path) combinations with their scores
        margins: Identity statistics per (query, taxon) behind the adaptive margin
        tagged: Upper and lower margin hits with their resolved paths
        excluded: Hits dropped by the name filter or the lower margin
        remapped: Audit of outdated taxids replaced (qseqid, old_taxid, new_taxid)
        unresolved_taxids: Taxids the taxonomy source could not resolve
        skipped: Queries that produced no classification (qseqid, reason)
        lower_margin: Lower margin used for the run
        excluded_names: Name filter terms used for the run
    """

    classified: pl.DataFrame
    hit_scores: pl.DataFrame
    summed: pl.DataFrame
    margins: pl.DataFrame
    tagged: pl.DataFrame
    excluded: pl.DataFrame
    remapped: pl.DataFrame
    unresolved_taxids: frozenset[str] = field(default_factory=frozenset)
    skipped: pl.DataFrame = field(default_factory=lambda: pl.DataFrame(schema=SKIPPED_SCHEMA))
    lower_margin: float = 2.0
    excluded_names: tuple[str, ...] = ()

    @property
    def results(self) -> list[ConsensusResult]:
        return [ConsensusResult.from_row(row) for row in self.classified.iter_rows(named=True)]

    @property
    def remap_records(self) -> list[RemapRecord]:
        return TaxonIdRemapper.records(self.remapped)

    @property
    def num_classified(self) -> int:
        return self.classified.height


class ClassificationPipeline:
    """
    Orchestrates remap, margin filter, taxonomy resolution and consensus.

    Example:
        config = ClassificationConfig(lower_margin=2, excluded_names=["uncultured"])
        remapper = TaxonIdRemapper.from_file(Path("MergedTaxIDs"))
        with NCBITaxonomyClient(email="me@example.org") as ncbi:
            pipeline = ClassificationPipeline(config, ncbi, remapper)
            result = pipeline.run_file(Path("otus.blast.tsv"))
        result.classified.write_csv("classified.tsv", separator="\\t")
    """

    def __init__(
        self,
        config: ClassificationConfig | None = None,
        source: TaxonomySource | None = None,
        remapper: TaxonIdRemapper | None = None,
        resolver: TaxonomyResolver | None = None,
    ) -> None:
        self.config = config or ClassificationConfig()
        if resolver is None:
            if source is None:
                msg = "Either a taxonomy source or a resolver is required"
                raise ValueError(msg)
            resolver = TaxonomyResolver(source, max_workers=self.config.resolver.max_workers)
        self.resolver = resolver
        self.remapper = remapper or TaxonIdRemapper()
        self.hit_filter = HitFilter(
            lower_margin=self.config.lower_margin,
            excluded_names=self.config.excluded_names,
        )
        self.scorer = ConsensusScorer(
            evalue_floor=self.config.evalue_floor,
            drop_unresolved=self.config.drop_unresolved,
        )

    def run_file(self, hits_path: Path) -> ClassificationResult:
        """Parse a hit table and classify it."""
        return self.run(HitTableParser(hits_path).parse())

    def run(self, hits: pl.DataFrame) -> ClassificationResult:
        """
        Classify every query of a hit DataFrame.

        Raises:
            NoFullCoverageError: If no hit reaches the configured query coverage
        """
        covered = apply_coverage_filter(hits, self.config.min_query_coverage)

        normalized, remapped = self.remapper.normalize_frame(covered)
        if remapped.height:
            logger.warning("Replaced %d outdated taxids", remapped.height)

        filtered = self.hit_filter.filter(normalized)

        upper_taxids = filtered.upper["staxid"].unique().to_list()
        resolved, unresolved = self.resolver.resolve(upper_taxids)

        tagged = attach_paths(filtered.hits, resolved)
        tables = self.scorer.score(tagged)

        skipped = pl.concat([filtered.skipped, tables.skipped]).sort("qseqid")

        return ClassificationResult(
            classified=tables.classified,
            hit_scores=tables.hit_scores,
            summed=tables.summed,
            margins=filtered.margins,
            tagged=tagged.sort(
                ["qseqid", "margin", "pident"], descending=[False, True, True]
            ),
            excluded=filtered.excluded,
            remapped=remapped,
            unresolved_taxids=frozenset(unresolved),
            skipped=skipped,
            lower_margin=self.config.lower_margin,
            excluded_names=self.config.excluded_names,
        )

