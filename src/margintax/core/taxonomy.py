"""
Resolution of taxon ids to full taxonomic paths.

Lookups go through the narrow ``TaxonomySource`` interface so that the
resolver works the same against NCBI, an offline lineage table or an
in-memory mapping in tests.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Protocol, runtime_checkable

import polars as pl

from margintax.core.constants import RANKS
from margintax.core.exceptions import TaxonomyLookupError
from margintax.models.taxonomy import TaxonomicPath

logger = logging.getLogger(__name__)


@runtime_checkable
class TaxonomySource(Protocol):
    """Anything that can resolve a taxon id to a path, or report it unknown."""

    def lookup(self, taxon_id: str) -> TaxonomicPath | None:
        """Return the path of ``taxon_id``, or None if the id is unknown.

        Raises:
            TaxonomyLookupError: If the source could not answer
        """
        ...


class InMemoryTaxonomySource:
    """Taxonomy source backed by a dictionary of paths."""

    def __init__(self, paths: Mapping[str, TaxonomicPath]) -> None:
        self._paths = dict(paths)

    def lookup(self, taxon_id: str) -> TaxonomicPath | None:
        return self._paths.get(taxon_id)

    def __len__(self) -> int:
        return len(self._paths)


class LineageTableSource(InMemoryTaxonomySource):
    """Offline taxonomy source read from a lineage TSV.

    Expected columns: staxid, kingdom, phylum, class, order, family, genus,
    species. This is the format written by ``margintax lineage resolve``.
    """

    @classmethod
    def from_file(cls, path: Path) -> LineageTableSource:
        """Load lineages from a TSV file.

        Raises:
            FileNotFoundError: If file does not exist
            ValueError: If required columns are missing
        """
        if not path.exists():
            msg = f"Lineage table not found: {path}"
            raise FileNotFoundError(msg)

        df = pl.read_csv(
            path,
            separator="\t",
            infer_schema=False,
            quote_char=None,
        )
        required = {"staxid", *RANKS}
        missing = required - set(df.columns)
        if missing:
            msg = f"Lineage table missing required columns: {sorted(missing)}"
            raise ValueError(msg)

        paths = {
            row["staxid"]: TaxonomicPath.from_ranks(row)
            for row in df.select("staxid", *RANKS).iter_rows(named=True)
        }
        logger.info("Loaded %d lineages from %s", len(paths), path)
        return cls(paths)


def lineages_to_frame(resolved: Mapping[str, TaxonomicPath]) -> pl.DataFrame:
    """Tabulate resolved paths as staxid + one column per rank."""
    schema = {"staxid": pl.Utf8, **{rank: pl.Utf8 for rank in RANKS}}
    rows = [
        {"staxid": taxon_id, **path.as_dict()}
        for taxon_id, path in sorted(resolved.items())
    ]
    return pl.DataFrame(rows, schema=schema)


class TaxonomyResolver:
    """
    Resolve unique taxon ids to taxonomic paths with a per-id cache.

    Each id is looked up at most once over the lifetime of the resolver,
    however many hits or calls reference it. Lookups are independent and
    run on a bounded thread pool; an id the source does not know, or
    cannot answer for after its own retries, is reported as unresolved
    instead of failing the run.

    Example:
        resolver = TaxonomyResolver(NCBITaxonomyClient(), max_workers=4)
        paths, unresolved = resolver.resolve({"8030", "8032"})
    """

    def __init__(self, source: TaxonomySource, max_workers: int = 4) -> None:
        if max_workers < 1:
            msg = f"max_workers must be >= 1, got {max_workers}"
            raise ValueError(msg)
        self.source = source
        self.max_workers = max_workers
        self._cache: dict[str, TaxonomicPath | None] = {}
        self._lock = threading.Lock()
        self._resolve_lock = threading.Lock()
        self.lookup_count = 0

    def _lookup(self, taxon_id: str) -> tuple[str, TaxonomicPath | None]:
        try:
            path = self.source.lookup(taxon_id)
        except TaxonomyLookupError as e:
            logger.warning("Could not resolve taxid %s: %s", taxon_id, e.message)
            path = None
        return taxon_id, path

    def resolve(
        self,
        taxon_ids: Iterable[str],
    ) -> tuple[dict[str, TaxonomicPath], set[str]]:
        """
        Resolve taxon ids to paths.

        Args:
            taxon_ids: Taxon ids (duplicates are collapsed)

        Returns:
            Tuple of (taxon id -> path for resolved ids, set of unresolved ids)
        """
        unique_ids = sorted(set(taxon_ids))
        # Serialised so concurrent callers never look up the same id twice
        with self._resolve_lock:
            pending = [t for t in unique_ids if t not in self._cache]
            self.lookup_count += len(pending)
            if pending:
                logger.info(
                    "Resolving %d taxids (%d cached)",
                    len(pending),
                    len(unique_ids) - len(pending),
                )
                self._fill(pending)

        resolved: dict[str, TaxonomicPath] = {}
        unresolved: set[str] = set()
        for taxon_id in unique_ids:
            path = self._cache.get(taxon_id)
            if path is None:
                unresolved.add(taxon_id)
            else:
                resolved[taxon_id] = path

        if unresolved:
            logger.warning(
                "Taxids not found in the classification: %s",
                ", ".join(sorted(unresolved)),
            )
        return resolved, unresolved

    def _fill(self, pending: list[str]) -> None:
        if self.max_workers == 1 or len(pending) == 1:
            for i, taxon_id in enumerate(pending, 1):
                self._store(*self._lookup(taxon_id))
                logger.debug("Resolved %d/%d taxids", i, len(pending))
            return

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._lookup, t): t for t in pending}
            completed = 0
            for future in as_completed(futures):
                self._store(*future.result())
                completed += 1
                logger.debug("Resolved %d/%d taxids", completed, len(pending))

    def _store(self, taxon_id: str, path: TaxonomicPath | None) -> None:
        with self._lock:
            self._cache.setdefault(taxon_id, path)

    @property
    def cache_size(self) -> int:
        return len(self._cache)
