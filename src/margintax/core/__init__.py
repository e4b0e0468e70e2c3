"""
Core algorithms for adaptive-margin consensus classification.

This module contains the hit table parser, taxid remapping, taxonomy
resolution and the classification pipeline.
"""

from margintax.core.parsers import HitTableParser, apply_coverage_filter
from margintax.core.pipeline import ClassificationPipeline, ClassificationResult
from margintax.core.remap import TaxonIdRemapper
from margintax.core.taxonomy import (
    InMemoryTaxonomySource,
    LineageTableSource,
    TaxonomyResolver,
    TaxonomySource,
)

__all__ = [
    "ClassificationPipeline",
    "ClassificationResult",
    "HitTableParser",
    "InMemoryTaxonomySource",
    "LineageTableSource",
    "TaxonIdRemapper",
    "TaxonomyResolver",
    "TaxonomySource",
    "apply_coverage_filter",
]
