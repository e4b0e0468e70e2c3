"""
Pydantic data models for margintax.

Provides type-safe models for BLAST hits, resolved taxonomy,
consensus results and configuration.
"""

from margintax.models.config import ClassificationConfig, ResolverConfig
from margintax.models.hits import MarginTag, TaxonomyHit
from margintax.models.taxonomy import ConsensusResult, RemapRecord, TaxonomicPath

__all__ = [
    "ClassificationConfig",
    "ConsensusResult",
    "MarginTag",
    "RemapRecord",
    "ResolverConfig",
    "TaxonomicPath",
    "TaxonomyHit",
]
